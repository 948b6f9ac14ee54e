"""JSON API for generation, shots, history and usage."""
import asyncio
import logging

from flask import Response, current_app, redirect, request, url_for

from studio import extensions
from studio.blueprints.api import api_bp
from studio.blueprints.errors import request_locale
from studio.domain import SHOT_KINDS, VIDEO_ASPECT_RATIOS
from studio.errors import (
    HistoryNotFoundError,
    MissingCredentialError,
    UnsupportedAspectRatioError,
    ValidationError,
)
from studio.services import (
    ai_service,
    history_service,
    prompt_builder,
    storage_service,
    usage_service,
)
from studio.services.auth_service import current_account_id, login_required
from studio.services.fetcher import ResourceFetcher
from studio.services.validation import validate_form

logger = logging.getLogger(__name__)

GENERATE_JOB = "studio.workers.generation.generate_shots"
ANIMATE_JOB = "studio.workers.generation.animate_shot"

# Jobs carry the user's API key; keep them in Redis only briefly
JOB_OPTIONS = {"result_ttl": 0, "failure_ttl": 3600}


def _api_key_override():
    return ai_service.clean_api_key(request.headers.get("X-Goog-Api-Key")) or None


def _require_credential(override):
    if not ai_service.resolve_api_key(override, current_app.config):
        raise MissingCredentialError()


def _shot_dict(shot):
    return {
        "id": shot.id,
        "shotKind": shot.shot_kind,
        "label": shot.label,
        "mimeType": shot.mime_type,
        "imageUrl": url_for("api.shot_image", shot_id=shot.id),
        "videoStatus": shot.video_status,
        "videoUrl": (
            url_for("api.shot_video", shot_id=shot.id)
            if shot.video_status == "READY" else None
        ),
        "videoError": shot.video_error,
    }


def _record_dict(record):
    return {
        "id": record.id,
        "status": record.status,
        "prompt": record.prompt,
        "request": record.request,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
        "errorType": record.error_type,
        "errorMessage": record.error_message,
        "shots": [_shot_dict(s) for s in record.shots],
    }


# -- prompt ------------------------------------------------------------------

@api_bp.route("/prompt/preview", methods=["POST"])
@login_required
def prompt_preview():
    generation_request = validate_form(request.get_json(silent=True))
    return {
        "prompt": prompt_builder.build_display_prompt(generation_request),
        "shotPrompts": {
            kind: prompt_builder.build_shot_prompt(generation_request, kind)
            for kind in SHOT_KINDS
        },
    }


# -- generations -------------------------------------------------------------

@api_bp.route("/generations", methods=["POST"])
@login_required
def create_generation():
    """Validate, check the credential, take a credit, then enqueue."""
    account_id = current_account_id()
    generation_request = validate_form(request.get_json(silent=True))
    override = _api_key_override()
    _require_credential(override)

    remaining = usage_service.consume_credit(account_id)
    record = history_service.create_pending(account_id, generation_request)

    extensions.task_queue.enqueue(
        GENERATE_JOB,
        record.id,
        generation_request.to_dict(),
        api_key_override=override,
        locale=request_locale(),
        job_id=f"generate-{record.id}",
        job_timeout=900,
        **JOB_OPTIONS,
    )
    logger.info("Enqueued generation for history record %d", record.id)

    return {"generation": _record_dict(record), "remainingCredits": remaining}, 202


@api_bp.route("/generations/<int:record_id>")
@login_required
def get_generation(record_id):
    record = history_service.get_record(current_account_id(), record_id)
    return {"generation": _record_dict(record)}


@api_bp.route("/generations/<int:record_id>/cancel", methods=["POST"])
@login_required
def cancel_generation(record_id):
    record = history_service.cancel(current_account_id(), record_id)
    return {"generation": _record_dict(record)}


# -- shots -------------------------------------------------------------------

@api_bp.route("/shots/<int:shot_id>/video", methods=["POST"])
@login_required
def animate(shot_id):
    shot = history_service.get_shot(current_account_id(), shot_id)
    aspect_ratio = shot.record.aspect_ratio
    if aspect_ratio not in VIDEO_ASPECT_RATIOS:
        raise UnsupportedAspectRatioError(aspect_ratio, VIDEO_ASPECT_RATIOS)
    override = _api_key_override()
    _require_credential(override)

    history_service.mark_video_pending(shot)
    extensions.task_queue.enqueue(
        ANIMATE_JOB,
        shot.id,
        api_key_override=override,
        locale=request_locale(),
        job_timeout=int(current_app.config["VIDEO_TIMEOUT"]) + 300,
        **JOB_OPTIONS,
    )
    return {"shot": _shot_dict(shot)}, 202


def _serve(storage_key, data, mime_type):
    if storage_key and storage_service.is_configured():
        return redirect(storage_service.get_signed_url(storage_key))
    if not data:
        raise HistoryNotFoundError(request.view_args.get("shot_id"))
    return Response(data, mimetype=mime_type)


@api_bp.route("/shots/<int:shot_id>/image")
@login_required
def shot_image(shot_id):
    shot = history_service.get_shot(current_account_id(), shot_id)
    return _serve(shot.storage_key, shot.image_data, shot.mime_type)


@api_bp.route("/shots/<int:shot_id>/video")
@login_required
def shot_video(shot_id):
    shot = history_service.get_shot(current_account_id(), shot_id)
    return _serve(shot.video_storage_key, shot.video_data, "video/mp4")


@api_bp.route("/shots/<int:shot_id>/download")
@login_required
def download(shot_id):
    """Serve a shot (or its clip) as an attachment."""
    shot = history_service.get_shot(current_account_id(), shot_id)
    kind = request.args.get("type", "image")
    if kind not in ("image", "video"):
        raise ValidationError("type must be image or video")

    if kind == "video":
        storage_key, data, mime_type = shot.video_storage_key, shot.video_data, "video/mp4"
    else:
        storage_key, data, mime_type = shot.storage_key, shot.image_data, shot.mime_type

    if storage_key and storage_service.is_configured():
        fetcher = ResourceFetcher(
            origin=current_app.config["APP_URL"],
            timeout=current_app.config["FETCH_TIMEOUT"],
        )
        resolved = asyncio.run(fetcher.download_blob(storage_service.get_signed_url(storage_key)))
        data, mime_type = resolved.data, resolved.mime_type
    if not data:
        raise HistoryNotFoundError(shot_id)

    extension = storage_service.extension_for(mime_type)
    filename = f"{shot.shot_kind}-{shot.record.id}.{extension}"
    return Response(
        data,
        mimetype=mime_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# -- history -----------------------------------------------------------------

@api_bp.route("/history")
@login_required
def history():
    records = history_service.fetch_history(current_account_id())
    return {"records": [_record_dict(r) for r in records]}


@api_bp.route("/history/<int:record_id>/form")
@login_required
def history_form(record_id):
    """Form values to reload a past generation (without reference images)."""
    record = history_service.get_record(current_account_id(), record_id)
    return {"form": history_service.restore_request(record.request).to_dict()}


@api_bp.route("/history/<int:record_id>", methods=["DELETE"])
@login_required
def delete_history(record_id):
    history_service.delete_record(current_account_id(), record_id)
    return "", 204


# -- usage -------------------------------------------------------------------

@api_bp.route("/usage")
@login_required
def usage():
    return usage_service.get_quota(current_account_id()).to_dict()


@api_bp.route("/usage/share", methods=["POST"])
@login_required
def share():
    remaining = usage_service.reward_credit_for_share(current_account_id())
    return {"generationCredits": remaining}
