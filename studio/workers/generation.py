"""RQ worker jobs: generate the three shots and animate a shot."""
import asyncio
import contextlib
import logging

from flask import current_app, has_app_context
from sqlalchemy import select

from studio import create_app, extensions
from studio.domain import GenerationRequest, ImageReference
from studio.errors import DEFAULT_LOCALE, RequestCancelledError, classify_error
from studio.extensions import db
from studio.models.history import HistoryRecord, ShotRecord
from studio.services import ai_service, history_service, storage_service
from studio.services.retry import CancelToken

logger = logging.getLogger(__name__)

_worker_app = None


def _get_app():
    """Return an app instance for worker execution.

    Reuse the current app when already inside an app context (tests/CLI),
    otherwise lazily create the worker app once.
    """
    global _worker_app
    if has_app_context():
        return current_app._get_current_object()
    if _worker_app is None:
        _worker_app = create_app()
    return _worker_app


def _app_context(app):
    """Push an app context unless one is active.

    Inline jobs share the enqueueing request's session, so the view sees
    what the job committed.
    """
    if has_app_context():
        return contextlib.nullcontext()
    return app.app_context()


@contextlib.contextmanager
def _job_lock(key, timeout):
    """Distributed lock; yields False when another worker holds it."""
    client = extensions.redis_client
    if client is None:
        yield True
        return
    lock = client.lock(key, timeout=timeout)
    acquired = lock.acquire(blocking=False)
    try:
        yield acquired
    finally:
        if acquired:
            try:
                lock.release()
            except Exception:
                logger.warning("Lock %s expired before release", key)


def _record_status(record_id):
    # Column query, not the identity map, so API-side cancels are visible
    return db.session.execute(
        select(HistoryRecord.status).where(HistoryRecord.id == record_id)
    ).scalar()


def generate_shots(record_id, request_payload, api_key_override=None, locale=DEFAULT_LOCALE):
    """Generate the three shots for a pending history record.

    Enqueued by ``POST /api/generations`` after the credit has been taken.
    The credit is not refunded on failure.

    Idempotency: READY and CANCELLED records are skipped.
    Distributed lock: prevents two workers generating the same record.
    """
    app = _get_app()
    with _app_context(app):
        record = db.session.get(HistoryRecord, record_id)
        if not record:
            logger.error("History record %d not found", record_id)
            return

        if record.status in ("READY", "CANCELLED"):
            logger.info("History record %d already %s, skipping", record_id, record.status)
            return

        with _job_lock(f"generate:{record_id}", timeout=900) as acquired:
            if not acquired:
                logger.info("Lock held for history record %d, skipping", record_id)
                return

            cancel = CancelToken(probe=lambda: _record_status(record_id) == "CANCELLED")
            try:
                request = GenerationRequest.from_dict(request_payload)
                client = ai_service.build_generation_client(app.config, api_key_override)
                logger.info("Generating shots for history record %d", record_id)
                results = asyncio.run(client.generate_images(request, cancel=cancel))
                cancel.raise_if_cancelled()

                evicted = history_service.complete(record, results)
                storage_service.delete_many(evicted)
            except RequestCancelledError:
                logger.info("History record %d cancelled during generation", record_id)
                db.session.rollback()
            except Exception as e:
                # Raw provider text goes to the log only
                logger.exception("Generation failed for history record %d", record_id)
                db.session.rollback()
                history_service.fail(record, classify_error(e, locale))
                raise  # let RQ record the failure


def _shot_reference(shot):
    if shot.storage_key and storage_service.is_configured():
        return ImageReference.remote(
            storage_service.get_signed_url(shot.storage_key), shot.mime_type
        )
    if not shot.image_data:
        raise ValueError(f"Shot {shot.id} has no stored image")
    return ImageReference.from_bytes(shot.image_data, shot.mime_type)


def animate_shot(shot_id, api_key_override=None, locale=DEFAULT_LOCALE):
    """Animate one stored shot into a short clip."""
    app = _get_app()
    with _app_context(app):
        shot = db.session.get(ShotRecord, shot_id)
        if not shot:
            logger.error("Shot %d not found", shot_id)
            return

        if shot.video_status == "READY":
            logger.info("Shot %d already has a video, skipping", shot_id)
            return

        with _job_lock(f"animate:{shot_id}", timeout=int(app.config["VIDEO_TIMEOUT"]) + 300) as acquired:
            if not acquired:
                logger.info("Lock held for shot %d, skipping", shot_id)
                return

            try:
                image = _shot_reference(shot)
                client = ai_service.build_generation_client(app.config, api_key_override)
                logger.info("Animating shot %d (%s)", shot_id, shot.shot_kind)
                video = asyncio.run(client.generate_video(image, shot.record.aspect_ratio))
                history_service.store_video(shot, video.decode())
                logger.info("Video ready for shot %d", shot_id)
            except Exception as e:
                logger.exception("Video generation failed for shot %d", shot_id)
                db.session.rollback()
                history_service.fail_video(shot, classify_error(e, locale).user_message)
                raise
