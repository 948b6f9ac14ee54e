"""Generation history: lifecycle of a generation job and retention.

Only sanitized form snapshots are stored; reference image payloads never
reach the database.
"""
import logging
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import func

from studio.domain import GenerationRequest
from studio.errors import HistoryNotFoundError
from studio.extensions import db
from studio.models.history import HistoryRecord, ShotRecord
from studio.services import prompt_builder, storage_service, usage_service

logger = logging.getLogger(__name__)


def _sanitize_image(image):
    if image is None:
        return None
    return {"name": image.name, "mimeType": image.mime_type, "hasData": bool(image.data)}


def sanitize_request(request):
    """Form snapshot with reference images reduced to metadata."""
    data = request.to_dict()
    data["faceImage"] = _sanitize_image(request.face_image)
    data["objectImage"] = _sanitize_image(request.object_image)
    return data


def restore_request(data):
    """Rebuild the form from a stored snapshot, without reference images."""
    fields = {k: v for k, v in (data or {}).items() if k not in ("faceImage", "objectImage")}
    return GenerationRequest.from_dict(fields)


def _history_limit():
    return current_app.config["HISTORY_LIMIT"]


def _timestamp_ms(record):
    created = record.created_at or datetime.now(timezone.utc)
    return int(created.timestamp() * 1000)


# -- lifecycle ---------------------------------------------------------------

def create_pending(account_id, request):
    record = HistoryRecord(
        account_id=account_id,
        request=sanitize_request(request),
        prompt=prompt_builder.build_display_prompt(request),
        status="PENDING",
    )
    db.session.add(record)
    db.session.commit()
    logger.info("Created pending history record %d for %s", record.id, account_id)
    return record


def complete(record, results):
    """Persist the generated shots and mark the record READY.

    Returns:
        Storage keys of records evicted by retention, for cleanup.
    """
    use_s3 = storage_service.is_configured()
    stamp = _timestamp_ms(record)

    for position, result in enumerate(results):
        data = result.image.decode()
        mime_type = result.image.mime_type or "image/png"
        shot = ShotRecord(
            shot_kind=result.shot_kind,
            label=result.label,
            position=position,
            mime_type=mime_type,
        )
        if use_s3:
            key = storage_service.history_image_key(record.account_id, stamp, position, mime_type)
            storage_service.upload(key, data, content_type=mime_type)
            shot.storage_key = key
        else:
            shot.image_data = data
        record.shots.append(shot)

    record.status = "READY"
    record.error_type = None
    record.error_message = None
    db.session.commit()
    logger.info("History record %d READY with %d shots", record.id, len(results))
    return enforce_retention(record.account_id)


def fail(record, app_error):
    record.status = "FAILED"
    record.error_type = app_error.type.value
    record.error_message = app_error.user_message
    db.session.commit()


def cancel(account_id, record_id):
    """Cancel a pending job. Finished records are returned unchanged."""
    record = get_record(account_id, record_id)
    if record.status == "PENDING":
        record.status = "CANCELLED"
        db.session.commit()
        logger.info("History record %d cancelled", record.id)
    return record


def add_record(account_id, request, results):
    """Create and complete a record in one step."""
    record = create_pending(account_id, request)
    evicted = complete(record, results)
    storage_service.delete_many(evicted)
    return record


# -- videos ------------------------------------------------------------------

def mark_video_pending(shot):
    shot.video_status = "PENDING"
    shot.video_error = None
    db.session.commit()


def store_video(shot, data):
    if storage_service.is_configured():
        key = storage_service.history_video_key(
            shot.record.account_id, _timestamp_ms(shot.record), shot.shot_kind
        )
        storage_service.upload(key, data, content_type="video/mp4")
        shot.video_storage_key = key
    else:
        shot.video_data = data
    shot.video_status = "READY"
    shot.video_error = None
    db.session.commit()


def fail_video(shot, message):
    shot.video_status = "FAILED"
    shot.video_error = message
    db.session.commit()


# -- queries -----------------------------------------------------------------

def fetch_history(account_id, limit=None):
    """READY records, newest first."""
    return (
        HistoryRecord.query.filter_by(account_id=account_id, status="READY")
        .order_by(HistoryRecord.created_at.desc(), HistoryRecord.id.desc())
        .limit(limit or _history_limit())
        .all()
    )


def get_record(account_id, record_id):
    record = db.session.get(HistoryRecord, record_id)
    if not record or record.account_id != account_id:
        raise HistoryNotFoundError(record_id)
    return record


def get_shot(account_id, shot_id):
    shot = db.session.get(ShotRecord, shot_id)
    if not shot or shot.record.account_id != account_id:
        raise HistoryNotFoundError(shot_id)
    return shot


def _record_keys(records):
    keys = []
    for record in records:
        for shot in record.shots:
            keys.extend(shot.storage_keys)
    return keys


def delete_record(account_id, record_id):
    record = get_record(account_id, record_id)
    keys = _record_keys([record])
    db.session.delete(record)
    db.session.commit()
    storage_service.delete_many(keys)
    logger.info("Deleted history record %d", record_id)
    return keys


# -- retention ---------------------------------------------------------------

def enforce_retention(account_id):
    """Evict READY records beyond the cap, oldest first."""
    stale = (
        HistoryRecord.query.filter_by(account_id=account_id, status="READY")
        .order_by(HistoryRecord.created_at.desc(), HistoryRecord.id.desc())
        .offset(_history_limit())
        .all()
    )
    if not stale:
        return []
    keys = _record_keys(stale)
    for record in stale:
        db.session.delete(record)
    db.session.commit()
    logger.info("Evicted %d old history records for %s", len(stale), account_id)
    return keys


def delete_account_data(account_id):
    """Remove history and usage ledger when an account is deleted."""
    records = HistoryRecord.query.filter_by(account_id=account_id).all()
    keys = _record_keys(records)
    for record in records:
        db.session.delete(record)
    db.session.commit()
    usage_service.delete_ledger(account_id)
    storage_service.delete_many(keys)
    logger.info("Deleted %d history records for account %s", len(records), account_id)
    return len(records)


def prune(max_age=timedelta(days=1)):
    """Drop stale FAILED/CANCELLED records and re-apply the cap to every account.

    Returns:
        Number of records removed.
    """
    cutoff = datetime.now(timezone.utc) - max_age
    dead = HistoryRecord.query.filter(
        HistoryRecord.status.in_(("FAILED", "CANCELLED")),
        HistoryRecord.created_at < cutoff,
    ).all()
    keys = _record_keys(dead)
    for record in dead:
        db.session.delete(record)
    db.session.commit()
    removed = len(dead)

    accounts = (
        db.session.query(HistoryRecord.account_id)
        .filter_by(status="READY")
        .group_by(HistoryRecord.account_id)
        .having(func.count(HistoryRecord.id) > _history_limit())
        .all()
    )
    for (account_id,) in accounts:
        evicted = HistoryRecord.query.filter_by(account_id=account_id, status="READY").count()
        keys.extend(enforce_retention(account_id))
        removed += evicted - _history_limit()

    storage_service.delete_many(keys)
    return removed


def stats():
    """Record counts by status."""
    rows = (
        db.session.query(HistoryRecord.status, func.count(HistoryRecord.id))
        .group_by(HistoryRecord.status)
        .all()
    )
    return {status: count for status, count in rows}
