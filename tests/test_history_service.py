"""Tests for generation history and retention."""
import base64
from datetime import datetime, timedelta, timezone

import pytest

from studio.domain import GenerationRequest, ImageReference, ReferenceImage, ShotResult
from studio.errors import AppError, ErrorType, HistoryNotFoundError
from studio.models.history import HistoryRecord
from studio.models.usage import UsageLedger
from studio.services import history_service, usage_service

FACE = ReferenceImage(data="ZmFjZQ==", mime_type="image/png", name="me.png")


def shots(tag="x"):
    return [
        ShotResult(
            shot_kind=kind,
            label=kind,
            image=ImageReference.inline(base64.b64encode(f"{tag}-{kind}".encode()).decode(), "image/png"),
        )
        for kind in ("fullBody", "medium", "closeUp")
    ]


def test_sanitize_request_drops_image_payload():
    request = GenerationRequest(product_name="Hat").with_references(FACE, None)
    data = history_service.sanitize_request(request)
    assert data["faceImage"] == {"name": "me.png", "mimeType": "image/png", "hasData": True}
    assert data["objectImage"] is None
    assert "ZmFjZQ==" not in str(data)


def test_restore_request_has_no_references():
    request = GenerationRequest(product_name="Hat", aspect_ratio="16:9").with_references(FACE, None)
    restored = history_service.restore_request(history_service.sanitize_request(request))
    assert restored.product_name == "Hat"
    assert restored.aspect_ratio == "16:9"
    assert restored.face_image is None


def test_add_record_stores_shots_in_order(db, account_id):
    request = GenerationRequest(product_name="Hat")
    record = history_service.add_record(account_id, request, shots())

    assert record.status == "READY"
    assert [s.shot_kind for s in record.shots] == ["fullBody", "medium", "closeUp"]
    assert record.shots[0].image_data == b"x-fullBody"
    assert "Hat" in record.prompt


def test_retention_evicts_oldest(app, db, account_id):
    limit = app.config["HISTORY_LIMIT"]
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    created = []
    for i in range(limit + 1):
        record = history_service.create_pending(account_id, GenerationRequest(product_name=f"P{i}"))
        record.created_at = base + timedelta(minutes=i)
        db.session.commit()
        history_service.complete(record, shots(str(i)))
        created.append(record.id)

    remaining = history_service.fetch_history(account_id)
    assert len(remaining) == limit
    assert created[0] not in [r.id for r in remaining]
    assert [r.id for r in remaining] == list(reversed(created[1:]))
    assert db.session.get(HistoryRecord, created[0]) is None


def test_fetch_history_skips_unfinished(db, account_id):
    history_service.create_pending(account_id, GenerationRequest(product_name="Pending"))
    history_service.add_record(account_id, GenerationRequest(product_name="Done"), shots())
    records = history_service.fetch_history(account_id)
    assert [r.request["productName"] for r in records] == ["Done"]


def test_records_are_isolated_from_later_edits(db, account_id):
    form = {"productName": "Scarf", "lighting": "soft light"}
    record = history_service.add_record(account_id, GenerationRequest.from_dict(form), shots())
    form["productName"] = "Changed"
    assert record.request["productName"] == "Scarf"


def test_delete_record_checks_owner(db, account_id):
    record = history_service.add_record(account_id, GenerationRequest(product_name="Hat"), shots())
    with pytest.raises(HistoryNotFoundError):
        history_service.delete_record("someone-else", record.id)
    history_service.delete_record(account_id, record.id)
    with pytest.raises(HistoryNotFoundError):
        history_service.get_record(account_id, record.id)


def test_cancel_and_fail(db, account_id):
    record = history_service.create_pending(account_id, GenerationRequest(product_name="Hat"))
    assert history_service.cancel(account_id, record.id).status == "CANCELLED"

    other = history_service.create_pending(account_id, GenerationRequest(product_name="Cap"))
    history_service.fail(other, AppError(ErrorType.API, "raw", False, "Try later", 502))
    assert other.status == "FAILED"
    assert other.error_type == "API"
    assert other.error_message == "Try later"


def test_cancel_leaves_finished_records(db, account_id):
    record = history_service.add_record(account_id, GenerationRequest(product_name="Hat"), shots())
    assert history_service.cancel(account_id, record.id).status == "READY"


def test_delete_account_data(db, account_id):
    usage_service.get_quota(account_id)
    history_service.add_record(account_id, GenerationRequest(product_name="Hat"), shots())
    assert history_service.delete_account_data(account_id) == 1
    assert HistoryRecord.query.filter_by(account_id=account_id).count() == 0
    assert db.session.get(UsageLedger, account_id) is None


def test_prune_drops_old_failed_records(db, account_id):
    record = history_service.create_pending(account_id, GenerationRequest(product_name="Hat"))
    history_service.fail(record, AppError(ErrorType.API, "raw", False, "Try later", 502))
    record.created_at = datetime.now(timezone.utc) - timedelta(days=3)
    db.session.commit()
    record_id = record.id

    assert history_service.prune(max_age=timedelta(days=1)) >= 1
    assert db.session.get(HistoryRecord, record_id) is None


def test_video_lifecycle(db, account_id):
    record = history_service.add_record(account_id, GenerationRequest(product_name="Hat"), shots())
    shot = record.shots[0]
    history_service.mark_video_pending(shot)
    assert shot.video_status == "PENDING"
    history_service.store_video(shot, b"mp4")
    assert shot.video_status == "READY"
    assert shot.video_data == b"mp4"
    history_service.fail_video(record.shots[1], "Try later")
    assert record.shots[1].video_status == "FAILED"
