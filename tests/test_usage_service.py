"""Tests for the per-account usage ledger."""
import threading

import pytest

from studio import create_app
from studio.errors import NoCreditsError, ValidationError
from studio.extensions import db as _db
from studio.models.usage import UsageLedger
from studio.services import usage_service


def test_ledger_is_created_with_default_credits(db, account_id):
    ledger = usage_service.get_quota(account_id)
    assert ledger.remaining_credits == 100
    assert ledger.to_dict() == {
        "generationCredits": 100,
        "totalGenerated": 0,
        "totalShares": 0,
    }
    assert usage_service.get_quota(account_id) is ledger


def test_consume_credit_decrements(db, account_id):
    assert usage_service.consume_credit(account_id) == 99
    assert usage_service.consume_credit(account_id) == 98
    ledger = usage_service.get_quota(account_id)
    assert ledger.total_generated == 2


def test_consume_credit_at_zero_raises(db, account_id):
    usage_service.get_quota(account_id)
    db.session.execute(
        db.update(UsageLedger)
        .where(UsageLedger.account_id == account_id)
        .values(remaining_credits=0)
    )
    db.session.commit()

    with pytest.raises(NoCreditsError):
        usage_service.consume_credit(account_id)
    db.session.expire_all()
    assert usage_service.get_quota(account_id).remaining_credits == 0


def test_share_rewards_one_credit(db, account_id):
    usage_service.consume_credit(account_id)
    assert usage_service.reward_credit_for_share(account_id) == 100
    assert usage_service.get_quota(account_id).total_shares == 1


def test_grant_credits(db, account_id):
    assert usage_service.grant_credits(account_id, 5) == 105
    with pytest.raises(ValidationError):
        usage_service.grant_credits(account_id, 0)


def test_delete_ledger(db, account_id):
    usage_service.get_quota(account_id)
    usage_service.delete_ledger(account_id)
    assert db.session.get(UsageLedger, account_id) is None


@pytest.fixture
def file_app(tmp_path):
    """App on a file database so threads get their own connections."""
    app = create_app(
        "testing",
        overrides={
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'usage.db'}",
            "SQLALCHEMY_ENGINE_OPTIONS": {
                "connect_args": {"check_same_thread": False, "timeout": 30},
            },
        },
    )
    with app.app_context():
        _db.create_all()
    yield app
    with app.app_context():
        _db.engine.dispose()


def test_concurrent_consumption_never_overdraws(file_app):
    workers = 8
    with file_app.app_context():
        _db.session.add(
            UsageLedger(account_id="racer", remaining_credits=1, total_generated=0, total_shares=0)
        )
        _db.session.commit()

    barrier = threading.Barrier(workers)
    outcomes = []
    outcomes_lock = threading.Lock()

    def consume():
        with file_app.app_context():
            barrier.wait()
            try:
                usage_service.consume_credit("racer")
                outcome = "ok"
            except NoCreditsError:
                outcome = "no-credits"
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=consume) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert outcomes.count("ok") == 1
    assert outcomes.count("no-credits") == workers - 1

    with file_app.app_context():
        ledger = _db.session.get(UsageLedger, "racer")
        assert ledger.remaining_credits == 0
        assert ledger.total_generated == 1
