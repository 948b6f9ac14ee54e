"""Per-account generation credits.

Ledgers are created lazily. Every balance change is a single conditional
UPDATE so concurrent requests from the same account cannot overdraw it.
"""
import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from studio.errors import NoCreditsError, ValidationError
from studio.extensions import db
from studio.models.usage import UsageLedger

logger = logging.getLogger(__name__)


def _default_credits():
    return current_app.config["DEFAULT_GENERATION_CREDITS"]


def get_quota(account_id):
    """Return the account's ledger, creating it with the default balance."""
    ledger = db.session.get(UsageLedger, account_id)
    if ledger:
        return ledger

    ledger = UsageLedger(
        account_id=account_id,
        remaining_credits=_default_credits(),
        total_generated=0,
        total_shares=0,
    )
    db.session.add(ledger)
    try:
        db.session.commit()
    except IntegrityError:
        # Another request created it first
        db.session.rollback()
        ledger = db.session.get(UsageLedger, account_id)
    else:
        logger.info("Created usage ledger for %s", account_id)
    return ledger


def consume_credit(account_id):
    """Atomically take one credit.

    Returns:
        Remaining credits after the decrement.

    Raises:
        NoCreditsError when the balance is already zero.
    """
    get_quota(account_id)

    result = db.session.execute(
        update(UsageLedger)
        .where(
            UsageLedger.account_id == account_id,
            UsageLedger.remaining_credits > 0,
        )
        .values(
            remaining_credits=UsageLedger.remaining_credits - 1,
            total_generated=UsageLedger.total_generated + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        logger.info("Account %s has no credits left", account_id)
        raise NoCreditsError(account_id)

    remaining = db.session.scalar(
        select(UsageLedger.remaining_credits).where(UsageLedger.account_id == account_id)
    )
    db.session.commit()
    return remaining


def reward_credit_for_share(account_id):
    """Grant one credit for sharing a result."""
    get_quota(account_id)
    db.session.execute(
        update(UsageLedger)
        .where(UsageLedger.account_id == account_id)
        .values(
            remaining_credits=UsageLedger.remaining_credits + 1,
            total_shares=UsageLedger.total_shares + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    remaining = db.session.scalar(
        select(UsageLedger.remaining_credits).where(UsageLedger.account_id == account_id)
    )
    db.session.commit()
    return remaining


def grant_credits(account_id, amount):
    """Admin top-up; ``amount`` must be positive."""
    if amount <= 0:
        raise ValidationError("Credit amount must be positive")
    get_quota(account_id)
    db.session.execute(
        update(UsageLedger)
        .where(UsageLedger.account_id == account_id)
        .values(
            remaining_credits=UsageLedger.remaining_credits + amount,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    remaining = db.session.scalar(
        select(UsageLedger.remaining_credits).where(UsageLedger.account_id == account_id)
    )
    db.session.commit()
    return remaining


def delete_ledger(account_id):
    ledger = db.session.get(UsageLedger, account_id)
    if ledger:
        db.session.delete(ledger)
        db.session.commit()
