from datetime import datetime, timezone
from studio.extensions import db


class UsageLedger(db.Model):
    __tablename__ = "usage_ledgers"

    account_id = db.Column(db.String(128), primary_key=True)
    remaining_credits = db.Column(db.Integer, nullable=False)
    total_generated = db.Column(db.Integer, nullable=False, default=0)
    total_shares = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint("remaining_credits >= 0", name="ck_credits_non_negative"),
    )

    def to_dict(self):
        return {
            "generationCredits": self.remaining_credits,
            "totalGenerated": self.total_generated,
            "totalShares": self.total_shares,
        }

    def __repr__(self):
        return f"<UsageLedger {self.account_id}: {self.remaining_credits} left>"
