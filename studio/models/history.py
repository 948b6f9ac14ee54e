from datetime import datetime, timezone
from studio.extensions import db


class HistoryRecord(db.Model):
    __tablename__ = "history_records"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.String(128), nullable=False, index=True)
    request = db.Column(db.JSON, nullable=False)  # sanitized form snapshot
    prompt = db.Column(db.Text, default="")
    status = db.Column(db.String(20), nullable=False, default="PENDING", index=True)
    error_type = db.Column(db.String(20))
    error_message = db.Column(db.Text)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    shots = db.relationship(
        "ShotRecord",
        backref="record",
        lazy="select",
        cascade="all, delete-orphan",
        order_by="ShotRecord.position",
    )

    @property
    def aspect_ratio(self):
        return (self.request or {}).get("aspectRatio")

    def __repr__(self):
        return f"<HistoryRecord {self.id} [{self.status}]>"


class ShotRecord(db.Model):
    __tablename__ = "shot_records"

    id = db.Column(db.Integer, primary_key=True)
    history_id = db.Column(
        db.Integer,
        db.ForeignKey("history_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shot_kind = db.Column(db.String(20), nullable=False)  # fullBody, medium, closeUp
    label = db.Column(db.String(100), nullable=False, default="")
    position = db.Column(db.Integer, nullable=False, default=0)
    mime_type = db.Column(db.String(50), nullable=False, default="image/png")
    storage_key = db.Column(db.String(512), nullable=False, default="")
    image_data = db.Column(db.LargeBinary)  # used when S3 is not configured
    video_status = db.Column(db.String(20))  # PENDING, READY, FAILED
    video_storage_key = db.Column(db.String(512))
    video_data = db.Column(db.LargeBinary)
    video_error = db.Column(db.Text)

    __table_args__ = (
        db.UniqueConstraint("history_id", "shot_kind", name="uq_shot_kind"),
    )

    @property
    def storage_keys(self):
        return [k for k in (self.storage_key, self.video_storage_key) if k]

    def __repr__(self):
        return f"<ShotRecord {self.shot_kind} of {self.history_id}>"
