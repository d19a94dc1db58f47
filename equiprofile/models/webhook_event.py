from sqlalchemy import func
from equiprofile.extensions import db


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    event_type = db.Column(db.String(80), nullable=False, index=True)
    signature_valid = db.Column(db.Boolean, nullable=False, default=True, server_default=db.true())
    payload = db.Column(db.JSON, nullable=False, default=dict)
    processed = db.Column(db.Boolean, nullable=False, default=False, server_default=db.false())
    error = db.Column(db.Text, nullable=True)
    retries = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    received_at = db.Column(db.DateTime, nullable=False, server_default=func.now())
    processed_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<WebhookEvent {self.event_id} type={self.event_type!r} processed={self.processed}>"
