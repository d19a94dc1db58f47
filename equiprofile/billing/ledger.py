"""
Ledger of Stripe event ids.

The pre-insert ``has_been_processed`` check is a fast path; the unique
constraint on ``webhook_events.event_id`` is what keeps two racing
deliveries from both being recorded.
"""
import json
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from equiprofile.extensions import db
from equiprofile.models.webhook_event import WebhookEvent
from equiprofile.utils import helpers


def _get(event_id: str) -> Optional[WebhookEvent]:
    return db.session.execute(
        db.select(WebhookEvent).where(WebhookEvent.event_id == event_id)
    ).scalar_one_or_none()


def has_been_processed(event_id: str) -> bool:
    """True once the event is recorded without an error; errored events may be retried."""
    row = _get(event_id)
    return row is not None and row.error is None


def record(
    event_id: str,
    event_type: str,
    payload: Optional[dict] = None,
    *,
    signature_valid: bool = True,
) -> Optional[WebhookEvent]:
    """
    Insert the event. Returns the row, or None if a concurrent delivery
    recorded it first. A previously errored row is reopened for retry.
    """
    existing = _get(event_id)
    if existing is not None:
        if existing.error is None:
            return None
        existing.retries = (existing.retries or 0) + 1
        existing.processed = False
        existing.error = None
        existing.processed_at = None
        db.session.commit()
        return existing

    row = WebhookEvent(
        event_id=event_id,
        event_type=event_type,
        payload=payload or {},
        signature_valid=signature_valid,
    )
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        current_app.logger.debug(json.dumps({"event": "webhook_record_race", "event_id": event_id}))
        return None
    return row


def mark_processed(event_id: str, error: Optional[str] = None) -> None:
    row = _get(event_id)
    if row is None:
        return
    row.processed = True
    row.processed_at = helpers.utcnow()
    row.error = error
    db.session.commit()
