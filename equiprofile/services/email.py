"""
Notification outbox.

Callers enqueue an EmailLog row ("queued") carrying the render context;
``dispatch`` renders and sends it separately. Send failures never propagate:
the row is marked "failed" with the error and stays as the dead-letter record.
"""
import json
import time
from typing import Any, Dict, Optional, Tuple

from flask import current_app, render_template
from flask_mail import Message

from equiprofile.extensions import db, mail
from equiprofile.models.email_log import EmailLog, STATUS_QUEUED, STATUS_SENT, STATUS_FAILED
from equiprofile.models.user import User, PLAN_YEARLY
from equiprofile.utils import helpers

PRODUCT_NAME = "EquiProfile"


def _log_structured(event: str, level: str = "info", **fields):
    """One JSON object per line; no PII beyond the recipient email."""
    payload = {"event": event, **fields}
    getattr(current_app.logger, level)(json.dumps(payload))


def enqueue(user: User, *, template: str, subject: str, context: Optional[Dict[str, Any]] = None) -> Optional[EmailLog]:
    if not user.email:
        return None
    entry = EmailLog(
        user_id=user.id,
        to_email=user.email.lower(),
        template=template,
        subject=subject,
        status=STATUS_QUEUED,
        meta={"context": context or {}},
    )
    db.session.add(entry)
    db.session.commit()
    return entry


def dispatch(entry: EmailLog) -> bool:
    """Render and send one queued email. Returns True when sent."""
    meta = dict(entry.meta or {})
    ctx = {
        "product_name": PRODUCT_NAME,
        "support_email": current_app.config.get("SUPPORT_EMAIL"),
        "app_url": current_app.config.get("APP_BASE_URL"),
        **(meta.get("context") or {}),
    }

    start = time.perf_counter()
    try:
        msg = Message(recipients=[entry.to_email], subject=entry.subject)
        msg.body = render_template(f"email/{entry.template}.txt", **ctx)
        msg.html = render_template(f"email/{entry.template}.html", **ctx)
        mail.send(msg)
    except Exception as ex:
        latency_ms = int((time.perf_counter() - start) * 1000)
        meta["error"] = str(ex)
        entry.status = STATUS_FAILED
        entry.meta = meta
        db.session.commit()
        _log_structured(
            "mail_send", "warning",
            template=entry.template, to=entry.to_email, outcome="failed",
            latency_ms=latency_ms, error=str(ex),
        )
        return False

    latency_ms = int((time.perf_counter() - start) * 1000)
    entry.status = STATUS_SENT
    entry.sent_at = helpers.utcnow()
    db.session.commit()
    _log_structured(
        "mail_send",
        template=entry.template, to=entry.to_email, outcome="sent", latency_ms=latency_ms,
    )
    return True


def dispatch_pending(limit: int = 100) -> Tuple[int, int]:
    rows = db.session.execute(
        db.select(EmailLog)
        .where(EmailLog.status == STATUS_QUEUED)
        .order_by(EmailLog.id)
        .limit(limit)
    ).scalars().all()
    sent = failed = 0
    for row in rows:
        if dispatch(row):
            sent += 1
        else:
            failed += 1
    return sent, failed


def queue_welcome_email(user: User) -> Optional[EmailLog]:
    return enqueue(
        user,
        template="welcome",
        subject=f"Welcome to {PRODUCT_NAME}",
        context={
            "user_name": user.name or "there",
            "trial_ends_at": user.trial_ends_at.strftime("%d %B %Y") if user.trial_ends_at else None,
        },
    )


def queue_payment_confirmation(user: User, plan: Optional[str]) -> Optional[EmailLog]:
    yearly = plan == PLAN_YEARLY
    return enqueue(
        user,
        template="payment_success",
        subject=f"Payment successful - Welcome to {PRODUCT_NAME} Premium!",
        context={
            "user_name": user.name or "there",
            "plan_name": "Yearly" if yearly else "Monthly",
            "amount": _display_amount(yearly),
        },
    )


def queue_trial_reminder(user: User, days_left: int) -> Optional[EmailLog]:
    if days_left <= 0:
        subject = f"Your {PRODUCT_NAME} trial has ended"
    elif days_left == 1:
        subject = f"Your {PRODUCT_NAME} trial ends tomorrow!"
    else:
        subject = f"Your {PRODUCT_NAME} trial ends in {days_left} days"
    return enqueue(
        user,
        template="trial_reminder",
        subject=subject,
        context={"user_name": user.name or "there", "days_left": days_left},
    )


def _display_amount(yearly: bool) -> str:
    cfg = current_app.config
    currency = (cfg.get("PRICE_CURRENCY") or "gbp").upper()
    symbol = {"GBP": "£", "USD": "$", "EUR": "€"}.get(currency, currency + " ")
    if yearly:
        return f"{symbol}{cfg.get('PRICE_YEARLY_AMOUNT', 0) / 100:.2f}/year"
    return f"{symbol}{cfg.get('PRICE_MONTHLY_AMOUNT', 0) / 100:.2f}/month"
