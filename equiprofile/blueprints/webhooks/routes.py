import hashlib
import json

import stripe
from flask import request, current_app
from sqlalchemy.exc import SQLAlchemyError

from equiprofile.billing import ledger, state_machine
from equiprofile.billing.events import parse_event
from equiprofile.extensions import db, csrf
from equiprofile.services import email as email_service
from equiprofile.services.billing import get_gateway
from equiprofile.utils import helpers
from . import bp


def _log(event: str, level: str = "info", **fields):
    getattr(current_app.logger, level)(json.dumps({"event": event, **fields}))


# ----- Stripe Webhook (subscription lifecycle) -----
@csrf.exempt
@bp.post("/stripe")
def stripe_webhook():
    """
    Stripe → /webhooks/stripe
    Verifies the signature on the raw body, skips events already processed,
    records the event, then applies the subscription transition.
    """
    # 1) Verify signature
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        _log("stripe_webhook_rejected", "error", reason="secret_not_configured")
        return {"error": "webhook_not_configured"}, 400

    raw_bytes = request.get_data(cache=False, as_text=False)
    sig_header = request.headers.get("Stripe-Signature")
    if not sig_header:
        return {"error": "missing_signature"}, 400

    try:
        event = stripe.Webhook.construct_event(
            payload=raw_bytes.decode("utf-8"),
            sig_header=sig_header,
            secret=secret,
        )
    except (ValueError, stripe.SignatureVerificationError):
        # Log invalid attempts with a deterministic synthetic id (no payload trust)
        digest = hashlib.sha256(raw_bytes).hexdigest()[:32]
        ledger.record(f"invalid:{digest}", "signature_invalid", {}, signature_valid=False)
        _log("stripe_webhook_rejected", "warning", reason="invalid_signature")
        return {"error": "invalid_signature"}, 400

    event = helpers.as_dict(event)
    ev_id = event.get("id")
    ev_type = event.get("type")
    if not ev_id or not ev_type:
        return {"error": "malformed_event"}, 400

    # 2) Idempotency guard (short-circuit if already processed)
    if ledger.has_been_processed(ev_id):
        _log("stripe_webhook", event_id=ev_id, type=ev_type, outcome="cached")
        return {"received": True, "cached": True}, 200

    # 3) Persist raw payload (for audit/forensics)
    try:
        payload_json = json.loads(raw_bytes.decode("utf-8"))
    except ValueError:
        payload_json = {"_decode_error": True}

    if ledger.record(ev_id, ev_type, payload_json) is None:
        # A concurrent delivery recorded it first
        _log("stripe_webhook", event_id=ev_id, type=ev_type, outcome="cached")
        return {"received": True, "cached": True}, 200

    # 4) Transition; failures are recorded and surfaced so Stripe retries
    try:
        result = state_machine.apply(parse_event(event), gateway=get_gateway())
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("stripe_webhook_handler_error")
        ledger.mark_processed(ev_id, error=f"{type(exc).__name__}: {exc}")
        return {"error": "processing_failed"}, 500

    ledger.mark_processed(ev_id)
    _log("stripe_webhook", event_id=ev_id, type=ev_type, outcome="processed", matched=result.matched)

    # 5) Notification after the transition is committed; never fails the webhook
    if result.notification is not None:
        try:
            email_service.dispatch(result.notification)
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("notification_dispatch_failed")

    return {"received": True}, 200
