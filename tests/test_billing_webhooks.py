import json
from datetime import datetime

import stripe

from equiprofile.extensions import db
from equiprofile.models import User, WebhookEvent, EmailLog


def _checkout_event(event_id="evt_checkout_1", user_id=None, subscription="sub_123", customer="cus_123"):
    metadata = {"userId": str(user_id)} if user_id is not None else {}
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_test_1",
            "customer": customer,
            "subscription": subscription,
            "metadata": metadata,
        }},
    }


def _subscription_event(event_id, type_, status="active", cancel_at=None, sub_id="sub_123"):
    return {
        "id": event_id,
        "type": type_,
        "data": {"object": {"id": sub_id, "status": status, "cancel_at": cancel_at}},
    }


def _invoice_event(event_id, type_, sub_id="sub_123"):
    return {"id": event_id, "type": type_, "data": {"object": {"id": "in_1", "subscription": sub_id}}}


def _user(app, uid):
    with app.app_context():
        u = db.session.get(User, uid)
        return {
            "status": u.subscription_status,
            "plan": u.subscription_plan,
            "customer": u.stripe_customer_id,
            "subscription": u.stripe_subscription_id,
            "ends_at": u.subscription_ends_at,
            "last_payment_at": u.last_payment_at,
        }


def _ledger(app, event_id):
    with app.app_context():
        row = db.session.execute(
            db.select(WebhookEvent).where(WebhookEvent.event_id == event_id)
        ).scalar_one_or_none()
        if row is None:
            return None
        return {"processed": row.processed, "error": row.error, "retries": row.retries,
                "signature_valid": row.signature_valid, "type": row.event_type}


def _active_user(make_user, **fields):
    return make_user(
        subscription_status="active",
        stripe_customer_id="cus_123",
        stripe_subscription_id="sub_123",
        subscription_plan="monthly",
        **fields,
    )


def test_checkout_completed_activates_account(app, clock, gateway, send_event, make_user):
    uid = make_user()
    resp = send_event(_checkout_event(user_id=uid))
    assert resp.status_code == 200
    assert resp.get_json() == {"received": True}

    user = _user(app, uid)
    assert user["status"] == "active"
    assert user["plan"] == "monthly"
    assert user["customer"] == "cus_123"
    assert user["subscription"] == "sub_123"
    assert user["last_payment_at"] == clock.now
    assert gateway.retrieved == ["sub_123"]

    ledger = _ledger(app, "evt_checkout_1")
    assert ledger["processed"] is True and ledger["error"] is None

    # Payment confirmation queued and dispatched after the commit
    with app.app_context():
        logs = db.session.execute(db.select(EmailLog)).scalars().all()
        assert [(l.template, l.status) for l in logs] == [("payment_success", "sent")]


def test_checkout_yearly_interval_sets_yearly_plan(app, clock, gateway, send_event, make_user):
    gateway.interval = "year"
    uid = make_user()
    assert send_event(_checkout_event(user_id=uid)).status_code == 200
    assert _user(app, uid)["plan"] == "yearly"


def test_checkout_resolves_account_by_subscription_when_metadata_missing(app, clock, gateway, send_event, make_user):
    uid = make_user(subscription_status="overdue", stripe_subscription_id="sub_123")
    assert send_event(_checkout_event(user_id=None)).status_code == 200
    assert _user(app, uid)["status"] == "active"


def test_checkout_without_subscription_is_ignored(app, clock, gateway, send_event, make_user):
    uid = make_user()
    resp = send_event(_checkout_event(user_id=uid, subscription=None))
    assert resp.status_code == 200
    assert _user(app, uid)["status"] == "trial"
    assert gateway.retrieved == []


def test_duplicate_event_is_cached_and_applied_once(app, clock, gateway, send_event, make_user):
    uid = make_user()
    event = _checkout_event(user_id=uid)
    assert send_event(event).status_code == 200
    first_payment = _user(app, uid)["last_payment_at"]

    clock.advance(hours=1)
    resp = send_event(event)
    assert resp.status_code == 200
    assert resp.get_json() == {"received": True, "cached": True}
    assert _user(app, uid)["last_payment_at"] == first_payment
    assert gateway.retrieved == ["sub_123"]

    with app.app_context():
        assert db.session.query(WebhookEvent).count() == 1
        assert db.session.query(EmailLog).count() == 1


def test_subscription_updated_maps_provider_status(app, clock, gateway, send_event, make_user):
    uid = _active_user(make_user)
    expected = [
        ("past_due", "overdue"),
        ("active", "active"),
        ("unpaid", "cancelled"),
        ("trialing", "active"),
        ("canceled", "cancelled"),
        ("incomplete_expired", "expired"),
    ]
    for i, (provider_status, status) in enumerate(expected):
        resp = send_event(_subscription_event(f"evt_upd_{i}", "customer.subscription.updated", provider_status))
        assert resp.status_code == 200
        assert _user(app, uid)["status"] == status
    # Plan is never touched by subscription updates
    assert _user(app, uid)["plan"] == "monthly"


def test_subscription_updated_mirrors_cancel_at(app, clock, gateway, send_event, make_user):
    uid = _active_user(make_user)
    send_event(_subscription_event("evt_upd_a", "customer.subscription.updated", cancel_at=1767225600))
    assert _user(app, uid)["ends_at"] == datetime(2026, 1, 1, 0, 0, 0)

    send_event(_subscription_event("evt_upd_b", "customer.subscription.updated", cancel_at=None))
    assert _user(app, uid)["ends_at"] is None


def test_subscription_deleted_cancels(app, clock, gateway, send_event, make_user):
    uid = _active_user(make_user)
    assert send_event(_subscription_event("evt_del", "customer.subscription.deleted", "canceled")).status_code == 200
    user = _user(app, uid)
    assert user["status"] == "cancelled"
    assert user["ends_at"] == clock.now


def test_invoice_failed_then_paid(app, clock, gateway, send_event, make_user):
    uid = _active_user(make_user)
    assert send_event(_invoice_event("evt_inv_fail", "invoice.payment_failed")).status_code == 200
    assert _user(app, uid)["status"] == "overdue"

    clock.advance(days=2)
    assert send_event(_invoice_event("evt_inv_ok", "invoice.payment_succeeded")).status_code == 200
    user = _user(app, uid)
    assert user["status"] == "active"
    assert user["last_payment_at"] == clock.now


def test_invoice_subscription_read_from_parent_details(app, clock, gateway, send_event, make_user):
    uid = _active_user(make_user)
    event = {
        "id": "evt_inv_parent",
        "type": "invoice.payment_failed",
        "data": {"object": {
            "id": "in_2",
            "parent": {"subscription_details": {"subscription": "sub_123"}},
        }},
    }
    assert send_event(event).status_code == 200
    assert _user(app, uid)["status"] == "overdue"


def test_unknown_subscription_is_a_noop(app, clock, gateway, send_event, make_user):
    uid = _active_user(make_user)
    resp = send_event(_invoice_event("evt_other", "invoice.payment_failed", sub_id="sub_nobody"))
    assert resp.status_code == 200
    assert _user(app, uid)["status"] == "active"
    ledger = _ledger(app, "evt_other")
    assert ledger["processed"] is True and ledger["error"] is None


def test_unhandled_event_type_is_acknowledged(app, clock, gateway, send_event, make_user):
    uid = _active_user(make_user)
    resp = send_event({"id": "evt_misc", "type": "customer.created", "data": {"object": {"id": "cus_123"}}})
    assert resp.status_code == 200
    assert _user(app, uid)["status"] == "active"
    assert _ledger(app, "evt_misc")["processed"] is True


def test_transition_error_returns_500_and_is_retried(app, clock, gateway, send_event, make_user):
    uid = make_user()
    event = _checkout_event(event_id="evt_flaky", user_id=uid)

    gateway.retrieve_error = RuntimeError("stripe timeout")
    resp = send_event(event)
    assert resp.status_code == 500
    assert _user(app, uid)["status"] == "trial"
    ledger = _ledger(app, "evt_flaky")
    assert ledger["processed"] is True
    assert "stripe timeout" in ledger["error"]

    # Stripe retries: the errored event is not treated as processed
    gateway.retrieve_error = None
    resp = send_event(event)
    assert resp.status_code == 200
    assert resp.get_json() == {"received": True}
    assert _user(app, uid)["status"] == "active"
    ledger = _ledger(app, "evt_flaky")
    assert ledger["error"] is None
    assert ledger["retries"] == 1


def test_missing_signature_is_rejected(app, client, gateway):
    resp = client.post("/webhooks/stripe", data=json.dumps(_checkout_event()))
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "missing_signature"


def test_missing_secret_is_rejected(app, client, gateway, monkeypatch):
    monkeypatch.setitem(app.config, "STRIPE_WEBHOOK_SECRET", None)
    resp = client.post("/webhooks/stripe", data="{}", headers={"Stripe-Signature": "t=1,v1=x"})
    assert resp.status_code == 400


def test_invalid_signature_is_logged_and_not_processed(app, client, gateway, make_user, monkeypatch):
    uid = make_user()

    def _reject(payload, sig_header, secret):
        raise stripe.SignatureVerificationError("No signatures found", sig_header)
    monkeypatch.setattr(stripe.Webhook, "construct_event", staticmethod(_reject))

    resp = client.post(
        "/webhooks/stripe",
        data=json.dumps(_checkout_event(user_id=uid)),
        headers={"Stripe-Signature": "t=1,v1=forged"},
    )
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "invalid_signature"
    assert _user(app, uid)["status"] == "trial"

    with app.app_context():
        rows = db.session.execute(db.select(WebhookEvent)).scalars().all()
        assert len(rows) == 1
        assert rows[0].event_id.startswith("invalid:")
        assert rows[0].signature_valid is False
        assert rows[0].event_type == "signature_invalid"
