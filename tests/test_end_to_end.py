from equiprofile.extensions import db
from equiprofile.models import User, WebhookEvent


def _event(event_id, type_, obj):
    return {"id": event_id, "type": type_, "data": {"object": obj}}


def test_trial_expiry_checkout_and_payment_lifecycle(app, client, clock, gateway, send_event):
    # Sign-up opens a 7 day trial
    resp = client.post("/auth/register", json={"email": "owner@yard.example", "password": "long-enough"})
    assert resp.status_code == 201
    uid = resp.get_json()["user"]["id"]
    assert client.get("/account/dashboard").status_code == 200

    # Day 8: the trial has lapsed
    clock.advance(days=8)
    resp = client.get("/account/dashboard")
    assert resp.status_code == 403
    assert resp.get_json()["error"] == "trial_expired"

    # Checkout, then Stripe confirms
    resp = client.post("/billing/checkout", json={"plan": "monthly"})
    assert resp.status_code == 200
    assert gateway.checkout_calls[0]["account_id"] == uid

    resp = send_event(_event("evt_1", "checkout.session.completed", {
        "customer": "cus_yard", "subscription": "sub_yard", "metadata": {"userId": str(uid)},
    }))
    assert resp.status_code == 200
    assert client.get("/account/dashboard").status_code == 200
    status = client.get("/billing/status").get_json()
    assert status["status"] == "active"
    assert status["plan"] == "monthly"

    # Renewal fails, then succeeds
    send_event(_event("evt_2", "invoice.payment_failed", {"subscription": "sub_yard"}))
    resp = client.get("/account/dashboard")
    assert resp.status_code == 403
    assert resp.get_json()["error"] == "subscription_expired"

    send_event(_event("evt_3", "invoice.payment_succeeded", {"subscription": "sub_yard"}))
    assert client.get("/account/dashboard").status_code == 200

    # Redelivery of an old failure is ignored
    resp = send_event(_event("evt_2", "invoice.payment_failed", {"subscription": "sub_yard"}))
    assert resp.get_json()["cached"] is True
    assert client.get("/account/dashboard").status_code == 200

    # Cancellation ends access
    send_event(_event("evt_4", "customer.subscription.deleted", {"id": "sub_yard", "status": "canceled"}))
    resp = client.get("/account/dashboard")
    assert resp.status_code == 403
    assert resp.get_json()["error"] == "subscription_required"

    with app.app_context():
        user = db.session.get(User, uid)
        assert user.subscription_status == "cancelled"
        assert user.trial_ends_at is not None  # never cleared
        assert db.session.query(WebhookEvent).filter_by(processed=True).count() == 4
