import os

os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import json
from datetime import datetime, timedelta

import pytest
import stripe

from equiprofile import create_app
from equiprofile.extensions import db
from equiprofile.services import accounts
from equiprofile.utils import helpers

ADMIN_PASSWORD = "stable-door-key"


@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        MAIL_SUPPRESS_SEND=True,
        APP_BASE_URL="http://example.test",
        WTF_CSRF_ENABLED=False,
        BILLING_ENABLED=True,
        STRIPE_SECRET_KEY="sk_test_x",
        STRIPE_WEBHOOK_SECRET="whsec_test_x",
        STRIPE_PRICE_MONTHLY="price_monthly",
        STRIPE_PRICE_YEARLY="price_yearly",
        ADMIN_UNLOCK_PASSWORD=ADMIN_PASSWORD,
        ADMIN_UNLOCK_PASSWORD_HASH=None,
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


def _truncate_all():
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()


@pytest.fixture(autouse=True)
def _db_clean(app):
    with app.app_context():
        _truncate_all()
    yield
    # Also after, so a test that fails mid-transaction leaves nothing behind
    with app.app_context():
        _truncate_all()


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def advance(self, **delta):
        self.now = self.now + timedelta(**delta)


@pytest.fixture()
def clock(monkeypatch):
    """Freeze helpers.utcnow(); tests move time with clock.advance(...)."""
    c = Clock(datetime(2025, 3, 1, 12, 0, 0))
    monkeypatch.setattr(helpers, "utcnow", lambda: c.now)
    return c


@pytest.fixture()
def make_user(app):
    def _make(email="rider@example.com", password="correct-horse", role="user", **fields) -> int:
        with app.app_context():
            user = accounts.create_account(email=email, password=password, role=role)
            if fields:
                accounts.update_account(user.id, fields)
            return user.id
    return _make


@pytest.fixture()
def login(client):
    def _login(user_id: int):
        # Simulate Flask-Login session
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user_id)
    return _login


class FakeGateway:
    """Stands in for StripeGateway; records calls instead of hitting Stripe."""

    configured = True

    def __init__(self):
        self.interval = "month"
        self.retrieve_error = None
        self.retrieved = []
        self.checkout_calls = []
        self.cancel_calls = []

    def retrieve_subscription(self, subscription_id):
        self.retrieved.append(subscription_id)
        if self.retrieve_error is not None:
            raise self.retrieve_error
        return {
            "id": subscription_id,
            "status": "active",
            "items": {"data": [{"price": {"id": "price_x", "recurring": {"interval": self.interval}}}]},
        }

    def create_checkout_session(self, **kwargs):
        self.checkout_calls.append(kwargs)
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

    def create_portal_session(self, *, customer_id, return_url):
        return f"https://billing.stripe.test/session/{customer_id}"

    def set_cancel_at_period_end(self, subscription_id, cancel):
        self.cancel_calls.append((subscription_id, cancel))
        return {
            "id": subscription_id,
            "cancel_at_period_end": cancel,
            "cancel_at": 1767225600 if cancel else None,  # 2026-01-01T00:00:00Z
        }


@pytest.fixture()
def gateway(app, monkeypatch):
    fake = FakeGateway()
    monkeypatch.setitem(app.extensions, "stripe_gateway", fake)
    return fake


@pytest.fixture()
def trusted_signatures(monkeypatch):
    """Monkeypatch Stripe signature verification to trust our payload."""
    def _fake_construct_event(payload, sig_header, secret):
        return json.loads(payload)
    monkeypatch.setattr(stripe.Webhook, "construct_event", staticmethod(_fake_construct_event))


@pytest.fixture()
def send_event(client, trusted_signatures):
    def _send(event: dict):
        return client.post(
            "/webhooks/stripe",
            data=json.dumps(event),
            headers={"Stripe-Signature": "t=1,v1=fake", "Content-Type": "application/json"},
        )
    return _send
