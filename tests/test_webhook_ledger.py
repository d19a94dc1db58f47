from equiprofile.billing import ledger
from equiprofile.extensions import db
from equiprofile.models import WebhookEvent


def test_record_then_processed(app):
    with app.app_context():
        assert ledger.has_been_processed("evt_1") is False
        row = ledger.record("evt_1", "invoice.payment_failed", {"id": "evt_1"})
        assert row is not None
        assert row.processed is False
        # Recorded without an error counts as processed for duplicate detection
        assert ledger.has_been_processed("evt_1") is True

        ledger.mark_processed("evt_1")
        row = db.session.execute(db.select(WebhookEvent).filter_by(event_id="evt_1")).scalar_one()
        assert row.processed is True
        assert row.processed_at is not None


def test_second_record_of_same_event_is_refused(app):
    with app.app_context():
        assert ledger.record("evt_dup", "checkout.session.completed") is not None
        assert ledger.record("evt_dup", "checkout.session.completed") is None
        assert db.session.query(WebhookEvent).filter_by(event_id="evt_dup").count() == 1


def test_errored_event_is_reopened_for_retry(app):
    with app.app_context():
        ledger.record("evt_err", "checkout.session.completed")
        ledger.mark_processed("evt_err", error="RuntimeError: boom")
        assert ledger.has_been_processed("evt_err") is False

        row = ledger.record("evt_err", "checkout.session.completed")
        assert row is not None
        assert row.retries == 1
        assert row.error is None
        assert row.processed is False


def test_racing_insert_is_swallowed(app, monkeypatch):
    with app.app_context():
        ledger.record("evt_race", "invoice.payment_succeeded")
        # The other worker's row is invisible to the pre-insert lookup
        monkeypatch.setattr(ledger, "_get", lambda event_id: None)
        assert ledger.record("evt_race", "invoice.payment_succeeded") is None
        monkeypatch.undo()
        assert db.session.query(WebhookEvent).filter_by(event_id="evt_race").count() == 1


def test_mark_processed_unknown_event_is_noop(app):
    with app.app_context():
        ledger.mark_processed("evt_missing")
        assert db.session.query(WebhookEvent).count() == 0
