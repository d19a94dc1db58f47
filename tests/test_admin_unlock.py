from datetime import timedelta

from werkzeug.security import generate_password_hash

from equiprofile.extensions import db
from equiprofile.models import ActivityLog, AdminSession
from equiprofile.services import admin_unlock


def _admin(make_user, login):
    uid = make_user(email="boss@example.com", role="admin")
    login(uid)
    return uid


def _submit(client, password):
    return client.post("/admin-unlock/submit", json={"password": password})


def test_request_returns_challenge_and_remaining_attempts(app, client, clock, make_user, login):
    _admin(make_user, login)
    resp = client.post("/admin-unlock/request")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["challenge"]
    assert body["attemptsRemaining"] == 5

    _submit(client, "wrong")
    assert client.post("/admin-unlock/request").get_json()["attemptsRemaining"] == 4


def test_non_admin_cannot_request_unlock(app, client, clock, make_user, login):
    uid = make_user(subscription_status="active")
    login(uid)
    resp = client.post("/admin-unlock/request")
    assert resp.status_code == 403
    assert resp.get_json()["error"] == "admin_required"


def test_correct_password_opens_thirty_minute_session(app, client, clock, make_user, login):
    uid = _admin(make_user, login)
    _submit(client, "wrong")

    resp = _submit(client, app.config["ADMIN_UNLOCK_PASSWORD"])
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["expiresAt"] == (clock.now + timedelta(minutes=30)).isoformat() + "Z"

    status = client.get("/admin-unlock/status").get_json()
    assert status["isUnlocked"] is True

    with app.app_context():
        assert admin_unlock.get_attempts(uid) == 0
        actions = [a.action for a in db.session.execute(db.select(ActivityLog).order_by(ActivityLog.id)).scalars()]
        assert actions == ["admin_unlock_failed", "admin_unlocked"]


def test_wrong_password_is_401(app, client, clock, make_user, login):
    _admin(make_user, login)
    resp = _submit(client, "wrong")
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "invalid_credentials"
    assert client.get("/admin-unlock/status").get_json()["isUnlocked"] is False


def test_sixth_attempt_is_locked_out_before_password_check(app, client, clock, make_user, login):
    uid = _admin(make_user, login)
    for _ in range(5):
        assert _submit(client, "wrong").status_code == 401

    # Even the right password is refused once over the limit
    resp = _submit(client, app.config["ADMIN_UNLOCK_PASSWORD"])
    assert resp.status_code == 429
    body = resp.get_json()
    assert body["error"] == "too_many_attempts"
    assert body["retry_after"] == (clock.now + timedelta(minutes=15)).isoformat() + "Z"
    assert resp.headers["Retry-After"] == str(15 * 60)
    assert client.get("/admin-unlock/status").get_json()["isUnlocked"] is False

    resp = client.post("/admin-unlock/request")
    assert resp.status_code == 429

    with app.app_context():
        assert admin_unlock.get_attempts(uid) == 6


def test_seventh_attempt_during_lockout_is_still_refused(app, client, clock, make_user, login):
    uid = _admin(make_user, login)
    for _ in range(5):
        _submit(client, "wrong")
    assert _submit(client, "wrong").status_code == 429
    with app.app_context():
        first_deadline = admin_unlock.get_lockout_until(uid)

    clock.advance(minutes=3)
    resp = _submit(client, app.config["ADMIN_UNLOCK_PASSWORD"])
    assert resp.status_code == 429
    assert client.get("/admin-unlock/status").get_json()["isUnlocked"] is False

    with app.app_context():
        assert admin_unlock.get_lockout_until(uid) >= first_deadline
        assert admin_unlock.get_admin_session(uid) is None


def test_lockout_never_shortens(app, clock, make_user):
    uid = make_user(role="admin")
    with app.app_context():
        first = admin_unlock.set_lockout(uid, 15)
        clock.advance(minutes=5)
        # Further attempts while locked keep the original deadline when it is later
        assert admin_unlock.set_lockout(uid, 5) == first
        assert admin_unlock.get_lockout_until(uid) == first
        later = admin_unlock.set_lockout(uid, 15)
        assert later > first


def test_attempt_counter_resets_lazily_after_lockout(app, client, clock, make_user, login):
    uid = _admin(make_user, login)
    for _ in range(6):
        _submit(client, "wrong")

    clock.advance(minutes=16)
    with app.app_context():
        assert admin_unlock.get_attempts(uid) == 0
        assert admin_unlock.get_lockout_until(uid) is None

    resp = _submit(client, app.config["ADMIN_UNLOCK_PASSWORD"])
    assert resp.status_code == 200


def test_increment_after_expired_lockout_starts_over(app, clock, make_user):
    uid = make_user(role="admin")
    with app.app_context():
        for _ in range(6):
            admin_unlock.increment_attempts(uid)
        admin_unlock.set_lockout(uid, 15)
        clock.advance(minutes=15, seconds=1)
        assert admin_unlock.increment_attempts(uid) == 1


def test_lock_revokes_session(app, client, clock, make_user, login):
    uid = _admin(make_user, login)
    assert _submit(client, app.config["ADMIN_UNLOCK_PASSWORD"]).status_code == 200
    assert client.post("/admin-unlock/lock").get_json() == {"success": True}
    assert client.get("/admin-unlock/status").get_json()["isUnlocked"] is False
    with app.app_context():
        assert db.session.query(AdminSession).filter_by(user_id=uid).count() == 0


def test_new_unlock_replaces_previous_session(app, clock, make_user):
    uid = make_user(role="admin")
    with app.app_context():
        admin_unlock.create_admin_session(uid, clock.now + timedelta(minutes=30))
        clock.advance(minutes=10)
        admin_unlock.create_admin_session(uid, clock.now + timedelta(minutes=30))
        assert db.session.query(AdminSession).filter_by(user_id=uid).count() == 1
        assert admin_unlock.get_admin_session(uid).expires_at == clock.now + timedelta(minutes=30)


def test_hashed_password_is_preferred(app, client, clock, make_user, login, monkeypatch):
    monkeypatch.setitem(app.config, "ADMIN_UNLOCK_PASSWORD_HASH", generate_password_hash("hashed-secret"))
    _admin(make_user, login)
    assert _submit(client, app.config["ADMIN_UNLOCK_PASSWORD"]).status_code == 401
    assert _submit(client, "hashed-secret").status_code == 200


def test_unconfigured_password_is_503(app, client, clock, make_user, login, monkeypatch):
    monkeypatch.setitem(app.config, "ADMIN_UNLOCK_PASSWORD", None)
    uid = _admin(make_user, login)
    resp = _submit(client, "anything")
    assert resp.status_code == 503
    with app.app_context():
        assert admin_unlock.get_attempts(uid) == 0
