"""
Admin unlock: a second, time-limited password challenge on top of the admin
role. Failed submissions are throttled per account; the lockout expires
lazily when the counter is next read, so no background sweep is needed.
"""
import hmac
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from werkzeug.security import check_password_hash

from equiprofile.errors import AccessDenied, AdminUnlockUnavailable, InvalidCredentials, TooManyAttempts
from equiprofile.extensions import db
from equiprofile.models.admin_unlock import AdminSession, AdminUnlockAttempt
from equiprofile.models.user import User, ROLE_ADMIN
from equiprofile.services.activity import log_activity
from equiprofile.utils import helpers

CHALLENGE = "Admin mode requires password. Enter password:"


def _max_attempts() -> int:
    return int(current_app.config.get("ADMIN_UNLOCK_MAX_ATTEMPTS", 5))


def _row(user_id: int) -> Optional[AdminUnlockAttempt]:
    return db.session.execute(
        db.select(AdminUnlockAttempt).where(AdminUnlockAttempt.user_id == user_id)
    ).scalar_one_or_none()


def _expire_lockout(row: AdminUnlockAttempt, now: datetime) -> bool:
    if row.locked_until is not None and row.locked_until < now:
        row.attempts = 0
        row.locked_until = None
        return True
    return False


# ---- throttle ----

def get_attempts(user_id: int) -> int:
    row = _row(user_id)
    if row is None:
        return 0
    if _expire_lockout(row, helpers.utcnow()):
        db.session.commit()
        return 0
    return row.attempts


def increment_attempts(user_id: int) -> int:
    now = helpers.utcnow()
    row = _row(user_id)
    if row is None:
        row = AdminUnlockAttempt(user_id=user_id, attempts=1, last_attempt_at=now)
        db.session.add(row)
        db.session.commit()
        return 1
    _expire_lockout(row, now)
    row.attempts = (row.attempts or 0) + 1
    row.last_attempt_at = now
    db.session.commit()
    return row.attempts


def set_lockout(user_id: int, minutes: int) -> datetime:
    """Lock for `minutes` from now; an existing later lockout is kept."""
    until = helpers.utcnow() + timedelta(minutes=minutes)
    row = _row(user_id)
    if row is None:
        row = AdminUnlockAttempt(user_id=user_id, attempts=0)
        db.session.add(row)
    if row.locked_until is None or row.locked_until < until:
        row.locked_until = until
    db.session.commit()
    return row.locked_until


def get_lockout_until(user_id: int) -> Optional[datetime]:
    row = _row(user_id)
    return row.locked_until if row else None


def reset(user_id: int) -> None:
    row = _row(user_id)
    if row is None:
        return
    row.attempts = 0
    row.locked_until = None
    db.session.commit()


# ---- sessions ----

def get_admin_session(user_id: int) -> Optional[AdminSession]:
    return db.session.execute(
        db.select(AdminSession)
        .where(AdminSession.user_id == user_id, AdminSession.expires_at > helpers.utcnow())
        .order_by(AdminSession.expires_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def create_admin_session(user_id: int, expires_at: datetime) -> AdminSession:
    # At most one session per account
    db.session.execute(db.delete(AdminSession).where(AdminSession.user_id == user_id))
    session = AdminSession(user_id=user_id, expires_at=expires_at)
    db.session.add(session)
    db.session.commit()
    return session


def revoke_admin_session(user_id: int) -> None:
    db.session.execute(db.delete(AdminSession).where(AdminSession.user_id == user_id))
    db.session.commit()


# ---- challenge / response ----

def _require_admin(user: User) -> None:
    if user.role != ROLE_ADMIN:
        raise AccessDenied("admin_required", "You do not have admin privileges.")


def _password_matches(password: str) -> bool:
    cfg = current_app.config
    hashed = cfg.get("ADMIN_UNLOCK_PASSWORD_HASH")
    if hashed:
        return check_password_hash(hashed, password)
    plain = cfg.get("ADMIN_UNLOCK_PASSWORD")
    return hmac.compare_digest(plain.encode("utf-8"), password.encode("utf-8"))


def _configured() -> bool:
    cfg = current_app.config
    return bool(cfg.get("ADMIN_UNLOCK_PASSWORD_HASH") or cfg.get("ADMIN_UNLOCK_PASSWORD"))


def get_status(user: User) -> dict:
    session = get_admin_session(user.id)
    return {
        "isUnlocked": session is not None,
        "expiresAt": helpers.isoformat(session.expires_at) if session else None,
    }


def request_unlock(user: User) -> dict:
    _require_admin(user)
    attempts = get_attempts(user.id)
    max_attempts = _max_attempts()
    if attempts >= max_attempts:
        locked_until = get_lockout_until(user.id)
        if locked_until and locked_until > helpers.utcnow():
            raise TooManyAttempts(
                f"Too many attempts. Try again after {helpers.isoformat(locked_until)}",
                retry_after=locked_until,
            )
    return {
        "challenge": CHALLENGE,
        "attemptsRemaining": max(0, max_attempts - attempts),
    }


def submit_password(user: User, password: str) -> dict:
    _require_admin(user)
    if not _configured():
        raise AdminUnlockUnavailable()

    # Count first: once over the limit the password is not compared at all
    attempts = increment_attempts(user.id)
    if attempts > _max_attempts():
        minutes = int(current_app.config.get("ADMIN_UNLOCK_LOCKOUT_MINUTES", 15))
        locked_until = set_lockout(user.id, minutes)
        raise TooManyAttempts(
            f"Too many attempts. Account locked for {minutes} minutes.",
            retry_after=locked_until,
        )

    if not _password_matches(password or ""):
        log_activity(
            user_id=user.id,
            action="admin_unlock_failed",
            entity_type="system",
            details={"attempts": attempts},
        )
        raise InvalidCredentials()

    minutes = int(current_app.config.get("ADMIN_SESSION_MINUTES", 30))
    expires_at = helpers.utcnow() + timedelta(minutes=minutes)
    create_admin_session(user.id, expires_at)
    reset(user.id)
    log_activity(
        user_id=user.id,
        action="admin_unlocked",
        entity_type="system",
        details={"expiresAt": helpers.isoformat(expires_at)},
    )
    return {"success": True, "expiresAt": helpers.isoformat(expires_at)}


def lock(user: User) -> dict:
    revoke_admin_session(user.id)
    return {"success": True}
