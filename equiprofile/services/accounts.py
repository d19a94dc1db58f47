import json
import secrets
from datetime import timedelta
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from equiprofile.errors import ApiError, ConcurrentUpdateError
from equiprofile.extensions import db
from equiprofile.models.user import (
    User,
    ROLE_USER,
    STATUS_TRIAL,
    STATUS_OVERDUE,
)
from equiprofile.utils import helpers

MAX_UPDATE_ATTEMPTS = 3


def get_by_email(email: str) -> Optional[User]:
    email = (email or "").strip()
    if not email:
        return None
    return db.session.execute(
        db.select(User).where(func.lower(User.email) == func.lower(email))
    ).scalar_one_or_none()


def get_by_stripe_subscription(subscription_id: Optional[str]) -> Optional[User]:
    if not subscription_id:
        return None
    return db.session.execute(
        db.select(User).where(User.stripe_subscription_id == subscription_id)
    ).scalars().first()


def create_account(
    *,
    email: Optional[str],
    password: Optional[str] = None,
    name: Optional[str] = None,
    role: str = ROLE_USER,
    login_method: str = "email",
    open_id: Optional[str] = None,
) -> User:
    """
    Create an account in the trial state.
    trial_ends_at = now + TRIAL_DAYS and is never cleared afterwards.
    """
    now = helpers.utcnow()
    trial_days = int(current_app.config.get("TRIAL_DAYS", 7))

    user = User(
        open_id=open_id or f"local_{secrets.token_urlsafe(12)}",
        email=(email or "").strip().lower() or None,
        name=name or None,
        login_method=login_method,
        role=role,
        subscription_status=STATUS_TRIAL,
        trial_ends_at=now + timedelta(days=trial_days),
        last_signed_in_at=now,
    )
    if password:
        user.set_password(password)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        # Lost a race with another sign-up for the same address
        db.session.rollback()
        raise ApiError("An account with that email already exists. Try signing in.", error="email_taken")

    current_app.logger.info(json.dumps({
        "event": "account_created",
        "user_id": user.id,
        "trial_ends_at": helpers.isoformat(user.trial_ends_at),
    }))
    return user


def update_account(user_id: int, changes: Dict[str, Any]) -> Optional[User]:
    """
    Apply `changes` to the account and commit.

    The users table carries a version column, so a write racing another
    writer raises StaleDataError; the change is re-applied on a fresh read.
    Returns None when the account does not exist.
    """
    for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
        user = db.session.get(User, user_id)
        if user is None:
            return None
        for field, value in changes.items():
            setattr(user, field, value)
        try:
            db.session.commit()
            return user
        except StaleDataError:
            db.session.rollback()
            current_app.logger.warning(json.dumps({
                "event": "account_update_conflict",
                "user_id": user_id,
                "attempt": attempt,
            }))
    raise ConcurrentUpdateError()


def suspend(user_id: int, reason: str) -> Optional[User]:
    return update_account(user_id, {"is_suspended": True, "suspended_reason": reason})


def unsuspend(user_id: int) -> Optional[User]:
    return update_account(user_id, {"is_suspended": False, "suspended_reason": None})


def deactivate(user_id: int) -> Optional[User]:
    # Soft delete; accounts are never removed
    return update_account(user_id, {"is_active": False})


def set_role(user_id: int, role: str) -> Optional[User]:
    return update_account(user_id, {"role": role})


def list_accounts() -> List[User]:
    return db.session.execute(
        db.select(User).order_by(User.created_at.desc(), User.id.desc())
    ).scalars().all()


def list_overdue() -> List[User]:
    return db.session.execute(
        db.select(User).where(User.subscription_status == STATUS_OVERDUE, User.is_active.is_(True))
    ).scalars().all()


def list_expired_trials() -> List[User]:
    now = helpers.utcnow()
    return db.session.execute(
        db.select(User).where(
            User.subscription_status == STATUS_TRIAL,
            User.trial_ends_at <= now,
            User.is_active.is_(True),
        )
    ).scalars().all()


def to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "openId": user.open_id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "subscriptionStatus": user.subscription_status,
        "subscriptionPlan": user.subscription_plan,
        "trialEndsAt": helpers.isoformat(user.trial_ends_at),
        "subscriptionEndsAt": helpers.isoformat(user.subscription_ends_at),
        "lastPaymentAt": helpers.isoformat(user.last_payment_at),
        "isActive": user.is_active,
        "isSuspended": user.is_suspended,
        "suspendedReason": user.suspended_reason,
        "phone": user.phone,
        "location": user.location,
        "createdAt": helpers.isoformat(user.created_at),
    }
