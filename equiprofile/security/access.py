from datetime import datetime
from functools import wraps
from typing import Callable, Optional

from flask_login import current_user

from equiprofile.billing.access import has_access
from equiprofile.errors import AccessDenied, AuthenticationRequired
from equiprofile.models.user import (
    User,
    ROLE_ADMIN,
    STATUS_ACTIVE,
    STATUS_EXPIRED,
    STATUS_OVERDUE,
    STATUS_TRIAL,
)
from equiprofile.services import admin_unlock
from equiprofile.utils import helpers


def _authenticated_user(user: Optional[User]) -> User:
    if user is None or not getattr(user, "is_authenticated", False):
        raise AuthenticationRequired()
    if user.is_suspended:
        raise AccessDenied(
            "account_suspended",
            user.suspended_reason or "Your account has been suspended. Please contact support.",
        )
    return user


def enforce_subscription(user: Optional[User], now: Optional[datetime] = None) -> User:
    """
    Raise unless the account may use subscription-gated features.
    Each refusal carries a distinct reason so the client can route on it.
    """
    user = _authenticated_user(user)
    now = now or helpers.utcnow()
    status = user.subscription_status

    if status == STATUS_TRIAL and user.trial_ends_at and user.trial_ends_at <= now:
        raise AccessDenied("trial_expired", "Your free trial has expired. Please subscribe to continue.")
    if status in (STATUS_OVERDUE, STATUS_EXPIRED):
        raise AccessDenied("subscription_expired", "Your subscription has expired. Please renew to continue.")
    if status in (STATUS_TRIAL, STATUS_ACTIVE):
        return user

    # Cancelled and any other state: the evaluator decides, admins included
    if not has_access(user, now):
        raise AccessDenied("subscription_required", "An active subscription is required to access this feature.")
    return user


def enforce_admin_unlocked(user: Optional[User]) -> User:
    user = _authenticated_user(user)
    if user.role != ROLE_ADMIN:
        raise AccessDenied("admin_required", "You do not have admin privileges.")
    if admin_unlock.get_admin_session(user.id) is None:
        raise AccessDenied("admin_unlock_required", "Admin session expired. Please unlock admin mode.")
    return user


def require_subscription(fn: Callable) -> Callable:
    @wraps(fn)
    def _wrap(*args, **kwargs):
        enforce_subscription(current_user._get_current_object())
        return fn(*args, **kwargs)
    return _wrap


def require_admin_unlocked(fn: Callable) -> Callable:
    @wraps(fn)
    def _wrap(*args, **kwargs):
        enforce_admin_unlocked(current_user._get_current_object())
        return fn(*args, **kwargs)
    return _wrap
