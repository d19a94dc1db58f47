from datetime import datetime
from typing import Optional

from equiprofile.models.user import User, ROLE_ADMIN, STATUS_ACTIVE, STATUS_TRIAL
from equiprofile.utils import helpers


def has_access(user: Optional[User], now: datetime) -> bool:
    """
    Whether the account may use subscription-gated features:
    admins always; active subscriptions; trials until trial_ends_at.
    """
    if user is None:
        return False
    if user.role == ROLE_ADMIN:
        return True
    if user.subscription_status == STATUS_ACTIVE:
        return True
    if user.subscription_status == STATUS_TRIAL and user.trial_ends_at:
        return user.trial_ends_at > now
    return False


def access_summary(user: User, now: Optional[datetime] = None) -> dict:
    now = now or helpers.utcnow()
    return {
        "status": user.subscription_status,
        "plan": user.subscription_plan,
        "trialEndsAt": helpers.isoformat(user.trial_ends_at),
        "subscriptionEndsAt": helpers.isoformat(user.subscription_ends_at),
        "lastPaymentAt": helpers.isoformat(user.last_payment_at),
        "hasActiveSubscription": has_access(user, now),
    }
