from .user import User, ROLE_ADMIN, ROLE_USER
from .webhook_event import WebhookEvent
from .admin_unlock import AdminUnlockAttempt, AdminSession
from .email_log import EmailLog
from .activity_log import ActivityLog

__all__ = [
    "User",
    "ROLE_ADMIN",
    "ROLE_USER",
    "WebhookEvent",
    "AdminUnlockAttempt",
    "AdminSession",
    "EmailLog",
    "ActivityLog",
]
