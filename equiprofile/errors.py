from datetime import datetime
from typing import Optional

from werkzeug.exceptions import HTTPException


class ApiError(HTTPException):
    """HTTP error carrying a machine-readable code alongside the message."""

    code = 400
    error = "bad_request"

    def __init__(self, description: Optional[str] = None, *, error: Optional[str] = None):
        super().__init__(description=description)
        if error:
            self.error = error

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.description}


class AuthenticationRequired(ApiError):
    code = 401
    error = "unauthorized"
    description = "Please login (10001)"


class InvalidCredentials(ApiError):
    code = 401
    error = "invalid_credentials"
    description = "Incorrect password"


class AccessDenied(ApiError):
    """
    403 with a reason the client routes on:
    account_suspended | trial_expired | subscription_expired |
    subscription_required | admin_required | admin_unlock_required
    """

    code = 403
    error = "forbidden"

    def __init__(self, reason: str, description: str):
        super().__init__(description, error=reason)

    @property
    def reason(self) -> str:
        return self.error


class ConcurrentUpdateError(ApiError):
    code = 409
    error = "concurrent_update"
    description = "The account was modified concurrently; please retry."


class BillingDisabled(ApiError):
    code = 412
    error = "billing_disabled"
    description = "Billing is disabled"


class TooManyAttempts(ApiError):
    code = 429
    error = "too_many_attempts"

    def __init__(self, description: str, *, retry_after: Optional[datetime] = None):
        super().__init__(description)
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.retry_after is not None:
            payload["retry_after"] = self.retry_after.isoformat() + "Z"
        return payload


class BillingUnavailable(ApiError):
    code = 503
    error = "billing_unavailable"
    description = "Billing is temporarily unavailable. Please try again shortly."


class AdminUnlockUnavailable(ApiError):
    code = 503
    error = "admin_unlock_unavailable"
    description = "Admin unlock is not configured"
