from flask import request
from flask_login import current_user, login_required

from equiprofile.billing.access import access_summary
from equiprofile.errors import ApiError
from equiprofile.security.access import require_subscription
from equiprofile.services import accounts
from . import bp

# Self-service editable fields: request key -> column
_PROFILE_FIELDS = {
    "name": "name",
    "phone": "phone",
    "location": "location",
}
_MAX_LENGTHS = {"phone": 20, "location": 255}


@bp.get("/profile")
@login_required
def profile():
    return {"user": accounts.to_dict(current_user)}


@bp.patch("/profile")
@login_required
def update_profile():
    data = request.get_json(silent=True) or {}
    changes = {}
    for key, column in _PROFILE_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if value is not None and not isinstance(value, str):
            raise ApiError(f"{key} must be a string", error="invalid_field")
        value = (value or "").strip() or None
        limit = _MAX_LENGTHS.get(key)
        if value and limit and len(value) > limit:
            raise ApiError(f"{key} must be at most {limit} characters", error="invalid_field")
        changes[column] = value

    if not changes:
        return {"user": accounts.to_dict(current_user)}

    user = accounts.update_account(current_user.id, changes)
    return {"user": accounts.to_dict(user)}


@bp.get("/dashboard")
@login_required
@require_subscription
def dashboard():
    return {
        "user": accounts.to_dict(current_user),
        "subscription": access_summary(current_user),
    }
