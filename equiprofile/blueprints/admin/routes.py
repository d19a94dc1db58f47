from flask import request, abort
from flask_login import current_user

from equiprofile.errors import ApiError
from equiprofile.models.user import User, ROLE_CHOICES
from equiprofile.extensions import db
from equiprofile.services import accounts
from equiprofile.services.activity import log_activity, recent
from equiprofile.utils import helpers
from . import bp


def _get_user_or_404(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        abort(404, description="User not found")
    return user


def _audit(action: str, target: User, **details):
    log_activity(
        user_id=current_user.id,
        action=action,
        entity_type="user",
        entity_id=target.id,
        details=details,
    )


@bp.get("/users")
def list_users():
    return {"users": [accounts.to_dict(u) for u in accounts.list_accounts()]}


@bp.get("/users/<int:user_id>")
def get_user(user_id: int):
    return {"user": accounts.to_dict(_get_user_or_404(user_id))}


@bp.post("/users/<int:user_id>/suspend")
def suspend_user(user_id: int):
    target = _get_user_or_404(user_id)
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip()
    if not reason:
        raise ApiError("reason is required", error="reason_required")
    user = accounts.suspend(target.id, reason)
    _audit("user_suspended", user, reason=reason)
    return {"user": accounts.to_dict(user)}


@bp.post("/users/<int:user_id>/unsuspend")
def unsuspend_user(user_id: int):
    target = _get_user_or_404(user_id)
    user = accounts.unsuspend(target.id)
    _audit("user_unsuspended", user)
    return {"user": accounts.to_dict(user)}


@bp.post("/users/<int:user_id>/role")
def update_role(user_id: int):
    target = _get_user_or_404(user_id)
    data = request.get_json(silent=True) or {}
    role = (data.get("role") or "").strip()
    if role not in ROLE_CHOICES:
        raise ApiError("role must be 'user' or 'admin'", error="invalid_role")
    if target.id == current_user.id and role != target.role:
        raise ApiError("You cannot change your own role", error="self_role_change")
    previous = target.role
    user = accounts.set_role(target.id, role)
    _audit("user_role_changed", user, previous=previous, role=role)
    return {"user": accounts.to_dict(user)}


@bp.delete("/users/<int:user_id>")
def delete_user(user_id: int):
    target = _get_user_or_404(user_id)
    if target.id == current_user.id:
        raise ApiError("You cannot delete your own account", error="self_delete")
    user = accounts.deactivate(target.id)
    _audit("user_deleted", user)
    return {"success": True}


@bp.get("/overdue")
def overdue():
    return {"users": [accounts.to_dict(u) for u in accounts.list_overdue()]}


@bp.get("/expired-trials")
def expired_trials():
    return {"users": [accounts.to_dict(u) for u in accounts.list_expired_trials()]}


@bp.get("/activity")
def activity():
    limit = helpers.safe_int(request.args.get("limit")) or 100
    limit = max(1, min(limit, 500))
    return {"activity": [a.to_dict() for a in recent(limit)]}
