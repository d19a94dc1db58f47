from flask import request
from flask_login import current_user, login_required

from equiprofile.errors import ApiError
from equiprofile.extensions import limiter
from equiprofile.services import admin_unlock
from . import bp


@bp.get("/status")
@login_required
def status():
    return admin_unlock.get_status(current_user)


@bp.post("/request")
@login_required
def request_unlock():
    return admin_unlock.request_unlock(current_user)


@bp.post("/submit")
@limiter.limit("20 per minute")
@login_required
def submit():
    data = request.get_json(silent=True) or request.form.to_dict()
    password = data.get("password")
    if not password:
        raise ApiError("password is required", error="password_required")
    return admin_unlock.submit_password(current_user, password)


@bp.post("/lock")
@login_required
def lock():
    return admin_unlock.lock(current_user)
