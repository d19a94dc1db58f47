import json

from flask import request, current_app
from flask_login import login_user, logout_user, current_user, login_required
from flask_wtf.csrf import generate_csrf
from sqlalchemy.exc import SQLAlchemyError

from equiprofile.errors import ApiError, InvalidCredentials
from equiprofile.extensions import db, limiter
from equiprofile.services import accounts
from equiprofile.services import email as email_service
from equiprofile.utils import helpers
from . import bp


def _login_email_scope():
    data_json = request.get_json(silent=True) or {}
    email = (data_json.get("email") or "").strip().lower()
    # Keep a stable scope even if email is blank
    return f"login-email:{email or 'missing'}"


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


@bp.get("/csrf")
def csrf_token():
    return {"csrfToken": generate_csrf()}


@bp.post("/register")
@limiter.limit("5 per minute; 20 per hour")
def register():
    data = _payload()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    name = (data.get("name") or "").strip() or None

    if not email:
        raise ApiError("Email is required.", error="email_required")
    if len(password) < 8:
        raise ApiError("Password must be at least 8 characters.", error="weak_password")
    if accounts.get_by_email(email):
        raise ApiError("An account with that email already exists. Try signing in.", error="email_taken")

    user = accounts.create_account(email=email, password=password, name=name)
    login_user(user)

    # Welcome email is best-effort; the account already exists
    try:
        entry = email_service.queue_welcome_email(user)
        if entry is not None:
            email_service.dispatch(entry)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("welcome_email_enqueue_failed")

    return {"user": accounts.to_dict(user)}, 201


@bp.post("/login")
@limiter.limit("10 per minute; 100 per hour")  # per caller
@limiter.limit("5 per minute; 20 per hour", key_func=_login_email_scope)  # per-account
def login():
    data = _payload()
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""

    if not email or not password:
        raise ApiError("Email and password are required.", error="credentials_required")

    user = accounts.get_by_email(email)
    if not user or not user.check_password(password) or not user.is_active:
        raise InvalidCredentials("Invalid credentials")

    accounts.update_account(user.id, {"last_signed_in_at": helpers.utcnow()})
    login_user(user)
    current_app.logger.info(json.dumps({"event": "login", "user_id": user.id}))
    return {"user": accounts.to_dict(user)}


@bp.post("/logout")
def logout():
    if current_user.is_authenticated:
        logout_user()
    return {"success": True}


@bp.get("/me")
@login_required
def me():
    return {"user": accounts.to_dict(current_user)}
