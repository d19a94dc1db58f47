from flask import request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager, current_user
from flask_mail import Mail
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect

db = SQLAlchemy()
migrate = Migrate()
csrf = CSRFProtect()
mail = Mail()
login_manager = LoginManager()


@login_manager.unauthorized_handler
def _unauthorized():
    return {"error": "unauthorized", "message": "Please login (10001)"}, 401


def limit_key():
    """Signed-in callers are limited per account, everyone else per address."""
    if request and current_user and current_user.is_authenticated:
        return f"user:{current_user.id}"
    return get_remote_address()


# Storage URI is picked per environment in create_app()
limiter = Limiter(key_func=limit_key)
