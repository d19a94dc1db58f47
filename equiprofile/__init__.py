import json
import os

from dotenv import load_dotenv
from flask import Flask, request
from flask_wtf.csrf import CSRFError
from werkzeug.exceptions import HTTPException

from .config import get_config
from .errors import ApiError, TooManyAttempts
from .extensions import csrf, db, limiter, login_manager, mail, migrate
from .observability import init_logging, init_request_id, init_sentry
from .security import init_security
from .services.billing import StripeGateway
from .utils import helpers

PROD_LIKE = ("staging", "production")
REQUIRED_IN_PROD = ("SECRET_KEY", "DATABASE_URL", "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET")

# Platform env vars win; a local .env only fills the gaps
if os.getenv("APP_ENV", "development") not in PROD_LIKE:
    load_dotenv(".env", override=False)


def _limiter_storage(app_env):
    if app_env not in PROD_LIKE:
        return "memory://"
    redis_url = os.environ.get("REDIS_URL")
    if not redis_url:
        # Per-process counters would let lockouts be bypassed across workers
        raise RuntimeError(f"REDIS_URL must be set for rate limiting in {app_env}")
    return redis_url


def _check_required(app):
    missing = [name for name in REQUIRED_IN_PROD if not (os.getenv(name) or app.config.get(name))]
    if missing:
        raise RuntimeError("Missing required configuration: " + ", ".join(missing))


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db, directory=os.path.join(os.path.dirname(app.root_path), "migrations"))
    csrf.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)
    mail.init_app(app)

    # Handlers reach the client through billing.get_gateway()
    app.extensions["stripe_gateway"] = StripeGateway.from_config(app.config)
    if not app.config.get("STRIPE_SECRET_KEY"):
        app.logger.warning("STRIPE_SECRET_KEY is not set; checkout and portal calls will fail")


def _register_blueprints(app):
    from .blueprints.account import bp as account_bp
    from .blueprints.admin import bp as admin_bp
    from .blueprints.admin_unlock import bp as admin_unlock_bp
    from .blueprints.auth import bp as auth_bp
    from .blueprints.billing import bp as billing_bp
    from .blueprints.webhooks import bp as webhooks_bp

    for blueprint, prefix in (
        (auth_bp, "/auth"),
        (account_bp, "/account"),
        (billing_bp, "/billing"),
        (webhooks_bp, "/webhooks"),
        (admin_unlock_bp, "/admin-unlock"),
        (admin_bp, "/admin"),
    ):
        app.register_blueprint(blueprint, url_prefix=prefix)

    @app.get("/healthz")
    @limiter.exempt
    def healthz():
        return {"status": "ok"}


def _register_error_handlers(app):
    @app.errorhandler(CSRFError)
    def csrf_failed(e):
        return {"error": "csrf_failed", "message": e.description}, 400

    @app.errorhandler(429)
    def rate_limited(e):
        body = {"error": "rate_limited", "message": "Too many requests"}
        headers = {}
        # Flask-Limiter's RateLimitExceeded carries the window reset
        reset = getattr(e, "retry_after", None)
        if reset is not None:
            body["retry_after"] = int(reset)
            headers["Retry-After"] = str(int(reset))
        return body, 429, headers

    # Handlers for HTTPException are looked up by status code, so ApiError
    # subclasses are told apart here instead of through a handler of their own.
    @app.errorhandler(HTTPException)
    def http_error(e):
        if not isinstance(e, ApiError):
            slug = (e.name or "error").lower().replace(" ", "_")
            return {"error": slug, "message": e.description}, e.code

        headers = {}
        if isinstance(e, TooManyAttempts) and e.retry_after is not None:
            wait = (e.retry_after - helpers.utcnow()).total_seconds()
            headers["Retry-After"] = str(max(0, int(wait)))
        if e.code >= 500:
            app.logger.error(json.dumps({"event": "api_error", "error": e.error, "path": request.path}))
        return e.to_dict(), e.code, headers


def create_app(config_object=None):
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()

    app = Flask(__name__, template_folder="templates")
    app.config.update(
        RATELIMIT_STORAGE_URI=_limiter_storage(app_env),
        RATELIMIT_HEADERS_ENABLED=True,
    )
    app.config.from_object(config_object or get_config())
    app.config.setdefault("APP_ENV", app_env)

    if app_env in PROD_LIKE:
        _check_required(app)

    init_logging(app)
    init_sentry(app)
    init_request_id(app)
    if app_env in PROD_LIKE:
        init_security(app)

    _init_extensions(app)
    _register_blueprints(app)
    _register_error_handlers(app)

    from .cli import register_cli
    register_cli(app)

    return app
