import logging
import os
import uuid
from logging.config import dictConfig

from flask import g, has_request_context, request
from pythonjsonlogger.json import JsonFormatter

REQUEST_ID_HEADER = "X-Request-ID"
JSON_FIELDS = "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s %(user_id)s %(path)s"


class RequestContextFilter(logging.Filter):
    """Stamp request id, caller and path onto every record."""

    def filter(self, record):
        record.request_id = None
        record.user_id = None
        record.path = None
        if has_request_context():
            record.request_id = g.get("request_id")
            record.path = request.path
            user = g.get("_login_user")
            if user is not None and getattr(user, "is_authenticated", False):
                record.user_id = user.id
        return True


def _app_env():
    return (os.getenv("APP_ENV", "development") or "development").lower()


def logging_config(level: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"request_context": {"()": RequestContextFilter}},
        "formatters": {"json": {"()": JsonFormatter, "fmt": JSON_FIELDS}},
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "json",
                "filters": ["request_context"],
            },
        },
        "root": {"level": level, "handlers": ["stdout"]},
    }


def init_logging(app):
    """JSON records on stdout outside dev/tests; the plain Flask logger otherwise."""
    level = (app.config.get("LOG_LEVEL") or "INFO").upper()
    if _app_env() not in ("staging", "production"):
        app.logger.setLevel(getattr(logging, level, logging.INFO))
        return
    dictConfig(logging_config(level))


def init_request_id(app):
    @app.before_request
    def _assign_request_id():
        incoming = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
        g.request_id = incoming[:64] or uuid.uuid4().hex

    @app.after_request
    def _echo_request_id(response):
        rid = g.get("request_id")
        if rid:
            response.headers[REQUEST_ID_HEADER] = rid
        return response


def init_sentry(app):
    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        return
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration

    try:
        sentry_sdk.init(
            dsn=dsn,
            integrations=[FlaskIntegration()],
            traces_sample_rate=float(os.getenv("SENTRY_TRACES", "0.0")),
            environment=_app_env(),
            # Account emails are personal data
            send_default_pii=False,
        )
    except Exception as exc:
        app.logger.warning("Sentry disabled: %s", exc)
