import os

from dotenv import dotenv_values


def _flag(name: str, default: str) -> bool:
    return (os.getenv(name, default) or default).lower() == "true"


def _int(name: str, default: int) -> int:
    return int(os.getenv(name) or default)


_DOTENV = dotenv_values(".env")


class BaseConfig:
    # Secrets (env in prod; dev/test may use defaults)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-not-secure")
    WTF_CSRF_SECRET_KEY = SECRET_KEY
    WTF_CSRF_TIME_LIMIT = None

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _DOTENV.get("DATABASE_URL") or "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # Logging / misc
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Cookies: secure-by-default
    SESSION_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # Flask-Limiter default: off globally; prefer per-route limits
    RATELIMIT_DEFAULT = None

    # --- Mail ---
    MAIL_SERVER = os.getenv("MAIL_SERVER", "localhost")
    MAIL_PORT = _int("MAIL_PORT", 587)
    MAIL_USE_TLS = _flag("MAIL_USE_TLS", "true")
    MAIL_USE_SSL = _flag("MAIL_USE_SSL", "false")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "EquiProfile <no-reply@equiprofile.online>")
    MAIL_SUPPRESS_SEND = _flag("MAIL_SUPPRESS_SEND", "false")
    SUPPORT_EMAIL = os.getenv("SUPPORT_EMAIL", "support@equiprofile.online")

    # Used for absolute links in emails and Stripe redirects (must be https in prod)
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5000")

    # --- Stripe (Billing) ---
    BILLING_ENABLED = _flag("ENABLE_STRIPE", "true")
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_PUBLISHABLE_KEY = os.getenv("STRIPE_PUBLISHABLE_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_TIMEOUT_SECONDS = _int("STRIPE_TIMEOUT_SECONDS", 10)
    STRIPE_MAX_NETWORK_RETRIES = _int("STRIPE_MAX_NETWORK_RETRIES", 2)

    # Price IDs (per environment via env vars)
    STRIPE_PRICE_MONTHLY = os.getenv("STRIPE_MONTHLY_PRICE_ID")
    STRIPE_PRICE_YEARLY = os.getenv("STRIPE_YEARLY_PRICE_ID")

    # Display amounts in minor units; must match the Stripe dashboard
    PRICE_MONTHLY_AMOUNT = _int("PRICE_MONTHLY_AMOUNT", 799)
    PRICE_YEARLY_AMOUNT = _int("PRICE_YEARLY_AMOUNT", 7990)
    PRICE_CURRENCY = os.getenv("PRICE_CURRENCY", "gbp")

    # --- Subscription lifecycle ---
    TRIAL_DAYS = _int("TRIAL_DAYS", 7)

    # --- Admin unlock ---
    ADMIN_UNLOCK_PASSWORD = os.getenv("ADMIN_UNLOCK_PASSWORD")
    ADMIN_UNLOCK_PASSWORD_HASH = os.getenv("ADMIN_UNLOCK_PASSWORD_HASH")
    ADMIN_UNLOCK_MAX_ATTEMPTS = _int("ADMIN_UNLOCK_MAX_ATTEMPTS", 5)
    ADMIN_UNLOCK_LOCKOUT_MINUTES = _int("ADMIN_UNLOCK_LOCKOUT_MINUTES", 15)
    ADMIN_SESSION_MINUTES = _int("ADMIN_SESSION_MINUTES", 30)


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    MAIL_SUPPRESS_SEND = True


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")
    # REQUIRE env vars in production (fail fast if missing)
    SECRET_KEY = os.environ.get("SECRET_KEY")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL")
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True
    SESSION_COOKIE_SAMESITE = os.environ.get("SESSION_COOKIE_SAMESITE", "Lax")
    MAIL_SUPPRESS_SEND = False


class StagingConfig(ProductionConfig):
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    # Staging runs against Stripe test mode with real mail delivery off
    MAIL_SUPPRESS_SEND = _flag("MAIL_SUPPRESS_SEND", "true")


class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    MAIL_SUPPRESS_SEND = True
    RATELIMIT_ENABLED = False
    WTF_CSRF_ENABLED = False


_ENV_MAP = {
    "development": DevelopmentConfig,
    "staging": StagingConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def get_config():
    env = os.environ.get("APP_ENV", "development").lower()
    return _ENV_MAP.get(env, DevelopmentConfig)
