# crowdfund/config/config.py
# Canonical platform configuration (env-first, production-safe)

from __future__ import annotations

import os
from datetime import timedelta
from typing import Optional


# ----------------------------
# Env helpers
# ----------------------------
_TRUTHY = {"1", "true", "yes", "on", "y"}
_FALSY = {"0", "false", "no", "off", "n"}


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    s = str(v).strip()
    return s if s else default


def _bool(name: str, default: bool = False) -> bool:
    v = _env(name)
    if v is None:
        return default
    s = v.strip().lower()
    if s in _TRUTHY:
        return True
    if s in _FALSY:
        return False
    return default


def _int(name: str, default: int) -> int:
    v = _env(name)
    if v is None:
        return default
    try:
        return int(str(v).strip())
    except ValueError:
        return default


def _csv(name: str) -> list[str]:
    return [p.strip().lower() for p in (_env(name) or "").split(",") if p.strip()]


# ----------------------------
# Config classes
# ----------------------------
class BaseConfig:
    """
    Env-first config:
    - every setting can be overridden via environment variables
    - safe defaults for local dev
    """

    ENV = (_env("APP_ENV") or _env("ENV") or _env("FLASK_ENV") or "base").strip().lower()

    DEBUG = _bool("FLASK_DEBUG", False)
    TESTING = _bool("TESTING", False)
    LOG_LEVEL = _env("LOG_LEVEL", "INFO")

    # Security
    SECRET_KEY = _env("SECRET_KEY", "dev-change-me")
    JWT_SECRET = _env("JWT_SECRET", "dev-jwt-change-me")
    JWT_ALG = _env("JWT_ALG", "HS256")
    JWT_EXPIRES_MINUTES = _int("JWT_EXPIRES_MINUTES", 60 * 24)
    API_TOKENS = _env("API_TOKENS", "")

    # Cookies
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = _env("SESSION_COOKIE_SAMESITE", "Lax")
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SECURE = True
    PERMANENT_SESSION_LIFETIME = timedelta(days=_int("SESSION_DAYS", 30))

    CORS_ORIGINS = _env("CORS_ORIGINS", "*")

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = _env("SQLALCHEMY_DATABASE_URI", _env("DATABASE_URL", "sqlite:///crowdfund-dev.db"))
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    AUTO_CREATE_SQLITE = _bool("AUTO_CREATE_SQLITE", True)

    # Stripe
    STRIPE_SECRET_KEY = _env("STRIPE_SECRET_KEY", "")
    STRIPE_PUBLISHABLE_KEY = _env("STRIPE_PUBLISHABLE_KEY", "")
    STRIPE_WEBHOOK_SECRET = _env("STRIPE_WEBHOOK_SECRET", "")
    STRIPE_MAX_NETWORK_RETRIES = _int("STRIPE_MAX_NETWORK_RETRIES", 2)
    DEFAULT_CURRENCY = _env("DEFAULT_CURRENCY", "usd")

    # Admin bootstrap
    ADMIN_DOMAINS = _csv("ADMIN_DOMAINS")
    ADMIN_PROMOTION_SECRET = _env("ADMIN_PROMOTION_SECRET", "")
    FIRST_ADMIN_SECRET = _env("FIRST_ADMIN_SECRET", "")
    ALLOW_FIRST_ADMIN_CREATION = _bool("ALLOW_FIRST_ADMIN_CREATION", False)

    # Mail
    MAIL_SERVER = _env("MAIL_SERVER", "localhost")
    MAIL_PORT = _int("MAIL_PORT", 25)
    MAIL_USE_TLS = _bool("MAIL_USE_TLS", False)
    MAIL_USERNAME = _env("MAIL_USERNAME")
    MAIL_PASSWORD = _env("MAIL_PASSWORD")
    DEFAULT_MAIL_SENDER = _env("DEFAULT_MAIL_SENDER", "no-reply@crowdfund.local")
    MAIL_SUPPRESS_SEND = _bool("MAIL_SUPPRESS_SEND", False)

    # Alerts
    SLACK_WEBHOOK_URL = _env("SLACK_WEBHOOK_URL", "")

    # Uploads
    UPLOAD_FOLDER = _env("UPLOAD_FOLDER", os.path.join(os.getcwd(), "uploads"))
    MAX_UPLOAD_BYTES = _int("MAX_UPLOAD_BYTES", 5 * 1024 * 1024)
    # Werkzeug answers 413 above this; the slack covers multipart framing.
    MAX_CONTENT_LENGTH = MAX_UPLOAD_BYTES + 64 * 1024

    @classmethod
    def init_app(cls, app) -> None:
        """Boot hardening hook, called from create_app() after from_object()."""
        uri = str(app.config.get("SQLALCHEMY_DATABASE_URI") or "")

        if uri.startswith("sqlite:"):
            opts = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
            connect_args = dict(opts.get("connect_args") or {})
            connect_args.setdefault("check_same_thread", False)
            opts["connect_args"] = connect_args
            opts.setdefault("pool_pre_ping", True)
            app.config["SQLALCHEMY_ENGINE_OPTIONS"] = opts


class DevelopmentConfig(BaseConfig):
    ENV = "development"
    DEBUG = True

    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    MAIL_SUPPRESS_SEND = _bool("MAIL_SUPPRESS_SEND", True)


class TestingConfig(BaseConfig):
    ENV = "testing"
    TESTING = True
    DEBUG = False

    SECRET_KEY = "test-secret"
    JWT_SECRET = "test-jwt-secret"
    API_TOKENS = "test-api-token"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False

    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_PUBLISHABLE_KEY = "pk_test_dummy"
    STRIPE_WEBHOOK_SECRET = ""

    ADMIN_DOMAINS = ["staff.example.org"]
    ADMIN_PROMOTION_SECRET = "promote-me"
    FIRST_ADMIN_SECRET = "first-admin"
    ALLOW_FIRST_ADMIN_CREATION = False

    MAIL_SUPPRESS_SEND = True
    SLACK_WEBHOOK_URL = ""
    LOG_LEVEL = "WARNING"


class ProductionConfig(BaseConfig):
    ENV = "production"
    DEBUG = False

    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True

    @classmethod
    def init_app(cls, app) -> None:
        super().init_app(app)

        sk = app.config.get("SECRET_KEY")
        if not sk or sk == "dev-change-me":
            raise RuntimeError("SECRET_KEY must be set to a strong random value in production.")

        js = app.config.get("JWT_SECRET")
        if not js or js == "dev-jwt-change-me":
            raise RuntimeError("JWT_SECRET must be set in production.")

        if _bool("FLASK_DEBUG", False):
            raise RuntimeError("FLASK_DEBUG must be 0 in production.")
