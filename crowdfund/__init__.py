# crowdfund/__init__.py
# Crowdfunding platform API: Flask app factory
# - env-first config resolution
# - request-id logging + JSON error envelope for every /api route
# - deterministic blueprint registration

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List, Optional, Tuple, Type, Union
from uuid import uuid4

import sentry_sdk
from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from flask_compress import Compress
from flask_talisman import Talisman
from sentry_sdk.integrations.flask import FlaskIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.utils import import_string

# never override real env vars in prod
load_dotenv(override=False)

ConfigLike = Union[str, Type[Any]]

from crowdfund.errors import ApiError  # noqa: E402
from crowdfund.extensions import cors, db, init_stripe, login_manager, mail, migrate, socketio  # noqa: E402


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _env_bool(name: str) -> Optional[bool]:
    v = os.getenv(name)
    if v is None:
        return None
    s = str(v).strip().lower()
    if s in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "f", "no", "n", "off"}:
        return False
    return None


def _env_mode() -> str:
    for key in ("APP_ENV", "ENV", "FLASK_ENV"):
        val = (os.getenv(key) or "").strip().lower()
        if val:
            if val == "prod":
                return "production"
            if val == "dev":
                return "development"
            return val
    return "development"


def _resolve_config(target: Optional[ConfigLike]) -> ConfigLike:
    """
    Choose config class/module path.
    - If explicitly provided, respect it.
    - Else if FLASK_CONFIG is set, use it.
    - Else pick by APP_ENV / ENV / FLASK_ENV.
    """
    if target is not None:
        return target

    explicit = (os.getenv("FLASK_CONFIG") or "").strip()
    if explicit:
        return explicit

    env = _env_mode()
    if env == "production":
        return "crowdfund.config.ProductionConfig"
    if env in {"test", "testing"}:
        return "crowdfund.config.TestingConfig"
    return "crowdfund.config.DevelopmentConfig"


def _is_prod(app: Flask) -> bool:
    return str(app.config.get("ENV") or "").lower() == "production"


def json_error(message: str, status: int, **extra: Any):
    payload: Dict[str, Any] = {"ok": False, "error": {"code": int(status), "message": str(message)}}
    rid = getattr(g, "request_id", None)
    if rid:
        payload["error"]["request_id"] = rid
    if extra:
        payload["error"].update(extra)

    resp = jsonify(payload)
    resp.status_code = int(status)
    return resp


def _wants_json_response() -> bool:
    path = request.path or ""
    if path.startswith("/api/"):
        return True
    accept = (request.headers.get("Accept") or "").lower()
    return ("application/json" in accept) or bool(request.is_json)


def _parse_cors_origins(app: Flask) -> Union[str, List[str]]:
    raw = str(app.config.get("CORS_ORIGINS") or "*").strip()
    if raw in {"", "*"}:
        return "*"
    if "," in raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    return raw


# -----------------------------------------------------------------------------
# Logging with request_id
# -----------------------------------------------------------------------------
class _RequestIDFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        try:
            record.request_id = getattr(g, "request_id", "-")
        except RuntimeError:
            record.request_id = "-"
        return True


def _configure_logging(app: Flask) -> None:
    fmt = "%(asctime)s [%(levelname)s] %(name)s [rid=%(request_id)s]: %(message)s"
    root = logging.getLogger()

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt))
        handler.addFilter(_RequestIDFilter())
        root.addHandler(handler)
    else:
        for h in root.handlers:
            if not any(isinstance(f, _RequestIDFilter) for f in h.filters):
                h.addFilter(_RequestIDFilter())

    root.setLevel(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    logging.getLogger("werkzeug").setLevel(str(app.config.get("WERKZEUG_LOG_LEVEL", "WARNING")).upper())
    app.logger.info("Loaded config: ENV=%s DEBUG=%s", app.config.get("ENV", "?"), app.debug)


# -----------------------------------------------------------------------------
# ProxyFix (reverse proxy)
# -----------------------------------------------------------------------------
def _apply_proxyfix(app: Flask) -> None:
    trust = _env_bool("TRUST_PROXY")
    if trust is None:
        trust = _is_prod(app)
    if not trust:
        return
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=1)  # type: ignore[method-assign]
    app.logger.info("ProxyFix enabled (trusting X-Forwarded-* headers).")


# -----------------------------------------------------------------------------
# Blueprint registration
# -----------------------------------------------------------------------------
def _register_blueprints(app: Flask) -> None:
    from crowdfund.routes import admin, auth, campaigns, comments, donations, payments, reports
    from crowdfund.routes import stats, stories, upload, users, webhooks

    core: List[Tuple[Any, str]] = [
        (auth.bp, "/api/auth"),
        (campaigns.bp, "/api/campaigns"),
        (donations.bp, "/api/donations"),
        (payments.bp, "/api/payments"),
        (webhooks.bp, "/api/webhooks"),
        (comments.bp, "/api/comments"),
        (stories.bp, "/api/stories"),
        (reports.bp, "/api/reports"),
        (admin.bp, "/api/admin"),
        (users.bp, "/api/users"),
        (users.notifications_bp, "/api/notifications"),
        (upload.bp, "/api/upload"),
        (stats.bp, "/api"),
    ]
    disabled = {p.strip().lower() for p in (os.getenv("DISABLE_BPS", "")).split(",") if p.strip()}
    for blueprint, prefix in core:
        if blueprint.name in disabled:
            app.logger.info("Disabled blueprint: %s", blueprint.name)
            continue
        app.register_blueprint(blueprint, url_prefix=prefix)
        app.logger.debug("Registered blueprint: %-14s -> %s", blueprint.name, prefix)


# -----------------------------------------------------------------------------
# Integrations
# -----------------------------------------------------------------------------
def _init_sentry(app: Flask) -> None:
    dsn = (os.getenv("SENTRY_DSN") or "").strip()
    if not dsn:
        return
    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FlaskIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0")),
        send_default_pii=False,
        environment=app.config.get("ENV", "development"),
        release=os.getenv("GIT_COMMIT"),
    )
    app.logger.info("Sentry initialized")


def _init_talisman(app: Flask) -> None:
    if not _is_prod(app):
        return
    Talisman(app, content_security_policy=None, force_https=_env_bool("FORCE_HTTPS") is not False)


def _init_cors(app: Flask, cors_origins: Union[str, List[str]]) -> None:
    supports_credentials = cors_origins != "*"
    cors.init_app(
        app,
        supports_credentials=supports_credentials,
        resources={r"/api/*": {"origins": cors_origins}},
        expose_headers=["X-Request-ID"],
        allow_headers=["Content-Type", "Authorization", "Stripe-Signature", "X-Request-ID"],
        methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    )


def _init_socketio(app: Flask, cors_origins: Union[str, List[str]]) -> None:
    from crowdfund import realtime  # noqa: F401  (registers socket handlers)

    socketio.init_app(app, cors_allowed_origins=cors_origins)


def _maybe_create_sqlite_tables(app: Flask) -> None:
    uri = (app.config.get("SQLALCHEMY_DATABASE_URI") or "").strip()
    if not uri.startswith("sqlite"):
        return
    if app.config.get("AUTO_CREATE_SQLITE", True) is not True:
        return
    import crowdfund.models  # noqa: F401

    with app.app_context():
        db.create_all()


# -----------------------------------------------------------------------------
# Request lifecycle + errors
# -----------------------------------------------------------------------------
def _register_request_lifecycle(app: Flask) -> None:
    @app.before_request
    def _bootstrap_request():
        g.request_id = request.headers.get("X-Request-ID") or uuid4().hex
        g._start_ts = time.perf_counter()

    @app.after_request
    def _attach_request_headers(resp):
        resp.headers["X-Request-ID"] = getattr(g, "request_id", "-")
        start = getattr(g, "_start_ts", None)
        if start:
            resp.headers["X-Response-Time-ms"] = str(int((time.perf_counter() - start) * 1000))
        return resp


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_err(err: ApiError):
        db.session.rollback()
        if err.status >= 500:
            app.logger.error("API error %s: %s", err.status, err.message)
        return json_error(err.message, err.status, **err.extra)

    @app.errorhandler(HTTPException)
    def _http_err(err: HTTPException):
        if _wants_json_response():
            return json_error(err.description or err.name, err.code or 500)
        return err

    @app.errorhandler(Exception)
    def _uncaught(err: Exception):
        db.session.rollback()
        app.logger.exception("Unhandled error")
        return json_error("Internal Server Error", 500)


# -----------------------------------------------------------------------------
# Health endpoints
# -----------------------------------------------------------------------------
def _register_health_endpoints(app: Flask) -> None:
    @app.get("/healthz")
    def _healthz():
        return {
            "status": "ok",
            "env": app.config.get("ENV", "unknown"),
            "stripe": app.extensions.get("stripe_mode", "disabled"),
            "request_id": getattr(g, "request_id", "-"),
        }

    @app.get("/version")
    def _version():
        return {"version": os.getenv("GIT_COMMIT", "dev"), "env": app.config.get("ENV")}


# -----------------------------------------------------------------------------
# App Factory
# -----------------------------------------------------------------------------
def create_app(config_class: Optional[ConfigLike] = None) -> Flask:
    app = Flask(__name__)

    cfg = _resolve_config(config_class)
    cfg_obj = import_string(cfg) if isinstance(cfg, str) else cfg
    app.config.from_object(cfg_obj)
    init_hook = getattr(cfg_obj, "init_app", None)
    if callable(init_hook):
        init_hook(app)

    app.url_map.strict_slashes = False
    app.config.setdefault("JSON_SORT_KEYS", False)

    _apply_proxyfix(app)
    _configure_logging(app)

    _init_sentry(app)
    _init_talisman(app)
    cors_origins = _parse_cors_origins(app)
    _init_cors(app, cors_origins)

    # ---- Core extensions
    db.init_app(app)
    _maybe_create_sqlite_tables(app)
    migrate.init_app(app, db, compare_type=True, render_as_batch=True)
    mail.init_app(app)
    Compress(app)
    init_stripe(app)
    _init_socketio(app, cors_origins)

    login_manager.init_app(app)

    from crowdfund.models import User

    @login_manager.user_loader
    def load_user(uid: str):
        return db.session.get(User, int(uid)) if uid.isdigit() else None

    @login_manager.unauthorized_handler
    def _unauthorized():
        return json_error("Authentication required", 401)

    # ---- Request lifecycle / errors
    _register_request_lifecycle(app)
    _register_error_handlers(app)

    # ---- Blueprints + health + notification listeners
    _register_blueprints(app)
    _register_health_endpoints(app)

    from crowdfund.services.notifications import init_notifications

    init_notifications(app)

    from crowdfund.cli import crowdfund_cli

    app.cli.add_command(crowdfund_cli)

    return app
