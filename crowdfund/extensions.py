import atexit
import logging
import os
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

import stripe
from blinker import Namespace
from flask_cors import CORS
from flask_login import LoginManager
from flask_mail import Mail, Message
from flask_migrate import Migrate
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy

log = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Core singletons
# ─────────────────────────────────────────────────────────────
db = SQLAlchemy()
migrate = Migrate()
mail = Mail()
socketio = SocketIO(async_mode=os.getenv("SOCKET_ASYNC_MODE", "threading"))
login_manager = LoginManager()
cors = CORS()


# ─────────────────────────────────────────────────────────────
# Background tasks + clean shutdown
# ─────────────────────────────────────────────────────────────
_BG_MAX_WORKERS = int(os.getenv("BG_MAX_WORKERS", "8"))
_EXECUTOR = ThreadPoolExecutor(max_workers=_BG_MAX_WORKERS)


def run_bg(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
    return _EXECUTOR.submit(func, *args, **kwargs)


@atexit.register
def _shutdown_executor() -> None:
    _EXECUTOR.shutdown(wait=False, cancel_futures=True)


# ─────────────────────────────────────────────────────────────
# Safe DB helpers
# ─────────────────────────────────────────────────────────────
def safe_commit() -> None:
    """Commit the session; roll back and re-raise on failure."""
    try:
        db.session.commit()
    except Exception:
        log.error("DB commit failed", exc_info=True)
        db.session.rollback()
        raise


# ─────────────────────────────────────────────────────────────
# Email helper
# ─────────────────────────────────────────────────────────────
def send_email_async(
    app: Any,
    subject: str,
    recipients: List[str],
    *,
    body: str,
    html: Optional[str] = None,
    sender: Optional[str] = None,
    max_retries: int = 2,
    retry_backoff: float = 0.5,
) -> Future:
    def _job() -> bool:
        with app.app_context():
            msg = Message(
                subject=subject,
                recipients=recipients,
                sender=sender or app.config.get("DEFAULT_MAIL_SENDER"),
                body=body,
                html=html,
            )
            attempts = 0
            while True:
                try:
                    mail.send(msg)
                    return True
                except Exception as e:
                    attempts += 1
                    if attempts > max_retries:
                        app.logger.error("Email send permanently failed: %s", e, exc_info=True)
                        return False
                    app.logger.warning("Mail send failed (attempt %s/%s): %s", attempts, max_retries, e)
                    time.sleep(float(retry_backoff) * attempts)

    return run_bg(_job)


# ─────────────────────────────────────────────────────────────
# Domain signals + socket emit
# ─────────────────────────────────────────────────────────────
_signals = Namespace()
donation_completed = _signals.signal("donation-completed")
campaign_verified = _signals.signal("campaign-verified")
report_created = _signals.signal("report-created")


def emit_socket(event: str, data: Optional[Dict[str, Any]] = None, room: Optional[str] = None) -> bool:
    try:
        socketio.emit(event, data or {}, to=room)
        return True
    except Exception as e:
        log.warning("socket emit failed: %s", e)
        return False


# ─────────────────────────────────────────────────────────────
# Stripe initialization
# ─────────────────────────────────────────────────────────────
def _guess_stripe_mode(api_key: Optional[str]) -> str:
    if not api_key:
        return "disabled"
    if api_key.startswith(("sk_live_", "rk_live_")):
        return "live"
    if api_key.startswith(("sk_test_", "rk_test_")):
        return "test"
    return "unknown"


def init_stripe(app: Any) -> None:
    api_key = app.config.get("STRIPE_SECRET_KEY") or ""

    if not api_key:
        app.logger.warning("Stripe NOT initialized: missing STRIPE_SECRET_KEY")
        app.extensions["stripe_mode"] = "disabled"
        return

    stripe.api_key = api_key
    stripe.max_network_retries = int(app.config.get("STRIPE_MAX_NETWORK_RETRIES", 2))
    mode = _guess_stripe_mode(api_key)
    app.extensions["stripe_mode"] = mode
    app.logger.info("Stripe initialized (%s mode)", mode)


__all__ = [
    "db",
    "migrate",
    "mail",
    "socketio",
    "login_manager",
    "cors",
    "run_bg",
    "safe_commit",
    "send_email_async",
    "emit_socket",
    "init_stripe",
    "donation_completed",
    "campaign_verified",
    "report_created",
]
