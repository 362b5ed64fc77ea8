"""
Stripe webhook receiver
────────────────────────────────────────────────────────────
POST /api/webhooks/stripe

- Signature verified with STRIPE_WEBHOOK_SECRET (raw JSON accepted without a
  secret outside production).
- Each event id is persisted once in stripe_events; replays are acknowledged
  with {"received": true, "duplicate": true} and never reprocessed.
- A handler failure returns 500 and forgets the event row so Stripe's retry
  is processed again.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict

from flask import Blueprint, current_app, request
from sqlalchemy.exc import IntegrityError, OperationalError

from crowdfund.errors import ApiError
from crowdfund.extensions import db
from crowdfund.models import StripeEvent
from crowdfund.routes.api_utils import json_ok
from crowdfund.services.donations import WEBHOOK_HANDLERS
from crowdfund.services.stripe_gateway import StripeGateway

bp = Blueprint("webhooks", __name__)


# ----------------------------
# SQLite lock mitigation
# ----------------------------
def _is_locked(e: OperationalError) -> bool:
    msg = str(e).lower()
    return "database is locked" in msg or "sqlite_busy" in msg


def _retry_on_db_lock(fn: Callable[[], Any], *, attempts: int = 6) -> Any:
    for i in range(attempts):
        try:
            return fn()
        except OperationalError as e:
            db.session.rollback()
            if not _is_locked(e) or i == attempts - 1:
                raise
            time.sleep(0.05 * (i + 1))
    return None


def _store_event(ev: Dict[str, Any]) -> StripeEvent:
    obj = (ev.get("data") or {}).get("object") or {}
    row = StripeEvent(
        event_id=str(ev.get("id") or "")[:120],
        type=str(ev.get("type") or "")[:120],
        livemode=bool(ev.get("livemode") or False),
        object_id=(str(obj.get("id") or "")[:120] or None) if isinstance(obj, dict) else None,
        payload=ev,
    )

    def _do() -> StripeEvent:
        db.session.add(row)
        db.session.commit()
        return row

    return _retry_on_db_lock(_do)


def _forget_event(event_id: str) -> None:
    StripeEvent.query.filter_by(event_id=event_id).delete()
    db.session.commit()


@bp.post("/stripe")
def stripe_webhook():
    ev = StripeGateway.parse_event(
        request.get_data(cache=False, as_text=False),
        (request.headers.get("Stripe-Signature") or "").strip(),
    )

    event_id = str(ev.get("id") or "")
    etype = str(ev.get("type") or "")
    if not event_id or not etype:
        raise ApiError("Malformed event", 400)

    try:
        _store_event(ev)
    except IntegrityError:
        db.session.rollback()
        current_app.logger.info("webhooks: duplicate event %s (%s) acknowledged", event_id, etype)
        return json_ok({"received": True, "duplicate": True})

    handler = WEBHOOK_HANDLERS.get(etype)
    if handler is None:
        current_app.logger.debug("webhooks: unhandled event type %s", etype)
        return json_ok({"received": True})

    obj = (ev.get("data") or {}).get("object") or {}
    try:
        _retry_on_db_lock(lambda: handler(obj))
    except Exception:
        db.session.rollback()
        current_app.logger.exception("webhooks: %s %s processing failed (will retry)", etype, event_id)
        _forget_event(event_id)
        raise ApiError("Webhook processing failed", 500, received=False)

    current_app.logger.info("webhooks: processed %s %s", etype, event_id)
    return json_ok({"received": True})
