"""
Notification delivery: preference-gated email (Flask-Mail, background thread),
Socket.IO pushes, and Slack alerts for moderators.

Listeners are connected to the domain signals in crowdfund.extensions by
init_notifications(app).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import requests
from flask import Flask, current_app

from crowdfund.constants import NOTIFICATION_TYPES
from crowdfund.extensions import (
    campaign_verified,
    db,
    donation_completed,
    emit_socket,
    report_created,
    run_bg,
    send_email_async,
)
from crowdfund.models import Campaign, Donation, FraudReport, NotificationSettings, User

log = logging.getLogger(__name__)


def campaign_room(campaign_id: int) -> str:
    return f"campaign:{campaign_id}"


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


# ─────────────────────────────────────────────────────────────
# Preference-gated delivery
# ─────────────────────────────────────────────────────────────
def should_deliver(settings: NotificationSettings, ntype: str) -> Tuple[bool, Optional[str]]:
    if not settings.email_notifications:
        return False, "email notifications disabled"
    field = NOTIFICATION_TYPES.get(ntype)
    if field is None:
        return False, f"unknown notification type '{ntype}'"
    if not getattr(settings, field):
        return False, f"{field} disabled"
    return True, None


def notify_user(user: User, ntype: str, title: str, message: str) -> Dict[str, Any]:
    settings = NotificationSettings.for_user(user.id)
    ok, reason = should_deliver(settings, ntype)
    if not ok:
        log.info("notification to user %s suppressed: %s", user.id, reason)
        return {"sent": False, "reason": reason}

    app = current_app._get_current_object()
    send_email_async(app, title, [user.email], body=message)
    emit_socket("notification", {"type": ntype, "title": title, "message": message}, room=user_room(user.id))
    return {"sent": True}


# ─────────────────────────────────────────────────────────────
# Slack alerts
# ─────────────────────────────────────────────────────────────
def send_slack_alert_async(app: Flask, text: str) -> None:
    url = str(app.config.get("SLACK_WEBHOOK_URL") or "").strip()
    if not url:
        return

    def _post() -> None:
        try:
            resp = requests.post(url, json={"text": text}, timeout=5)
            if resp.status_code >= 400:
                app.logger.warning("Slack alert rejected: %s %s", resp.status_code, resp.text[:200])
        except requests.RequestException as e:
            app.logger.warning("Slack alert failed: %s", e)

    run_bg(_post)


# ─────────────────────────────────────────────────────────────
# Signal listeners
# ─────────────────────────────────────────────────────────────
def _on_donation_completed(app: Flask, donation: Donation, **_: Any) -> None:
    campaign = db.session.get(Campaign, donation.campaign_id)
    if campaign is None:
        return
    emit_socket(
        "donation:new",
        {
            "donation": donation.as_dict(public=True),
            "campaign_id": campaign.id,
            "current_amount": campaign.current_amount,
        },
        room=campaign_room(campaign.id),
    )
    owner = campaign.owner
    if owner and owner.id != donation.donor_id:
        notify_user(
            owner,
            "donation_received",
            f"New donation to {campaign.title}",
            f"{donation.donor_display_name} donated ${donation.amount:,.2f} to {campaign.title}.",
        )
    db.session.commit()


def _on_campaign_verified(app: Flask, campaign: Campaign, status: str, **_: Any) -> None:
    emit_socket("campaign:updated", {"campaign": campaign.as_dict(include_owner=False)}, room=campaign_room(campaign.id))
    if campaign.owner:
        verb = "approved" if status == "verified" else status
        notify_user(
            campaign.owner,
            "campaign_update",
            f"Your campaign was {verb}",
            f"The campaign '{campaign.title}' was {verb} by an administrator.",
        )
    db.session.commit()


def _on_report_created(app: Flask, report: FraudReport, **_: Any) -> None:
    title = report.campaign.title if report.campaign else f"#{report.campaign_id}"
    send_slack_alert_async(app, f"New fraud report on campaign '{title}': {report.reason}")


def init_notifications(app: Flask) -> None:
    donation_completed.connect(_on_donation_completed, sender=app)
    campaign_verified.connect(_on_campaign_verified, sender=app)
    report_created.connect(_on_report_created, sender=app)
