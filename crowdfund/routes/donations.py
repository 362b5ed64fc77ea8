"""
Donation endpoints
────────────────────────────────────────────────────────────
POST  /api/donations                          one-time or recurring donation
GET   /api/donations   (alias: /user)         caller's donations
GET   /api/donations/stats                    caller's giving summary
POST  /api/donations/<id>/refund              donor or admin
GET   /api/donations/recurring                caller's schedules (admins: ?all=true)
POST  /api/donations/recurring/<id>/pause|resume|cancel
PATCH /api/donations/recurring/<id>           change amount and/or frequency
"""

from __future__ import annotations

from typing import Optional

from flask import Blueprint, current_app

from crowdfund.constants import MAX_DONATION, MIN_DONATION, RECURRING_FREQUENCIES
from crowdfund.errors import ApiError
from crowdfund.models import Campaign, Donation, RecurringDonation
from crowdfund.routes.api_utils import get_or_404, json_ok
from crowdfund.security import can_manage, require_account
from crowdfund.services import donations as donation_service
from crowdfund.validation import (
    arg,
    dollars_to_cents,
    page_args,
    pagination,
    pick,
    request_payload,
    require_id,
    sanitize_input,
    to_int,
    to_number,
    truthy,
)

bp = Blueprint("donations", __name__)


def _amount_cents(raw) -> int:
    amount = to_number(raw)
    if amount is None or amount < MIN_DONATION or amount > MAX_DONATION:
        raise ApiError(f"Amount must be between ${MIN_DONATION} and ${MAX_DONATION:,}", 400)
    return dollars_to_cents(amount)


def _frequency(raw) -> Optional[str]:
    if raw is None:
        return None
    freq = str(raw).strip().lower()
    if freq not in RECURRING_FREQUENCIES:
        raise ApiError(f"Frequency must be one of: {', '.join(RECURRING_FREQUENCIES)}", 400)
    return freq


# ----------------------------
# One-time / recurring donations
# ----------------------------
@bp.post("")
def create():
    user = require_account()
    data = request_payload()

    campaign_id = require_id(pick(data, "campaign_id", "campaignId"), "Campaign ID")
    amount_cents = _amount_cents(pick(data, "amount"))
    is_recurring = truthy(pick(data, "is_recurring", "isRecurring", default=False))
    frequency = _frequency(pick(data, "frequency")) if is_recurring else None
    if is_recurring and frequency is None:
        raise ApiError("Frequency is required for recurring donations", 400)

    message = sanitize_input(pick(data, "message", default=""))[:500] or None
    campaign = get_or_404(Campaign, campaign_id, "Campaign")

    result = donation_service.create_donation(
        user,
        campaign,
        amount_cents,
        is_recurring=is_recurring,
        frequency=frequency,
        message=message,
        is_anonymous=truthy(pick(data, "is_anonymous", "isAnonymous", default=False)),
        payment_method_id=pick(data, "payment_method_id", "paymentMethodId"),
        return_url=pick(data, "return_url", "returnUrl"),
    )
    current_app.logger.info(
        "donation %s (%s) by user %s to campaign %s",
        result.donation.id,
        result.donation.status,
        user.id,
        campaign.id,
    )

    body = {
        "message": "Recurring donation created successfully" if is_recurring else "Donation created successfully",
        "donation": result.donation.as_dict(include_campaign=True),
        "client_secret": result.client_secret,
        "payment_status": result.intent_status,
    }
    if result.recurring is not None:
        body["recurring_donation"] = result.recurring.as_dict()
    return json_ok(body, 201)


@bp.get("")
@bp.get("/user")
def list_mine():
    user = require_account()
    page, limit = page_args(default_limit=10)

    q = Donation.query.filter_by(donor_id=user.id)
    campaign_id = to_int(arg("campaign_id", "campaignId"))
    if campaign_id:
        q = q.filter_by(campaign_id=campaign_id)
    status = arg("status")
    if status:
        q = q.filter_by(status=status)

    total = q.count()
    rows = q.order_by(Donation.created_at.desc(), Donation.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return json_ok(
        {
            "donations": [d.as_dict(include_campaign=True) for d in rows],
            "pagination": pagination(page, limit, total),
        }
    )


@bp.get("/stats")
def stats():
    user = require_account()
    return json_ok({"stats": donation_service.donor_stats(user)})


@bp.post("/<int:donation_id>/refund")
def refund(donation_id: int):
    user = require_account()
    donation = get_or_404(Donation, donation_id, "Donation")
    if not can_manage(user, donation.donor_id):
        raise ApiError("You can only refund your own donations", 403)

    reason = sanitize_input(pick(request_payload(), "reason", default=""))[:255] or None
    donation_service.refund_donation(donation, reason)
    current_app.logger.info("donation %s refunded by user %s", donation.id, user.id)
    return json_ok({"message": "Donation refunded", "donation": donation.as_dict(include_campaign=True)})


# ----------------------------
# Recurring schedules
# ----------------------------
def _recurring_for(user, rid: int) -> RecurringDonation:
    rd = get_or_404(RecurringDonation, rid, "Recurring donation")
    if not can_manage(user, rd.donor_id):
        raise ApiError("You can only manage your own recurring donations", 403)
    return rd


@bp.get("/recurring")
def list_recurring():
    user = require_account()
    q = RecurringDonation.query
    if not (user.is_admin and truthy(arg("all", default=False))):
        q = q.filter_by(donor_id=user.id)
    status = arg("status")
    if status:
        q = q.filter_by(status=status)
    rows = q.order_by(RecurringDonation.created_at.desc(), RecurringDonation.id.desc()).all()
    return json_ok({"recurring_donations": [rd.as_dict() for rd in rows]})


_ACTIONS = {
    "pause": (donation_service.pause_recurring, "Recurring donation paused"),
    "resume": (donation_service.resume_recurring, "Recurring donation resumed"),
    "cancel": (donation_service.cancel_recurring, "Recurring donation cancelled"),
}


@bp.post("/recurring/<int:recurring_id>/<action>")
def recurring_action(recurring_id: int, action: str):
    if action not in _ACTIONS:
        raise ApiError("Unknown action", 404, allowed=sorted(_ACTIONS))
    user = require_account()
    rd = _recurring_for(user, recurring_id)

    handler, message = _ACTIONS[action]
    handler(rd)
    current_app.logger.info("recurring donation %s %s by user %s", rd.id, rd.status, user.id)
    return json_ok({"message": message, "recurring_donation": rd.as_dict()})


@bp.patch("/recurring/<int:recurring_id>")
def update_recurring(recurring_id: int):
    user = require_account()
    rd = _recurring_for(user, recurring_id)
    data = request_payload()

    raw_amount = pick(data, "amount")
    amount_cents = _amount_cents(raw_amount) if raw_amount is not None else None
    frequency = _frequency(pick(data, "frequency"))
    if amount_cents is None and frequency is None:
        raise ApiError("Nothing to update: supply amount and/or frequency", 400)

    donation_service.update_recurring(rd, amount_cents=amount_cents, frequency=frequency)
    return json_ok({"message": "Recurring donation updated", "recurring_donation": rd.as_dict()})
