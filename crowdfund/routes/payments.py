from __future__ import annotations

import hashlib

from flask import Blueprint, current_app

from crowdfund.constants import MAX_INTENT_CENTS, MIN_INTENT_CENTS
from crowdfund.errors import ApiError
from crowdfund.extensions import db, safe_commit
from crowdfund.models import Campaign, Donation
from crowdfund.routes.api_utils import get_or_404, json_ok
from crowdfund.security import require_account
from crowdfund.services.stripe_gateway import StripeGateway, read
from crowdfund.validation import pick, request_payload, require_id, sanitize_input, to_int, truthy

bp = Blueprint("payments", __name__)


def _idempotency_key(user_id: int, campaign_id: int, amount_cents: int, client_key: str) -> str:
    raw = f"intent:{user_id}:{campaign_id}:{amount_cents}:{client_key}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@bp.post("/create-intent")
def create_intent():
    """PaymentIntent for Stripe Elements; a pending Donation tracks it until the webhook lands."""
    if not StripeGateway.is_configured():
        raise ApiError("Payment processing is not configured", 503)
    user = require_account()
    data = request_payload()

    amount_cents = to_int(pick(data, "amount"))
    if amount_cents is None or amount_cents < MIN_INTENT_CENTS or amount_cents > MAX_INTENT_CENTS:
        raise ApiError(
            f"Amount must be between {MIN_INTENT_CENTS} and {MAX_INTENT_CENTS} cents",
            400,
        )
    campaign_id = require_id(pick(data, "campaign_id", "campaignId"), "Campaign ID")
    campaign = get_or_404(Campaign, campaign_id, "Campaign")
    if not campaign.accepts_donations:
        raise ApiError("Campaign is not accepting donations", 400)

    customer_id = StripeGateway.ensure_customer(user)
    client_key = str(pick(data, "idempotency_key", "idempotencyKey", default="") or "")
    intent = StripeGateway.create_checkout_intent(
        customer_id=customer_id,
        amount_cents=amount_cents,
        campaign=campaign,
        user=user,
        idempotency_key=_idempotency_key(user.id, campaign.id, amount_cents, client_key),
    )

    intent_id = read(intent, "id")
    donation = Donation.query.filter_by(stripe_payment_intent_id=intent_id).first() if intent_id else None
    if donation is None:
        donation = Donation(
            amount_cents=amount_cents,
            currency=StripeGateway.currency(),
            payment_type="one_time",
            status="pending",
            donor=user,
            campaign=campaign,
            message=sanitize_input(pick(data, "message", default=""))[:500] or None,
            is_anonymous=truthy(pick(data, "is_anonymous", "isAnonymous", default=False)),
            stripe_payment_intent_id=intent_id,
        )
        db.session.add(donation)
    safe_commit()
    current_app.logger.info("payment intent %s created for campaign %s", intent_id, campaign.id)

    return json_ok(
        {
            "client_secret": read(intent, "client_secret"),
            "payment_intent_id": intent_id,
            "donation_id": donation.id,
            "amount": amount_cents,
            "currency": StripeGateway.currency(),
            "campaign": {
                "id": campaign.id,
                "title": campaign.title,
                "creator_name": campaign.owner.name if campaign.owner else None,
            },
        }
    )


@bp.get("/config")
def config():
    return json_ok(
        {
            "publishable_key": current_app.config.get("STRIPE_PUBLISHABLE_KEY") or None,
            "ready": StripeGateway.is_configured(),
            "currency": StripeGateway.currency(),
            "mode": current_app.extensions.get("stripe_mode", "unknown"),
        }
    )
