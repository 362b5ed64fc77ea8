"""
Donation lifecycle: one-time and recurring donations, refunds, and the
Stripe webhook transitions that drive them.

Campaign totals are always recomputed from completed donations after a
status change, so a replayed or out-of-order event cannot inflate them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import sqlalchemy as sa
from flask import current_app

from crowdfund.constants import RECURRING_FREQUENCIES
from crowdfund.errors import ApiError
from crowdfund.extensions import db, donation_completed, safe_commit
from crowdfund.models import Campaign, Donation, RecurringDonation, User
from crowdfund.models.mixins import utcnow
from crowdfund.models.recurring_donation import next_payment_after
from crowdfund.services.stripe_gateway import StripeGateway, read

log = logging.getLogger(__name__)


@dataclass
class DonationResult:
    donation: Donation
    recurring: Optional[RecurringDonation] = None
    client_secret: Optional[str] = None
    intent_status: Optional[str] = None


def _announce(donation: Donation) -> None:
    donation_completed.send(current_app._get_current_object(), donation=donation)


def _settle(campaign: Optional[Campaign]) -> None:
    if campaign is not None:
        campaign.recalculate_raised()


# =============================================================================
# Create
# =============================================================================
def create_donation(
    user: User,
    campaign: Campaign,
    amount_cents: int,
    *,
    is_recurring: bool = False,
    frequency: Optional[str] = None,
    message: Optional[str] = None,
    is_anonymous: bool = False,
    payment_method_id: Optional[str] = None,
    return_url: Optional[str] = None,
) -> DonationResult:
    if not campaign.accepts_donations:
        raise ApiError("Campaign is not accepting donations", 400)
    if is_recurring and frequency not in RECURRING_FREQUENCIES:
        raise ApiError("Invalid recurring frequency", 400)

    customer_id = StripeGateway.ensure_customer(user)

    if is_recurring:
        result = _create_recurring(
            user, campaign, amount_cents, frequency or "monthly", customer_id, payment_method_id, message, is_anonymous
        )
    else:
        result = _create_one_time(
            user, campaign, amount_cents, customer_id, payment_method_id, return_url, message, is_anonymous
        )

    safe_commit()
    if result.donation.status == "completed":
        _announce(result.donation)
    return result


def _create_one_time(
    user: User,
    campaign: Campaign,
    amount_cents: int,
    customer_id: str,
    payment_method_id: Optional[str],
    return_url: Optional[str],
    message: Optional[str],
    is_anonymous: bool,
) -> DonationResult:
    intent = StripeGateway.charge_now(
        customer_id=customer_id,
        amount_cents=amount_cents,
        campaign=campaign,
        user=user,
        payment_method_id=payment_method_id,
        return_url=return_url,
    )
    status = str(read(intent, "status") or "")
    donation = Donation(
        amount_cents=amount_cents,
        currency=StripeGateway.currency(),
        payment_type="one_time",
        donor=user,
        campaign=campaign,
        message=message,
        is_anonymous=is_anonymous,
        stripe_payment_intent_id=read(intent, "id"),
        status="pending",
    )
    db.session.add(donation)
    if status == "succeeded":
        donation.transition("completed")
        db.session.flush()
        _settle(campaign)
    return DonationResult(donation, client_secret=read(intent, "client_secret"), intent_status=status)


def _expanded_invoice(sub: Any) -> Tuple[Optional[str], Any]:
    """(invoice id, expanded payment intent or None) from a created subscription."""
    invoice = read(sub, "latest_invoice")
    if invoice is None:
        return None, None
    if isinstance(invoice, str):
        return invoice, None
    intent = read(invoice, "payment_intent")
    if isinstance(intent, str):
        intent = {"id": intent}
    return read(invoice, "id"), intent


def _create_recurring(
    user: User,
    campaign: Campaign,
    amount_cents: int,
    frequency: str,
    customer_id: str,
    payment_method_id: Optional[str],
    message: Optional[str],
    is_anonymous: bool,
) -> DonationResult:
    sub = StripeGateway.subscribe(
        customer_id=customer_id,
        amount_cents=amount_cents,
        frequency=frequency,
        campaign=campaign,
        user=user,
        payment_method_id=payment_method_id,
    )
    invoice_id, intent = _expanded_invoice(sub)
    now = utcnow()

    recurring = RecurringDonation(
        amount_cents=amount_cents,
        currency=StripeGateway.currency(),
        frequency=frequency,
        status="active",
        stripe_subscription_id=read(sub, "id"),
        next_payment_date=next_payment_after(now, frequency),
        donor=user,
        campaign=campaign,
        payment_count=0,
        total_paid_cents=0,
    )
    db.session.add(recurring)

    donation = Donation(
        amount_cents=amount_cents,
        currency=StripeGateway.currency(),
        payment_type="recurring",
        donor=user,
        campaign=campaign,
        recurring_donation=recurring,
        message=message,
        is_anonymous=is_anonymous,
        stripe_payment_intent_id=read(intent, "id") if intent else None,
        stripe_invoice_id=invoice_id,
        status="pending",
    )
    db.session.add(donation)

    if str(read(sub, "status") or "") in ("active", "trialing"):
        donation.transition("completed")
        recurring.record_payment(amount_cents, now)
        db.session.flush()
        _settle(campaign)

    return DonationResult(
        donation,
        recurring=recurring,
        client_secret=read(intent, "client_secret") if intent else None,
        intent_status=read(intent, "status") if intent else None,
    )


# =============================================================================
# Refunds
# =============================================================================
def refund_donation(donation: Donation, reason: Optional[str] = None) -> Donation:
    if donation.status != "completed":
        raise ApiError("Only completed donations can be refunded", 409, current_status=donation.status)

    if donation.stripe_payment_intent_id:
        StripeGateway.refund(donation.stripe_payment_intent_id, reason)

    donation.transition("refunded")
    donation.refund_reason = (reason or "")[:255] or None
    db.session.flush()
    _settle(donation.campaign)
    safe_commit()
    log.info("donation %s refunded", donation.id)
    return donation


# =============================================================================
# Recurring lifecycle
# =============================================================================
def pause_recurring(rd: RecurringDonation) -> RecurringDonation:
    rd.transition("paused")
    if rd.stripe_subscription_id:
        StripeGateway.pause(rd.stripe_subscription_id)
    safe_commit()
    return rd


def resume_recurring(rd: RecurringDonation) -> RecurringDonation:
    rd.transition("active")
    if rd.stripe_subscription_id:
        StripeGateway.resume(rd.stripe_subscription_id)
    safe_commit()
    return rd


def cancel_recurring(rd: RecurringDonation, *, remote: bool = True) -> RecurringDonation:
    rd.transition("cancelled")
    if remote and rd.stripe_subscription_id:
        StripeGateway.cancel(rd.stripe_subscription_id)
    _cancel_pending(rd)
    safe_commit()
    return rd


def _cancel_pending(rd: RecurringDonation) -> int:
    pending = Donation.query.filter_by(recurring_donation_id=rd.id, status="pending").all()
    for d in pending:
        d.transition("cancelled")
    return len(pending)


def update_recurring(
    rd: RecurringDonation, *, amount_cents: Optional[int] = None, frequency: Optional[str] = None
) -> RecurringDonation:
    if rd.status == "cancelled":
        raise ApiError("Cancelled recurring donations cannot be updated", 409)
    if frequency is not None and frequency not in RECURRING_FREQUENCIES:
        raise ApiError("Invalid recurring frequency", 400)

    new_amount = int(amount_cents) if amount_cents is not None else rd.amount_cents
    new_freq = frequency or rd.frequency
    if new_amount == rd.amount_cents and new_freq == rd.frequency:
        return rd

    if rd.stripe_subscription_id:
        StripeGateway.update_price(rd.stripe_subscription_id, amount_cents=new_amount, frequency=new_freq)

    if new_freq != rd.frequency:
        rd.frequency = new_freq
        rd.next_payment_date = next_payment_after(utcnow(), new_freq)
    rd.amount_cents = new_amount
    safe_commit()
    return rd


# =============================================================================
# Webhook transitions
# =============================================================================
def _ts(v: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(v), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError, OSError):
        return utcnow()


def _metadata_int(md: Dict[str, Any], *keys: str) -> Optional[int]:
    for k in keys:
        raw = str(md.get(k) or "").strip()
        if raw.isdigit():
            return int(raw)
    return None


def intent_succeeded(obj: Dict[str, Any]) -> Optional[Donation]:
    pi_id = str(obj.get("id") or "")
    md = obj.get("metadata") or {}
    donation = Donation.query.filter_by(stripe_payment_intent_id=pi_id).first() if pi_id else None

    if donation is None:
        if md.get("type") == "recurring_donation" or obj.get("invoice"):
            # invoice.payment_succeeded records subscription payments
            return None
        campaign_id = _metadata_int(md, "campaign_id", "campaignId")
        campaign = db.session.get(Campaign, campaign_id) if campaign_id else None
        if campaign is None:
            log.warning("payment_intent.succeeded %s has no known campaign; skipping", pi_id)
            return None
        user_id = _metadata_int(md, "user_id", "userId")
        donation = Donation(
            amount_cents=int(obj.get("amount_received") or obj.get("amount") or 0),
            currency=str(obj.get("currency") or "usd"),
            payment_type="one_time",
            donor_id=user_id if user_id and db.session.get(User, user_id) else None,
            campaign=campaign,
            stripe_payment_intent_id=pi_id,
            status="pending",
        )
        db.session.add(donation)

    if donation.status == "completed":
        return donation
    if not donation.can_transition("completed"):
        log.warning("ignoring payment success for donation %s in status %s", donation.id, donation.status)
        return donation
    donation.transition("completed")
    db.session.flush()
    _settle(donation.campaign)
    safe_commit()
    _announce(donation)
    return donation


def intent_failed(obj: Dict[str, Any]) -> Optional[Donation]:
    pi_id = str(obj.get("id") or "")
    donation = Donation.query.filter_by(stripe_payment_intent_id=pi_id).first() if pi_id else None
    if donation is None or donation.status == "failed":
        return donation
    if not donation.can_transition("failed"):
        log.warning("ignoring payment_failed for donation %s in status %s", donation.id, donation.status)
        return donation
    donation.transition("failed")
    safe_commit()
    return donation


def invoice_paid(obj: Dict[str, Any]) -> Optional[Donation]:
    sub_id = str(obj.get("subscription") or "")
    if not sub_id:
        return None
    rd = RecurringDonation.query.filter_by(stripe_subscription_id=sub_id).first()
    if rd is None:
        log.warning("invoice.payment_succeeded for unknown subscription %s", sub_id)
        return None

    invoice_id = str(obj.get("id") or "")
    amount_cents = int(obj.get("amount_paid") or rd.amount_cents)
    paid_at = _ts(obj.get("created"))

    donation = Donation.query.filter_by(stripe_invoice_id=invoice_id).first() if invoice_id else None
    if donation is not None and not donation.can_transition("completed"):
        return donation

    if donation is None:
        if obj.get("billing_reason") == "subscription_create" and rd.payment_count:
            return None
        pi = obj.get("payment_intent")
        donation = Donation(
            amount_cents=amount_cents,
            currency=str(obj.get("currency") or rd.currency),
            payment_type="recurring",
            donor_id=rd.donor_id,
            campaign_id=rd.campaign_id,
            recurring_donation=rd,
            stripe_invoice_id=invoice_id or None,
            stripe_payment_intent_id=pi if isinstance(pi, str) and pi else None,
            status="pending",
        )
        db.session.add(donation)

    donation.transition("completed")
    rd.record_payment(amount_cents, paid_at)
    db.session.flush()
    _settle(db.session.get(Campaign, rd.campaign_id))
    safe_commit()
    _announce(donation)
    return donation


def invoice_failed(obj: Dict[str, Any]) -> None:
    log.warning(
        "recurring payment failed: invoice=%s subscription=%s attempt=%s",
        obj.get("id"),
        obj.get("subscription"),
        obj.get("attempt_count"),
    )


def subscription_deleted(obj: Dict[str, Any]) -> Optional[RecurringDonation]:
    rd = RecurringDonation.query.filter_by(stripe_subscription_id=str(obj.get("id") or "")).first()
    if rd is None:
        return None
    if rd.status != "cancelled":
        rd.transition("cancelled")
    _cancel_pending(rd)
    safe_commit()
    return rd


def subscription_updated(obj: Dict[str, Any]) -> Optional[RecurringDonation]:
    rd = RecurringDonation.query.filter_by(stripe_subscription_id=str(obj.get("id") or "")).first()
    if rd is None or rd.status == "cancelled":
        return rd
    paused = bool(obj.get("pause_collection"))
    target = "paused" if paused else "active"
    if rd.status != target:
        rd.transition(target)
    period_end = obj.get("current_period_end")
    if target == "active" and period_end:
        rd.next_payment_date = _ts(period_end)
    safe_commit()
    log.info("subscription %s synced to %s", rd.stripe_subscription_id, rd.status)
    return rd


def charge_refunded(obj: Dict[str, Any]) -> Optional[Donation]:
    pi_id = str(obj.get("payment_intent") or "")
    donation = Donation.query.filter_by(stripe_payment_intent_id=pi_id).first() if pi_id else None
    if donation is None or donation.status != "completed":
        return donation
    refunded = int(obj.get("amount_refunded") or 0)
    charged = int(obj.get("amount") or donation.amount_cents)
    if not obj.get("refunded") and refunded < charged:
        log.info(
            "partial refund on %s: %d of %d cents, donation %s stays completed", pi_id, refunded, charged, donation.id
        )
        return donation
    donation.transition("refunded")
    donation.refund_reason = donation.refund_reason or "refunded via Stripe"
    db.session.flush()
    _settle(donation.campaign)
    safe_commit()
    return donation


WEBHOOK_HANDLERS = {
    "payment_intent.succeeded": intent_succeeded,
    "payment_intent.payment_failed": intent_failed,
    "invoice.payment_succeeded": invoice_paid,
    "invoice.payment_failed": invoice_failed,
    "customer.subscription.deleted": subscription_deleted,
    "customer.subscription.updated": subscription_updated,
    "charge.refunded": charge_refunded,
}


# =============================================================================
# Stats
# =============================================================================
def donor_stats(user: User) -> Dict[str, Any]:
    completed = sa.and_(Donation.donor_id == user.id, Donation.status == "completed")
    total = db.session.execute(
        sa.select(sa.func.coalesce(sa.func.sum(Donation.amount_cents), 0)).where(completed)
    ).scalar_one()
    campaigns = db.session.execute(
        sa.select(sa.func.count(sa.distinct(Donation.campaign_id))).where(completed)
    ).scalar_one()
    active_recurring = RecurringDonation.query.filter_by(donor_id=user.id, status="active").count()

    now = utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    this_month = db.session.execute(
        sa.select(sa.func.coalesce(sa.func.sum(Donation.amount_cents), 0)).where(
            completed, Donation.created_at >= month_start
        )
    ).scalar_one()

    return {
        "total_donated": round(int(total or 0) / 100.0, 2),
        "total_campaigns": int(campaigns or 0),
        "total_recurring": int(active_recurring),
        "this_month_donated": round(int(this_month or 0) / 100.0, 2),
    }


def recent_for_campaign(campaign_id: int, limit: int = 10) -> List[Donation]:
    return (
        Donation.query.filter_by(campaign_id=campaign_id, status="completed")
        .order_by(Donation.created_at.desc(), Donation.id.desc())
        .limit(limit)
        .all()
    )
