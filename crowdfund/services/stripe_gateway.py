"""
Stripe gateway: every call the platform makes to Stripe goes through here.

All methods raise PaymentError on stripe.StripeError so routes can return the
uniform "Payment processing failed" response.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import stripe
from flask import current_app

from crowdfund.errors import ApiError, PaymentError
from crowdfund.extensions import db
from crowdfund.models import Campaign, User
from crowdfund.models.recurring_donation import FREQUENCY_INTERVALS

log = logging.getLogger(__name__)


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    try:
        return obj[key]
    except (KeyError, TypeError, AttributeError):
        return getattr(obj, key, default)


class StripeGateway:
    @staticmethod
    def is_configured() -> bool:
        sk = str(current_app.config.get("STRIPE_SECRET_KEY") or "")
        return sk.startswith(("sk_", "rk_"))

    @staticmethod
    def currency() -> str:
        return str(current_app.config.get("DEFAULT_CURRENCY") or "usd").lower()

    @staticmethod
    def ensure_customer(user: User) -> str:
        """Return the user's Stripe customer id, creating the customer on first use."""
        if user.stripe_customer_id:
            return user.stripe_customer_id
        try:
            customer = stripe.Customer.create(
                email=user.email,
                name=user.name,
                metadata={"user_id": str(user.id)},
            )
        except stripe.StripeError as e:
            log.error("Stripe customer create failed for user %s: %s", user.id, e)
            raise PaymentError(getattr(e, "user_message", None) or str(e)) from e
        user.stripe_customer_id = _get(customer, "id")
        db.session.flush()
        return user.stripe_customer_id

    # ----------------------------
    # One-time payments
    # ----------------------------
    @staticmethod
    def charge_now(
        *,
        customer_id: str,
        amount_cents: int,
        campaign: Campaign,
        user: User,
        payment_method_id: Optional[str],
        return_url: Optional[str] = None,
    ) -> Any:
        """Create and confirm a PaymentIntent in one step (manual confirmation)."""
        params: Dict[str, Any] = {
            "amount": int(amount_cents),
            "currency": StripeGateway.currency(),
            "customer": customer_id,
            "confirmation_method": "manual",
            "confirm": True,
            "metadata": {
                "campaign_id": str(campaign.id),
                "user_id": str(user.id),
                "campaign_title": campaign.title[:200],
                "donor_name": user.name,
                "type": "one_time_donation",
            },
        }
        if payment_method_id:
            params["payment_method"] = payment_method_id
        if return_url:
            params["return_url"] = return_url
        try:
            return stripe.PaymentIntent.create(**params)
        except stripe.StripeError as e:
            log.error("Stripe one-time charge failed: %s", e)
            raise PaymentError(getattr(e, "user_message", None) or str(e)) from e

    @staticmethod
    def create_checkout_intent(
        *, customer_id: str, amount_cents: int, campaign: Campaign, user: User, idempotency_key: str
    ) -> Any:
        """PaymentIntent for client-side confirmation with Stripe Elements."""
        try:
            return stripe.PaymentIntent.create(
                amount=int(amount_cents),
                currency=StripeGateway.currency(),
                customer=customer_id,
                automatic_payment_methods={"enabled": True},
                metadata={
                    "campaign_id": str(campaign.id),
                    "user_id": str(user.id),
                    "campaign_title": campaign.title[:200],
                    "donor_name": user.name,
                    "type": "one_time_donation",
                },
                description=f"Donation to {campaign.title}"[:500],
                receipt_email=user.email,
                setup_future_usage="off_session",
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            log.error("Stripe intent create failed: %s", e)
            raise PaymentError(getattr(e, "user_message", None) or str(e)) from e

    @staticmethod
    def refund(payment_intent_id: str, reason: Optional[str] = None) -> Any:
        params: Dict[str, Any] = {"payment_intent": payment_intent_id}
        if reason in ("duplicate", "fraudulent", "requested_by_customer"):
            params["reason"] = reason
        try:
            return stripe.Refund.create(**params)
        except stripe.StripeError as e:
            log.error("Stripe refund failed for %s: %s", payment_intent_id, e)
            raise PaymentError(getattr(e, "user_message", None) or str(e)) from e

    # ----------------------------
    # Subscriptions
    # ----------------------------
    @staticmethod
    def _price_data(product_id: str, amount_cents: int, frequency: str) -> Dict[str, Any]:
        interval, count, _ = FREQUENCY_INTERVALS[frequency]
        return {
            "currency": StripeGateway.currency(),
            "product": product_id,
            "unit_amount": int(amount_cents),
            "recurring": {"interval": interval, "interval_count": count},
        }

    @staticmethod
    def subscribe(
        *,
        customer_id: str,
        amount_cents: int,
        frequency: str,
        campaign: Campaign,
        user: User,
        payment_method_id: Optional[str],
    ) -> Any:
        try:
            product = stripe.Product.create(
                name=f"Recurring donation to {campaign.title}"[:250],
                metadata={"campaign_id": str(campaign.id), "user_id": str(user.id)},
            )
            params: Dict[str, Any] = {
                "customer": customer_id,
                "items": [{"price_data": StripeGateway._price_data(_get(product, "id"), amount_cents, frequency)}],
                "expand": ["latest_invoice.payment_intent"],
                "metadata": {
                    "campaign_id": str(campaign.id),
                    "user_id": str(user.id),
                    "type": "recurring_donation",
                },
            }
            if payment_method_id:
                params["default_payment_method"] = payment_method_id
            return stripe.Subscription.create(**params)
        except stripe.StripeError as e:
            log.error("Stripe subscription create failed: %s", e)
            raise PaymentError(getattr(e, "user_message", None) or str(e)) from e

    @staticmethod
    def pause(subscription_id: str) -> Any:
        return StripeGateway._modify(subscription_id, pause_collection={"behavior": "mark_uncollectible"})

    @staticmethod
    def resume(subscription_id: str) -> Any:
        return StripeGateway._modify(subscription_id, pause_collection="")

    @staticmethod
    def cancel(subscription_id: str) -> Any:
        try:
            return stripe.Subscription.cancel(subscription_id)
        except stripe.StripeError as e:
            log.error("Stripe subscription cancel failed for %s: %s", subscription_id, e)
            raise PaymentError(getattr(e, "user_message", None) or str(e)) from e

    @staticmethod
    def update_price(subscription_id: str, *, amount_cents: int, frequency: str) -> Any:
        try:
            sub = stripe.Subscription.retrieve(subscription_id)
            items = _get(_get(sub, "items"), "data") or []
            if not items:
                raise ApiError("Subscription has no items to update", 409)
            item = items[0]
            product_id = _get(_get(item, "price"), "product")
            return stripe.Subscription.modify(
                subscription_id,
                items=[
                    {
                        "id": _get(item, "id"),
                        "price_data": StripeGateway._price_data(product_id, amount_cents, frequency),
                    }
                ],
                proration_behavior="none",
            )
        except stripe.StripeError as e:
            log.error("Stripe subscription update failed for %s: %s", subscription_id, e)
            raise PaymentError(getattr(e, "user_message", None) or str(e)) from e

    @staticmethod
    def _modify(subscription_id: str, **params: Any) -> Any:
        try:
            return stripe.Subscription.modify(subscription_id, **params)
        except stripe.StripeError as e:
            log.error("Stripe subscription modify failed for %s: %s", subscription_id, e)
            raise PaymentError(getattr(e, "user_message", None) or str(e)) from e

    # ----------------------------
    # Webhooks
    # ----------------------------
    @staticmethod
    def parse_event(payload: bytes, signature: str) -> Dict[str, Any]:
        """Verify the Stripe signature and return the event as a plain dict.

        Without STRIPE_WEBHOOK_SECRET (dev/test only) the raw JSON is trusted.
        """
        secret = str(current_app.config.get("STRIPE_WEBHOOK_SECRET") or "").strip()
        if not secret:
            if current_app.config.get("ENV") == "production":
                raise ApiError("Webhook secret not configured", 400)
            try:
                return json.loads(payload.decode("utf-8"))
            except ValueError as e:
                raise ApiError("Invalid payload", 400) from e

        try:
            stripe.Webhook.construct_event(payload, signature, secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise ApiError("Invalid signature", 400) from e
        return json.loads(payload.decode("utf-8"))


def read(obj: Any, key: str, default: Any = None) -> Any:
    """Dict-or-StripeObject field access."""
    return _get(obj, key, default)
