"""
Pytest configuration and shared fixtures.

Fixtures available to all tests:
  • app / client : TestingConfig app (in-memory SQLite) + test client
  • make_user(...) : create a user, returns its id
  • make_campaign(...) : create a campaign, returns its id
  • make_donation(...) : create a donation row directly, returns its id
  • auth_headers(user_id) : Bearer JWT headers for a user
  • fake_stripe : monkeypatched Stripe SDK that records every call

No fixture keeps an app context pushed across requests, so each test-client
request gets a fresh `g`.
"""

from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional, Tuple

import pytest
import stripe

from crowdfund import create_app
from crowdfund.config import TestingConfig
from crowdfund.extensions import db
from crowdfund.models import Campaign, Donation, User, Verification
from crowdfund.security import issue_token

PASSWORD = "Password123"
DESCRIPTION = (
    "A long enough description explaining what this campaign raises money for and why it matters."
)


# ---------------------------------------------------------------------------
# App + client
# ---------------------------------------------------------------------------

@pytest.fixture
def app(tmp_path):
    app = create_app(TestingConfig)
    app.config["UPLOAD_FOLDER"] = str(tmp_path / "uploads")
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def _make(
        role: str = "donor",
        email: Optional[str] = None,
        name: Optional[str] = None,
        password: str = PASSWORD,
        active: bool = True,
    ) -> int:
        with app.app_context():
            user = User(
                email=email or f"user{next(counter)}@example.com",
                name=name or "Test User",
                role=role,
                active=active,
            )
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            return user.id

    return _make


@pytest.fixture
def make_campaign(app):
    def _make(
        owner_id: int,
        status: str = "active",
        goal: float = 1000,
        title: str = "Community Garden Fund",
        category: str = "community",
        verified: bool = False,
        **extra: Any,
    ) -> int:
        with app.app_context():
            campaign = Campaign(
                title=title,
                description=DESCRIPTION,
                category=category,
                status=status,
                owner_id=owner_id,
                current_cents=0,
                **extra,
            )
            campaign.set_goal_dollars(goal)
            db.session.add(campaign)
            if verified:
                db.session.add(Verification(status="verified", campaign=campaign))
            db.session.commit()
            return campaign.id

    return _make


@pytest.fixture
def make_donation(app):
    def _make(
        donor_id: Optional[int],
        campaign_id: int,
        amount_cents: int = 5000,
        status: str = "completed",
        **extra: Any,
    ) -> int:
        with app.app_context():
            donation = Donation(
                donor_id=donor_id,
                campaign_id=campaign_id,
                amount_cents=amount_cents,
                status=status,
                **extra,
            )
            db.session.add(donation)
            db.session.flush()
            db.session.get(Campaign, campaign_id).recalculate_raised()
            db.session.commit()
            return donation.id

    return _make


@pytest.fixture
def auth_headers(app):
    def _headers(user_id: int) -> Dict[str, str]:
        with app.app_context():
            return {"Authorization": f"Bearer {issue_token(db.session.get(User, user_id))}"}

    return _headers


@pytest.fixture
def fetch(app):
    """Read a row back in its own app context; returns the detached instance."""

    def _fetch(model, ident):
        with app.app_context():
            obj = db.session.get(model, ident)
            if obj is not None:
                db.session.expunge(obj)
            return obj

    return _fetch


# ---------------------------------------------------------------------------
# Stripe double
# ---------------------------------------------------------------------------

class FakeStripe:
    """Stands in for the Stripe SDK classmethods the gateway calls."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Any, Dict[str, Any]]] = []
        self.intent_status = "succeeded"
        self.subscription_status = "active"
        self.fail: set = set()
        self._ids = itertools.count(1)

    def _record(self, name: str, /, *args: Any, **kwargs: Any) -> None:
        self.calls.append((name, args, kwargs))
        if name in self.fail:
            raise stripe.StripeError("Your card was declined.")

    def _id(self, prefix: str) -> str:
        return f"{prefix}_test_{next(self._ids)}"

    def named(self, name: str) -> List[Tuple[Any, Dict[str, Any]]]:
        return [(a, kw) for n, a, kw in self.calls if n == name]

    # ---- SDK surface ----
    def customer_create(self, **kwargs: Any) -> Dict[str, Any]:
        self._record("Customer.create", **kwargs)
        return {"id": self._id("cus")}

    def intent_create(self, **kwargs: Any) -> Dict[str, Any]:
        self._record("PaymentIntent.create", **kwargs)
        pi = self._id("pi")
        return {"id": pi, "status": self.intent_status, "client_secret": f"{pi}_secret"}

    def product_create(self, **kwargs: Any) -> Dict[str, Any]:
        self._record("Product.create", **kwargs)
        return {"id": self._id("prod")}

    def subscription_create(self, **kwargs: Any) -> Dict[str, Any]:
        self._record("Subscription.create", **kwargs)
        pi = self._id("pi")
        return {
            "id": self._id("sub"),
            "status": self.subscription_status,
            "latest_invoice": {
                "id": self._id("in"),
                "payment_intent": {"id": pi, "status": "succeeded", "client_secret": f"{pi}_secret"},
            },
        }

    def subscription_modify(self, subscription_id: str, **kwargs: Any) -> Dict[str, Any]:
        self._record("Subscription.modify", subscription_id, **kwargs)
        return {"id": subscription_id}

    def subscription_cancel(self, subscription_id: str, **kwargs: Any) -> Dict[str, Any]:
        self._record("Subscription.cancel", subscription_id, **kwargs)
        return {"id": subscription_id, "status": "canceled"}

    def subscription_retrieve(self, subscription_id: str, **kwargs: Any) -> Dict[str, Any]:
        self._record("Subscription.retrieve", subscription_id, **kwargs)
        return {"id": subscription_id, "items": {"data": [{"id": "si_test_1", "price": {"product": "prod_test_1"}}]}}

    def refund_create(self, **kwargs: Any) -> Dict[str, Any]:
        self._record("Refund.create", **kwargs)
        return {"id": self._id("re"), "status": "succeeded"}


@pytest.fixture
def fake_stripe(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr(stripe.Customer, "create", fake.customer_create)
    monkeypatch.setattr(stripe.PaymentIntent, "create", fake.intent_create)
    monkeypatch.setattr(stripe.Product, "create", fake.product_create)
    monkeypatch.setattr(stripe.Subscription, "create", fake.subscription_create)
    monkeypatch.setattr(stripe.Subscription, "modify", fake.subscription_modify)
    monkeypatch.setattr(stripe.Subscription, "cancel", fake.subscription_cancel)
    monkeypatch.setattr(stripe.Subscription, "retrieve", fake.subscription_retrieve)
    monkeypatch.setattr(stripe.Refund, "create", fake.refund_create)
    return fake
