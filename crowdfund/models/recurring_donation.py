from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crowdfund.errors import InvalidTransition
from crowdfund.extensions import db

from .mixins import TimestampMixin, add_months, iso, utcnow

# frequency -> (stripe interval, interval_count, months)
FREQUENCY_INTERVALS: Dict[str, Tuple[str, int, int]] = {
    "monthly": ("month", 1, 1),
    "quarterly": ("month", 3, 3),
    "annually": ("year", 1, 12),
}

_TRANSITIONS = {
    "active": {"paused", "cancelled"},
    "paused": {"active", "cancelled"},
    "cancelled": set(),
}


def next_payment_after(start: datetime, frequency: str) -> datetime:
    months = FREQUENCY_INTERVALS[frequency][2]
    return add_months(start, months)


class RecurringDonation(db.Model, TimestampMixin):
    """A scheduled repeating donation backed by a Stripe subscription."""

    __tablename__ = "recurring_donations"
    __table_args__ = (CheckConstraint("amount_cents > 0", name="ck_recurring_amount_positive"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    amount_cents: Mapped[int] = mapped_column(db.Integer, nullable=False)
    currency: Mapped[str] = mapped_column(db.String(3), nullable=False, default="usd")
    frequency: Mapped[str] = mapped_column(db.String(20), nullable=False, doc="monthly / quarterly / annually")
    status: Mapped[str] = mapped_column(db.String(20), nullable=False, default="active", index=True)

    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(
        db.String(120), unique=True, index=True, nullable=True, doc="Stripe subscription id (sub_...)"
    )
    next_payment_date: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)
    payment_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    total_paid_cents: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    paused_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)

    donor_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("users.id", ondelete="SET NULL"), index=True, nullable=True
    )
    donor = relationship("User", back_populates="recurring_donations")

    campaign_id: Mapped[int] = mapped_column(db.ForeignKey("campaigns.id"), index=True, nullable=False)
    campaign = relationship("Campaign", back_populates="recurring_donations")

    donations = relationship("Donation", back_populates="recurring_donation")

    @property
    def amount(self) -> float:
        return round((self.amount_cents or 0) / 100.0, 2)

    # ---- Lifecycle ----
    def transition(self, target: str) -> None:
        if target not in _TRANSITIONS.get(self.status, set()):
            raise InvalidTransition("recurring donation", self.status, target)
        self.status = target
        now = utcnow()
        if target == "paused":
            self.paused_at = now
        elif target == "active":
            self.paused_at = None
            if not self.next_payment_date or self.next_payment_date < now:
                self.next_payment_date = next_payment_after(now, self.frequency)
        elif target == "cancelled":
            self.cancelled_at = now
            self.next_payment_date = None

    def record_payment(self, amount_cents: int, paid_at: Optional[datetime] = None) -> None:
        paid_at = paid_at or utcnow()
        self.payment_count = int(self.payment_count or 0) + 1
        self.total_paid_cents = int(self.total_paid_cents or 0) + int(amount_cents)
        self.next_payment_date = next_payment_after(paid_at, self.frequency)

    def as_dict(self, include_campaign: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "amount": self.amount,
            "amount_cents": int(self.amount_cents or 0),
            "currency": self.currency,
            "frequency": self.frequency,
            "status": self.status,
            "next_payment_date": iso(self.next_payment_date),
            "payment_count": int(self.payment_count or 0),
            "total_paid": round((self.total_paid_cents or 0) / 100.0, 2),
            "stripe_subscription_id": self.stripe_subscription_id,
            "donor_id": self.donor_id,
            "campaign_id": self.campaign_id,
            "created_at": iso(self.created_at),
        }
        if include_campaign and self.campaign:
            data["campaign"] = {"id": self.campaign.id, "title": self.campaign.title}
        return data

    def __repr__(self) -> str:  # pragma: no cover
        return f"<RecurringDonation {self.id} {self.frequency} {self.status}>"
