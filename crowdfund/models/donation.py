from __future__ import annotations

# -----------------------------------------------------------------------------
# Donation Model
# Cents-based, Stripe-linked, with an explicit status lifecycle:
#   pending -> completed | failed | cancelled
#   completed -> refunded
# -----------------------------------------------------------------------------
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crowdfund.errors import InvalidTransition
from crowdfund.extensions import db

from .mixins import TimestampMixin, iso, utcnow

_TRANSITIONS = {
    "pending": {"completed", "failed", "cancelled"},
    "failed": {"completed"},
    "completed": {"refunded"},
    "refunded": set(),
    "cancelled": set(),
}


class Donation(db.Model, TimestampMixin):
    __tablename__ = "donations"
    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_donations_amount_positive"),
        Index("ix_donations_campaign_status", "campaign_id", "status"),
        Index("ix_donations_donor_created", "donor_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # ---- Financials (cents) ----
    amount_cents: Mapped[int] = mapped_column(db.Integer, nullable=False, doc="Donation amount in cents")
    currency: Mapped[str] = mapped_column(db.String(3), nullable=False, default="usd")
    status: Mapped[str] = mapped_column(
        db.String(20),
        nullable=False,
        default="pending",
        index=True,
        doc="pending / completed / failed / refunded / cancelled",
    )
    payment_type: Mapped[str] = mapped_column(
        db.String(20),
        nullable=False,
        default="one_time",
        doc="one_time / recurring",
    )

    # ---- Donor-facing ----
    message: Mapped[Optional[str]] = mapped_column(db.String(500), nullable=True)
    is_anonymous: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)

    # ---- Payment tracking (Stripe) ----
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(
        db.String(120),
        nullable=True,
        unique=True,
        index=True,
        doc="Stripe PaymentIntent ID (pi_...)",
    )
    stripe_invoice_id: Mapped[Optional[str]] = mapped_column(db.String(120), nullable=True, index=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)
    refund_reason: Mapped[Optional[str]] = mapped_column(db.String(255), nullable=True)

    # ---- Relationships ----
    donor_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("users.id", ondelete="SET NULL"), index=True, nullable=True
    )
    donor = relationship("User", back_populates="donations", foreign_keys=[donor_id], lazy="joined")

    campaign_id: Mapped[int] = mapped_column(db.ForeignKey("campaigns.id"), index=True, nullable=False)
    campaign = relationship("Campaign", back_populates="donations")

    recurring_donation_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("recurring_donations.id", ondelete="SET NULL"), index=True, nullable=True
    )
    recurring_donation = relationship("RecurringDonation", back_populates="donations")

    # ==========================================================
    # Computed Properties
    # ==========================================================
    @property
    def amount(self) -> float:
        return round((self.amount_cents or 0) / 100.0, 2)

    @property
    def is_recurring(self) -> bool:
        return self.payment_type == "recurring"

    @property
    def donor_display_name(self) -> str:
        if self.is_anonymous or not self.donor:
            return "Anonymous"
        return self.donor.name

    # ==========================================================
    # Lifecycle
    # ==========================================================
    def can_transition(self, target: str) -> bool:
        return target in _TRANSITIONS.get(self.status or "pending", set())

    def transition(self, target: str) -> None:
        if target == self.status:
            return
        if not self.can_transition(target):
            raise InvalidTransition("donation", self.status, target)
        self.status = target
        if target == "completed":
            self.completed_at = utcnow()
        elif target == "refunded":
            self.refunded_at = utcnow()

    # ==========================================================
    # Serialization
    # ==========================================================
    def as_dict(self, include_campaign: bool = False, public: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "amount": self.amount,
            "amount_cents": int(self.amount_cents or 0),
            "currency": self.currency,
            "status": self.status,
            "payment_type": self.payment_type,
            "is_recurring": self.is_recurring,
            "is_anonymous": bool(self.is_anonymous),
            "message": self.message,
            "campaign_id": self.campaign_id,
            "donor_name": self.donor_display_name,
            "created_at": iso(self.created_at),
        }
        if not public:
            data.update(
                {
                    "donor_id": self.donor_id,
                    "recurring_donation_id": self.recurring_donation_id,
                    "stripe_payment_intent_id": self.stripe_payment_intent_id,
                    "completed_at": iso(self.completed_at),
                    "refunded_at": iso(self.refunded_at),
                    "refund_reason": self.refund_reason,
                }
            )
        if include_campaign and self.campaign:
            data["campaign"] = {
                "id": self.campaign.id,
                "title": self.campaign.title,
                "image_url": self.campaign.image_url,
                "status": self.campaign.status,
            }
        return data

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Donation {self.id} ${self.amount:,.2f} {self.status}>"
