from __future__ import annotations

# -----------------------------------------------------------------------------
# Campaign Model
# Cents-based goal/raised, moderation status, and a raised total that is
# always recomputed from completed donations.
# -----------------------------------------------------------------------------
from datetime import datetime
from typing import Any, Dict, Optional

import sqlalchemy as sa
from sqlalchemy import CheckConstraint, Index, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crowdfund.extensions import db
from crowdfund.validation import calculate_percentage

from .mixins import TimestampMixin, iso


class Campaign(db.Model, TimestampMixin):
    __tablename__ = "campaigns"
    __table_args__ = (
        CheckConstraint("goal_cents >= 0", name="ck_campaigns_goal_nonneg"),
        CheckConstraint("current_cents >= 0", name="ck_campaigns_current_nonneg"),
        Index("ix_campaigns_status_created", "status", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(db.String(200), nullable=False)
    description: Mapped[str] = mapped_column(db.Text, nullable=False)
    category: Mapped[str] = mapped_column(db.String(40), nullable=False, default="other", index=True)
    location: Mapped[Optional[str]] = mapped_column(db.String(160), nullable=True, index=True)
    image_url: Mapped[Optional[str]] = mapped_column(db.String(500), nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)

    goal_cents: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    current_cents: Mapped[int] = mapped_column(
        db.Integer,
        nullable=False,
        default=0,
        doc="Sum of completed donations (cents); maintained by recalculate_raised()",
    )
    status: Mapped[str] = mapped_column(
        db.String(20),
        nullable=False,
        default="pending",
        index=True,
        doc="pending / draft / active / completed / paused / cancelled",
    )

    owner_id: Mapped[int] = mapped_column(db.ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    owner = relationship("User", back_populates="campaigns", lazy="joined")

    donations = relationship("Donation", back_populates="campaign", order_by="Donation.created_at.desc()")
    recurring_donations = relationship(
        "RecurringDonation", back_populates="campaign", cascade="all, delete-orphan"
    )
    comments = relationship(
        "Comment", back_populates="campaign", cascade="all, delete-orphan", order_by="Comment.created_at.desc()"
    )
    stories = relationship(
        "ImpactStory",
        back_populates="campaign",
        cascade="all, delete-orphan",
        order_by="ImpactStory.created_at.desc()",
    )
    verifications = relationship(
        "Verification",
        back_populates="campaign",
        cascade="all, delete-orphan",
        order_by="Verification.created_at.desc(), Verification.id.desc()",
    )
    fraud_reports = relationship("FraudReport", back_populates="campaign", cascade="all, delete-orphan")

    # ==========================================================
    # Computed Properties
    # ==========================================================
    @property
    def goal_amount(self) -> float:
        return round((self.goal_cents or 0) / 100.0, 2)

    @property
    def current_amount(self) -> float:
        return round((self.current_cents or 0) / 100.0, 2)

    @property
    def percent_raised(self) -> float:
        return calculate_percentage(self.current_cents or 0, self.goal_cents or 0)

    @property
    def latest_verification(self):
        from .verification import Verification

        if self.id is None:
            return None
        return db.session.execute(
            sa.select(Verification)
            .where(Verification.campaign_id == self.id)
            .order_by(Verification.created_at.desc(), Verification.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    @property
    def verification_status(self) -> str:
        v = self.latest_verification
        return v.status if v else "pending"

    @property
    def is_verified(self) -> bool:
        return self.verification_status == "verified"

    @property
    def accepts_donations(self) -> bool:
        return self.status == "active"

    # ==========================================================
    # Mutators
    # ==========================================================
    def set_goal_dollars(self, dollars: float) -> None:
        self.goal_cents = int(round(float(dollars or 0) * 100))

    def recalculate_raised(self) -> int:
        """Recompute current_cents from completed donations."""
        from .donation import Donation  # avoid circular import

        total = db.session.execute(
            sa.select(sa.func.coalesce(sa.func.sum(Donation.amount_cents), 0)).where(
                Donation.campaign_id == self.id,
                Donation.status == "completed",
            )
        ).scalar_one()
        self.current_cents = int(total or 0)
        return self.current_cents

    # ==========================================================
    # Serialization
    # ==========================================================
    def as_dict(self, include_owner: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "location": self.location,
            "image_url": self.image_url,
            "status": self.status,
            "goal_amount": self.goal_amount,
            "current_amount": self.current_amount,
            "goal_cents": int(self.goal_cents or 0),
            "current_cents": int(self.current_cents or 0),
            "percent_raised": self.percent_raised,
            "is_verified": self.is_verified,
            "end_date": iso(self.end_date),
            "owner_id": self.owner_id,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_owner and self.owner:
            data["owner"] = self.owner.as_public()
        return data

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Campaign {self.id} {self.title!r} {self.status}>"


@event.listens_for(Campaign, "before_insert")
@event.listens_for(Campaign, "before_update")
def _campaign_before_save(mapper, connection, target: Campaign) -> None:
    target.goal_cents = max(0, int(target.goal_cents or 0))
    target.current_cents = max(0, int(target.current_cents or 0))
