from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import Index
from sqlalchemy.orm import Mapped, mapped_column

from crowdfund.extensions import db
from crowdfund.models.mixins import TimestampMixin


class StripeEvent(db.Model, TimestampMixin):
    """Every webhook event we accepted, keyed by Stripe's event id for idempotency."""

    __tablename__ = "stripe_events"
    __table_args__ = (Index("ix_stripe_events_type_created", "type", "created_at"),)

    id: Mapped[int] = mapped_column(primary_key=True)

    event_id: Mapped[str] = mapped_column(
        db.String(120),
        unique=True,
        index=True,
        nullable=False,
        doc="Stripe event id (evt_...)",
    )
    type: Mapped[str] = mapped_column(db.String(120), index=True, nullable=False)
    livemode: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    object_id: Mapped[Optional[str]] = mapped_column(
        db.String(120),
        nullable=True,
        index=True,
        doc="pi_..., in_..., sub_... or ch_... depending on event type",
    )
    payload: Mapped[Optional[Dict[str, Any]]] = mapped_column(db.JSON, nullable=True)
