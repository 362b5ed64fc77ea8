from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.orm import Mapped, mapped_column, relationship

from crowdfund.extensions import db

from .mixins import TimestampMixin, iso


class Verification(db.Model, TimestampMixin):
    """One admin review decision on a campaign; the newest row is authoritative."""

    __tablename__ = "verifications"

    id: Mapped[int] = mapped_column(primary_key=True)
    status: Mapped[str] = mapped_column(db.String(20), nullable=False, index=True, doc="pending / verified / rejected")
    notes: Mapped[Optional[str]] = mapped_column(db.Text, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(db.Text, nullable=True)

    campaign_id: Mapped[int] = mapped_column(
        db.ForeignKey("campaigns.id", ondelete="CASCADE"), index=True, nullable=False
    )
    campaign = relationship("Campaign", back_populates="verifications")

    verified_by_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("users.id", ondelete="SET NULL"), index=True, nullable=True
    )
    verified_by = relationship("User")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "notes": self.notes,
            "reason": self.reason,
            "campaign_id": self.campaign_id,
            "verified_by": self.verified_by.as_public() if self.verified_by else None,
            "created_at": iso(self.created_at),
        }
