from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crowdfund.extensions import db

from .mixins import TimestampMixin, iso


class FraudReport(db.Model, TimestampMixin):
    __tablename__ = "fraud_reports"
    __table_args__ = (UniqueConstraint("campaign_id", "reporter_id", name="uq_fraud_reports_campaign_reporter"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    reason: Mapped[str] = mapped_column(db.String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(db.String(1000), nullable=True)
    status: Mapped[str] = mapped_column(
        db.String(20), nullable=False, default="open", index=True, doc="open / investigating / resolved / dismissed"
    )
    resolution: Mapped[Optional[str]] = mapped_column(db.Text, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)

    campaign_id: Mapped[int] = mapped_column(
        db.ForeignKey("campaigns.id", ondelete="CASCADE"), index=True, nullable=False
    )
    campaign = relationship("Campaign", back_populates="fraud_reports")

    reporter_id: Mapped[int] = mapped_column(
        db.ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    reporter = relationship("User", back_populates="fraud_reports", foreign_keys=[reporter_id])

    reviewed_by_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    reviewed_by = relationship("User", foreign_keys=[reviewed_by_id])

    def as_dict(self, include_email: bool = False) -> Dict[str, Any]:
        reporter: Optional[Dict[str, Any]] = None
        if self.reporter:
            reporter = self.reporter.as_public()
            if include_email:
                reporter["email"] = self.reporter.email
        return {
            "id": self.id,
            "reason": self.reason,
            "description": self.description,
            "status": self.status,
            "resolution": self.resolution,
            "campaign_id": self.campaign_id,
            "campaign": {
                "id": self.campaign.id,
                "title": self.campaign.title,
                "status": self.campaign.status,
            }
            if self.campaign
            else None,
            "reporter": reporter,
            "reviewed_by": self.reviewed_by.as_public() if self.reviewed_by else None,
            "reviewed_at": iso(self.reviewed_at),
            "created_at": iso(self.created_at),
        }
