from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.orm import Mapped, mapped_column, relationship

from crowdfund.extensions import db

from .mixins import TimestampMixin, iso


class ImpactStory(db.Model, TimestampMixin):
    """An update posted by a campaign owner about what donations achieved."""

    __tablename__ = "impact_stories"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(db.String(200), nullable=False)
    content: Mapped[str] = mapped_column(db.Text, nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(db.String(500), nullable=True)

    campaign_id: Mapped[int] = mapped_column(
        db.ForeignKey("campaigns.id", ondelete="CASCADE"), index=True, nullable=False
    )
    campaign = relationship("Campaign", back_populates="stories")

    author_id: Mapped[Optional[int]] = mapped_column(
        db.ForeignKey("users.id", ondelete="SET NULL"), index=True, nullable=True
    )
    author = relationship("User")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "image_url": self.image_url,
            "campaign_id": self.campaign_id,
            "campaign": {"id": self.campaign.id, "title": self.campaign.title} if self.campaign else None,
            "author": self.author.as_public() if self.author else None,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
