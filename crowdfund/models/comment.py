from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict

from sqlalchemy.orm import Mapped, mapped_column, relationship

from crowdfund.extensions import db

from .mixins import TimestampMixin, iso, utcnow

EDIT_WINDOW = timedelta(hours=24)


class Comment(db.Model, TimestampMixin):
    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(primary_key=True)
    content: Mapped[str] = mapped_column(db.Text, nullable=False)

    user_id: Mapped[int] = mapped_column(db.ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    user = relationship("User", back_populates="comments", lazy="joined")

    campaign_id: Mapped[int] = mapped_column(
        db.ForeignKey("campaigns.id", ondelete="CASCADE"), index=True, nullable=False
    )
    campaign = relationship("Campaign", back_populates="comments")

    @property
    def editable(self) -> bool:
        return bool(self.created_at) and utcnow() - self.created_at <= EDIT_WINDOW

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "campaign_id": self.campaign_id,
            "user": self.user.as_public() if self.user else None,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
