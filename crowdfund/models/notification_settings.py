from __future__ import annotations

from typing import Any, Dict

from sqlalchemy.orm import Mapped, mapped_column, relationship

from crowdfund.extensions import db

from .mixins import TimestampMixin

PREFERENCE_FIELDS = (
    "email_notifications",
    "campaign_updates",
    "donation_alerts",
    "marketing_emails",
    "weekly_digest",
)


class NotificationSettings(db.Model, TimestampMixin):
    __tablename__ = "notification_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        db.ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True, nullable=False
    )
    user = relationship("User", back_populates="notification_settings")

    email_notifications: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    campaign_updates: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    donation_alerts: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    marketing_emails: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    weekly_digest: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)

    @classmethod
    def for_user(cls, user_id: int) -> "NotificationSettings":
        """Return the user's settings row, adding a default one to the session if missing."""
        row = cls.query.filter_by(user_id=user_id).first()
        if row is None:
            row = cls(
                user_id=user_id,
                email_notifications=True,
                campaign_updates=True,
                donation_alerts=True,
                marketing_emails=False,
                weekly_digest=True,
            )
            db.session.add(row)
        return row

    def as_dict(self) -> Dict[str, Any]:
        return {f: bool(getattr(self, f)) for f in PREFERENCE_FIELDS}
