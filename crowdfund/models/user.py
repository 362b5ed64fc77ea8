from __future__ import annotations

"""
User model: credentials, role and Stripe customer link.
"""
from typing import Any, Dict, Optional

from flask_login import UserMixin
from sqlalchemy.orm import Mapped, mapped_column, relationship
from werkzeug.security import check_password_hash, generate_password_hash

from crowdfund.extensions import db

from .mixins import TimestampMixin, iso


class User(db.Model, UserMixin, TimestampMixin):
    __tablename__ = "users"

    # ── Identity ────────────────────────────────────────────────
    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(
        db.String(255),
        unique=True,
        nullable=False,
        index=True,
        doc="Stored lower-case",
    )
    name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    image: Mapped[Optional[str]] = mapped_column(db.String(500), nullable=True)

    # ── Auth ────────────────────────────────────────────────────
    password_hash: Mapped[str] = mapped_column(
        db.String(255),
        nullable=False,
        doc="Hashed password (never store plaintext)",
    )
    role: Mapped[str] = mapped_column(
        db.String(20),
        nullable=False,
        default="donor",
        index=True,
        doc="donor / creator / admin",
    )
    active: Mapped[bool] = mapped_column(
        db.Boolean,
        nullable=False,
        default=True,
        doc="Account enabled/disabled (soft ban)",
    )

    # ── Payments ────────────────────────────────────────────────
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        db.String(120),
        nullable=True,
        index=True,
        doc="Stripe customer id (cus_...)",
    )

    # ── Relationships ───────────────────────────────────────────
    campaigns = relationship(
        "Campaign", back_populates="owner", cascade="all, delete-orphan", order_by="Campaign.created_at.desc()"
    )
    donations = relationship("Donation", back_populates="donor", foreign_keys="Donation.donor_id")
    recurring_donations = relationship("RecurringDonation", back_populates="donor")
    comments = relationship("Comment", back_populates="user", cascade="all, delete-orphan")
    fraud_reports = relationship(
        "FraudReport", back_populates="reporter", cascade="all, delete-orphan", foreign_keys="FraudReport.reporter_id"
    )
    notification_settings = relationship(
        "NotificationSettings", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )

    # ── Auth helpers ────────────────────────────────────────────
    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_active(self) -> bool:  # type: ignore[override]
        return bool(self.active)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def get_id(self) -> str:  # type: ignore[override]
        return str(self.id)

    # ── Serialization ───────────────────────────────────────────
    def as_dict(self, include_email: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "image": self.image,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
        }
        if include_email:
            data["email"] = self.email
        return data

    def as_public(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "image": self.image}

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User {self.email} ({self.role})>"
