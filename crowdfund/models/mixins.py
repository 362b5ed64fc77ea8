# crowdfund/models/mixins.py
"""Shared SQLAlchemy mixins and time helpers."""

import calendar
from datetime import datetime, timezone

from sqlalchemy import event

from crowdfund.extensions import db


def utcnow() -> datetime:
    """Naive UTC now; all DateTime columns store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_months(dt: datetime, months: int) -> datetime:
    idx = dt.month - 1 + months
    year = dt.year + idx // 12
    month = idx % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def iso(dt):
    return dt.isoformat() if dt else None


class TimestampMixin:
    """Adds created_at and updated_at columns with auto-refresh behavior."""

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @staticmethod
    def _set_updated_at(mapper, connection, target):
        target.updated_at = utcnow()

    @classmethod
    def __declare_last__(cls):
        event.listen(cls, "before_update", cls._set_updated_at)
