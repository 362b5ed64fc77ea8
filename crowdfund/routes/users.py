"""
User management, profile, activity feed, and notification preferences.

Mounted twice by create_app():
  bp                -> /api/users
  notifications_bp  -> /api/notifications
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List

import sqlalchemy as sa
from flask import Blueprint, current_app

from crowdfund.constants import NOTIFICATION_TYPES, USER_ROLES
from crowdfund.errors import ApiError
from crowdfund.extensions import db, safe_commit
from crowdfund.models import (
    Campaign,
    Comment,
    Donation,
    FraudReport,
    ImpactStory,
    NotificationSettings,
    User,
    Verification,
)
from crowdfund.models.mixins import iso, utcnow
from crowdfund.models.notification_settings import PREFERENCE_FIELDS
from crowdfund.routes.api_utils import get_or_404, json_ok
from crowdfund.security import current_account, is_service_request, require_account, require_admin
from crowdfund.services.notifications import notify_user
from crowdfund.validation import (
    arg,
    is_valid_email,
    page_args,
    pagination,
    pick,
    request_payload,
    require_id,
    sanitize_input,
    to_int,
    truthy,
)

bp = Blueprint("users", __name__)
notifications_bp = Blueprint("notifications", __name__)


def _self_or_admin(user: User, target_id: int) -> None:
    if user.id != target_id and not user.is_admin:
        raise ApiError("You can only access your own account", 403)


def _count(model: Any, *criteria: Any) -> int:
    return int(db.session.execute(sa.select(sa.func.count(model.id)).where(*criteria)).scalar_one() or 0)


def _profile(user: User) -> Dict[str, Any]:
    data = user.as_dict()
    data["counts"] = {
        "campaigns": _count(Campaign, Campaign.owner_id == user.id),
        "donations": _count(Donation, Donation.donor_id == user.id),
        "comments": _count(Comment, Comment.user_id == user.id),
    }
    return data


def _validated_name(raw: Any) -> str:
    name = sanitize_input(raw)
    if len(name) < 2 or len(name) > 100:
        raise ApiError("Name must be between 2 and 100 characters", 400)
    return name


# =============================================================================
# /api/users
# =============================================================================
@bp.get("")
def get_users():
    user = require_account()
    target_id = to_int(arg("user_id", "userId"))
    if target_id is not None:
        _self_or_admin(user, target_id)
        return json_ok({"user": _profile(get_or_404(User, target_id, "User"))})

    require_admin()
    page, limit = page_args(default_limit=20)
    q = User.query
    search = str(arg("search", default="")).strip()
    if search:
        like = f"%{search}%"
        q = q.filter(sa.or_(User.name.ilike(like), User.email.ilike(like)))
    role = arg("role")
    if role:
        q = q.filter(User.role == role)

    total = q.count()
    rows = q.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return json_ok({"users": [u.as_dict() for u in rows], "pagination": pagination(page, limit, total)})


@bp.patch("")
def update_user():
    user = require_account()
    data = request_payload()
    target_id = to_int(pick(data, "user_id", "userId")) or user.id
    _self_or_admin(user, target_id)
    target = get_or_404(User, target_id, "User")

    if pick(data, "name") is not None:
        target.name = _validated_name(pick(data, "name"))

    email = pick(data, "email")
    if email is not None:
        email = str(email).strip().lower()
        if not is_valid_email(email):
            raise ApiError("Please provide a valid email address", 400)
        clash = User.query.filter(User.email == email, User.id != target.id).first()
        if clash is not None:
            raise ApiError("Email is already in use", 409)
        target.email = email

    password = pick(data, "password")
    if password is not None:
        password = str(password)
        if len(password) < 8:
            raise ApiError("Password must be at least 8 characters long", 400)
        if not user.is_admin:
            current = str(pick(data, "current_password", "currentPassword", default=""))
            if not current or not target.check_password(current):
                raise ApiError("Current password is incorrect", 400)
        target.set_password(password)

    role = pick(data, "role")
    if role is not None:
        if not user.is_admin:
            raise ApiError("Only admins can change roles", 403)
        role = str(role).strip().lower()
        if role not in USER_ROLES:
            raise ApiError(f"Role must be one of: {', '.join(USER_ROLES)}", 400)
        target.role = role

    safe_commit()
    return json_ok({"message": "User updated", "user": target.as_dict()})


@bp.delete("")
def delete_user():
    admin = require_admin()
    target_id = require_id(arg("user_id", "userId") or pick(request_payload(), "user_id", "userId"), "User ID")
    if target_id == admin.id:
        raise ApiError("You cannot delete your own account", 400)
    target = get_or_404(User, target_id, "User")

    funded = _count(
        Donation,
        Donation.campaign_id.in_(sa.select(Campaign.id).where(Campaign.owner_id == target.id)),
    )
    if funded:
        raise ApiError("Cannot delete a user whose campaigns have received donations", 400)

    # rows that only reference the user as reviewer/author keep their history
    Verification.query.filter_by(verified_by_id=target.id).update({"verified_by_id": None})
    FraudReport.query.filter_by(reviewed_by_id=target.id).update({"reviewed_by_id": None})
    ImpactStory.query.filter_by(author_id=target.id).update({"author_id": None})

    db.session.delete(target)
    safe_commit()
    current_app.logger.warning("user %s deleted by admin %s", target_id, admin.id)
    return json_ok({"message": "User deleted"})


# ----------------------------
# Profile
# ----------------------------
@bp.get("/profile")
def get_profile():
    return json_ok({"user": _profile(require_account())})


@bp.patch("/profile")
def update_profile():
    user = require_account()
    name = sanitize_input(pick(request_payload(), "name", default=""))
    if len(name) < 2:
        raise ApiError("Name must be at least 2 characters long", 400)
    user.name = name[:100]
    safe_commit()
    return json_ok({"message": "Profile updated", "user": _profile(user)})


# ----------------------------
# Activity feed
# ----------------------------
@bp.get("/activity")
def activity():
    user = require_account()
    target_id = to_int(arg("user_id", "userId")) or user.id
    _self_or_admin(user, target_id)
    get_or_404(User, target_id, "User")

    limit = max(1, min(100, to_int(arg("limit", default=20)) or 20))
    third, quarter = max(1, limit // 3), max(1, limit // 4)
    items: List[Dict[str, Any]] = []

    for d in (
        Donation.query.filter_by(donor_id=target_id)
        .order_by(Donation.created_at.desc())
        .limit(third)
    ):
        items.append(
            {
                "type": "donation_made",
                "id": d.id,
                "amount": d.amount,
                "status": d.status,
                "campaign": {"id": d.campaign_id, "title": d.campaign.title if d.campaign else None},
                "created_at": d.created_at,
            }
        )

    for d in (
        Donation.query.join(Campaign, Donation.campaign_id == Campaign.id)
        .filter(Campaign.owner_id == target_id, Donation.status == "completed")
        .order_by(Donation.created_at.desc())
        .limit(third)
    ):
        items.append(
            {
                "type": "donation_received",
                "id": d.id,
                "amount": d.amount,
                "donor_name": d.donor_display_name,
                "campaign": {"id": d.campaign_id, "title": d.campaign.title if d.campaign else None},
                "created_at": d.created_at,
            }
        )

    for c in Campaign.query.filter_by(owner_id=target_id).order_by(Campaign.created_at.desc()).limit(quarter):
        items.append(
            {
                "type": "campaign_created",
                "id": c.id,
                "title": c.title,
                "status": c.status,
                "created_at": c.created_at,
            }
        )

    for cm in Comment.query.filter_by(user_id=target_id).order_by(Comment.created_at.desc()).limit(quarter):
        items.append(
            {
                "type": "comment",
                "id": cm.id,
                "content": cm.content[:200],
                "campaign": {"id": cm.campaign_id, "title": cm.campaign.title if cm.campaign else None},
                "created_at": cm.created_at,
            }
        )

    items.sort(key=lambda i: i["created_at"] or utcnow(), reverse=True)
    items = items[:limit]
    for i in items:
        i["created_at"] = iso(i["created_at"])
    return json_ok({"activities": items, "total": len(items)})


# ----------------------------
# Notification preferences
# ----------------------------
@bp.get("/notifications")
def get_notification_settings():
    user = require_account()
    settings = NotificationSettings.for_user(user.id)
    safe_commit()
    return json_ok({"settings": settings.as_dict()})


@bp.patch("/notifications")
def update_notification_settings():
    user = require_account()
    data = request_payload()
    settings = NotificationSettings.for_user(user.id)
    for field in PREFERENCE_FIELDS:
        camel = field.split("_")[0] + "".join(p.title() for p in field.split("_")[1:])
        raw = pick(data, field, camel)
        if raw is not None:
            setattr(settings, field, truthy(raw))
    safe_commit()
    return json_ok({"message": "Notification settings updated", "settings": settings.as_dict()})


@bp.post("/notifications")
def send_notification():
    caller = current_account()
    if not is_service_request() and not (caller is not None and caller.is_admin):
        raise ApiError("Admin access or an API token is required", 403 if caller else 401)

    data = request_payload()
    target = get_or_404(User, require_id(pick(data, "user_id", "userId"), "User ID"), "User")
    ntype = str(pick(data, "type", default="")).strip()
    if ntype not in NOTIFICATION_TYPES:
        raise ApiError("Invalid notification type", 400, allowed=sorted(NOTIFICATION_TYPES))
    title = sanitize_input(pick(data, "title", default=""))
    message = sanitize_input(pick(data, "message", default=""))
    if not title or not message:
        raise ApiError("Title and message are required", 400)

    result = notify_user(target, ntype, title, message)
    safe_commit()
    return json_ok(result)


# =============================================================================
# /api/notifications
# =============================================================================
@notifications_bp.get("/count")
def notification_count():
    user = require_account()
    since = utcnow() - timedelta(hours=24)
    owned = sa.select(Campaign.id).where(Campaign.owner_id == user.id)

    donations = _count(
        Donation,
        Donation.campaign_id.in_(owned),
        Donation.status == "completed",
        Donation.created_at >= since,
    )
    comments = _count(
        Comment,
        Comment.campaign_id.in_(owned),
        Comment.user_id != user.id,
        Comment.created_at >= since,
    )
    return json_ok({"count": donations + comments, "donations": donations, "comments": comments})
