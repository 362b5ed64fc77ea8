"""
Campaign endpoints
────────────────────────────────────────────────────────────
GET    /api/campaigns                 search / filter / sort / paginate
POST   /api/campaigns                 submit a campaign for review
GET    /api/campaigns/<id>            detail with donations, comments, stories
PATCH  /api/campaigns/<id>            owner or admin
DELETE /api/campaigns/<id>            owner or admin, only without donations
GET    /api/campaigns/<id>/donations  public list of completed donations
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

import sqlalchemy as sa
from flask import Blueprint, current_app

from crowdfund.constants import CAMPAIGN_CATEGORIES, CAMPAIGN_STATUSES
from crowdfund.errors import ApiError
from crowdfund.extensions import db, emit_socket, safe_commit
from crowdfund.models import Campaign, Comment, Donation, FraudReport, User, Verification
from crowdfund.routes.api_utils import json_ok
from crowdfund.security import can_manage, require_account
from crowdfund.services.donations import recent_for_campaign
from crowdfund.services.notifications import campaign_room
from crowdfund.validation import (
    arg,
    page_args,
    pagination,
    pick,
    request_payload,
    sanitize_input,
    to_int,
    to_number,
    validate_campaign_data,
)

bp = Blueprint("campaigns", __name__)

_SORTS = {
    "recent": (Campaign.created_at.desc(),),
    "popular": (Campaign.current_cents.desc(), Campaign.created_at.desc()),
    "goal": (Campaign.goal_cents.desc(),),
    "progress": (Campaign.current_cents.desc(), Campaign.goal_cents.asc()),
}


# ----------------------------
# Helpers
# ----------------------------
def _campaign_or_404(raw_id: str) -> Campaign:
    cid = to_int(raw_id)
    if cid is None:
        raise ApiError("Invalid campaign ID", 400)
    campaign = db.session.get(Campaign, cid)
    if campaign is None:
        raise ApiError("Campaign not found", 404)
    return campaign


def _count(model: Any, *criteria: Any) -> int:
    return int(db.session.execute(sa.select(sa.func.count(model.id)).where(*criteria)).scalar_one() or 0)


def _parse_date(raw: Any) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        raise ApiError("end_date must be an ISO-8601 date", 400)


def _normalized(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "title": pick(data, "title"),
        "description": pick(data, "description"),
        "goal_amount": pick(data, "goal_amount", "goalAmount"),
        "category": pick(data, "category"),
        "location": pick(data, "location"),
        "image_url": pick(data, "image_url", "imageUrl", "images"),
        "end_date": pick(data, "end_date", "endDate"),
        "status": pick(data, "status"),
    }


def _latest_verification_status():
    return (
        sa.select(Verification.status)
        .where(Verification.campaign_id == Campaign.id)
        .order_by(Verification.created_at.desc(), Verification.id.desc())
        .limit(1)
        .correlate(Campaign)
        .scalar_subquery()
    )


def _with_counts(c: Campaign) -> Dict[str, Any]:
    data = c.as_dict()
    data["donation_count"] = _count(Donation, Donation.campaign_id == c.id, Donation.status == "completed")
    data["comment_count"] = _count(Comment, Comment.campaign_id == c.id)
    return data


# ----------------------------
# Collection
# ----------------------------
@bp.get("")
def list_campaigns():
    page, limit = page_args(default_limit=12)
    q = Campaign.query.join(User, Campaign.owner_id == User.id)

    search = str(arg("search", default="")).strip()
    if search:
        like = f"%{search}%"
        q = q.filter(sa.or_(Campaign.title.ilike(like), Campaign.description.ilike(like), User.name.ilike(like)))

    category = arg("category")
    if category:
        q = q.filter(Campaign.category == category)

    status = arg("status")
    if status in CAMPAIGN_STATUSES:
        q = q.filter(Campaign.status == status)

    location = arg("location")
    if location:
        q = q.filter(Campaign.location.ilike(f"%{location}%"))

    verified = str(arg("verified", default="")).lower()
    if verified == "true":
        q = q.filter(_latest_verification_status() == "verified")
    elif verified == "false":
        latest = _latest_verification_status()
        q = q.filter(sa.or_(latest.is_(None), latest != "verified"))

    if str(arg("featured", default="")).lower() == "true":
        q = q.filter(Campaign.status == "active", Campaign.current_cents >= 100 * 100)

    order = _SORTS.get(str(arg("sort", default="recent")), _SORTS["recent"])
    total = q.count()
    rows = q.order_by(*order, Campaign.id.desc()).offset((page - 1) * limit).limit(limit).all()

    return json_ok({"campaigns": [_with_counts(c) for c in rows], "pagination": pagination(page, limit, total)})


@bp.post("")
def create_campaign():
    user = require_account()
    data = _normalized(request_payload())

    errors = validate_campaign_data(data)
    if errors:
        raise ApiError("Validation failed", 400, details=errors)

    category = str(data["category"] or "other").strip().lower()
    if category not in CAMPAIGN_CATEGORIES:
        category = "other"

    campaign = Campaign(
        title=sanitize_input(data["title"]),
        description=sanitize_input(data["description"]),
        category=category,
        location=sanitize_input(data["location"]) or None,
        image_url=str(data["image_url"]).strip() if data["image_url"] else None,
        end_date=_parse_date(data["end_date"]),
        status="pending",
        current_cents=0,
        owner=user,
    )
    campaign.set_goal_dollars(to_number(data["goal_amount"]) or 0)
    db.session.add(campaign)
    safe_commit()
    current_app.logger.info("campaign %s submitted by user %s", campaign.id, user.id)

    return json_ok(
        {
            "message": "Campaign submitted for review. It will be visible once approved by an administrator.",
            "campaign": _with_counts(campaign),
        },
        201,
    )


# ----------------------------
# Item
# ----------------------------
@bp.get("/<campaign_id>")
def get_campaign(campaign_id: str):
    campaign = _campaign_or_404(campaign_id)

    data = campaign.as_dict()
    data["donations"] = [d.as_dict(public=True) for d in recent_for_campaign(campaign.id, 10)]
    data["comments"] = [
        c.as_dict()
        for c in Comment.query.filter_by(campaign_id=campaign.id)
        .order_by(Comment.created_at.desc(), Comment.id.desc())
        .limit(20)
    ]
    data["impact_stories"] = [s.as_dict() for s in campaign.stories]
    latest = campaign.latest_verification
    data["verification_status"] = latest.status if latest else "pending"
    data["verification_info"] = latest.as_dict() if latest and latest.status == "verified" else None
    data["counts"] = {
        "donations": _count(Donation, Donation.campaign_id == campaign.id, Donation.status == "completed"),
        "comments": _count(Comment, Comment.campaign_id == campaign.id),
        "fraud_reports": _count(FraudReport, FraudReport.campaign_id == campaign.id),
    }
    return json_ok({"campaign": data})


@bp.patch("/<campaign_id>")
def update_campaign(campaign_id: str):
    user = require_account()
    campaign = _campaign_or_404(campaign_id)
    if not can_manage(user, campaign.owner_id):
        raise ApiError("You can only update your own campaigns", 403)

    data = _normalized(request_payload())

    if any(data[k] is not None for k in ("title", "description", "goal_amount")):
        merged = {
            "title": data["title"] if data["title"] is not None else campaign.title,
            "description": data["description"] if data["description"] is not None else campaign.description,
            "goal_amount": data["goal_amount"] if data["goal_amount"] is not None else campaign.goal_amount,
        }
        errors = validate_campaign_data(merged)
        if errors:
            raise ApiError("Validation failed", 400, details=errors)
        campaign.title = sanitize_input(merged["title"])
        campaign.description = sanitize_input(merged["description"])
        campaign.set_goal_dollars(to_number(merged["goal_amount"]) or 0)

    if data["category"] is not None:
        category = str(data["category"]).strip().lower()
        campaign.category = category if category in CAMPAIGN_CATEGORIES else "other"
    if data["location"] is not None:
        campaign.location = sanitize_input(data["location"]) or None
    if data["image_url"] is not None:
        campaign.image_url = str(data["image_url"]).strip() or None
    if data["end_date"] is not None:
        campaign.end_date = _parse_date(data["end_date"])

    if data["status"] is not None:
        status = str(data["status"]).strip().lower()
        if status not in CAMPAIGN_STATUSES:
            raise ApiError("Invalid status", 400, allowed=list(CAMPAIGN_STATUSES))
        campaign.status = status

    safe_commit()
    emit_socket("campaign:updated", {"campaign": campaign.as_dict(include_owner=False)}, room=campaign_room(campaign.id))
    return json_ok({"message": "Campaign updated successfully", "campaign": _with_counts(campaign)})


@bp.delete("/<campaign_id>")
def delete_campaign(campaign_id: str):
    user = require_account()
    campaign = _campaign_or_404(campaign_id)
    if not can_manage(user, campaign.owner_id):
        raise ApiError("You can only delete your own campaigns", 403)

    if _count(Donation, Donation.campaign_id == campaign.id):
        raise ApiError("Cannot delete campaign with existing donations", 400)

    db.session.delete(campaign)
    safe_commit()
    current_app.logger.info("campaign %s deleted by user %s", campaign_id, user.id)
    return json_ok({"message": "Campaign deleted successfully"})


@bp.get("/<campaign_id>/donations")
def campaign_donations(campaign_id: str):
    campaign = _campaign_or_404(campaign_id)
    page, limit = page_args(default_limit=10)
    q = Donation.query.filter_by(campaign_id=campaign.id, status="completed")
    total = q.count()
    rows = q.order_by(Donation.created_at.desc(), Donation.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return json_ok(
        {
            "donations": [d.as_dict(public=True) for d in rows],
            "pagination": pagination(page, limit, total),
            "campaign": {"id": campaign.id, "title": campaign.title, "current_amount": campaign.current_amount},
        }
    )
