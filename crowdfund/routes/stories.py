from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint

from crowdfund.errors import ApiError
from crowdfund.extensions import db, emit_socket, safe_commit
from crowdfund.models import Campaign, ImpactStory
from crowdfund.routes.api_utils import get_or_404, json_ok
from crowdfund.security import can_manage, require_account
from crowdfund.services.notifications import campaign_room
from crowdfund.validation import (
    arg,
    page_args,
    pagination,
    pick,
    request_payload,
    require_id,
    sanitize_input,
    to_int,
)

bp = Blueprint("stories", __name__)

MAX_TITLE = 200
MAX_CONTENT = 5000


def _text(raw: Any, label: str, limit: int) -> str:
    value = sanitize_input(raw)
    if not value:
        raise ApiError(f"{label} is required", 400)
    if len(value) > limit:
        raise ApiError(f"{label} must be at most {limit} characters", 400)
    return value


def _story_for(user, data: Dict[str, Any]) -> ImpactStory:
    raw_id = pick(data, "story_id", "storyId") or arg("story_id", "storyId")
    story = get_or_404(ImpactStory, require_id(raw_id, "Story ID"), "Impact story")
    if not can_manage(user, story.campaign.owner_id if story.campaign else None):
        raise ApiError("Only the campaign owner can manage its impact stories", 403)
    return story


@bp.get("")
def list_stories():
    page, limit = page_args(default_limit=10)
    q = ImpactStory.query
    campaign_id = to_int(arg("campaign_id", "campaignId"))
    if campaign_id:
        q = q.filter_by(campaign_id=campaign_id)
    total = q.count()
    rows = (
        q.order_by(ImpactStory.created_at.desc(), ImpactStory.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return json_ok({"stories": [s.as_dict() for s in rows], "pagination": pagination(page, limit, total)})


@bp.post("")
def create_story():
    user = require_account()
    data = request_payload()
    campaign = get_or_404(Campaign, require_id(pick(data, "campaign_id", "campaignId"), "Campaign ID"), "Campaign")
    if not can_manage(user, campaign.owner_id):
        raise ApiError("Only the campaign owner can post impact stories", 403)

    story = ImpactStory(
        title=_text(pick(data, "title"), "Title", MAX_TITLE),
        content=_text(pick(data, "content"), "Content", MAX_CONTENT),
        image_url=str(pick(data, "image_url", "imageUrl", default="") or "").strip() or None,
        campaign=campaign,
        author=user,
    )
    db.session.add(story)
    safe_commit()
    emit_socket("campaign:updated", {"campaign_id": campaign.id, "story": story.as_dict()}, room=campaign_room(campaign.id))
    return json_ok({"message": "Impact story published", "story": story.as_dict()}, 201)


@bp.patch("")
def update_story():
    user = require_account()
    data = request_payload()
    story = _story_for(user, data)

    if pick(data, "title") is not None:
        story.title = _text(pick(data, "title"), "Title", MAX_TITLE)
    if pick(data, "content") is not None:
        story.content = _text(pick(data, "content"), "Content", MAX_CONTENT)
    image_url = pick(data, "image_url", "imageUrl")
    if image_url is not None:
        story.image_url = str(image_url).strip() or None

    safe_commit()
    return json_ok({"message": "Impact story updated", "story": story.as_dict()})


@bp.delete("")
def delete_story():
    user = require_account()
    story = _story_for(user, request_payload())
    db.session.delete(story)
    safe_commit()
    return json_ok({"message": "Impact story deleted"})
