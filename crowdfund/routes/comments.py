from __future__ import annotations

from flask import Blueprint, current_app

from crowdfund.errors import ApiError
from crowdfund.extensions import db, emit_socket, safe_commit
from crowdfund.models import Campaign, Comment
from crowdfund.routes.api_utils import get_or_404, json_ok
from crowdfund.security import can_manage, require_account
from crowdfund.services.notifications import campaign_room
from crowdfund.validation import arg, page_args, pagination, pick, request_payload, require_id, sanitize_input

bp = Blueprint("comments", __name__)

MAX_COMMENT_LENGTH = 2000


def _content(raw) -> str:
    content = sanitize_input(raw)
    if not content:
        raise ApiError("Comment content is required", 400)
    if len(content) > MAX_COMMENT_LENGTH:
        raise ApiError(f"Comment must be at most {MAX_COMMENT_LENGTH} characters", 400)
    return content


@bp.post("")
def create_comment():
    user = require_account()
    data = request_payload()
    campaign_id = require_id(pick(data, "campaign_id", "campaignId"), "Campaign ID")
    content = _content(pick(data, "content", default=""))

    campaign = get_or_404(Campaign, campaign_id, "Campaign")
    if campaign.status != "active":
        raise ApiError("Comments are only allowed on active campaigns", 400)

    comment = Comment(content=content, user=user, campaign=campaign)
    db.session.add(comment)
    safe_commit()

    payload = comment.as_dict()
    emit_socket("comment:new", {"comment": payload}, room=campaign_room(campaign.id))
    return json_ok({"message": "Comment posted", "comment": payload}, 201)


@bp.get("")
def list_comments():
    campaign_id = require_id(arg("campaign_id", "campaignId"), "Campaign ID")
    page, limit = page_args(default_limit=20)

    q = Comment.query.filter_by(campaign_id=campaign_id)
    total = q.count()
    rows = q.order_by(Comment.created_at.desc(), Comment.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return json_ok({"comments": [c.as_dict() for c in rows], "pagination": pagination(page, limit, total)})


@bp.patch("")
def update_comment():
    user = require_account()
    data = request_payload()
    comment = get_or_404(Comment, require_id(pick(data, "comment_id", "commentId"), "Comment ID"), "Comment")

    if comment.user_id != user.id:
        raise ApiError("You can only edit your own comments", 403)
    if not comment.editable:
        raise ApiError("Comments can only be edited within 24 hours of posting", 403)

    comment.content = _content(pick(data, "content", default=""))
    safe_commit()
    return json_ok({"message": "Comment updated", "comment": comment.as_dict()})


@bp.delete("")
def delete_comment():
    user = require_account()
    raw_id = arg("comment_id", "commentId") or pick(request_payload(), "comment_id", "commentId")
    comment = get_or_404(Comment, require_id(raw_id, "Comment ID"), "Comment")

    owner_id = comment.campaign.owner_id if comment.campaign else None
    if comment.user_id != user.id and not can_manage(user, owner_id):
        raise ApiError("You do not have permission to delete this comment", 403)

    db.session.delete(comment)
    safe_commit()
    current_app.logger.info("comment %s deleted by user %s", raw_id, user.id)
    return json_ok({"message": "Comment deleted"})
