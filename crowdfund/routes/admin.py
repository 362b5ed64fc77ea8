"""
Admin moderation API
────────────────────────────────────────────────────────────
GET    /api/admin/campaigns               review queue (+ per-status summary)
PATCH  /api/admin/campaigns               approve / reject a pending campaign
POST   /api/admin/verify                  record a verification decision
GET    /api/admin/verify                  campaigns by latest verification
DELETE /api/admin/verify                  remove a verification record
POST   /api/admin/promote                 promote a user with the shared secret
GET    /api/admin/create-first            bootstrap status
POST   /api/admin/create-first            bootstrap the first admin
GET    /api/admin/donations/export.csv    donation ledger as CSV
"""

from __future__ import annotations

import csv
import io
from typing import Any, Dict, List

import sqlalchemy as sa
from flask import Blueprint, Response, current_app

from crowdfund.constants import CAMPAIGN_STATUSES, VERIFICATION_STATUSES
from crowdfund.errors import ApiError
from crowdfund.extensions import campaign_verified, db, safe_commit
from crowdfund.models import Campaign, Donation, User, Verification
from crowdfund.routes.api_utils import get_or_404, json_ok
from crowdfund.security import require_admin
from crowdfund.validation import (
    arg,
    is_valid_email,
    is_valid_password,
    page_args,
    pagination,
    pick,
    request_payload,
    require_id,
    sanitize_input,
    to_int,
    truthy,
)

bp = Blueprint("admin", __name__)


def _latest_status():
    return (
        sa.select(Verification.status)
        .where(Verification.campaign_id == Campaign.id)
        .order_by(Verification.created_at.desc(), Verification.id.desc())
        .limit(1)
        .correlate(Campaign)
        .scalar_subquery()
    )


def _announce(campaign: Campaign, status: str) -> None:
    campaign_verified.send(current_app._get_current_object(), campaign=campaign, status=status)


def _verification_view(c: Campaign) -> Dict[str, Any]:
    data = c.as_dict()
    latest = c.latest_verification
    data["latest_verification"] = latest.as_dict() if latest else None
    data["verification_status"] = latest.status if latest else "pending"
    data["is_verified"] = bool(latest and latest.status == "verified")
    return data


# =============================================================================
# Review queue
# =============================================================================
@bp.get("/campaigns")
def review_queue():
    require_admin()
    page, limit = page_args(default_limit=10)

    status = str(arg("status", default="pending")).strip().lower()
    q = Campaign.query
    if status != "all":
        if status not in CAMPAIGN_STATUSES:
            raise ApiError("Invalid status", 400, allowed=list(CAMPAIGN_STATUSES))
        q = q.filter(Campaign.status == status)

    search = str(arg("search", default="")).strip()
    if search:
        like = f"%{search}%"
        q = q.filter(sa.or_(Campaign.title.ilike(like), Campaign.description.ilike(like)))

    total = q.count()
    rows = q.order_by(Campaign.created_at.asc(), Campaign.id.asc()).offset((page - 1) * limit).limit(limit).all()

    counts = dict(
        db.session.execute(sa.select(Campaign.status, sa.func.count(Campaign.id)).group_by(Campaign.status)).all()
    )
    summary = {s: int(counts.get(s, 0)) for s in CAMPAIGN_STATUSES}
    summary["total"] = sum(summary.values())

    return json_ok(
        {
            "campaigns": [_verification_view(c) for c in rows],
            "pagination": pagination(page, limit, total),
            "summary": summary,
        }
    )


@bp.patch("/campaigns")
def review_campaign():
    admin = require_admin()
    data = request_payload()
    campaign = get_or_404(Campaign, require_id(pick(data, "campaign_id", "campaignId"), "Campaign ID"), "Campaign")

    action = str(pick(data, "action", default="")).strip().lower()
    if action not in ("approve", "reject"):
        raise ApiError("Action must be approve or reject", 400)
    if campaign.status != "pending":
        raise ApiError("Only pending campaigns can be reviewed", 400, current_status=campaign.status)

    reason = sanitize_input(pick(data, "reason", default="")) or None
    if action == "reject" and not reason:
        raise ApiError("A reason is required when rejecting a campaign", 400)

    if action == "approve":
        campaign.status = "active"
        verdict = Verification(status="verified", notes=reason or "Approved by administrator", campaign=campaign, verified_by=admin)
    else:
        campaign.status = "cancelled"
        verdict = Verification(status="rejected", reason=reason, campaign=campaign, verified_by=admin)
    db.session.add(verdict)
    safe_commit()

    current_app.logger.info("campaign %s %sd by admin %s", campaign.id, action, admin.id)
    _announce(campaign, verdict.status)
    return json_ok(
        {
            "message": f"Campaign {'approved' if action == 'approve' else 'rejected'}",
            "campaign": _verification_view(campaign),
        }
    )


# =============================================================================
# Verification records
# =============================================================================
@bp.post("/verify")
def verify():
    admin = require_admin()
    data = request_payload()
    campaign = get_or_404(Campaign, require_id(pick(data, "campaign_id", "campaignId"), "Campaign ID"), "Campaign")

    status = str(pick(data, "status", default="")).strip().lower()
    if status not in VERIFICATION_STATUSES:
        raise ApiError("Invalid verification status", 400, allowed=list(VERIFICATION_STATUSES))
    reason = sanitize_input(pick(data, "reason", default="")) or None
    if status == "rejected" and not reason:
        raise ApiError("A reason is required when rejecting a campaign", 400)

    latest = campaign.latest_verification
    if latest is not None and latest.status == status:
        raise ApiError(f"Campaign is already {status}", 400)

    verification = Verification(
        status=status,
        notes=sanitize_input(pick(data, "notes", default="")) or None,
        reason=reason,
        campaign=campaign,
        verified_by=admin,
    )
    db.session.add(verification)
    if status == "rejected" and campaign.status == "active":
        campaign.status = "paused"
    safe_commit()

    current_app.logger.info("campaign %s verification -> %s by admin %s", campaign.id, status, admin.id)
    if status != "pending":
        _announce(campaign, status)
    return json_ok({"message": "Verification recorded", "verification": verification.as_dict()}, 201)


@bp.get("/verify")
def verification_queue():
    require_admin()
    page, limit = page_args(default_limit=20)
    latest = _latest_status()

    q = Campaign.query
    if truthy(arg("pending", default=False)):
        q = q.filter(Campaign.status == "active", sa.or_(latest.is_(None), latest.notin_(["verified", "rejected"])))
    else:
        status = arg("status")
        if status:
            if status not in VERIFICATION_STATUSES:
                raise ApiError("Invalid verification status", 400, allowed=list(VERIFICATION_STATUSES))
            if status == "pending":
                q = q.filter(sa.or_(latest.is_(None), latest == "pending"))
            else:
                q = q.filter(latest == status)

    total = q.count()
    rows = q.order_by(Campaign.created_at.desc(), Campaign.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return json_ok({"campaigns": [_verification_view(c) for c in rows], "pagination": pagination(page, limit, total)})


@bp.delete("/verify")
def delete_verification():
    admin = require_admin()
    raw_id = arg("verification_id", "verificationId") or pick(request_payload(), "verification_id", "verificationId")
    verification = get_or_404(Verification, require_id(raw_id, "Verification ID"), "Verification")
    db.session.delete(verification)
    safe_commit()
    current_app.logger.info("verification %s deleted by admin %s", raw_id, admin.id)
    return json_ok({"message": "Verification deleted"})


# =============================================================================
# Admin bootstrap
# =============================================================================
def _admin_count() -> int:
    return int(db.session.execute(sa.select(sa.func.count(User.id)).where(User.role == "admin")).scalar_one() or 0)


@bp.post("/promote")
def promote():
    data = request_payload()
    expected = str(current_app.config.get("ADMIN_PROMOTION_SECRET") or "")
    if not expected or str(pick(data, "secret_key", "secretKey", default="")) != expected:
        raise ApiError("Invalid secret key", 403)

    email = str(pick(data, "email", default="")).strip().lower()
    if not email:
        raise ApiError("Email is required", 400)
    user = User.query.filter_by(email=email).first()
    if user is None:
        raise ApiError("User not found", 404)

    user.role = "admin"
    safe_commit()
    current_app.logger.warning("user %s promoted to admin via secret", user.id)
    return json_ok({"message": f"{user.email} is now an admin", "user": user.as_dict()})


@bp.get("/create-first")
def first_admin_status():
    count = _admin_count()
    return json_ok(
        {
            "has_admins": count > 0,
            "admin_count": count,
            "message": "Admin users exist" if count else "No admin users yet; POST to create the first one",
        }
    )


@bp.post("/create-first")
def create_first_admin():
    if current_app.config.get("ENV") == "production" and not current_app.config.get("ALLOW_FIRST_ADMIN_CREATION"):
        raise ApiError("First admin creation is disabled in production", 403)

    data = request_payload()
    expected = str(current_app.config.get("FIRST_ADMIN_SECRET") or "")
    if not expected or str(pick(data, "secret_key", "secretKey", default="")) != expected:
        raise ApiError("Invalid secret key", 403)
    if _admin_count():
        raise ApiError("An admin user already exists", 409)

    email = str(pick(data, "email", default="")).strip().lower()
    if not is_valid_email(email):
        raise ApiError("A valid email is required", 400)

    user = User.query.filter_by(email=email).first()
    created = user is None
    if created:
        password = str(pick(data, "password", default=""))
        if not is_valid_password(password):
            raise ApiError(
                "Password must be at least 8 characters long and contain uppercase, lowercase, and numbers", 400
            )
        user = User(email=email, name=str(pick(data, "name", default="") or "").strip() or "Platform Administrator")
        user.set_password(password)
        db.session.add(user)
    user.role = "admin"
    safe_commit()

    current_app.logger.warning("first admin %s %s", user.id, "created" if created else "promoted")
    return json_ok(
        {"message": "Admin user created" if created else "Existing user promoted to admin", "user": user.as_dict()},
        201 if created else 200,
    )


# =============================================================================
# Exports
# =============================================================================
_EXPORT_COLUMNS: List[str] = [
    "id",
    "created_at",
    "campaign_id",
    "campaign_title",
    "donor_name",
    "donor_email",
    "amount",
    "currency",
    "status",
    "payment_type",
    "stripe_payment_intent_id",
]


@bp.get("/donations/export.csv")
def export_donations():
    require_admin()
    q = Donation.query
    campaign_id = to_int(arg("campaign_id", "campaignId"))
    if campaign_id:
        q = q.filter_by(campaign_id=campaign_id)
    status = arg("status")
    if status:
        q = q.filter_by(status=status)

    output = io.StringIO(newline="")
    writer = csv.writer(output)
    writer.writerow(_EXPORT_COLUMNS)
    for d in q.order_by(Donation.created_at.asc(), Donation.id.asc()):
        writer.writerow(
            [
                d.id,
                d.created_at.strftime("%Y-%m-%d %H:%M:%S") if d.created_at else "",
                d.campaign_id,
                d.campaign.title if d.campaign else "",
                d.donor_display_name,
                d.donor.email if d.donor and not d.is_anonymous else "",
                f"{d.amount:.2f}",
                d.currency,
                d.status,
                d.payment_type,
                d.stripe_payment_intent_id or "",
            ]
        )

    return Response(
        output.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=donations.csv", "Cache-Control": "no-store"},
    )
