# crowdfund/routes/stats.py
from __future__ import annotations

"""
Stats API (flask-restx)
────────────────────────────────────────────────────────────
• Blueprint mounted at /api; Swagger UI at /api/docs
• GET  /api/stats/platform   platform-wide totals
• POST /api/stats/platform   per-user totals ({user_id}; self or admin)
• GET  /api/stats/status     API liveness + docs pointer
"""

from typing import Any, Dict

import sqlalchemy as sa
from flask import Blueprint, current_app, g
from flask_restx import Api, Resource, fields

from crowdfund.errors import ApiError
from crowdfund.extensions import db
from crowdfund.models import Campaign, Donation, FraudReport, User, Verification
from crowdfund.routes.api_utils import get_or_404, json_ok
from crowdfund.security import require_account
from crowdfund.validation import pick, request_payload, require_id

bp = Blueprint("stats", __name__)

authorizations = {
    "Bearer": {
        "type": "apiKey",
        "in": "header",
        "name": "Authorization",
        "description": "Use: Bearer <token>",
    }
}

api = Api(
    bp,
    version="1.0",
    title="Crowdfund API",
    description="Platform statistics for the crowdfunding backend.",
    doc="/docs",
    authorizations=authorizations,
    security="Bearer",
)

ns = api.namespace("stats", path="/stats", description="Platform and user statistics")


@api.errorhandler(ApiError)
def _api_error(err: ApiError):
    db.session.rollback()
    error: Dict[str, Any] = {"code": err.status, "message": err.message}
    rid = getattr(g, "request_id", None)
    if rid:
        error["request_id"] = rid
    error.update(err.extra)
    return {"ok": False, "error": error}, err.status


# ─────────────────────────────────────────────────────────────
# Models (docs only)
# ─────────────────────────────────────────────────────────────
platform_model = api.model(
    "PlatformStats",
    {
        "total_campaigns": fields.Integer(example=42),
        "active_campaigns": fields.Integer(example=30),
        "total_donations": fields.Integer(example=512),
        "total_raised": fields.Float(example=48250.0),
        "active_donors": fields.Integer(example=230),
        "verified_campaigns": fields.Integer(example=25),
        "pending_verifications": fields.Integer(example=5),
        "open_fraud_reports": fields.Integer(example=1),
    },
)

user_stats_request = api.model("UserStatsRequest", {"user_id": fields.Integer(required=True, example=1)})

user_model = api.model(
    "UserStats",
    {
        "user_id": fields.Integer(example=1),
        "campaigns_created": fields.Integer(example=3),
        "donations_made": fields.Integer(example=12),
        "donations_received": fields.Integer(example=87),
        "total_raised": fields.Float(example=9120.5),
        "average_per_campaign": fields.Float(example=3040.17),
    },
)

status_model = api.model(
    "Status",
    {
        "status": fields.String(example="ok"),
        "message": fields.String(example="API live"),
        "version": fields.String(example="1.0.0"),
        "docs": fields.String(example="/api/docs"),
    },
)


# ─────────────────────────────────────────────────────────────
# Queries
# ─────────────────────────────────────────────────────────────
def _scalar(stmt) -> int:
    return int(db.session.execute(stmt).scalar_one() or 0)


def _latest_verification_status():
    return (
        sa.select(Verification.status)
        .where(Verification.campaign_id == Campaign.id)
        .order_by(Verification.created_at.desc(), Verification.id.desc())
        .limit(1)
        .correlate(Campaign)
        .scalar_subquery()
    )


def platform_stats() -> Dict[str, Any]:
    completed = Donation.status == "completed"
    latest = _latest_verification_status()
    return {
        "total_campaigns": _scalar(sa.select(sa.func.count(Campaign.id))),
        "active_campaigns": _scalar(sa.select(sa.func.count(Campaign.id)).where(Campaign.status == "active")),
        "total_donations": _scalar(sa.select(sa.func.count(Donation.id)).where(completed)),
        "total_raised": round(
            _scalar(sa.select(sa.func.coalesce(sa.func.sum(Donation.amount_cents), 0)).where(completed)) / 100.0, 2
        ),
        "active_donors": _scalar(
            sa.select(sa.func.count(sa.distinct(Donation.donor_id))).where(completed, Donation.donor_id.is_not(None))
        ),
        "verified_campaigns": _scalar(sa.select(sa.func.count(Campaign.id)).where(latest == "verified")),
        "pending_verifications": _scalar(
            sa.select(sa.func.count(Campaign.id)).where(
                Campaign.status == "active", sa.or_(latest.is_(None), latest != "verified")
            )
        ),
        "open_fraud_reports": _scalar(sa.select(sa.func.count(FraudReport.id)).where(FraudReport.status == "open")),
    }


def user_stats(user: User) -> Dict[str, Any]:
    owned = sa.select(Campaign.id).where(Campaign.owner_id == user.id)
    completed = Donation.status == "completed"

    campaigns = _scalar(sa.select(sa.func.count(Campaign.id)).where(Campaign.owner_id == user.id))
    raised_cents = _scalar(
        sa.select(sa.func.coalesce(sa.func.sum(Donation.amount_cents), 0)).where(
            completed, Donation.campaign_id.in_(owned)
        )
    )
    total_raised = round(raised_cents / 100.0, 2)
    return {
        "user_id": user.id,
        "campaigns_created": campaigns,
        "donations_made": _scalar(
            sa.select(sa.func.count(Donation.id)).where(completed, Donation.donor_id == user.id)
        ),
        "donations_received": _scalar(
            sa.select(sa.func.count(Donation.id)).where(completed, Donation.campaign_id.in_(owned))
        ),
        "total_raised": total_raised,
        "average_per_campaign": round(total_raised / campaigns, 2) if campaigns else 0.0,
    }


# ─────────────────────────────────────────────────────────────
# Resources
# ─────────────────────────────────────────────────────────────
@ns.route("/platform")
class PlatformStats(Resource):
    @ns.doc(description="Platform-wide totals over completed donations")
    @ns.response(200, "Success", platform_model)
    def get(self):
        return json_ok({"stats": platform_stats()})

    @ns.doc(description="Totals for one user (the caller, or any user for admins)")
    @ns.expect(user_stats_request)
    @ns.response(200, "Success", user_model)
    def post(self):
        caller = require_account()
        user_id = require_id(pick(request_payload(), "user_id", "userId"), "User ID")
        if caller.id != user_id and not caller.is_admin:
            raise ApiError("You can only view your own statistics", 403)
        return json_ok({"stats": user_stats(get_or_404(User, user_id, "User"))})


@ns.route("/status")
class Status(Resource):
    @ns.doc(description="API health check")
    @ns.response(200, "Success", status_model)
    def get(self):
        version = str(current_app.config.get("API_VERSION") or "1.0.0")
        return json_ok({"status": "ok", "message": "API live", "version": version, "docs": "/api/docs"})
