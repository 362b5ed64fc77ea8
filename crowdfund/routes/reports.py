from __future__ import annotations

from flask import Blueprint, current_app
from sqlalchemy.exc import IntegrityError

from crowdfund.constants import FRAUD_REPORT_STATUSES
from crowdfund.errors import ApiError
from crowdfund.extensions import db, report_created, safe_commit
from crowdfund.models import Campaign, FraudReport
from crowdfund.models.mixins import utcnow
from crowdfund.routes.api_utils import get_or_404, json_ok
from crowdfund.security import require_account, require_admin
from crowdfund.validation import arg, page_args, pagination, pick, request_payload, require_id, sanitize_input, to_int

bp = Blueprint("reports", __name__)


@bp.post("")
def create_report():
    user = require_account()
    data = request_payload()

    campaign_id = require_id(pick(data, "campaign_id", "campaignId"), "Campaign ID")
    reason = sanitize_input(pick(data, "reason", default=""))
    description = sanitize_input(pick(data, "description", default=""))
    if not reason:
        raise ApiError("Reason is required", 400)
    if len(reason) > 200:
        raise ApiError("Reason must be at most 200 characters", 400)
    if len(description) > 1000:
        raise ApiError("Description must be at most 1000 characters", 400)

    campaign = get_or_404(Campaign, campaign_id, "Campaign")
    if campaign.owner_id == user.id:
        raise ApiError("You cannot report your own campaign", 400)
    if FraudReport.query.filter_by(campaign_id=campaign.id, reporter_id=user.id).first():
        raise ApiError("You have already reported this campaign", 409)

    report = FraudReport(
        reason=reason,
        description=description or None,
        status="open",
        campaign=campaign,
        reporter=user,
    )
    db.session.add(report)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ApiError("You have already reported this campaign", 409)

    current_app.logger.warning("fraud report %s filed on campaign %s", report.id, campaign.id)
    report_created.send(current_app._get_current_object(), report=report)
    return json_ok({"message": "Report submitted", "report": report.as_dict()}, 201)


@bp.get("")
def list_reports():
    user = require_account()
    page, limit = page_args(default_limit=20)

    q = FraudReport.query
    if not user.is_admin:
        q = q.filter_by(reporter_id=user.id)
    status = arg("status")
    if status:
        q = q.filter_by(status=status)
    campaign_id = to_int(arg("campaign_id", "campaignId"))
    if campaign_id:
        q = q.filter_by(campaign_id=campaign_id)

    total = q.count()
    rows = (
        q.order_by(FraudReport.created_at.desc(), FraudReport.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return json_ok(
        {
            "reports": [r.as_dict(include_email=user.is_admin) for r in rows],
            "pagination": pagination(page, limit, total),
        }
    )


@bp.patch("")
def review_report():
    admin = require_admin()
    data = request_payload()
    report = get_or_404(FraudReport, require_id(pick(data, "report_id", "reportId"), "Report ID"), "Report")

    status = str(pick(data, "status", default="")).strip().lower()
    if status not in FRAUD_REPORT_STATUSES:
        raise ApiError("Invalid status", 400, allowed=list(FRAUD_REPORT_STATUSES))
    resolution = sanitize_input(pick(data, "resolution", default="")) or None
    if status == "resolved" and not resolution:
        raise ApiError("Resolution is required when resolving a report", 400)

    report.status = status
    if resolution:
        report.resolution = resolution
    report.reviewed_by = admin
    report.reviewed_at = utcnow()
    if status == "resolved" and report.campaign and report.campaign.status not in ("paused", "cancelled"):
        report.campaign.status = "paused"
        current_app.logger.warning("campaign %s paused after fraud report %s", report.campaign_id, report.id)

    safe_commit()
    return json_ok({"message": "Report updated", "report": report.as_dict(include_email=True)})


@bp.delete("")
def delete_report():
    require_admin()
    raw_id = arg("report_id", "reportId") or pick(request_payload(), "report_id", "reportId")
    report = get_or_404(FraudReport, require_id(raw_id, "Report ID"), "Report")
    db.session.delete(report)
    safe_commit()
    return json_ok({"message": "Report deleted"})
