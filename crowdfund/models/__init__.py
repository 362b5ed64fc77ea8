from __future__ import annotations

from crowdfund.extensions import db
from crowdfund.models.campaign import Campaign
from crowdfund.models.comment import Comment
from crowdfund.models.donation import Donation
from crowdfund.models.fraud_report import FraudReport
from crowdfund.models.impact_story import ImpactStory
from crowdfund.models.notification_settings import NotificationSettings
from crowdfund.models.recurring_donation import RecurringDonation
from crowdfund.models.stripe_event import StripeEvent
from crowdfund.models.user import User
from crowdfund.models.verification import Verification

__all__ = [
    "db",
    "Campaign",
    "Comment",
    "Donation",
    "FraudReport",
    "ImpactStory",
    "NotificationSettings",
    "RecurringDonation",
    "StripeEvent",
    "User",
    "Verification",
]
