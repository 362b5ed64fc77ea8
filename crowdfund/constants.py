"""Status vocabularies shared by models, routes and services."""

CAMPAIGN_STATUSES = ("pending", "draft", "active", "completed", "paused", "cancelled")
USER_ROLES = ("donor", "creator", "admin")
VERIFICATION_STATUSES = ("pending", "verified", "rejected")
FRAUD_REPORT_STATUSES = ("open", "investigating", "resolved", "dismissed")

DONATION_STATUSES = ("pending", "completed", "failed", "refunded", "cancelled")
RECURRING_FREQUENCIES = ("monthly", "quarterly", "annually")
RECURRING_STATUSES = ("active", "paused", "cancelled")

CAMPAIGN_CATEGORIES = (
    "medical",
    "education",
    "emergency",
    "community",
    "creative",
    "business",
    "charity",
    "other",
)

NOTIFICATION_TYPES = {
    "campaign_update": "campaign_updates",
    "donation_received": "donation_alerts",
    "marketing": "marketing_emails",
    "weekly_digest": "weekly_digest",
}

# Campaign goal bounds (dollars)
MIN_GOAL = 100
MAX_GOAL = 1_000_000

# Donation bounds (dollars) for POST /api/donations
MIN_DONATION = 1
MAX_DONATION = 10_000

# PaymentIntent bounds (cents) for /api/payments/create-intent
MIN_INTENT_CENTS = 100
MAX_INTENT_CENTS = 1_000_000
