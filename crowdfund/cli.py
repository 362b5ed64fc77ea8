"""`flask crowdfund ...` maintenance commands."""

from __future__ import annotations

import random
from datetime import timedelta

import click
from faker import Faker
from flask.cli import AppGroup

from crowdfund.constants import CAMPAIGN_CATEGORIES
from crowdfund.extensions import db
from crowdfund.models import (
    Campaign,
    Comment,
    Donation,
    FraudReport,
    ImpactStory,
    NotificationSettings,
    RecurringDonation,
    StripeEvent,
    User,
    Verification,
)
from crowdfund.models.mixins import utcnow
from crowdfund.validation import is_valid_email, is_valid_password

fake = Faker()

crowdfund_cli = AppGroup("crowdfund", help="Crowdfund maintenance tools.")

DEMO_PASSWORD = "DemoPass123"


@crowdfund_cli.command("seed-demo")
@click.option("--creators", default=5, show_default=True, help="Number of campaign creators.")
@click.option("--donors", default=10, show_default=True, help="Number of donors.")
@click.option("--campaigns", default=3, show_default=True, help="Campaigns per creator.")
@click.option("--clear", is_flag=True, help="Clear existing data first.")
def seed_demo(creators, donors, campaigns, clear):
    """🌱 Seed demo users, campaigns and donations."""
    if clear:
        _clear_data()

    admin = _ensure_user("admin@example.com", "Platform Administrator", "admin")
    creator_objs = [_new_user("creator") for _ in range(creators)]
    donor_objs = [_new_user("donor") for _ in range(donors)]
    db.session.flush()

    created = []
    for owner in creator_objs:
        for _ in range(campaigns):
            created.append(_seed_campaign(owner, admin))
    db.session.flush()

    donation_count = 0
    for campaign in created:
        if campaign.status != "active":
            continue
        for donor in random.sample(donor_objs, k=min(len(donor_objs), random.randint(1, 6))):
            db.session.add(_seed_donation(donor, campaign))
            donation_count += 1
    db.session.flush()
    for campaign in created:
        campaign.recalculate_raised()

    db.session.commit()
    click.secho(
        f"✅ Seeded {len(creator_objs)} creators, {len(donor_objs)} donors, "
        f"{len(created)} campaigns, {donation_count} donations.",
        fg="bright_green",
        bold=True,
    )
    click.echo(f"   Demo password for every seeded account: {DEMO_PASSWORD}")


@crowdfund_cli.command("create-admin")
@click.argument("email")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--name", default="Platform Administrator", show_default=True)
def create_admin(email, password, name):
    """Create an admin account, or promote an existing user."""
    email = email.strip().lower()
    if not is_valid_email(email):
        raise click.BadParameter("invalid email address", param_hint="EMAIL")

    user = User.query.filter_by(email=email).first()
    if user is None:
        if not is_valid_password(password):
            raise click.BadParameter(
                "must be 8+ characters with upper-case, lower-case and a digit", param_hint="--password"
            )
        user = User(email=email, name=name)
        user.set_password(password)
        db.session.add(user)
        action = "Created"
    else:
        action = "Promoted"
    user.role = "admin"
    db.session.commit()
    click.secho(f"✅ {action} admin {email}", fg="bright_green", bold=True)


# ---------- Helpers ----------
def _clear_data():
    click.secho("🧹 Clearing data…", fg="yellow")
    for model in (
        StripeEvent,
        Comment,
        ImpactStory,
        Verification,
        FraudReport,
        Donation,
        RecurringDonation,
        Campaign,
        NotificationSettings,
        User,
    ):
        deleted = model.query.delete()
        click.secho(f"  ↳ {deleted} {model.__name__} removed", fg="yellow")
    db.session.commit()


def _ensure_user(email, name, role):
    user = User.query.filter_by(email=email).first()
    if user is None:
        user = User(email=email, name=name)
        user.set_password(DEMO_PASSWORD)
        db.session.add(user)
    user.role = role
    return user


def _new_user(role):
    user = User(email=fake.unique.email(), name=fake.name(), role=role)
    user.set_password(DEMO_PASSWORD)
    db.session.add(user)
    return user


def _seed_campaign(owner, admin):
    status = random.choices(["active", "pending", "completed"], weights=[6, 3, 1])[0]
    campaign = Campaign(
        title=fake.catch_phrase()[:200],
        description=" ".join(fake.paragraphs(nb=3)),
        category=random.choice(CAMPAIGN_CATEGORIES),
        location=f"{fake.city()}, {fake.state_abbr()}",
        image_url=f"https://picsum.photos/seed/{fake.uuid4()[:8]}/800/450",
        end_date=utcnow() + timedelta(days=random.randint(14, 120)),
        status=status,
        owner=owner,
    )
    campaign.set_goal_dollars(random.choice([1000, 2500, 5000, 10000, 25000]))
    db.session.add(campaign)
    if status != "pending":
        db.session.add(Verification(status="verified", notes="Seeded", campaign=campaign, verified_by=admin))
    return campaign


def _seed_donation(donor, campaign):
    created = utcnow() - timedelta(days=random.randint(0, 60), hours=random.randint(0, 23))
    donation = Donation(
        amount_cents=random.choice([1000, 2500, 5000, 10000, 25000]),
        currency="usd",
        payment_type="one_time",
        status="completed",
        donor=donor,
        campaign=campaign,
        message=fake.sentence() if random.random() < 0.4 else None,
        is_anonymous=random.random() < 0.15,
        completed_at=created,
    )
    donation.created_at = created
    return donation
