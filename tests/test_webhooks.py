"""
Stripe webhook receiver: idempotent event storage and the donation /
subscription transitions each event type drives.
"""

from __future__ import annotations

import json
from itertools import count

import pytest
import stripe

from crowdfund.extensions import db
from crowdfund.models import Campaign, Donation, RecurringDonation, StripeEvent

_event_ids = count(1)


def _post(client, etype, obj, event_id=None, headers=None):
    event = {
        "id": event_id or f"evt_{next(_event_ids)}",
        "type": etype,
        "livemode": False,
        "data": {"object": obj},
    }
    return client.post(
        "/api/webhooks/stripe",
        data=json.dumps(event),
        content_type="application/json",
        headers=headers or {},
    )


@pytest.fixture
def schedule(app, make_user, make_campaign):
    """A donor with an active monthly schedule (sub_live) on an active campaign."""
    donor = make_user()
    cid = make_campaign(make_user())
    with app.app_context():
        rd = RecurringDonation(
            amount_cents=1500,
            frequency="monthly",
            status="active",
            stripe_subscription_id="sub_live",
            donor_id=donor,
            campaign_id=cid,
        )
        db.session.add(rd)
        db.session.commit()
        return {"donor": donor, "campaign": cid, "recurring": rd.id}


# ---------------------------------------------------------------------------
# Envelope + idempotency
# ---------------------------------------------------------------------------

class TestReceiver:
    def test_unhandled_type_is_acknowledged_and_stored(self, client, app):
        resp = _post(client, "customer.created", {"id": "cus_1"}, event_id="evt_unhandled")
        assert resp.status_code == 200
        assert resp.get_json() == {"ok": True, "received": True}
        with app.app_context():
            row = StripeEvent.query.filter_by(event_id="evt_unhandled").one()
            assert row.type == "customer.created"
            assert row.object_id == "cus_1"

    def test_duplicate_event_is_not_reprocessed(self, client, make_user, make_campaign, make_donation, fetch):
        cid = make_campaign(make_user())
        did = make_donation(make_user(), cid, amount_cents=3000, status="pending", stripe_payment_intent_id="pi_dup")

        first = _post(client, "payment_intent.succeeded", {"id": "pi_dup"}, event_id="evt_dup")
        assert first.get_json() == {"ok": True, "received": True}
        second = _post(client, "payment_intent.succeeded", {"id": "pi_dup"}, event_id="evt_dup")
        assert second.get_json()["duplicate"] is True

        assert fetch(Donation, did).status == "completed"
        assert fetch(Campaign, cid).current_cents == 3000

    def test_malformed_event(self, client):
        resp = client.post("/api/webhooks/stripe", data=json.dumps({"type": "x"}), content_type="application/json")
        assert resp.status_code == 400
        assert resp.get_json()["error"]["message"] == "Malformed event"

    def test_invalid_json(self, client):
        resp = client.post("/api/webhooks/stripe", data=b"{not json", content_type="application/json")
        assert resp.status_code == 400

    def test_signature_checked_when_secret_configured(self, client, app):
        app.config["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
        resp = _post(client, "customer.created", {"id": "cus_1"}, headers={"Stripe-Signature": "t=1,v1=bad"})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["message"] == "Invalid signature"

    def test_valid_signature_accepted(self, client, app, monkeypatch):
        app.config["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
        seen = {}

        def _construct(payload, sig, secret):
            seen.update(sig=sig, secret=secret)
            return json.loads(payload)

        monkeypatch.setattr(stripe.Webhook, "construct_event", _construct)
        resp = _post(client, "customer.created", {"id": "cus_1"}, headers={"Stripe-Signature": "t=1,v1=good"})
        assert resp.status_code == 200
        assert seen == {"sig": "t=1,v1=good", "secret": "whsec_test"}

    def test_handler_failure_forgets_event(self, client, app, monkeypatch):
        from crowdfund.services import donations as donation_service

        def _boom(obj):
            raise RuntimeError("db exploded")

        monkeypatch.setitem(donation_service.WEBHOOK_HANDLERS, "charge.refunded", _boom)
        resp = _post(client, "charge.refunded", {"id": "ch_1"}, event_id="evt_fail")
        assert resp.status_code == 500
        error = resp.get_json()["error"]
        assert error["message"] == "Webhook processing failed"
        assert error["received"] is False
        with app.app_context():
            assert StripeEvent.query.filter_by(event_id="evt_fail").count() == 0


# ---------------------------------------------------------------------------
# payment_intent.*
# ---------------------------------------------------------------------------

class TestPaymentIntentEvents:
    def test_failed_then_succeeded(self, client, make_user, make_campaign, make_donation, fetch):
        cid = make_campaign(make_user())
        did = make_donation(make_user(), cid, amount_cents=2000, status="pending", stripe_payment_intent_id="pi_retry")

        _post(client, "payment_intent.payment_failed", {"id": "pi_retry"})
        assert fetch(Donation, did).status == "failed"
        assert fetch(Campaign, cid).current_cents == 0

        _post(client, "payment_intent.succeeded", {"id": "pi_retry"})
        assert fetch(Donation, did).status == "completed"
        assert fetch(Campaign, cid).current_cents == 2000

    def test_success_for_unknown_intent_creates_donation(self, client, app, make_user, make_campaign, fetch):
        donor = make_user()
        cid = make_campaign(make_user())
        obj = {
            "id": "pi_external",
            "amount_received": 4200,
            "currency": "usd",
            "metadata": {"campaign_id": str(cid), "user_id": str(donor)},
        }
        _post(client, "payment_intent.succeeded", obj)
        with app.app_context():
            donation = Donation.query.filter_by(stripe_payment_intent_id="pi_external").one()
            assert donation.status == "completed"
            assert donation.donor_id == donor
        assert fetch(Campaign, cid).current_cents == 4200

    def test_success_without_campaign_is_skipped(self, client, app):
        resp = _post(client, "payment_intent.succeeded", {"id": "pi_orphan", "metadata": {}})
        assert resp.status_code == 200
        with app.app_context():
            assert Donation.query.count() == 0

    def test_refunded_donation_is_not_resurrected(self, client, make_user, make_campaign, make_donation, fetch):
        cid = make_campaign(make_user())
        did = make_donation(make_user(), cid, status="refunded", stripe_payment_intent_id="pi_gone")
        _post(client, "payment_intent.succeeded", {"id": "pi_gone"})
        assert fetch(Donation, did).status == "refunded"
        assert fetch(Campaign, cid).current_cents == 0

    def test_charge_refunded(self, client, make_user, make_campaign, make_donation, fetch):
        cid = make_campaign(make_user())
        did = make_donation(make_user(), cid, amount_cents=6000, stripe_payment_intent_id="pi_chg")
        _post(
            client,
            "charge.refunded",
            {"id": "ch_1", "payment_intent": "pi_chg", "amount": 6000, "amount_refunded": 6000, "refunded": True},
        )
        donation = fetch(Donation, did)
        assert donation.status == "refunded"
        assert donation.refund_reason == "refunded via Stripe"
        assert fetch(Campaign, cid).current_cents == 0

    def test_partial_charge_refund_keeps_donation(self, client, make_user, make_campaign, make_donation, fetch):
        cid = make_campaign(make_user())
        did = make_donation(make_user(), cid, amount_cents=10000, stripe_payment_intent_id="pi_part")
        resp = _post(
            client,
            "charge.refunded",
            {"id": "ch_2", "payment_intent": "pi_part", "amount": 10000, "amount_refunded": 1000, "refunded": False},
        )
        assert resp.status_code == 200
        assert fetch(Donation, did).status == "completed"
        assert fetch(Campaign, cid).current_cents == 10000


# ---------------------------------------------------------------------------
# invoice.* + customer.subscription.*
# ---------------------------------------------------------------------------

class TestSubscriptionEvents:
    def test_invoice_paid_records_installment(self, client, app, schedule, fetch):
        invoice = {
            "id": "in_month2",
            "subscription": "sub_live",
            "amount_paid": 1500,
            "currency": "usd",
            "created": 1704067200,  # 2024-01-01T00:00:00Z
            "billing_reason": "subscription_cycle",
            "payment_intent": "pi_month2",
        }
        _post(client, "invoice.payment_succeeded", invoice)
        _post(client, "invoice.payment_succeeded", invoice)  # new event id, same invoice

        rd = fetch(RecurringDonation, schedule["recurring"])
        assert rd.payment_count == 1
        assert rd.total_paid_cents == 1500
        assert rd.next_payment_date.isoformat().startswith("2024-02-01")
        assert fetch(Campaign, schedule["campaign"]).current_cents == 1500
        with app.app_context():
            donation = Donation.query.filter_by(stripe_invoice_id="in_month2").one()
            assert donation.payment_type == "recurring"
            assert donation.donor_id == schedule["donor"]

    def test_first_invoice_not_double_counted(self, client, app, schedule, make_donation, fetch):
        with app.app_context():
            rd = db.session.get(RecurringDonation, schedule["recurring"])
            rd.payment_count = 1
            db.session.commit()
        make_donation(
            schedule["donor"],
            schedule["campaign"],
            amount_cents=1500,
            payment_type="recurring",
            recurring_donation_id=schedule["recurring"],
        )
        _post(
            client,
            "invoice.payment_succeeded",
            {"id": "in_first", "subscription": "sub_live", "amount_paid": 1500, "billing_reason": "subscription_create"},
        )
        assert fetch(RecurringDonation, schedule["recurring"]).payment_count == 1
        assert fetch(Campaign, schedule["campaign"]).current_cents == 1500

    def test_subscription_paused_and_resumed_remotely(self, client, schedule, fetch):
        _post(client, "customer.subscription.updated", {"id": "sub_live", "pause_collection": {"behavior": "void"}})
        assert fetch(RecurringDonation, schedule["recurring"]).status == "paused"

        _post(
            client,
            "customer.subscription.updated",
            {"id": "sub_live", "pause_collection": None, "current_period_end": 1735689600},
        )
        rd = fetch(RecurringDonation, schedule["recurring"])
        assert rd.status == "active"
        assert rd.next_payment_date.isoformat().startswith("2025-01-01")

    def test_subscription_deleted_cancels_schedule(self, client, schedule, make_donation, fetch):
        pending = make_donation(
            schedule["donor"],
            schedule["campaign"],
            status="pending",
            payment_type="recurring",
            recurring_donation_id=schedule["recurring"],
        )
        _post(client, "customer.subscription.deleted", {"id": "sub_live"})
        assert fetch(RecurringDonation, schedule["recurring"]).status == "cancelled"
        assert fetch(Donation, pending).status == "cancelled"

        # a late update for a cancelled schedule is ignored
        _post(client, "customer.subscription.updated", {"id": "sub_live", "pause_collection": None})
        assert fetch(RecurringDonation, schedule["recurring"]).status == "cancelled"

    def test_invoice_failed_is_acknowledged(self, client, schedule, fetch):
        resp = _post(client, "invoice.payment_failed", {"id": "in_bad", "subscription": "sub_live", "attempt_count": 2})
        assert resp.status_code == 200
        assert fetch(RecurringDonation, schedule["recurring"]).status == "active"
