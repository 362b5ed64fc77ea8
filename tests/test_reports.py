"""Fraud reports: filing, scoping, admin review."""

from __future__ import annotations

from crowdfund.extensions import report_created
from crowdfund.models import Campaign, FraudReport


def _report(client, headers, campaign_id, reason="Suspicious images", description="Photos are stock images"):
    return client.post(
        "/api/reports",
        json={"campaignId": campaign_id, "reason": reason, "description": description},
        headers=headers,
    )


def test_file_report_sends_signal(client, app, make_user, make_campaign, auth_headers):
    seen = []

    def _listener(sender, report, **_):
        seen.append(report.reason)

    report_created.connect(_listener, sender=app)
    try:
        cid = make_campaign(make_user())
        resp = _report(client, auth_headers(make_user()), cid)
    finally:
        report_created.disconnect(_listener, sender=app)

    assert resp.status_code == 201
    report = resp.get_json()["report"]
    assert report["status"] == "open"
    assert report["campaign"]["id"] == cid
    assert "email" not in report["reporter"]
    assert seen == ["Suspicious images"]


def test_duplicate_and_self_reports(client, make_user, make_campaign, auth_headers):
    owner = make_user()
    reporter = make_user()
    cid = make_campaign(owner)

    assert _report(client, auth_headers(reporter), cid).status_code == 201
    dup = _report(client, auth_headers(reporter), cid)
    assert dup.status_code == 409
    own = _report(client, auth_headers(owner), cid)
    assert own.status_code == 400


def test_reason_validation(client, make_user, make_campaign, auth_headers):
    uid = make_user()
    cid = make_campaign(make_user())
    assert _report(client, auth_headers(uid), cid, reason="").status_code == 400
    assert _report(client, auth_headers(uid), cid, reason="r" * 201).status_code == 400
    assert _report(client, auth_headers(uid), cid, description="d" * 1001).status_code == 400


def test_listing_is_scoped(client, make_user, make_campaign, auth_headers):
    alice = make_user(email="alice@example.com")
    bob = make_user(email="bob@example.com")
    admin = make_user(role="admin")
    c1 = make_campaign(make_user())
    c2 = make_campaign(make_user())
    _report(client, auth_headers(alice), c1)
    _report(client, auth_headers(bob), c2)

    mine = client.get("/api/reports", headers=auth_headers(alice)).get_json()
    assert mine["pagination"]["total"] == 1
    assert "email" not in mine["reports"][0]["reporter"]

    everything = client.get("/api/reports", headers=auth_headers(admin)).get_json()
    assert everything["pagination"]["total"] == 2
    assert {r["reporter"]["email"] for r in everything["reports"]} == {"alice@example.com", "bob@example.com"}

    by_campaign = client.get(f"/api/reports?campaignId={c2}", headers=auth_headers(admin)).get_json()
    assert by_campaign["pagination"]["total"] == 1


def test_resolving_pauses_campaign(client, make_user, make_campaign, auth_headers, fetch):
    admin = make_user(role="admin")
    cid = make_campaign(make_user())
    rid = _report(client, auth_headers(make_user()), cid).get_json()["report"]["id"]

    no_resolution = client.patch("/api/reports", json={"reportId": rid, "status": "resolved"}, headers=auth_headers(admin))
    assert no_resolution.status_code == 400

    resp = client.patch(
        "/api/reports",
        json={"reportId": rid, "status": "resolved", "resolution": "Confirmed fraud"},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 200
    report = resp.get_json()["report"]
    assert report["reviewed_by"]["id"] == admin
    assert report["reviewed_at"] is not None
    assert fetch(Campaign, cid).status == "paused"


def test_dismiss_leaves_campaign_alone(client, make_user, make_campaign, auth_headers, fetch):
    admin = make_user(role="admin")
    cid = make_campaign(make_user())
    rid = _report(client, auth_headers(make_user()), cid).get_json()["report"]["id"]
    client.patch("/api/reports", json={"reportId": rid, "status": "dismissed"}, headers=auth_headers(admin))
    assert fetch(FraudReport, rid).status == "dismissed"
    assert fetch(Campaign, cid).status == "active"


def test_review_and_delete_are_admin_only(client, make_user, make_campaign, auth_headers, fetch):
    admin = make_user(role="admin")
    reporter = make_user()
    rid = _report(client, auth_headers(reporter), make_campaign(make_user())).get_json()["report"]["id"]

    assert client.patch("/api/reports", json={"reportId": rid, "status": "investigating"}, headers=auth_headers(reporter)).status_code == 403
    assert client.patch("/api/reports", json={"reportId": rid, "status": "bogus"}, headers=auth_headers(admin)).status_code == 400
    assert client.delete(f"/api/reports?reportId={rid}", headers=auth_headers(reporter)).status_code == 403
    assert client.delete(f"/api/reports?reportId={rid}", headers=auth_headers(admin)).status_code == 200
    assert fetch(FraudReport, rid) is None
