"""User management, profile, activity feed and notification preferences."""

from __future__ import annotations

from conftest import PASSWORD

from crowdfund.models import Campaign, Donation, User


# ---------------------------------------------------------------------------
# /api/users
# ---------------------------------------------------------------------------

class TestUsers:
    def test_self_lookup_includes_counts(self, client, make_user, make_campaign, make_donation, auth_headers):
        uid = make_user()
        make_campaign(uid)
        make_donation(uid, make_campaign(make_user()))

        body = client.get(f"/api/users?userId={uid}", headers=auth_headers(uid)).get_json()
        assert body["user"]["counts"] == {"campaigns": 1, "donations": 1, "comments": 0}

    def test_cannot_view_other_user(self, client, make_user, auth_headers):
        uid = make_user()
        other = make_user()
        assert client.get(f"/api/users?userId={other}", headers=auth_headers(uid)).status_code == 403

    def test_admin_list_with_filters(self, client, make_user, auth_headers):
        admin = make_user(role="admin", name="Admin Person")
        make_user(role="creator", name="Maker One", email="maker@example.com")
        make_user(role="donor", name="Giver Two")

        assert client.get("/api/users", headers=auth_headers(make_user())).status_code == 403

        everyone = client.get("/api/users", headers=auth_headers(admin)).get_json()
        assert everyone["pagination"]["total"] == 4
        creators = client.get("/api/users?role=creator", headers=auth_headers(admin)).get_json()
        assert [u["email"] for u in creators["users"]] == ["maker@example.com"]
        search = client.get("/api/users?search=giver", headers=auth_headers(admin)).get_json()
        assert [u["name"] for u in search["users"]] == ["Giver Two"]

    def test_update_name_and_email(self, client, make_user, auth_headers, fetch):
        uid = make_user()
        make_user(email="taken@example.com")

        clash = client.patch("/api/users", json={"email": "taken@example.com"}, headers=auth_headers(uid))
        assert clash.status_code == 409
        short = client.patch("/api/users", json={"name": "X"}, headers=auth_headers(uid))
        assert short.status_code == 400

        ok = client.patch("/api/users", json={"name": "New Name", "email": "New@Example.com"}, headers=auth_headers(uid))
        assert ok.status_code == 200
        user = fetch(User, uid)
        assert user.name == "New Name"
        assert user.email == "new@example.com"

    def test_password_change_needs_current_password(self, client, make_user, auth_headers, fetch):
        uid = make_user()
        headers = auth_headers(uid)
        assert client.patch("/api/users", json={"password": "NewPass123"}, headers=headers).status_code == 400
        assert client.patch("/api/users", json={"password": "short"}, headers=headers).status_code == 400
        resp = client.patch(
            "/api/users", json={"password": "NewPass123", "currentPassword": PASSWORD}, headers=headers
        )
        assert resp.status_code == 200
        assert fetch(User, uid).check_password("NewPass123")

    def test_admin_resets_password_and_role(self, client, make_user, auth_headers, fetch):
        admin = make_user(role="admin")
        uid = make_user()
        resp = client.patch(
            "/api/users", json={"userId": uid, "password": "Reset1234", "role": "creator"}, headers=auth_headers(admin)
        )
        assert resp.status_code == 200
        user = fetch(User, uid)
        assert user.role == "creator"
        assert user.check_password("Reset1234")

    def test_role_change_is_admin_only(self, client, make_user, auth_headers):
        uid = make_user()
        assert client.patch("/api/users", json={"role": "admin"}, headers=auth_headers(uid)).status_code == 403

    def test_delete_rules(self, client, make_user, make_campaign, make_donation, auth_headers, fetch):
        admin = make_user(role="admin")
        funded_owner = make_user()
        plain = make_user()
        make_donation(make_user(), make_campaign(funded_owner))
        spare = make_campaign(plain)
        own_gift = make_donation(plain, make_campaign(make_user()))

        assert client.delete(f"/api/users?userId={admin}", headers=auth_headers(admin)).status_code == 400
        assert client.delete(f"/api/users?userId={funded_owner}", headers=auth_headers(admin)).status_code == 400
        assert client.delete(f"/api/users?userId={plain}", headers=auth_headers(plain)).status_code == 403

        assert client.delete(f"/api/users?userId={plain}", headers=auth_headers(admin)).status_code == 200
        assert fetch(User, plain) is None
        assert fetch(Campaign, spare) is None
        assert fetch(Donation, own_gift).donor_id is None


# ---------------------------------------------------------------------------
# Profile + activity
# ---------------------------------------------------------------------------

def test_profile_roundtrip(client, make_user, auth_headers):
    uid = make_user(name="Before")
    headers = auth_headers(uid)
    assert client.get("/api/users/profile", headers=headers).get_json()["user"]["name"] == "Before"
    assert client.patch("/api/users/profile", json={"name": "A"}, headers=headers).status_code == 400
    resp = client.patch("/api/users/profile", json={"name": "After"}, headers=headers)
    assert resp.get_json()["user"]["name"] == "After"


def test_activity_feed_merges_sources(client, make_user, make_campaign, make_donation, auth_headers):
    uid = make_user()
    mine = make_campaign(uid, title="My Own Campaign")
    make_donation(make_user(), mine, amount_cents=3000)
    make_donation(uid, make_campaign(make_user()), amount_cents=1000)
    client.post("/api/comments", json={"campaignId": mine, "content": "Thanks all!"}, headers=auth_headers(uid))

    body = client.get("/api/users/activity", headers=auth_headers(uid)).get_json()
    kinds = [a["type"] for a in body["activities"]]
    assert sorted(kinds) == ["campaign_created", "comment", "donation_made", "donation_received"]
    assert kinds[0] == "comment"
    assert body["total"] == 4

    assert client.get(f"/api/users/activity?userId={make_user()}", headers=auth_headers(uid)).status_code == 403


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class TestNotifications:
    def test_settings_defaults_and_update(self, client, make_user, auth_headers):
        uid = make_user()
        headers = auth_headers(uid)
        settings = client.get("/api/users/notifications", headers=headers).get_json()["settings"]
        assert settings == {
            "email_notifications": True,
            "campaign_updates": True,
            "donation_alerts": True,
            "marketing_emails": False,
            "weekly_digest": True,
        }

        resp = client.patch(
            "/api/users/notifications", json={"marketingEmails": True, "weekly_digest": False}, headers=headers
        )
        updated = resp.get_json()["settings"]
        assert updated["marketing_emails"] is True
        assert updated["weekly_digest"] is False
        assert updated["donation_alerts"] is True

    def test_send_respects_preferences(self, client, make_user, auth_headers):
        uid = make_user()
        headers = {"Authorization": "Bearer test-api-token"}
        body = {"userId": uid, "type": "marketing", "title": "Hello", "message": "News"}

        suppressed = client.post("/api/users/notifications", json=body, headers=headers).get_json()
        assert suppressed["sent"] is False
        assert suppressed["reason"] == "marketing_emails disabled"

        sent = client.post("/api/users/notifications", json={**body, "type": "campaign_update"}, headers=headers)
        assert sent.get_json()["sent"] is True

        client.patch("/api/users/notifications", json={"emailNotifications": False}, headers=auth_headers(uid))
        off = client.post("/api/users/notifications", json={**body, "type": "campaign_update"}, headers=headers)
        assert off.get_json()["reason"] == "email notifications disabled"

    def test_send_requires_service_or_admin(self, client, make_user, auth_headers):
        uid = make_user()
        body = {"userId": uid, "type": "campaign_update", "title": "Hi", "message": "There"}
        assert client.post("/api/users/notifications", json=body).status_code == 401
        assert client.post("/api/users/notifications", json=body, headers=auth_headers(uid)).status_code == 403
        admin = make_user(role="admin")
        assert client.post("/api/users/notifications", json=body, headers=auth_headers(admin)).status_code == 200

    def test_send_validates_payload(self, client, make_user):
        uid = make_user()
        headers = {"Authorization": "Bearer test-api-token"}
        bad_type = client.post(
            "/api/users/notifications", json={"userId": uid, "type": "sms", "title": "a", "message": "b"}, headers=headers
        )
        assert bad_type.status_code == 400
        no_text = client.post("/api/users/notifications", json={"userId": uid, "type": "marketing"}, headers=headers)
        assert no_text.status_code == 400

    def test_count_covers_last_day_on_own_campaigns(self, client, make_user, make_campaign, make_donation, auth_headers):
        owner = make_user()
        fan = make_user()
        cid = make_campaign(owner)
        make_donation(fan, cid)
        make_donation(fan, cid, status="pending")
        client.post("/api/comments", json={"campaignId": cid, "content": "Go!"}, headers=auth_headers(fan))
        client.post("/api/comments", json={"campaignId": cid, "content": "Thanks"}, headers=auth_headers(owner))

        body = client.get("/api/notifications/count", headers=auth_headers(owner)).get_json()
        assert body == {"ok": True, "count": 2, "donations": 1, "comments": 1}
