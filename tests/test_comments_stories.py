"""Comments and impact stories on campaigns."""

from __future__ import annotations

from datetime import timedelta

from crowdfund.extensions import db
from crowdfund.models import Comment, ImpactStory
from crowdfund.models.mixins import utcnow


def _comment(client, headers, campaign_id, content="Great cause!"):
    return client.post("/api/comments", json={"campaignId": campaign_id, "content": content}, headers=headers)


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------

class TestComments:
    def test_post_and_list(self, client, make_user, make_campaign, auth_headers):
        author = make_user(name="Commenter")
        cid = make_campaign(make_user())

        resp = _comment(client, auth_headers(author), cid, content="Great <script>x</script>cause!")
        assert resp.status_code == 201
        comment = resp.get_json()["comment"]
        assert comment["content"] == "Great cause!"
        assert comment["user"]["name"] == "Commenter"

        _comment(client, auth_headers(author), cid, content="Second")
        body = client.get(f"/api/comments?campaignId={cid}").get_json()
        assert [c["content"] for c in body["comments"]] == ["Second", "Great cause!"]
        assert body["pagination"]["total"] == 2

    def test_list_requires_campaign(self, client):
        assert client.get("/api/comments").status_code == 400

    def test_inactive_campaign_rejected(self, client, make_user, make_campaign, auth_headers):
        cid = make_campaign(make_user(), status="pending")
        assert _comment(client, auth_headers(make_user()), cid).status_code == 400

    def test_content_rules(self, client, make_user, make_campaign, auth_headers):
        uid = make_user()
        cid = make_campaign(make_user())
        assert _comment(client, auth_headers(uid), cid, content="   ").status_code == 400
        assert _comment(client, auth_headers(uid), cid, content="x" * 2001).status_code == 400
        assert _comment(client, auth_headers(uid), cid, content="x" * 2000).status_code == 201

    def test_edit_only_by_author_within_window(self, client, app, make_user, make_campaign, auth_headers, fetch):
        author = make_user()
        cid = make_campaign(make_user())
        comment_id = _comment(client, auth_headers(author), cid).get_json()["comment"]["id"]

        other = client.patch("/api/comments", json={"commentId": comment_id, "content": "hijack"}, headers=auth_headers(make_user()))
        assert other.status_code == 403

        ok = client.patch("/api/comments", json={"commentId": comment_id, "content": "Edited"}, headers=auth_headers(author))
        assert ok.status_code == 200
        assert fetch(Comment, comment_id).content == "Edited"

        with app.app_context():
            db.session.get(Comment, comment_id).created_at = utcnow() - timedelta(hours=25)
            db.session.commit()
        late = client.patch("/api/comments", json={"commentId": comment_id, "content": "Too late"}, headers=auth_headers(author))
        assert late.status_code == 403

    def test_delete_permissions(self, client, make_user, make_campaign, auth_headers, fetch):
        owner = make_user()
        author = make_user()
        stranger = make_user()
        cid = make_campaign(owner)
        first = _comment(client, auth_headers(author), cid).get_json()["comment"]["id"]
        second = _comment(client, auth_headers(author), cid).get_json()["comment"]["id"]

        assert client.delete(f"/api/comments?commentId={first}", headers=auth_headers(stranger)).status_code == 403
        assert client.delete(f"/api/comments?commentId={first}", headers=auth_headers(author)).status_code == 200
        assert client.delete(f"/api/comments?comment_id={second}", headers=auth_headers(owner)).status_code == 200
        assert fetch(Comment, first) is None
        assert fetch(Comment, second) is None


# ---------------------------------------------------------------------------
# Impact stories
# ---------------------------------------------------------------------------

class TestStories:
    def test_owner_publishes_story(self, client, make_user, make_campaign, auth_headers):
        owner = make_user(name="Owner")
        cid = make_campaign(owner)
        resp = client.post(
            "/api/stories",
            json={"campaignId": cid, "title": "Wells dug", "content": "We dug three wells.", "imageUrl": "https://x/y.png"},
            headers=auth_headers(owner),
        )
        assert resp.status_code == 201
        story = resp.get_json()["story"]
        assert story["author"]["name"] == "Owner"
        assert story["campaign"]["id"] == cid
        assert story["image_url"] == "https://x/y.png"

        listed = client.get(f"/api/stories?campaignId={cid}").get_json()
        assert listed["pagination"]["total"] == 1
        detail = client.get(f"/api/campaigns/{cid}").get_json()["campaign"]
        assert [s["title"] for s in detail["impact_stories"]] == ["Wells dug"]

    def test_non_owner_cannot_publish(self, client, make_user, make_campaign, auth_headers):
        cid = make_campaign(make_user())
        resp = client.post(
            "/api/stories", json={"campaignId": cid, "title": "T", "content": "C"}, headers=auth_headers(make_user())
        )
        assert resp.status_code == 403

    def test_length_limits(self, client, make_user, make_campaign, auth_headers):
        owner = make_user()
        cid = make_campaign(owner)
        long_title = client.post(
            "/api/stories", json={"campaignId": cid, "title": "t" * 201, "content": "c"}, headers=auth_headers(owner)
        )
        missing = client.post("/api/stories", json={"campaignId": cid, "title": "t"}, headers=auth_headers(owner))
        assert long_title.status_code == 400
        assert missing.status_code == 400

    def test_update_and_delete(self, client, make_user, make_campaign, auth_headers, fetch):
        owner = make_user()
        admin = make_user(role="admin")
        cid = make_campaign(owner)
        sid = client.post(
            "/api/stories", json={"campaignId": cid, "title": "Draft", "content": "Body"}, headers=auth_headers(owner)
        ).get_json()["story"]["id"]

        resp = client.patch("/api/stories", json={"storyId": sid, "title": "Final"}, headers=auth_headers(owner))
        assert resp.status_code == 200
        assert fetch(ImpactStory, sid).title == "Final"
        assert fetch(ImpactStory, sid).content == "Body"

        denied = client.delete(f"/api/stories?storyId={sid}", headers=auth_headers(make_user()))
        assert denied.status_code == 403
        assert client.delete(f"/api/stories?story_id={sid}", headers=auth_headers(admin)).status_code == 200
        assert fetch(ImpactStory, sid) is None
