"""Tests for the JSON API and health endpoint."""

import base64
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from blueslash.core.config import Settings
from blueslash.core.context import AppContext
from blueslash.core.db_client import DocumentStore
from blueslash.main import create_app
from tests.unit.mocks import FakeGemEstimator, InMemoryBlobStore, RecordingNotifier


@pytest.fixture
def api_ctx(test_settings: Settings) -> AppContext:
    """Context whose store is connected by the application lifespan."""
    return AppContext(
        store=DocumentStore(test_settings.sqlite_db_path),
        notifier=RecordingNotifier(),
        gem_estimator=FakeGemEstimator(gems=10),
        blob_store=InMemoryBlobStore(),
        settings=test_settings,
    )


@pytest.fixture
def client(api_ctx: AppContext) -> Iterator[TestClient]:
    with TestClient(create_app(api_ctx, run_scheduler=False)) as test_client:
        yield test_client


def as_user(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


def sign_up(client: TestClient, user_id: str) -> None:
    response = client.put(
        "/api/users/me", json={"email": f"{user_id}@example.com", "display_name": user_id.title()}, headers=as_user(user_id)
    )
    assert response.status_code == 200


@pytest.fixture
def household_id(client: TestClient) -> str:
    """Household headed by alice with bob, carol and dave as members."""
    for user_id in ("alice", "bob", "carol", "dave"):
        sign_up(client, user_id)
    household = client.post("/api/households", json={"name": "Blue House"}, headers=as_user("alice")).json()
    invite = client.post(f"/api/households/{household['id']}/invites", headers=as_user("alice")).json()
    for user_id in ("bob", "carol", "dave"):
        response = client.post(f"/api/invites/{invite['token']}/join", headers=as_user(user_id))
        assert response.status_code == 200
    return household["id"]


def create_task(client: TestClient, household_id: str, **overrides) -> dict:
    body = {
        "title": "Take out the recycling",
        "due_date": (datetime.now(UTC) + timedelta(days=5)).isoformat(),
        "gems": 10,
        "status": "published",
        **overrides,
    }
    response = client.post(f"/api/households/{household_id}/tasks", json=body, headers=as_user("alice"))
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.unit
class TestHealth:
    def test_health_reports_scheduler(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] in ("healthy", "degraded")
        assert data["scheduler"]["running"] is False


@pytest.mark.unit
class TestUsersAndHouseholds:
    def test_missing_user_header_rejected(self, client):
        response = client.get("/api/users/me")

        assert response.status_code == 422

    def test_unknown_user_is_404(self, client):
        response = client.get("/api/users/me", headers=as_user("nobody"))

        assert response.status_code == 404
        assert response.json()["code"] == "ERR_NOT_FOUND"

    def test_household_membership(self, client, household_id):
        members = client.get(f"/api/households/{household_id}/members", headers=as_user("bob")).json()

        assert [m["id"] for m in members] == ["alice", "bob", "carol", "dave"]

    def test_outsider_cannot_read_household(self, client, household_id):
        sign_up(client, "zed")

        response = client.get(f"/api/households/{household_id}", headers=as_user("zed"))

        assert response.status_code == 403
        assert response.json()["code"] == "ERR_PERMISSION_DENIED"

    def test_settings_require_head(self, client, household_id):
        response = client.patch(
            f"/api/households/{household_id}/settings", json={"name": "Bob's"}, headers=as_user("bob")
        )

        assert response.status_code == 403

    def test_notification_preferences(self, client, household_id):
        response = client.patch(
            "/api/users/me/notification-preferences", json={"kitchen_posts": False}, headers=as_user("bob")
        )

        assert response.status_code == 200
        assert response.json()["notification_preferences"]["kitchen_posts"] is False

    def test_invalid_invite_token(self, client, household_id):
        sign_up(client, "zed")

        response = client.post("/api/invites/not-a-real-token-at-all/join", headers=as_user("zed"))

        assert response.status_code == 404
        assert response.json()["message"] == "Invalid or expired invite link"


@pytest.mark.unit
class TestTaskEndpoints:
    def test_claim_conflict_is_409(self, client, household_id):
        task = create_task(client, household_id)
        first = client.post(f"/api/tasks/{task['id']}/claim", headers=as_user("bob"))

        second = client.post(f"/api/tasks/{task['id']}/claim", headers=as_user("carol"))

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["message"] == "This task was already claimed by someone else."

    def test_full_lifecycle(self, client, household_id, api_ctx):
        task = create_task(client, household_id, gems=12)
        client.post(f"/api/tasks/{task['id']}/claim", headers=as_user("bob"))
        client.post(f"/api/tasks/{task['id']}/complete", headers=as_user("bob"))

        client.post(f"/api/tasks/{task['id']}/verify", json={"verified": True}, headers=as_user("carol"))
        response = client.post(f"/api/tasks/{task['id']}/verify", json={"verified": True}, headers=as_user("dave"))

        assert response.json()["status"] == "verified"
        history = client.get("/api/users/me/gems", headers=as_user("bob")).json()
        assert [entry["amount"] for entry in history] == [12]
        board = client.get(f"/api/households/{household_id}/leaderboard", headers=as_user("bob")).json()
        assert board[0] == {"user_id": "bob", "display_name": "Bob", "gems": 12}
        assert "Task Verified" in api_ctx.notifier.titles_for("bob")

    def test_precondition_failure_is_412(self, client, household_id):
        task = create_task(client, household_id)

        response = client.post(f"/api/tasks/{task['id']}/complete", headers=as_user("alice"))

        # alice is not the claimant
        assert response.status_code == 403

        response = client.post(f"/api/tasks/{task['id']}/publish", headers=as_user("alice"))
        assert response.status_code == 412
        assert response.json()["code"] == "ERR_FAILED_PRECONDITION"

    def test_patch_only_changes_given_fields(self, client, household_id):
        task = create_task(client, household_id, status="draft", description="- [ ] Glass")

        response = client.patch(f"/api/tasks/{task['id']}", json={"title": "Recycling run"}, headers=as_user("alice"))

        updated = response.json()
        assert updated["title"] == "Recycling run"
        assert updated["description"] == "- [ ] Glass"
        assert updated["gems"] == 10

    def test_delete_draft(self, client, household_id):
        task = create_task(client, household_id, status="draft")

        response = client.delete(f"/api/tasks/{task['id']}", headers=as_user("alice"))

        assert response.status_code == 204
        assert client.get(f"/api/tasks/{task['id']}", headers=as_user("alice")).status_code == 404

    def test_llm_failure_is_502(self, client, household_id, api_ctx):
        api_ctx.gem_estimator.error = RuntimeError("offline")

        response = client.post(
            f"/api/households/{household_id}/gem-estimate", json={"description": "Mow"}, headers=as_user("alice")
        )

        assert response.status_code == 502
        assert response.json()["code"] == "ERR_LLM"

    def test_status_filter(self, client, household_id):
        create_task(client, household_id, status="draft")
        published = create_task(client, household_id)

        response = client.get(
            f"/api/households/{household_id}/tasks", params={"status": "published"}, headers=as_user("bob")
        )

        assert [t["id"] for t in response.json()] == [published["id"]]

    def test_task_listing_pages(self, client, household_id):
        created = [
            create_task(client, household_id, due_date=(datetime.now(UTC) + timedelta(days=days)).isoformat())
            for days in (2, 3, 4)
        ]
        url = f"/api/households/{household_id}/tasks"

        everything = client.get(url, headers=as_user("bob")).json()
        page = client.get(url, params={"limit": 1, "offset": 1}, headers=as_user("bob")).json()
        invalid = client.get(url, params={"limit": 0}, headers=as_user("bob"))

        assert [t["id"] for t in everything] == [t["id"] for t in created]
        assert [t["id"] for t in page] == [created[1]["id"]]
        assert invalid.status_code == 422


@pytest.mark.unit
class TestMessagesAndKitchen:
    def test_gift_without_balance_is_412(self, client, household_id):
        response = client.post(
            f"/api/households/{household_id}/messages",
            json={"recipient_id": "bob", "body": "Have some", "gems": 5},
            headers=as_user("carol"),
        )

        assert response.status_code == 412
        assert response.json()["message"] == "Not enough gems."
        messages = client.get(f"/api/households/{household_id}/messages", headers=as_user("bob")).json()
        assert messages == []

    def test_send_and_read_message(self, client, household_id):
        sent = client.post(
            f"/api/households/{household_id}/messages",
            json={"recipient_id": "bob", "body": "Thanks!"},
            headers=as_user("carol"),
        ).json()

        read = client.post(f"/api/messages/{sent['id']}/read", headers=as_user("bob")).json()

        assert read["read_at"] is not None

    def test_kitchen_post_with_attachment(self, client, household_id, api_ctx):
        content = base64.b64encode(b"%PDF-1.7").decode()

        response = client.post(
            f"/api/households/{household_id}/kitchen-posts",
            json={
                "body": "Takeaway menu",
                "attachment": {"file_name": "menu.pdf", "content_type": "application/pdf", "content": content},
            },
            headers=as_user("dave"),
        )

        post = response.json()
        assert response.status_code == 200
        assert post["attachment"]["type"] == "pdf"
        assert api_ctx.blob_store.blobs[post["attachment"]["storage_path"]][0] == b"%PDF-1.7"

        deleted = client.delete(f"/api/kitchen-posts/{post['id']}", headers=as_user("alice"))
        assert deleted.status_code == 204

    def test_unsupported_attachment_is_422(self, client, household_id):
        content = base64.b64encode(b"GIF89a").decode()

        response = client.post(
            f"/api/households/{household_id}/kitchen-posts",
            json={
                "body": "Funny",
                "attachment": {"file_name": "cat.gif", "content_type": "image/gif", "content": content},
            },
            headers=as_user("dave"),
        )

        assert response.status_code == 422
        assert response.json()["message"].startswith("Unsupported file type")
