"""HTTP-level tests for the assembled application."""

from __future__ import annotations

import pytest
from conftest import FakeGateway, FakeObjectStore
from litestar.testing import TestClient
from mediapush import MediaProxy, create_app
from mediapush.jobstore import MemoryJobStore
from mediapush.registry import MemoryTokenRegistry

CLIP = bytes(range(256)) * 40  # 10,240 bytes


@pytest.fixture
def registry() -> MemoryTokenRegistry:
    return MemoryTokenRegistry({"A", "B", "C"})


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway(invalid={"stale"})


@pytest.fixture
def job_store() -> MemoryJobStore:
    return MemoryJobStore()


@pytest.fixture
def client(storage_settings, registry, gateway, job_store):
    store = FakeObjectStore({"clip.mp4": (CLIP, None)})
    app = create_app(
        proxy=MediaProxy(storage_settings, client=store.client),
        gateway=gateway,
        registry=registry,
        job_store=job_store,
    )
    with TestClient(app=app) as test_client:
        yield test_client


def test_health(client, gateway):
    """Test that the health endpoint responds once the app has started."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert gateway.started


class TestNotificationRoutes:
    """Test the notification HTTP routes."""

    def test_send(self, client, gateway):
        """Test that a single send reports success."""
        response = client.post(
            "/send", json={"token": "A", "title": "Hi", "body": "There"}
        )

        assert response.status_code == 200
        assert response.json() == {"status": "sent"}
        assert [token for token, _ in gateway.sent] == ["A"]

    def test_send_to_invalid_token_prunes_it(self, client, registry):
        """Test that a permanently invalid token yields 502 and is pruned."""
        registry._tokens.add("stale")

        response = client.post(
            "/send", json={"token": "stale", "title": "Hi", "body": "There"}
        )

        assert response.status_code == 502
        assert response.json()["error"] == "permanently_invalid"
        assert "stale" not in registry._tokens

    def test_send_requires_title(self, client):
        """Test that request bodies are validated."""
        response = client.post("/send", json={"token": "A", "body": "There"})
        assert response.status_code == 400

    def test_register_token_then_broadcast(self, client, gateway):
        """Test that a registered token receives an immediate broadcast."""
        response = client.post("/tokens", json={"token": "D"})
        assert response.status_code == 201

        response = client.post("/broadcast", json={"title": "Hi", "body": "All"})

        assert response.status_code == 200
        assert response.json() == {"success_count": 4, "failure_count": 0, "total": 4}
        assert sorted(token for token, _ in gateway.sent) == ["A", "B", "C", "D"]

    @pytest.mark.parametrize(
        ("date", "time"),
        [("2030-13-01", "10:00"), ("2030-01-01", "25:61"), ("2000-01-01", "10:00")],
    )
    def test_schedule_rejects_bad_times(self, client, job_store, date, time):
        """Test that invalid or past schedule times are rejected before storage."""
        response = client.post(
            "/schedule",
            json={"token": "A", "title": "Hi", "body": "B", "date": date, "time": time},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_schedule_time"
        assert job_store._records == {}

    def test_broadcast_needs_date_and_time_together(self, client, gateway):
        """Test that a broadcast with only a date is rejected."""
        response = client.post(
            "/broadcast", json={"title": "Hi", "body": "All", "date": "2099-01-01"}
        )
        assert response.status_code == 400
        assert gateway.sent == []

    def test_schedule_status_and_cancel(self, client, job_store, gateway):
        """Test that a scheduled broadcast can be inspected and cancelled."""
        response = client.post(
            "/broadcast",
            json={"title": "Hi", "body": "All", "date": "2099-01-01", "time": "08:00"},
        )
        assert response.status_code == 202
        accepted = response.json()
        assert accepted["status"] == "accepted"
        assert accepted["scheduled_for"] == "2099-01-01T08:00:00+00:00"
        job_id = accepted["job_id"]
        assert job_id in job_store._records

        status = client.get(f"/schedule/{job_id}").json()
        assert status["state"] == "pending"
        assert status["recipients"] == "all"

        response = client.delete(f"/schedule/{job_id}")
        assert response.status_code == 200
        assert response.json()["state"] == "cancelled"

        response = client.get(f"/schedule/{job_id}")
        assert response.status_code == 404
        assert response.json()["error"] == "job_not_found"
        assert job_store._records == {}
        assert gateway.sent == []

    def test_schedule_single_recipient(self, client):
        """Test that a single-recipient schedule is accepted."""
        response = client.post(
            "/schedule",
            json={
                "token": "A",
                "title": "Hi",
                "body": "B",
                "date": "2099-06-30",
                "time": "23:15:30",
            },
        )
        assert response.status_code == 202
        job_id = response.json()["job_id"]
        assert client.get(f"/schedule/{job_id}").json()["recipients"] == "single"


class TestMediaRoutes:
    """Test the media relay mount."""

    def test_range_request(self, client):
        """Test that a ranged GET returns 206 with the requested bytes."""
        response = client.get("/media/clip.mp4", headers={"Range": "bytes=100-199"})

        assert response.status_code == 206
        assert response.headers["content-range"] == "bytes 100-199/10240"
        assert response.headers["accept-ranges"] == "bytes"
        assert response.headers["content-type"].startswith("video/mp4")
        assert response.content == CLIP[100:200]

    def test_full_object(self, client):
        """Test that a GET without Range returns the whole object."""
        response = client.get("/media/clip.mp4")

        assert response.status_code == 200
        assert response.content == CLIP

    def test_unsatisfiable_range(self, client):
        """Test that a range past the end returns 416."""
        response = client.get("/media/clip.mp4", headers={"Range": "bytes=10240-"})

        assert response.status_code == 416
        assert response.headers["content-range"] == "bytes */10240"

    def test_malformed_range(self, client):
        """Test that a malformed Range header returns 400."""
        response = client.get("/media/clip.mp4", headers={"Range": "items=0-1"})
        assert response.status_code == 400

    def test_missing_object(self, client):
        """Test that a missing object returns 404."""
        response = client.get("/media/nope.mp4")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_head(self, client):
        """Test that a ranged HEAD carries the partial headers."""
        response = client.head("/media/clip.mp4", headers={"Range": "bytes=0-9"})

        assert response.status_code == 206
        assert response.headers["content-range"] == "bytes 0-9/10240"
        assert response.headers["content-length"] == "10"
        assert response.content == b""

    def test_head_full_object(self, client):
        """Test that a plain HEAD carries the full length."""
        response = client.head("/media/clip.mp4")

        assert response.status_code == 200
        assert response.headers["content-length"] == "10240"
        assert "content-range" not in response.headers
        assert response.content == b""
