"""
Tests for the webinar HTTP API

Runs the FastAPI app in-process with TestClient. Every service is rebuilt
on a fresh in-memory store and swapped in through dependency_overrides, so
no MongoDB, SES or HubSpot is involved.
"""

import pytest
import jwt
from fastapi.testclient import TestClient
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import SECRET_KEY, ALGORITHM
from rate_limiter import limiter
from routers.deps import (
    get_store,
    get_attendance_engine,
    get_cta_activation_set,
    get_reminder_scheduler,
    get_audience_reconciler,
    get_webinar_admin,
)
from server import app
from services.attendance_engine import AttendanceEngine
from services.audience_reconciler import AudienceReconciler
from services.cta_activation import CtaActivationSet
from services.reminder_scheduler import ReminderScheduler
from services.webinar_admin import WebinarAdmin

WEBINAR = {
    "name": "Growth Webinar",
    "slug": "growth-webinar",
    "scheduled_at": "2025-11-12T20:30:00Z",
    "line1": "Growth Webinar",
    "capacity": 2,
    "ctas": [
        {"label": "Book a call", "link": "https://example.com/book"},
        {"label": "Download guide", "link": "https://example.com/guide"},
        {"label": "Join community", "link": "https://example.com/community"},
    ],
}


def auth(user_id: str) -> dict:
    token = jwt.encode({"sub": user_id}, SECRET_KEY, algorithm=ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(store, notifier, audience, clock, add_users):
    """TestClient wired to fresh services; startup events (scheduler, indexes) are not run"""
    add_users("admin", role="admin")
    add_users("u1", "u2", "u3")

    app.dependency_overrides = {
        get_store: lambda: store,
        get_attendance_engine: lambda: AttendanceEngine(store, notifier=notifier, clock=clock, confirmation_template_id=""),
        get_cta_activation_set: lambda: CtaActivationSet(store),
        get_reminder_scheduler: lambda: ReminderScheduler(store, notifier, clock=clock, template_id="reminder-tpl"),
        get_audience_reconciler: lambda: AudienceReconciler(store, audience),
        get_webinar_admin: lambda: WebinarAdmin(store, clock=clock),
    }
    limiter.enabled = False
    yield TestClient(app)
    limiter.enabled = True
    app.dependency_overrides = {}


@pytest.fixture
def webinar(client):
    response = client.post("/api/webinars/admin", json=WEBINAR, headers=auth("admin"))
    assert response.status_code == 200
    return response.json()["webinar"]


class TestAuth:
    """Tests for bearer token handling"""

    def test_missing_token(self, client, webinar):
        response = client.post(f"/api/webinars/{webinar['id']}/register")
        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"

    def test_invalid_token(self, client, webinar):
        response = client.post(
            f"/api/webinars/{webinar['id']}/register",
            headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid token"

    def test_unknown_user(self, client, webinar):
        response = client.post(f"/api/webinars/{webinar['id']}/register", headers=auth("ghost"))
        assert response.status_code == 401
        assert response.json()["detail"] == "User not found"

    def test_admin_endpoints_reject_attendees(self, client, webinar):
        response = client.get("/api/webinars/admin", headers=auth("u1"))
        assert response.status_code == 403
        assert response.json()["detail"] == "Admin access required"


class TestRegistrationEndpoints:
    """Tests for register, unregister, attend and watch"""

    def test_register_until_full(self, client, webinar):
        url = f"/api/webinars/{webinar['id']}/register"

        first = client.post(url, headers=auth("u1"))
        assert first.status_code == 200
        assert first.json()["message"] == "Successfully registered for the webinar"

        again = client.post(url, headers=auth("u1"))
        assert again.status_code == 409
        assert again.json()["detail"] == "User is already registered for this webinar"

        assert client.post(url, headers=auth("u2")).status_code == 200

        full = client.post(url, headers=auth("u3"))
        assert full.status_code == 400
        assert full.json()["detail"] == "Webinar is full"

    def test_unknown_webinar(self, client):
        response = client.post("/api/webinars/missing/register", headers=auth("u1"))
        assert response.status_code == 404
        assert response.json()["detail"] == "Webinar not found"

    @pytest.mark.parametrize("path", ["register", "unregister"])
    def test_unregister_paths(self, client, webinar, path):
        client.post(f"/api/webinars/{webinar['id']}/register", headers=auth("u1"))

        response = client.delete(f"/api/webinars/{webinar['id']}/{path}", headers=auth("u1"))
        assert response.status_code == 200

        missing = client.delete(f"/api/webinars/{webinar['id']}/{path}", headers=auth("u1"))
        assert missing.status_code == 400
        assert missing.json()["detail"] == "User is not registered for this webinar"

    def test_attend_then_watch_keeps_attended(self, client, webinar):
        client.post(f"/api/webinars/{webinar['id']}/register", headers=auth("u1"))

        attended = client.post(f"/api/webinars/{webinar['id']}/attend", headers=auth("u1"))
        watched = client.post(f"/api/webinars/{webinar['id']}/watch", headers=auth("u1"))

        assert attended.json()["status"] == "attended"
        assert watched.status_code == 200
        assert watched.json()["status"] == "attended"
        assert watched.json()["message"] == "Status remains as attended"


class TestCtaEndpoints:
    """Tests for CTA activation"""

    def test_activate_twice_then_read(self, client, webinar):
        url = f"/api/webinars/{webinar['id']}/cta/1/activate"
        client.post(url, headers=auth("admin"))
        response = client.post(url, headers=auth("admin"))

        assert response.json()["active_cta_indices"] == [1]
        active = client.get(f"/api/webinars/{webinar['id']}/cta/active")
        assert active.json()["active_cta_indices"] == [1]

    def test_deactivate_absent_index_is_noop(self, client, webinar):
        response = client.post(f"/api/webinars/{webinar['id']}/cta/99/deactivate", headers=auth("admin"))

        assert response.status_code == 200
        assert response.json()["active_cta_indices"] == []

    @pytest.mark.parametrize("index, detail", [
        ("abc", "Invalid CTA index"),
        ("3", "CTA index out of range"),
        ("-1", "CTA index out of range"),
    ])
    def test_activate_rejects_bad_index(self, client, webinar, index, detail):
        response = client.post(f"/api/webinars/{webinar['id']}/cta/{index}/activate", headers=auth("admin"))

        assert response.status_code == 400
        assert response.json()["detail"] == detail

    def test_attendee_cannot_activate(self, client, webinar):
        response = client.post(f"/api/webinars/{webinar['id']}/cta/0/activate", headers=auth("u1"))
        assert response.status_code == 403


class TestAdminEndpoints:
    """Tests for admin webinar management"""

    def test_duplicate_slug(self, client, webinar):
        response = client.post("/api/webinars/admin", json=WEBINAR, headers=auth("admin"))
        assert response.status_code == 409

    def test_update_rejects_cta_rewrite(self, client, webinar):
        response = client.put(
            f"/api/webinars/admin/{webinar['id']}",
            json={"ctas": WEBINAR["ctas"][1:]},
            headers=auth("admin")
        )
        assert response.status_code == 400

    def test_end_hides_from_public_listing(self, client, webinar):
        assert len(client.get("/api/webinars/public").json()["webinars"]) == 1

        ended = client.post(f"/api/webinars/admin/{webinar['id']}/end", headers=auth("admin"))

        assert ended.json()["webinar"]["status"] == "ended"
        assert client.get("/api/webinars/public").json()["webinars"] == []

    def test_status_cannot_move_backwards(self, client, webinar):
        client.post(f"/api/webinars/admin/{webinar['id']}/status", json={"status": "in_progress"}, headers=auth("admin"))

        response = client.post(
            f"/api/webinars/admin/{webinar['id']}/status",
            json={"status": "waiting"},
            headers=auth("admin")
        )
        assert response.status_code == 400

    def test_attendees_and_admin_attend(self, client, webinar):
        url = f"/api/webinars/admin/{webinar['id']}/user/u2/attend"
        assert client.post(url, headers=auth("admin")).status_code == 400

        client.post(f"/api/webinars/{webinar['id']}/register", headers=auth("u2"))
        response = client.post(url, headers=auth("admin"))
        assert response.json()["message"] == "User marked as attended for the webinar"

        attendees = client.get(f"/api/webinars/admin/{webinar['id']}/attendees", headers=auth("admin")).json()
        assert attendees["total"] == 1
        assert attendees["attendees"][0]["user_id"] == "u2"
        assert attendees["attendees"][0]["status"] == "attended"
        assert attendees["attendees"][0]["email"] == "u2@example.com"

    def test_public_webinar_hides_roster(self, client, webinar):
        client.post(f"/api/webinars/{webinar['id']}/register", headers=auth("u1"))

        public = client.get(f"/api/webinars/public/{webinar['slug']}").json()["webinar"]

        assert "attendees" not in public
        assert public["registered_count"] == 1


class TestIntegrationEndpoints:
    """Tests for reminder and audience endpoints"""

    def test_test_reminder(self, client, webinar, notifier):
        client.post(f"/api/webinars/{webinar['id']}/register", headers=auth("u1"))

        response = client.post(f"/api/webinars/{webinar['id']}/test-reminder", headers=auth("admin"))

        assert response.status_code == 200
        assert response.json()["webinar"]["reminder_sent"] is True
        notifier.send_template_notification.assert_awaited_once()

    def test_sync_audience(self, client, webinar, audience):
        client.post(f"/api/webinars/{webinar['id']}/register", headers=auth("u1"))

        response = client.post(f"/api/webinars/{webinar['id']}/sync-audience", headers=auth("admin"))

        assert response.status_code == 200
        body = response.json()
        assert body["created"] is True
        assert audience.lists[body["list_id"]]["members"] == [audience.contacts["u1@example.com"]]

    def test_worker_status(self, client):
        response = client.get("/api/scheduler/worker-status")

        assert response.status_code == 200
        assert response.json()["running"] is False
        assert "reminders" in response.json()
