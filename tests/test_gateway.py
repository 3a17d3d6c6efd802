"""Tests for the web gateway."""

import pytest
from fastapi.testclient import TestClient

from zonn_bridge.config import Config
from zonn_bridge.fakes import FakePermissionCoordinator, FakePlaybackService
from zonn_bridge.gateway import create_app
from zonn_bridge.models import PermissionStatus
from zonn_bridge.orchestrator import PlaybackOrchestrator


def make_client(service=None, permissions=None, config=None):
    orchestrator = PlaybackOrchestrator(
        service=service or FakePlaybackService.playing(),
        permissions=permissions or FakePermissionCoordinator(),
        poll_interval=0.05,
        track_settle_seconds=0,
    )
    return TestClient(create_app(orchestrator, config)), orchestrator


@pytest.fixture
def client():
    test_client, _ = make_client()
    with test_client:
        yield test_client


class TestSystemRoutes:
    """Tests for health, status and config endpoints."""

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_status(self, client):
        data = client.get("/api/status").json()

        assert data["status"] == "running"
        assert data["phase"] == "idle"
        assert data["target_running"] is True

    def test_config_defaults(self, client):
        data = client.get("/api/config").json()

        assert data["target_name"] == "Spotify"
        assert data["bundle_id"] == "com.spotify.client"
        assert data["poll_interval"] == 0.05

    def test_config_from_settings(self, monkeypatch):
        monkeypatch.setenv("ZONN_BRIDGE_LOG_LEVEL", "DEBUG")
        test_client, _ = make_client(config=Config.load())

        with test_client:
            data = test_client.get("/api/config").json()

        assert data["log_level"] == "DEBUG"


class TestPlaybackRoutes:
    """Tests for playback state and commands."""

    def test_initial_state(self, client):
        data = client.get("/api/playback").json()

        assert data["current_state"]["is_connected"] is False
        assert data["phase"] == "idle"
        assert data["last_error"] is None

    def test_refresh(self, client):
        data = client.post("/api/playback/refresh").json()

        state = data["current_state"]
        assert state["track_name"] == "Bohemian Rhapsody"
        assert state["formatted_duration"] == "5:54"
        assert state["track_progress"] == pytest.approx(127 / 354)

    def test_toggle(self, client):
        client.post("/api/playback/refresh")

        data = client.post("/api/playback/toggle").json()

        assert data["current_state"]["is_playing"] is False

    def test_next(self, client):
        data = client.post("/api/playback/next").json()

        assert data["current_state"]["track_name"] == "Don't Stop Me Now"

    def test_unknown_command(self, client):
        response = client.post("/api/playback/shuffle")

        assert response.status_code == 404

    def test_command_failure_is_reported_in_body(self):
        test_client, _ = make_client(service=FakePlaybackService.disconnected())

        with test_client:
            response = test_client.post("/api/playback/play")

        assert response.status_code == 200
        assert response.json()["last_error"]["kind"] == "not_running"

    def test_start_and_stop_polling(self, client):
        data = client.post("/api/polling/start").json()
        assert data["is_polling"] is True
        assert data["phase"] == "polling"

        data = client.post("/api/polling/stop").json()
        assert data["is_polling"] is False
        assert data["phase"] == "idle"

    def test_start_polling_blocked(self):
        permissions = FakePermissionCoordinator(status=PermissionStatus.DENIED)
        test_client, _ = make_client(permissions=permissions)

        with test_client:
            data = test_client.post("/api/polling/start").json()

        assert data["is_polling"] is False
        assert data["is_blocked_by_permission"] is True
        assert data["has_permission_error"] is True
        assert data["last_error"]["kind"] == "script_execution_failed"


class TestPermissionRoutes:
    """Tests for permission endpoints."""

    def test_get_permission(self, client):
        data = client.get("/api/permission").json()

        assert data == {
            "permission_status": "authorized",
            "target_installed": True,
            "has_permission_error": False,
        }

    def test_request_permission(self):
        permissions = FakePermissionCoordinator(
            status=PermissionStatus.NOT_DETERMINED,
            status_after_request=PermissionStatus.AUTHORIZED,
        )
        test_client, _ = make_client(permissions=permissions)

        with test_client:
            data = test_client.post("/api/permission/request").json()

        assert data == {"granted": True, "permission_status": "authorized"}

    def test_open_settings(self):
        permissions = FakePermissionCoordinator()
        test_client, _ = make_client(permissions=permissions)

        with test_client:
            response = test_client.post("/api/permission/settings")

        assert response.status_code == 202
        assert permissions.open_settings_calls == 1

    def test_retry(self):
        permissions = FakePermissionCoordinator(status=PermissionStatus.DENIED)
        test_client, _ = make_client(permissions=permissions)

        with test_client:
            test_client.post("/api/polling/start")
            permissions.status = PermissionStatus.AUTHORIZED
            data = test_client.post("/api/permission/retry").json()
            test_client.post("/api/polling/stop")

        assert data["is_blocked_by_permission"] is False
        assert data["is_polling"] is True


class TestDashboard:
    """Tests for the HTML dashboard."""

    def test_dashboard_renders(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert "Spotify" in response.text


class TestWebSocket:
    """Tests for live updates."""

    def test_sends_state_on_connect(self, client):
        with client.websocket_connect("/ws") as ws:
            message = ws.receive_json()

        assert message["type"] == "state"
        assert message["data"]["phase"] == "idle"

    def test_ping_pong(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "ping"})
            message = ws.receive_json()

        assert message["type"] == "pong"

    def test_broadcasts_changes(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            client.post("/api/playback/refresh")
            message = ws.receive_json()

        assert message["type"] == "state"
        assert message["data"]["current_state"]["track_name"] == "Bohemian Rhapsody"
