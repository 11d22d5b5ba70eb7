"""
Unit tests for the relay service HTTP surface.
"""

import time

import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch

from service_relay.app.main import RelayService, create_app

from conftest import FakeUpstream, RecordingTarget


def poll(predicate, timeout=2.0, interval=0.01):
    """Poll ``predicate`` from the test thread while the app loop runs."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(interval)
    raise AssertionError("condition not met before timeout")


ENABLED_SETTINGS = {
    "enabled": True,
    "filterId": "RWD-1",
    "credential": {"token": "session-token-123"}
}


class TestRelayService:
    """Test cases for RelayService."""

    @pytest.fixture
    def upstream(self):
        return FakeUpstream()

    @pytest.fixture
    def relay_service(self, relay_config, upstream):
        """Create RelayService with a scripted upstream."""
        return RelayService(config=relay_config, transport=upstream)

    @pytest.fixture
    def client(self, relay_service):
        """Create test client with the lifespan running."""
        with TestClient(relay_service.app) as client:
            yield client

    def test_create_app(self):
        app = create_app()
        assert isinstance(app.state.relay_service, RelayService)

    def test_root_endpoint(self, client):
        """Test root endpoint."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "relay"
        assert "sse" in data["capabilities"]
        assert "fan-out" in data["capabilities"]

    def test_health_endpoint(self, client):
        """Test health endpoint."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "relay"
        assert data["status"] == "ok"
        assert data["dependencies"] == {"upstream": "idle", "delivery_targets": 0}

    def test_health_when_dependency_check_fails(self, client):
        with patch.object(RelayService, "_check_dependencies", side_effect=RuntimeError("boom")):
            response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "error"

    def test_initial_status(self, client, upstream):
        """Defaults keep the relay disabled."""
        response = client.get("/control/status")
        assert response.status_code == 200
        assert response.json() == {
            "connected": False,
            "retryAttempts": 0,
            "state": "idle",
            "maxAttempts": 10,
            "lastError": None
        }
        assert upstream.connect_calls == 0

    def test_settings_write_connects(self, client, upstream):
        response = client.put("/config", json=ENABLED_SETTINGS)
        assert response.status_code == 200
        data = response.json()
        assert data["changed"] == ["credential", "enabled", "filter_id"]
        assert data["status"]["state"] in ("connecting", "open")

        poll(lambda: client.get("/control/status").json()["connected"])
        assert upstream.credentials[0].token == "session-token-123"

    def test_settings_are_redacted(self, client):
        client.put("/config", json=ENABLED_SETTINGS)

        response = client.get("/config")
        assert response.status_code == 200
        data = response.json()
        assert data["enabled"] is True
        assert data["filterId"] == "RWD-1"
        assert data["credential"] == {"present": True, "expiresAt": None, "expired": False}
        assert "session-token-123" not in response.text

    def test_disable_disconnects(self, client, upstream):
        client.put("/config", json=ENABLED_SETTINGS)
        poll(lambda: client.get("/control/status").json()["connected"])

        response = client.put("/config", json={"enabled": False})

        assert response.json()["status"]["state"] == "idle"
        assert upstream.open_streams == 0

    def test_invalid_settings_rejected(self, client):
        response = client.put("/config", json={"enabled": True, "bogus": 1})
        assert response.status_code == 422

        response = client.put("/config", json={"credential": {"token": ""}})
        assert response.status_code == 422

    def test_control_stop_and_start(self, client):
        client.put("/config", json=ENABLED_SETTINGS)
        poll(lambda: client.get("/control/status").json()["connected"])

        response = client.post("/control/stop")
        assert response.status_code == 200
        assert response.json() == {"success": True, "state": "idle"}

        response = client.post("/control/start")
        assert response.status_code == 200
        assert response.json()["success"] is True
        poll(lambda: client.get("/control/status").json()["connected"])

    def test_control_start_refused_when_disabled(self, client, upstream):
        response = client.post("/control/start")

        assert response.status_code == 200
        assert response.json() == {"success": True, "state": "idle", "reason": "disabled"}
        assert upstream.connect_calls == 0

    def test_control_message(self, client):
        response = client.post("/control", json={"type": "query_status"})
        assert response.status_code == 200
        assert response.json()["state"] == "idle"

    def test_unknown_control_message(self, client):
        response = client.post("/control", json={"type": "restart"})
        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "VALIDATION_ERROR"

    def test_register_and_remove_target(self, client, relay_service):
        response = client.post("/targets", json={
            "url": "http://localhost:9000/deliver",
            "origin": "https://animemusicquiz.com/",
            "targetId": "tab-1"
        })
        assert response.status_code == 201
        assert response.json() == {"targetId": "tab-1"}

        targets = client.get("/targets").json()["targets"]
        assert [target["targetId"] for target in targets] == ["tab-1"]
        assert client.get("/health").json()["dependencies"]["delivery_targets"] == 1

        response = client.delete("/targets/tab-1")
        assert response.status_code == 200
        assert len(relay_service.target_registry) == 0

    def test_remove_unknown_target(self, client):
        response = client.delete("/targets/missing")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_callback_targets_listed(self, client, relay_service):
        relay_service.target_registry.register(RecordingTarget("in-process"))

        targets = client.get("/targets").json()["targets"]

        assert targets == [{
            "targetId": "in-process",
            "origin": "https://animemusicquiz.com/",
            "kind": "RecordingTarget"
        }]

    def test_metrics_endpoint(self, client):
        client.put("/config", json=ENABLED_SETTINGS)
        poll(lambda: client.get("/control/status").json()["connected"])

        response = client.get("/metrics")
        assert response.status_code == 200
        assert "relay_connection_state 2.0" in response.text
        assert "relay_retry_attempts 0.0" in response.text

    def test_shutdown_releases_connection(self, relay_service, upstream):
        with TestClient(relay_service.app) as client:
            client.put("/config", json=ENABLED_SETTINGS)
            poll(lambda: upstream.open_streams == 1)

        assert upstream.open_streams == 0
        assert relay_service.connector.running is False


class TestRelayServiceStartup:
    """Connection attempt at process start."""

    def test_connects_on_startup_with_stored_settings(self, relay_config, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(
            '{"enabled": true, "filter_id": "RWD-1", "credential": {"token": "stored-token"}}'
        )
        relay_config.config_store_path = str(path)
        upstream = FakeUpstream()
        service = RelayService(config=relay_config, transport=upstream)

        with TestClient(service.app) as client:
            poll(lambda: client.get("/control/status").json()["connected"])

        assert upstream.credentials[0].token == "stored-token"

    def test_health_degraded_after_retries_exhausted(self, relay_config):
        relay_config.max_reconnect_attempts = 1
        upstream = FakeUpstream(["fail"])
        service = RelayService(config=relay_config, transport=upstream)

        with TestClient(service.app) as client:
            client.put("/config", json=ENABLED_SETTINGS)
            poll(lambda: client.get("/control/status").json()["state"] == "failed")

            data = client.get("/health").json()

        assert data["status"] == "degraded"
        assert data["dependencies"]["upstream"] == "failed"

    def test_stays_idle_on_startup_without_settings(self, relay_config):
        upstream = FakeUpstream()
        service = RelayService(config=relay_config, transport=upstream)

        with TestClient(service.app) as client:
            assert client.get("/control/status").json()["state"] == "idle"

        assert upstream.connect_calls == 0
