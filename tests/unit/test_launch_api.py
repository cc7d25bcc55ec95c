"""Tests for the launch operator API."""

import pytest
from fastapi.testclient import TestClient

from conftest import FEATURE
from staged_launch.core.config import Settings
from staged_launch.core.launch.controller import StagedLaunchController
from staged_launch.core.notifications.client import AlertEmitter
from staged_launch.main import create_app

GOOD = {"success_rate": 0.99, "error_count": 1, "response_time_ms": 900, "user_engagement": 0.9}


@pytest.fixture
def client(registry, flag_store, channel, hooks):
    controller = StagedLaunchController(
        registry, flag_store, alerts=AlertEmitter(channels=[channel]), hooks=hooks
    )
    app = create_app(controller=controller, settings=Settings(LOG_JSON=False))
    with TestClient(app) as test_client:
        yield test_client


class TestHealthEndpoint:
    """Tests for /api/health."""

    def test_health(self, client):
        """Test the health endpoint reports registered launches."""
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["launches"] == {"registered": 1, "active": 0}

    def test_prometheus_metrics(self, client):
        """Test the Prometheus exposition is mounted."""
        client.post("/api/launch/start", json={"feature_key": FEATURE})
        response = client.get("/metrics/")
        assert response.status_code == 200
        assert "launch_stage_transitions_total" in response.text


class TestLaunchLifecycle:
    """Tests for start/metrics/advance/rollback/force."""

    def test_start(self, client, flag_store):
        """Test starting a launch returns its status."""
        response = client.post("/api/launch/start", json={"feature_key": FEATURE})
        assert response.status_code == 200
        data = response.json()
        assert data["current_stage"] == "dev"
        assert data["exposure_percentage"] == 0
        assert data["next_scheduled_advancement"] is not None
        assert flag_store.flags[FEATURE] is True

    def test_start_unknown_feature(self, client):
        """Test unknown features map to 404."""
        response = client.post("/api/launch/start", json={"feature_key": "NOPE"})
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "UNKNOWN_FEATURE"

    def test_start_invalid_stage(self, client):
        """Test unknown stage names are rejected by validation."""
        response = client.post(
            "/api/launch/start", json={"feature_key": FEATURE, "stage": "canary"}
        )
        assert response.status_code == 422

    def test_metrics_and_rollback(self, client):
        """Test a breaching sample reports the triggered rollback."""
        client.post("/api/launch/start", json={"feature_key": FEATURE, "stage": "beta"})

        response = client.post(f"/api/launch/{FEATURE}/metrics", json=GOOD)
        assert response.json()["rollback_triggered"] is False

        bad = dict(GOOD, success_rate=0.8)
        response = client.post(f"/api/launch/{FEATURE}/metrics", json=bad)
        data = response.json()
        assert data["rollback_triggered"] is True
        assert data["status"]["current_stage"] == "dev"

    def test_metrics_out_of_range(self, client):
        """Test invalid samples are rejected before reaching the controller."""
        response = client.post(
            f"/api/launch/{FEATURE}/metrics", json=dict(GOOD, success_rate=1.5)
        )
        assert response.status_code == 422

    def test_metrics_nan_rejected(self, client):
        """Test NaN in a posted sample is rejected rather than recorded."""
        response = client.post(
            f"/api/launch/{FEATURE}/metrics",
            content=(
                b'{"success_rate": 0.99, "error_count": 1, '
                b'"response_time_ms": NaN, "user_engagement": 0.9}'
            ),
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 422

    def test_metrics_unknown_feature(self, client):
        """Test samples for unknown features map to 404."""
        response = client.post("/api/launch/NOPE/metrics", json=GOOD)
        assert response.status_code == 404

    def test_advance(self, client):
        """Test advancement is refused without samples and granted with them."""
        client.post("/api/launch/start", json={"feature_key": FEATURE})

        response = client.post(f"/api/launch/{FEATURE}/advance")
        assert response.status_code == 200
        assert response.json()["advanced"] is False

        client.post(f"/api/launch/{FEATURE}/metrics", json=GOOD)
        response = client.post(f"/api/launch/{FEATURE}/advance", json={})
        data = response.json()
        assert data["advanced"] is True
        assert data["status"]["current_stage"] == "beta"

    def test_advance_unknown_feature(self, client):
        """Test advancing unknown features maps to 404."""
        assert client.post("/api/launch/NOPE/advance").status_code == 404

    def test_rollback(self, client, flag_store):
        """Test an operator rollback from dev turns the feature off."""
        client.post("/api/launch/start", json={"feature_key": FEATURE})
        response = client.post(f"/api/launch/{FEATURE}/rollback", json={"reason": "incident"})
        assert response.status_code == 200
        assert response.json()["current_stage"] == "off"
        assert flag_store.flags[FEATURE] is False

    def test_rollback_requires_reason(self, client):
        """Test an empty reason is rejected."""
        response = client.post(f"/api/launch/{FEATURE}/rollback", json={"reason": ""})
        assert response.status_code == 422

    def test_force(self, client):
        """Test forcing a stage."""
        response = client.post(
            f"/api/launch/{FEATURE}/force", json={"stage": "gradual", "reason": "verified"}
        )
        assert response.status_code == 200
        assert response.json()["current_stage"] == "gradual"
        assert response.json()["exposure_percentage"] == 25


class TestStatusAndValidation:
    """Tests for status, metrics listing and validation."""

    def test_status(self, client):
        """Test per-feature and aggregate status."""
        client.post("/api/launch/start", json={"feature_key": FEATURE})
        data = client.get("/api/launch/status").json()
        assert [s["feature_key"] for s in data["launches"]] == [FEATURE]

        data = client.get(f"/api/launch/{FEATURE}/status").json()
        assert data["current_stage"] == "dev"

    def test_status_unknown_feature(self, client):
        """Test status of unknown features is empty rather than an error."""
        response = client.get("/api/launch/NOPE/status")
        assert response.status_code == 200
        assert response.json()["current_stage"] is None

    def test_list_metrics(self, client):
        """Test recent samples are listed with a limit."""
        for _ in range(3):
            client.post(f"/api/launch/{FEATURE}/metrics", json=GOOD)
        data = client.get("/api/launch/metrics", params={"feature": FEATURE, "limit": 2}).json()
        assert len(data["metrics"]) == 2
        assert client.get("/api/launch/metrics", params={"feature": "NOPE"}).status_code == 404

    def test_validate(self, client):
        """Test dry-run validation returns errors and the markdown report."""
        client.post("/api/launch/start", json={"feature_key": FEATURE})
        response = client.post(
            f"/api/launch/{FEATURE}/validate",
            json={"test_results": {"unit_tests": {"passed": 10, "coverage": 0.5}}},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["passed"] is False
        assert "Test coverage 50.0% below required 85.0%" in data["errors"]
        assert data["report"].startswith("# Launch Validation Report")
        assert "**Target Stage:** beta" in data["report"]

    def test_validate_malformed_test_results(self, client):
        """Test unknown keys in test results are rejected."""
        response = client.post(
            f"/api/launch/{FEATURE}/validate",
            json={"test_results": {"unit_tests": {"bogus": 1}}},
        )
        assert response.status_code == 422

    def test_validate_unknown_feature(self, client):
        """Test validating unknown features maps to 404."""
        assert client.post("/api/launch/NOPE/validate").status_code == 404


class TestApiKey:
    """Tests for the API key dependency."""

    def test_key_enforced_when_configured(self, client, monkeypatch):
        """Test requests need the configured key."""
        monkeypatch.setenv("LAUNCH_API_KEY", "s3cret")
        assert client.get("/api/launch/status").status_code == 401
        response = client.get("/api/launch/status", headers={"X-API-Key": "wrong"})
        assert response.status_code == 403
        response = client.get("/api/launch/status", headers={"X-API-Key": "s3cret"})
        assert response.status_code == 200

    def test_health_is_public(self, client, monkeypatch):
        """Test the health endpoint needs no key."""
        monkeypatch.setenv("LAUNCH_API_KEY", "s3cret")
        assert client.get("/api/health").status_code == 200
