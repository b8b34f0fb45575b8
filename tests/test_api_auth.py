"""
Tests for API authentication.

Tests X-API-Key header authentication when API_AUTH_ENABLED=true.
"""

import os
import pytest
from unittest.mock import patch

from fastapi.testclient import TestClient

from src.api._docket_state import init_docket_service, shutdown_docket_service
from src.api.main import app


# Test API key for testing
TEST_API_KEY = "test-secret-key-12345"

PROTECTED_ENDPOINTS = [
    ("GET", "/reminders/status"),
    ("GET", "/reschedule-requests"),
    ("GET", "/cases/some-case"),
    ("POST", "/reminders/tick"),
    ("GET", "/calendar/blocks"),
]


@pytest.fixture
def client(tmp_path):
    """TestClient over a docket service in a temp database."""
    shutdown_docket_service()
    init_docket_service(tmp_path / "docket.db")
    yield TestClient(app)
    shutdown_docket_service()


class TestAuthDisabled:
    """Tests when authentication is disabled (default)."""

    def test_health_no_auth_required(self, client):
        """Health endpoint should work without auth."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_docket_endpoints_open(self, client):
        """Docket endpoints should work without a key."""
        response = client.get("/reminders/status")
        assert response.status_code == 200


class TestAuthEnabled:
    """Tests when authentication is enabled."""

    @pytest.fixture(autouse=True)
    def auth_env(self):
        with patch.dict(
            os.environ,
            {"API_AUTH_ENABLED": "true", "API_KEY": TEST_API_KEY},
            clear=False,
        ):
            yield

    def test_health_no_auth_required_even_when_enabled(self, client):
        """Health endpoint should work without auth even when auth is enabled."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_protected_endpoint_requires_auth(self, client):
        """Protected endpoints should require auth when enabled."""
        response = client.get("/reminders/status")

        assert response.status_code == 401
        assert "Missing API key" in response.json()["detail"]

    def test_protected_endpoint_with_valid_key(self, client):
        """Protected endpoints should work with valid API key."""
        response = client.get(
            "/reminders/status", headers={"X-API-Key": TEST_API_KEY}
        )

        assert response.status_code == 200

    def test_protected_endpoint_with_invalid_key(self, client):
        """Protected endpoints should reject invalid API key."""
        response = client.get("/reminders/status", headers={"X-API-Key": "wrong-key"})

        assert response.status_code == 401
        assert "Invalid API key" in response.json()["detail"]

    def test_all_routers_require_auth_when_enabled(self, client):
        """All routers should require auth when enabled."""
        for method, path in PROTECTED_ENDPOINTS:
            response = client.request(method, path)
            assert response.status_code == 401, f"Expected 401 for {method} {path}"

    def test_missing_server_key_is_server_error(self, client):
        """Auth enabled without API_KEY is a configuration error, not a 401."""
        with patch.dict(os.environ, {"API_KEY": ""}, clear=False):
            response = client.get(
                "/reminders/status", headers={"X-API-Key": TEST_API_KEY}
            )

        assert response.status_code == 500
