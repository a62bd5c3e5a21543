"""Tests for the health endpoint and application factory."""

import pytest
from fastapi.testclient import TestClient

from webhook_ingest.api.routes import ErrorResponse, HealthResponse, create_app
from webhook_ingest.config import Settings, WebhookConfig, WebhookSourceConfig
from webhook_ingest.webhooks.manager import build_webhook_manager


@pytest.fixture
def app(tmp_path):
    """Application with the iOS source enabled."""
    settings = Settings(DATA_DIR=str(tmp_path))
    manager = build_webhook_manager(
        settings,
        webhook_config=WebhookConfig(webhooks={"ios": WebhookSourceConfig(enabled=True)}),
    )
    return create_app(settings=settings, manager=manager)


class TestHealthEndpoint:
    """Tests for GET /health."""

    def test_health(self, app):
        """Health lists the enabled sources."""
        with TestClient(app) as client:
            response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["sources"] == ["ios"]
        assert data["timestamp"]


class TestCreateApp:
    """Tests for create_app."""

    def test_metadata(self, app):
        """Title, version and tags are set."""
        assert app.title == "Webhook Ingest API"
        assert app.version == "0.1.0"
        assert {tag["name"] for tag in app.openapi_tags} == {"Webhooks", "Health"}

    def test_routes_registered(self, app):
        """Webhook and health routes are present."""
        paths = app.openapi()["paths"]

        assert "/health" in paths
        assert "/webhooks/ios/note" in paths
        assert "/webhooks/ios/activity" in paths
        assert "/webhooks/whoop/sleep" not in paths

    def test_openapi_schema(self, app):
        """The OpenAPI document lists the webhook routes."""
        schema = TestClient(app).get("/openapi.json").json()

        assert "/webhooks/ios/food" in schema["paths"]
        assert "post" in schema["paths"]["/webhooks/ios/food"]


class TestResponseModels:
    """Tests for response models."""

    def test_error_response(self):
        """Error bodies omit empty messages when requested."""
        assert ErrorResponse(error="unauthorized").model_dump(exclude_none=True) == {
            "error": "unauthorized"
        }

    def test_health_response_defaults(self):
        """Health defaults to ok with no sources."""
        response = HealthResponse(timestamp="2025-01-02T00:00:00+00:00")

        assert response.status == "ok"
        assert response.sources == []
