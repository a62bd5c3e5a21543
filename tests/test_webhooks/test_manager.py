"""Tests for webhook source registration and wiring."""

import json
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import pytest
from fastapi import APIRouter

from webhook_ingest.config import (
    AttentionConfig,
    Settings,
    WebhookConfig,
    WebhookSourceConfig,
)
from webhook_ingest.notifications.attention import AttentionRouter
from webhook_ingest.providers.calendar import CalendarAdapter
from webhook_ingest.providers.ios import IOSAdapter
from webhook_ingest.providers.whoop import WhoopAdapter
from webhook_ingest.providers.whoop_client import WhoopClient
from webhook_ingest.webhooks.manager import (
    WebhookManager,
    _parse_body,
    build_adapter,
    build_webhook_manager,
    get_webhook_manager,
    set_webhook_manager,
)

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temp data directory."""
    return Settings(DATA_DIR=str(tmp_path), REPORTING_TIMEZONE="UTC")


@pytest.fixture
def webhook_config():
    """Config enabling whoop and ios, with calendar disabled."""
    return WebhookConfig(
        webhooks={
            "whoop": WebhookSourceConfig(enabled=True),
            "calendar": WebhookSourceConfig(enabled=False),
            "ios": WebhookSourceConfig(enabled=True),
        }
    )


# ============================================================================
# Body parsing
# ============================================================================


class TestParseBody:
    """Tests for request body parsing."""

    def test_object(self):
        """JSON objects parse cleanly."""
        assert _parse_body(b'{"a": 1}') == ({"a": 1}, None)

    def test_empty_body(self):
        """An empty body is an empty payload."""
        assert _parse_body(b"  ") == ({}, None)

    def test_invalid_json(self):
        """Invalid JSON yields an error message."""
        payload, error = _parse_body(b"{nope")

        assert payload == {}
        assert error

    def test_non_object(self):
        """Top-level arrays are rejected."""
        payload, error = _parse_body(b"[1, 2]")

        assert payload == {}
        assert error == "JSON body must be an object"


# ============================================================================
# build_adapter / build_webhook_manager
# ============================================================================


class TestBuildAdapter:
    """Tests for adapter construction."""

    def test_known_sources(self, settings):
        """Each known source maps to its adapter class."""
        config = WebhookSourceConfig(enabled=True)

        assert isinstance(build_adapter("whoop", config, settings), WhoopAdapter)
        assert isinstance(build_adapter("calendar", config, settings), CalendarAdapter)
        assert isinstance(build_adapter("ios", config, settings), IOSAdapter)

    def test_unknown_source(self, settings):
        """Unknown sources produce no adapter."""
        assert build_adapter("fitbit", WebhookSourceConfig(enabled=True), settings) is None

    def test_whoop_client_requires_key(self, settings, tmp_path):
        """A WHOOP client is only created when an API key is configured."""
        config = WebhookSourceConfig(enabled=True)

        without_key = build_adapter("whoop", config, settings)
        with_key = build_adapter(
            "whoop", config, Settings(DATA_DIR=str(tmp_path), WHOOP_API_KEY="tok")
        )

        assert without_key._client is None
        assert isinstance(with_key._client, WhoopClient)
        assert with_key._client.base_url == "https://api.prod.whoop.com/developer"

    def test_injected_client(self, settings):
        """An injected client is used as-is."""
        client = MagicMock()

        adapter = build_adapter(
            "whoop", WebhookSourceConfig(enabled=True), settings, whoop_client=client
        )

        assert adapter._client is client


class TestBuildWebhookManager:
    """Tests for full pipeline wiring."""

    def test_only_enabled_sources(self, settings, webhook_config):
        """Disabled sources get no adapter and no routes."""
        manager = build_webhook_manager(settings, webhook_config=webhook_config)

        assert manager.sources == ["whoop", "ios"]
        assert ("calendar", "event") not in manager.routes()
        assert ("whoop", "sleep") in manager.routes()
        assert ("ios", "food") in manager.routes()

    def test_config_loaded_from_data_dir(self, settings, tmp_path):
        """Configuration files are read from DATA_DIR."""
        config_dir = tmp_path / "config"
        config_dir.mkdir()
        (config_dir / "webhooks.json").write_text(
            json.dumps({"webhooks": {"calendar": {"enabled": True}}})
        )

        manager = build_webhook_manager(settings)

        assert manager.sources == ["calendar"]

    def test_missing_config_means_no_sources(self, settings):
        """Without a config file nothing is exposed."""
        manager = build_webhook_manager(settings)

        assert manager.sources == []
        assert manager.routes() == []

    def test_attention_router_wired(self, settings, webhook_config):
        """The processor forwards to an attention router."""
        manager = build_webhook_manager(
            settings, webhook_config=webhook_config, attention_config=AttentionConfig()
        )

        assert isinstance(manager.processor.attention, AttentionRouter)

    def test_payload_archiving_setting(self, tmp_path, webhook_config):
        """ARCHIVE_PAYLOADS controls the archive."""
        manager = build_webhook_manager(
            Settings(DATA_DIR=str(tmp_path), ARCHIVE_PAYLOADS=False),
            webhook_config=webhook_config,
        )

        assert manager.processor.archive._store_payloads is False


# ============================================================================
# WebhookManager
# ============================================================================


class TestWebhookManager:
    """Tests for WebhookManager."""

    def test_register_routes(self, settings, webhook_config):
        """One POST route is added per (source, event type)."""
        manager = build_webhook_manager(settings, webhook_config=webhook_config)
        router = APIRouter(prefix="/webhooks")

        manager.register_routes(router)

        paths = {route.path for route in router.routes}
        assert "/webhooks/whoop/sleep" in paths
        assert "/webhooks/whoop/recovery" in paths
        assert "/webhooks/ios/note" in paths
        assert all(route.methods == {"POST"} for route in router.routes)

    def test_add_and_get_adapter(self):
        """Adapters are looked up by source."""
        manager = WebhookManager(MagicMock())
        adapter = IOSAdapter(WebhookSourceConfig(enabled=True), zone=ZoneInfo("UTC"))

        manager.add_adapter(adapter)

        assert manager.get_adapter("ios") is adapter
        assert manager.get_adapter("whoop") is None

    @pytest.mark.asyncio
    async def test_aclose_closes_adapters(self):
        """Closing the manager closes every adapter."""
        adapter = MagicMock()
        adapter.source = "whoop"
        adapter.aclose = AsyncMock()
        manager = WebhookManager(MagicMock(), [adapter])

        await manager.aclose()

        adapter.aclose.assert_awaited_once()


class TestGlobalManager:
    """Tests for the global manager accessors."""

    def test_set_and_get(self):
        """The global manager can be set and cleared."""
        manager = WebhookManager(MagicMock())

        set_webhook_manager(manager)
        assert get_webhook_manager() is manager

        set_webhook_manager(None)
        assert get_webhook_manager() is None
