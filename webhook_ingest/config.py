"""Application configuration settings.

This module provides centralized configuration management:
- Settings: process settings from environment variables with defaults
- WebhookConfig: per-source webhook configuration loaded from JSON
- AttentionConfig: notification routing configuration loaded from JSON
- configure_logging: structlog setup used by the application lifespan

Configuration objects are immutable and built once at startup, then passed
explicitly to every verifier, adapter and router that needs them.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = structlog.get_logger(__name__)

DEFAULT_SIGNATURE_HEADER = "x-webhook-signature"
DEFAULT_THRESHOLD = 5


def _get_bool_env(name: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set.

    Returns:
        Boolean value from environment.
    """
    value = os.getenv(name, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_float_env(name: str, default: float | None) -> float | None:
    """Get a float value from environment variable, ignoring junk."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("invalid_float_env", name=name, value=value)
        return default


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        DATA_DIR: Root directory for configuration, archives and logs.
        LOG_LEVEL: Logging level.
        REPORTING_TIMEZONE: IANA zone used to normalize entry times.
        WHOOP_API_KEY: OAuth access token for the WHOOP API.
        WHOOP_BASE_URL: WHOOP API base URL.
        HYDRATION_TIMEOUT_SECONDS: Upper bound on a single hydration fetch.
        SLACK_BOT_TOKEN: Shared Slack token used when no dedicated token exists.
        ARCHIVE_PAYLOADS: Store full payloads in archive records.
        DEDUPE_TTL_SECONDS: Expiry for in-process dedupe keys (None = process lifetime).
    """

    # Storage
    DATA_DIR: str = "data"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Time handling
    REPORTING_TIMEZONE: str = "America/Los_Angeles"

    # Providers
    WHOOP_API_KEY: str | None = None
    WHOOP_BASE_URL: str = "https://api.prod.whoop.com/developer"
    HYDRATION_TIMEOUT_SECONDS: float = 10.0

    # Notifications
    SLACK_BOT_TOKEN: str | None = None

    # Dedupe / archive
    ARCHIVE_PAYLOADS: bool = True
    DEDUPE_TTL_SECONDS: float | None = None

    @property
    def data_path(self) -> Path:
        """DATA_DIR as a Path."""
        return Path(self.DATA_DIR)

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Returns:
            Settings instance populated from environment.
        """
        return cls(
            DATA_DIR=os.getenv("DATA_DIR", "data"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
            REPORTING_TIMEZONE=os.getenv("REPORTING_TIMEZONE", "America/Los_Angeles"),
            WHOOP_API_KEY=os.getenv("WHOOP_API_KEY"),
            WHOOP_BASE_URL=os.getenv(
                "WHOOP_BASE_URL", "https://api.prod.whoop.com/developer"
            ),
            HYDRATION_TIMEOUT_SECONDS=_get_float_env("HYDRATION_TIMEOUT_SECONDS", 10.0)
            or 10.0,
            SLACK_BOT_TOKEN=os.getenv("SLACK_BOT_TOKEN"),
            ARCHIVE_PAYLOADS=_get_bool_env("ARCHIVE_PAYLOADS", default=True),
            DEDUPE_TTL_SECONDS=_get_float_env("DEDUPE_TTL_SECONDS", None),
        )


# ============================================================================
# Webhook Configuration
# ============================================================================


class WebhookEndpointConfig(BaseModel):
    """Outbound endpoint settings for a webhook source."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    base_url: str | None = Field(default=None, description="Provider API base URL override")
    auth_token: str | None = Field(
        default=None, description="Bearer token inbound deliveries must present"
    )


class WebhookSourceConfig(BaseModel):
    """Configuration for a single webhook source (whoop, calendar, ios)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    enabled: bool = Field(default=False, description="Register routes for this source")
    secret: str | None = Field(default=None, description="Shared HMAC secret")
    signature_header: str = Field(
        default=DEFAULT_SIGNATURE_HEADER,
        description="Header carrying the HMAC signature",
    )
    signature_timestamp_header: str | None = Field(
        default=None,
        description="Header whose value is prefixed to the body before signing",
    )
    id_header: str | None = Field(
        default=None, description="Header carrying a provider delivery id"
    )
    endpoints: WebhookEndpointConfig = Field(default_factory=WebhookEndpointConfig)
    calendar_ids: tuple[str, ...] = Field(
        default=(), description="Calendar ids accepted by the calendar source"
    )

    @property
    def requires_signature(self) -> bool:
        """Whether deliveries must carry a valid HMAC signature."""
        return bool(self.secret)

    @property
    def auth_token(self) -> str | None:
        """Configured inbound bearer token."""
        return self.endpoints.auth_token


class WebhookConfig(BaseModel):
    """Top-level webhook configuration document."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    debug: bool = Field(default=False, description="Log received payloads at debug level")
    webhooks: dict[str, WebhookSourceConfig] = Field(default_factory=dict)

    def source(self, name: str) -> WebhookSourceConfig:
        """Get the configuration for a source, defaulting to disabled."""
        return self.webhooks.get(name) or WebhookSourceConfig()

    def enabled_sources(self) -> list[str]:
        """List names of enabled sources in declaration order."""
        return [name for name, cfg in self.webhooks.items() if cfg.enabled]


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def load_webhook_config(data_dir: str | Path) -> WebhookConfig:
    """Load ``<data_dir>/config/webhooks.json``.

    Args:
        data_dir: Data directory root.

    Returns:
        Parsed configuration, or defaults (no sources) when the file is
        missing or invalid.
    """
    path = Path(data_dir) / "config" / "webhooks.json"
    if not path.exists():
        logger.warning("webhook_config_missing", path=str(path))
        return WebhookConfig()

    try:
        return WebhookConfig.model_validate(_read_json(path))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("webhook_config_invalid", path=str(path), error=str(e))
        return WebhookConfig()


# ============================================================================
# Attention Configuration
# ============================================================================


class SlackDispatchTarget(BaseModel):
    """Where and how Slack notifications are delivered."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    channel_id: str | None = Field(default=None, description="Slack channel or DM id")
    thread_ts: str | None = Field(default=None, description="Reply into this thread")
    mention_user_id: str | None = Field(default=None, description="User to @mention")
    suppress_mentions: bool = Field(default=False)
    use_dedicated_token: bool = Field(
        default=False,
        description="Require the attention-specific token and never fall back",
    )


class DispatchTargets(BaseModel):
    """Per-channel delivery targets."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    slack: SlackDispatchTarget = Field(default_factory=SlackDispatchTarget)


class AttentionConfig(BaseModel):
    """Routing rules for attention events."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    thresholds: dict[str, int] = Field(
        default_factory=dict, description="Escalation threshold per 'source:kind'"
    )
    default_threshold: int = Field(default=DEFAULT_THRESHOLD, ge=0, le=10)
    channel_preferences: dict[str, tuple[str, ...]] = Field(
        default_factory=dict, description="Channels to notify, per source"
    )
    default_channels: tuple[str, ...] = Field(
        default=(), description="Channels used when a source has no preference"
    )
    dispatch_targets: DispatchTargets = Field(default_factory=DispatchTargets)

    def threshold_for(self, source: str, kind: str) -> int:
        """Escalation threshold for a source/kind pair."""
        return self.thresholds.get(f"{source}:{kind}", self.default_threshold)

    def channels_for(self, source: str) -> tuple[str, ...]:
        """Preferred channels for a source."""
        return self.channel_preferences.get(source, self.default_channels)


def load_attention_config(data_dir: str | Path) -> AttentionConfig:
    """Load ``<data_dir>/attention/config.json``, defaulting on absence."""
    path = Path(data_dir) / "attention" / "config.json"
    if not path.exists():
        return AttentionConfig()

    try:
        return AttentionConfig.model_validate(_read_json(path))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("attention_config_invalid", path=str(path), error=str(e))
        return AttentionConfig()


# ============================================================================
# Logging
# ============================================================================


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog with a level-filtering bound logger.

    Args:
        level: Standard logging level name.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=False,
    )

