"""Error types and retry helpers for webhook ingestion.

This module provides:
- Custom exception hierarchy for ingestion failures
- Retry configuration with exponential backoff for provider calls

Exception Hierarchy:
    WebhookIngestError (base)
    ├── VerificationError - Delivery rejected before processing
    │   ├── AuthError - Missing or invalid bearer token
    │   └── SignatureError - Missing or mismatched HMAC signature
    ├── AdapterError - Payload could not be mapped to a canonical result
    ├── HydrationError - Provider fetch failed while hydrating a thin payload
    ├── PersistenceError - Archive or daily store write failed
    └── ProviderAPIError - Provider REST API call failed
        ├── ProviderAuthError - Provider credentials missing or rejected
        └── ProviderRateLimitError - Provider returned HTTP 429
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)


# ============================================================================
# Exception Hierarchy
# ============================================================================


class WebhookIngestError(Exception):
    """Base exception for all webhook ingestion errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error details.
        recoverable: Whether a provider retry may succeed.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class VerificationError(WebhookIngestError):
    """Delivery failed authentication and must be rejected unprocessed.

    Attributes:
        source: Webhook source that rejected the delivery.
    """

    def __init__(
        self,
        message: str,
        *,
        source: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details, recoverable=False)
        self.source = source

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["source"] = self.source
        return base


class AuthError(VerificationError):
    """Bearer token missing, not configured, or mismatched."""


class SignatureError(VerificationError):
    """Signature header, raw body, or digest check failed."""


class AdapterError(WebhookIngestError):
    """Provider payload could not be mapped into a canonical result.

    Attributes:
        source: Webhook source.
        event_type: Endpoint event type.
    """

    def __init__(
        self,
        message: str,
        *,
        source: str | None = None,
        event_type: str | None = None,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message, details=details, recoverable=recoverable)
        self.source = source
        self.event_type = event_type

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base.update({"source": self.source, "event_type": self.event_type})
        return base


class HydrationError(WebhookIngestError):
    """Fetching the full resource for a thin payload failed.

    Never surfaced to the HTTP caller; adapters convert it into a
    ``HydrationFailed`` outcome.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str,
        resource_id: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details, recoverable=True)
        self.kind = kind
        self.resource_id = resource_id


class PersistenceError(WebhookIngestError):
    """A write to the event archive or daily store failed.

    Attributes:
        target: Which store failed ("archive" or "daily_store").
        path: File path involved, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        target: str,
        path: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details, recoverable=True)
        self.target = target
        self.path = path

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base.update({"target": self.target, "path": self.path})
        return base


class ProviderAPIError(WebhookIngestError):
    """Provider REST API returned an error or could not be reached.

    Attributes:
        status: HTTP status code (0 for transport errors).
    """

    def __init__(self, status: int, message: str) -> None:
        super().__init__(
            f"Provider API error {status}: {message}",
            details={"status": status},
            recoverable=status == 0 or status >= 500,
        )
        self.status = status


class ProviderAuthError(ProviderAPIError):
    """Raised when the provider API key is missing or rejected."""

    def __init__(self, message: str) -> None:
        super().__init__(401, message)
        self.recoverable = False


class ProviderRateLimitError(ProviderAPIError):
    """Raised when the provider rate limit is exceeded (HTTP 429)."""

    def __init__(self, retry_after: float | None = None) -> None:
        super().__init__(429, f"Rate limit exceeded. Retry after {retry_after}s")
        self.retry_after = retry_after
        self.recoverable = True


# ============================================================================
# Retry Configuration
# ============================================================================


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including initial).
        min_wait_seconds: Minimum wait between retries.
        max_wait_seconds: Maximum wait between retries.
        multiplier: Exponential backoff multiplier.
        retry_exceptions: Exception types eligible for retry.
    """

    max_attempts: int = 3
    min_wait_seconds: float = 0.5
    max_wait_seconds: float = 5.0
    multiplier: float = 2.0
    retry_exceptions: tuple[type[Exception], ...] = field(
        default_factory=lambda: (ProviderAPIError,)
    )

    def should_retry(self, exc: BaseException) -> bool:
        """Check whether an exception is worth another attempt."""
        if not isinstance(exc, self.retry_exceptions):
            return False
        return getattr(exc, "recoverable", True)


def retrying(config: RetryConfig | None = None) -> AsyncIterator[Any]:
    """Build a tenacity retry loop for provider calls.

    Example:
        async for attempt in retrying(RetryConfig(max_attempts=2)):
            with attempt:
                data = await client.get(url)
    """
    retry_config = config or RetryConfig()
    return AsyncRetrying(
        stop=stop_after_attempt(retry_config.max_attempts),
        wait=wait_exponential(
            multiplier=retry_config.multiplier,
            min=retry_config.min_wait_seconds,
            max=retry_config.max_wait_seconds,
        ),
        retry=retry_if_exception(retry_config.should_retry),
        before_sleep=_log_retry,
        reraise=True,
    )


def _log_retry(retry_state: Any) -> None:
    """Log each retry scheduled by tenacity."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.info(
        "retry_attempt",
        attempt=retry_state.attempt_number,
        error=str(exc) if exc else None,
    )
