"""Webhook security utilities.

Provides HMAC signature generation and verification over raw request
bytes, and bearer-token verification, so deliveries are authenticated
before any adapter, dedupe or logging logic runs.
"""

import base64
import hashlib
import hmac
from collections.abc import Mapping

import structlog

from webhook_ingest.config import DEFAULT_SIGNATURE_HEADER, WebhookSourceConfig
from webhook_ingest.errors import AuthError, SignatureError

logger = structlog.get_logger(__name__)

# Default signature header name
SIGNATURE_HEADER = DEFAULT_SIGNATURE_HEADER
AUTHORIZATION_HEADER = "authorization"
BEARER_PREFIX = "Bearer "


def _lookup(headers: Mapping[str, str], name: str | None) -> str | None:
    if not name:
        return None
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def compute_digest(
    raw_body: bytes,
    secret: str,
    *,
    timestamp: str | None = None,
) -> bytes:
    """Compute the HMAC-SHA256 digest for a webhook body.

    The signed message is the raw body, or ``timestamp + raw_body`` when
    the provider signs a timestamp header as well.

    Args:
        raw_body: Exact request bytes, before JSON parsing.
        secret: Shared secret.
        timestamp: Optional timestamp header value.

    Returns:
        Raw digest bytes.
    """
    message = raw_body if timestamp is None else timestamp.encode("utf-8") + raw_body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()


def generate_signature(
    raw_body: bytes,
    secret: str,
    *,
    timestamp: str | None = None,
    encoding: str = "hex",
) -> str:
    """Generate a signature header value for a raw body.

    Args:
        raw_body: Exact request bytes.
        secret: Shared secret.
        timestamp: Optional timestamp prefixed to the body.
        encoding: "hex" or "base64".

    Returns:
        Encoded signature.
    """
    digest = compute_digest(raw_body, secret, timestamp=timestamp)
    if encoding == "base64":
        return base64.b64encode(digest).decode("ascii")
    if encoding != "hex":
        raise ValueError(f"Unsupported signature encoding: {encoding}")
    return digest.hex()


def verify_signature(
    raw_body: bytes | None,
    headers: Mapping[str, str],
    secret: str | None,
    *,
    signature_header: str = SIGNATURE_HEADER,
    timestamp_header: str | None = None,
    source: str | None = None,
) -> None:
    """Verify the HMAC-SHA256 signature of a delivery.

    The provided value is accepted when it matches the digest in either hex
    or base64 encoding. Comparisons are constant time.

    Args:
        raw_body: Exact request bytes.
        headers: Request headers.
        secret: Shared secret.
        signature_header: Header carrying the signature.
        timestamp_header: Header whose value is signed with the body.
        source: Source name for error context.

    Raises:
        SignatureError: If the secret, header, body or digest check fails.
    """
    if not secret:
        raise SignatureError("Signature secret not configured", source=source)

    provided = _lookup(headers, signature_header)
    if not provided:
        raise SignatureError(f"Missing {signature_header} header", source=source)

    if not raw_body:
        raise SignatureError("Missing raw request body", source=source)

    timestamp: str | None = None
    if timestamp_header:
        timestamp = _lookup(headers, timestamp_header)
        if not timestamp:
            raise SignatureError(f"Missing {timestamp_header} header", source=source)

    digest = compute_digest(raw_body, secret, timestamp=timestamp)
    # Header values may carry non-ASCII characters, so compare as bytes
    provided_bytes = provided.strip().encode("utf-8")

    hex_match = hmac.compare_digest(provided_bytes.lower(), digest.hex().encode("ascii"))
    b64_match = hmac.compare_digest(provided_bytes, base64.b64encode(digest))

    if not (hex_match or b64_match):
        logger.warning("webhook_signature_invalid", source=source)
        raise SignatureError("Signature mismatch", source=source)

    logger.debug("webhook_signature_verified", source=source)


def verify_auth_token(
    headers: Mapping[str, str],
    expected: str | None,
    *,
    source: str | None = None,
) -> None:
    """Verify an ``Authorization: Bearer <token>`` header.

    Args:
        headers: Request headers.
        expected: Configured token. A required but unset token fails closed.
        source: Source name for error context.

    Raises:
        AuthError: If the token is not configured, missing, or mismatched.
    """
    if not expected:
        raise AuthError("Auth token not configured", source=source)

    value = _lookup(headers, AUTHORIZATION_HEADER)
    if not value:
        raise AuthError("Missing Authorization header", source=source)

    token = value[len(BEARER_PREFIX):] if value.startswith(BEARER_PREFIX) else value
    token = token.strip()

    if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("webhook_auth_token_invalid", source=source)
        raise AuthError("Invalid auth token", source=source)


def verify_delivery(
    raw_body: bytes | None,
    headers: Mapping[str, str],
    config: WebhookSourceConfig,
    *,
    source: str,
    require_signature: bool | None = None,
    require_auth_token: bool | None = None,
) -> None:
    """Run the auth-token and signature checks a source requires.

    Args:
        raw_body: Exact request bytes.
        headers: Request headers.
        config: Source configuration.
        source: Source name.
        require_signature: Override; defaults to "secret configured".
        require_auth_token: Override; defaults to "auth token configured".

    Raises:
        AuthError: Bearer token check failed.
        SignatureError: Signature check failed.
    """
    needs_token = (
        bool(config.auth_token) if require_auth_token is None else require_auth_token
    )
    needs_signature = (
        config.requires_signature if require_signature is None else require_signature
    )

    if needs_token:
        verify_auth_token(headers, config.auth_token, source=source)

    if needs_signature:
        verify_signature(
            raw_body,
            headers,
            config.secret,
            signature_header=config.signature_header,
            timestamp_header=config.signature_timestamp_header,
            source=source,
        )
