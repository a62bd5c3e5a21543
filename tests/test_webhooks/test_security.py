"""Tests for webhook security module."""

import base64

import pytest

from webhook_ingest.config import WebhookEndpointConfig, WebhookSourceConfig
from webhook_ingest.errors import AuthError, SignatureError, VerificationError
from webhook_ingest.webhooks.security import (
    SIGNATURE_HEADER,
    compute_digest,
    generate_signature,
    verify_auth_token,
    verify_delivery,
    verify_signature,
)

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def raw_body():
    """Exact bytes of a sample delivery."""
    return b'{"id":"abc123","type":"sleep.updated"}'


@pytest.fixture
def secret():
    """Shared webhook secret."""
    return "whsec_test_secret_key"


# ============================================================================
# generate_signature Tests
# ============================================================================


class TestGenerateSignature:
    """Tests for generate_signature function."""

    def test_hex_signature(self, raw_body, secret):
        """Hex signatures are 64 lowercase characters."""
        signature = generate_signature(raw_body, secret)

        assert len(signature) == 64
        assert signature == signature.lower()

    def test_base64_signature_matches_digest(self, raw_body, secret):
        """Base64 signatures encode the same digest."""
        signature = generate_signature(raw_body, secret, encoding="base64")

        assert base64.b64decode(signature) == compute_digest(raw_body, secret)

    def test_timestamp_changes_signature(self, raw_body, secret):
        """Signing a timestamp prefix yields a different signature."""
        plain = generate_signature(raw_body, secret)
        stamped = generate_signature(raw_body, secret, timestamp="1700000000")

        assert plain != stamped

    def test_unknown_encoding(self, raw_body, secret):
        """Unsupported encodings are rejected."""
        with pytest.raises(ValueError):
            generate_signature(raw_body, secret, encoding="base32")


# ============================================================================
# verify_signature Tests
# ============================================================================


class TestVerifySignature:
    """Tests for verify_signature function."""

    def test_valid_hex_signature(self, raw_body, secret):
        """A matching hex signature passes."""
        headers = {SIGNATURE_HEADER: generate_signature(raw_body, secret)}

        verify_signature(raw_body, headers, secret)

    def test_uppercase_hex_signature(self, raw_body, secret):
        """Hex comparison ignores case."""
        headers = {SIGNATURE_HEADER: generate_signature(raw_body, secret).upper()}

        verify_signature(raw_body, headers, secret)

    def test_valid_base64_signature(self, raw_body, secret):
        """A matching base64 signature passes."""
        headers = {SIGNATURE_HEADER: generate_signature(raw_body, secret, encoding="base64")}

        verify_signature(raw_body, headers, secret)

    def test_header_lookup_is_case_insensitive(self, raw_body, secret):
        """Header names are matched case-insensitively."""
        headers = {"X-Webhook-Signature": generate_signature(raw_body, secret)}

        verify_signature(raw_body, headers, secret)

    def test_tampered_body(self, raw_body, secret):
        """Changing one byte of the body fails verification."""
        headers = {SIGNATURE_HEADER: generate_signature(raw_body, secret)}
        tampered = raw_body.replace(b"abc123", b"abc124")

        with pytest.raises(SignatureError, match="mismatch"):
            verify_signature(tampered, headers, secret, source="whoop")

    def test_non_ascii_signature(self, raw_body, secret):
        """Non-ASCII header values are a mismatch, not a crash."""
        headers = {SIGNATURE_HEADER: "sigé"}

        with pytest.raises(SignatureError, match="mismatch"):
            verify_signature(raw_body, headers, secret, source="whoop")

    def test_wrong_secret(self, raw_body, secret):
        """A signature made with another secret fails."""
        headers = {SIGNATURE_HEADER: generate_signature(raw_body, "other")}

        with pytest.raises(SignatureError):
            verify_signature(raw_body, headers, secret)

    def test_missing_header(self, raw_body, secret):
        """A missing signature header fails."""
        with pytest.raises(SignatureError, match="Missing"):
            verify_signature(raw_body, {}, secret)

    def test_missing_secret(self, raw_body):
        """Verification fails closed without a configured secret."""
        headers = {SIGNATURE_HEADER: "deadbeef"}

        with pytest.raises(SignatureError, match="not configured"):
            verify_signature(raw_body, headers, None)

    def test_empty_body(self, secret):
        """An empty raw body cannot be verified."""
        headers = {SIGNATURE_HEADER: generate_signature(b"", secret)}

        with pytest.raises(SignatureError, match="raw request body"):
            verify_signature(b"", headers, secret)

    def test_timestamp_header(self, raw_body, secret):
        """The timestamp header value is signed with the body."""
        headers = {
            SIGNATURE_HEADER: generate_signature(raw_body, secret, timestamp="1700000000"),
            "x-webhook-timestamp": "1700000000",
        }

        verify_signature(
            raw_body, headers, secret, timestamp_header="x-webhook-timestamp"
        )

    def test_missing_timestamp_header(self, raw_body, secret):
        """A configured timestamp header must be present."""
        headers = {SIGNATURE_HEADER: generate_signature(raw_body, secret)}

        with pytest.raises(SignatureError):
            verify_signature(
                raw_body, headers, secret, timestamp_header="x-webhook-timestamp"
            )

    def test_error_carries_source(self, raw_body, secret):
        """Errors record the rejecting source."""
        with pytest.raises(SignatureError) as exc_info:
            verify_signature(raw_body, {}, secret, source="whoop")

        assert exc_info.value.source == "whoop"
        assert exc_info.value.recoverable is False


# ============================================================================
# verify_auth_token Tests
# ============================================================================


class TestVerifyAuthToken:
    """Tests for verify_auth_token function."""

    def test_bearer_token(self):
        """A matching bearer token passes."""
        verify_auth_token({"Authorization": "Bearer s3cret"}, "s3cret")

    def test_bare_token(self):
        """A token without the Bearer prefix is accepted."""
        verify_auth_token({"authorization": "s3cret"}, "s3cret")

    def test_wrong_token(self):
        """A mismatched token fails."""
        with pytest.raises(AuthError, match="Invalid"):
            verify_auth_token({"authorization": "Bearer nope"}, "s3cret")

    def test_missing_header(self):
        """A missing Authorization header fails."""
        with pytest.raises(AuthError, match="Missing"):
            verify_auth_token({}, "s3cret")

    def test_unconfigured_token_fails_closed(self):
        """A required but unset token rejects every request."""
        with pytest.raises(AuthError, match="not configured"):
            verify_auth_token({"authorization": "Bearer anything"}, None)

    def test_auth_error_is_verification_error(self):
        """AuthError shares the verification error base."""
        assert issubclass(AuthError, VerificationError)
        assert issubclass(SignatureError, VerificationError)


# ============================================================================
# verify_delivery Tests
# ============================================================================


class TestVerifyDelivery:
    """Tests for verify_delivery function."""

    def test_open_source_passes(self, raw_body):
        """A source with no secret and no token accepts anything."""
        verify_delivery(raw_body, {}, WebhookSourceConfig(enabled=True), source="ios")

    def test_secret_requires_signature(self, raw_body, secret):
        """A configured secret makes the signature mandatory."""
        config = WebhookSourceConfig(enabled=True, secret=secret)

        with pytest.raises(SignatureError):
            verify_delivery(raw_body, {}, config, source="whoop")

        headers = {SIGNATURE_HEADER: generate_signature(raw_body, secret)}
        verify_delivery(raw_body, headers, config, source="whoop")

    def test_custom_signature_header(self, raw_body, secret):
        """The configured signature header is used."""
        config = WebhookSourceConfig(
            enabled=True, secret=secret, signature_header="x-whoop-signature"
        )
        headers = {"x-whoop-signature": generate_signature(raw_body, secret)}

        verify_delivery(raw_body, headers, config, source="whoop")

    def test_token_checked_before_signature(self, raw_body, secret):
        """Auth token failures are reported before signature checks."""
        config = WebhookSourceConfig(
            enabled=True,
            secret=secret,
            endpoints=WebhookEndpointConfig(auth_token="tok"),
        )

        with pytest.raises(AuthError):
            verify_delivery(raw_body, {}, config, source="calendar")

    def test_required_token_without_config(self, raw_body):
        """Forcing a token with none configured fails closed."""
        with pytest.raises(AuthError):
            verify_delivery(
                raw_body,
                {"authorization": "Bearer x"},
                WebhookSourceConfig(enabled=True),
                source="calendar",
                require_auth_token=True,
            )
