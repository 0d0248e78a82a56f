"""Tests for webhook signature verification."""

from datetime import timedelta

import pytest

from dotmac.cashier.exceptions import WebhookError
from dotmac.cashier.webhooks.signature import compute_signature, sign_payload, verify_signature

pytestmark = pytest.mark.unit

SECRET = "whsec_test_secret"
PAYLOAD = b'{"id": "evt_1", "type": "subscription.ended"}'


class TestVerifySignature:
    """Test the signature header check."""

    def test_valid_signature(self, now):
        header = sign_payload(PAYLOAD, SECRET, int(now.timestamp()))
        verify_signature(PAYLOAD, header, SECRET, 300, now)

    def test_header_format(self, now):
        timestamp = int(now.timestamp())
        header = sign_payload(PAYLOAD, SECRET, timestamp)
        assert header == f"t={timestamp},v1={compute_signature(PAYLOAD, SECRET, timestamp)}"

    def test_tampered_payload(self, now):
        header = sign_payload(PAYLOAD, SECRET, int(now.timestamp()))
        with pytest.raises(WebhookError, match="does not match"):
            verify_signature(PAYLOAD + b" ", header, SECRET, 300, now)

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header(self, header, now):
        with pytest.raises(WebhookError, match="Missing"):
            verify_signature(PAYLOAD, header, SECRET, 300, now)

    @pytest.mark.parametrize("header", ["v1=abc", "t=123", "t=abc,v1=def", "garbage"])
    def test_malformed_header(self, header, now):
        with pytest.raises(WebhookError):
            verify_signature(PAYLOAD, header, SECRET, 300, now)

    def test_stale_timestamp(self, now):
        signed_at = now - timedelta(minutes=10)
        header = sign_payload(PAYLOAD, SECRET, int(signed_at.timestamp()))
        with pytest.raises(WebhookError, match="tolerance"):
            verify_signature(PAYLOAD, header, SECRET, 300, now)

    def test_zero_tolerance_skips_age_check(self, now):
        signed_at = now - timedelta(days=2)
        header = sign_payload(PAYLOAD, SECRET, int(signed_at.timestamp()))
        verify_signature(PAYLOAD, header, SECRET, 0, now)

    def test_any_rotated_signature_matches(self, now):
        timestamp = int(now.timestamp())
        old = compute_signature(PAYLOAD, "whsec_old", timestamp)
        new = compute_signature(PAYLOAD, SECRET, timestamp)
        header = f"t={timestamp},v1={old},v1={new}"
        verify_signature(PAYLOAD, header, SECRET, 300, now)
