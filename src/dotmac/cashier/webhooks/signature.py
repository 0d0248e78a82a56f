"""
Webhook signatures.

Header format: ``t=<unix seconds>,v1=<hex HMAC-SHA256 of "<t>.<payload>">``.
Several ``v1`` entries may be present while secrets are being rotated.
"""

import hashlib
import hmac
from datetime import datetime

from dotmac.cashier.exceptions import WebhookError

SIGNATURE_HEADER = "Cashier-Signature"
SIGNATURE_SCHEME = "v1"


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def sign_payload(payload: bytes, secret: str, timestamp: int) -> str:
    """Build a signature header value for ``payload``."""
    return f"t={timestamp},{SIGNATURE_SCHEME}={compute_signature(payload, secret, timestamp)}"


def _parse_header(header: str) -> tuple[int, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise WebhookError("Signature timestamp is not an integer") from exc
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)
    if timestamp is None or not signatures:
        raise WebhookError("Signature header is missing the timestamp or signature")
    return timestamp, signatures


def verify_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance: int,
    now: datetime,
) -> None:
    """Raise ``WebhookError`` unless ``header`` signs ``payload`` within ``tolerance`` seconds."""
    if not header:
        raise WebhookError("Missing webhook signature")
    timestamp, signatures = _parse_header(header)

    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookError("Webhook signature does not match")

    if tolerance > 0 and abs(now.timestamp() - timestamp) > tolerance:
        raise WebhookError("Webhook signature timestamp is outside the tolerance window")
