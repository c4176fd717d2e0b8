"""HMAC-SHA256 signatures for webhook payloads.

The signature covers the exact bytes sent on the wire. Anything that
re-serializes the payload between signing and sending (or between
receiving and verifying) breaks verification, so both sides work on raw
bytes.
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
EVENT_ID_HEADER = "X-Webhook-Id"

_DIGEST_SIZE = hashlib.sha256().digest_size


def _as_bytes(value: bytes | str) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def compute_signature(payload: bytes | str, secret: bytes | str) -> str:
    """Compute the HMAC-SHA256 signature of a webhook payload.

    Args:
        payload: Serialized payload exactly as transmitted.
        secret: Shared secret for HMAC.

    Returns:
        Lowercase hex digest.
    """
    return hmac.new(
        key=_as_bytes(secret),
        msg=_as_bytes(payload),
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify_signature(payload: bytes | str, secret: bytes | str, signature: str | None) -> bool:
    """Verify an HMAC-SHA256 signature in constant time.

    Malformed input never raises: a missing signature, non-hex characters or
    a digest of the wrong length all return False before any comparison.

    Args:
        payload: Raw payload bytes as received.
        secret: Shared secret for HMAC.
        signature: Hex digest to check.

    Returns:
        True if the signature matches the payload.
    """
    if not signature:
        return False
    try:
        supplied = bytes.fromhex(signature.strip())
    except ValueError:
        return False
    if len(supplied) != _DIGEST_SIZE:
        return False

    expected = hmac.new(
        key=_as_bytes(secret),
        msg=_as_bytes(payload),
        digestmod=hashlib.sha256,
    ).digest()
    return hmac.compare_digest(expected, supplied)


__all__ = [
    "EVENT_HEADER",
    "EVENT_ID_HEADER",
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "compute_signature",
    "verify_signature",
]
