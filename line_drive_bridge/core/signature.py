"""HMAC-SHA256 webhook signature verification.

WHY: LINE signs every webhook body with the channel secret. Checking the
signature is the only proof that a request came from the platform.

HOW: Recompute base64(HMAC-SHA256(secret, raw_body)) over the exact bytes
received and compare it with the header value in constant time.

RULES:
- Operates on the raw request bytes, never on re-serialized JSON
- verify() never raises; empty secret or header → False
- Pure functions, no side effects
"""

from __future__ import annotations

import base64
import hashlib
import hmac


def sign(raw_body: bytes, shared_secret: str) -> str:
    """Return the base64 HMAC-SHA256 signature LINE would send for raw_body."""
    digest = hmac.new(shared_secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify(raw_body: bytes, signature_header: str | None, shared_secret: str | None) -> bool:
    """Check a webhook signature header against the shared secret.

    Args:
        raw_body: The request body exactly as received.
        signature_header: Value of the x-line-signature header, or None.
        shared_secret: The channel secret, or None when unconfigured.

    Returns:
        True only when both inputs are present and the signature matches.
    """
    if not shared_secret or not signature_header:
        return False
    expected = sign(raw_body, shared_secret)
    return hmac.compare_digest(expected.encode("ascii"), signature_header.encode("utf-8"))
