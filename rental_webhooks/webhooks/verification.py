"""Webhook signature verification: constant-time HMAC-SHA256 over the raw body.

Security contract:
- Comparison uses hmac.compare_digest() (constant-time, no timing attacks)
- No secret configured -> verification skipped (unsigned webhooks allowed)
- Secret configured + missing signature -> reject
- Malformed signatures (bad hex, non-ASCII) -> reject, never raise
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class SignatureVerifier(Protocol):
    """Callable that authenticates a raw webhook body."""

    def __call__(self, body: bytes, signature: str | None, secret: str | None) -> bool: ...


def sign_hmac_sha256(body: bytes, secret: str) -> str:
    """Return the hex HMAC-SHA256 signature of ``body`` keyed by ``secret``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_hmac_sha256(body: bytes, signature: str | None, secret: str | None) -> bool:
    """Verify a hex-encoded HMAC-SHA256 webhook signature.

    Args:
        body: Raw request body bytes
        signature: Value of the signature header (hex digest)
        secret: Configured shared secret, or None when signing is disabled

    Returns:
        True if the signature is valid or no secret is configured
    """
    if not secret:
        logger.warning("Webhook signature verification skipped - no secret configured")
        return True
    if not signature:
        return False

    try:
        provided = bytes.fromhex(signature.strip())
        expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
        return hmac.compare_digest(provided, expected)
    except Exception:
        logger.warning("Webhook signature verification error", exc_info=True)
        return False
