"""Printful webhook signature verification: constant-time HMAC.

Printful signs the raw body: X-Printful-Signature is the hex HMAC-SHA256
digest under the shared webhook secret.

Security contract:
- Comparison uses hmac.compare_digest() (constant-time)
- Secret configured + signature missing or wrong -> reject (401)
- No secret configured -> verification skipped, with a warning. This is
  the permissive mode for first-time setup before Printful issues a secret.
"""

from __future__ import annotations

import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

PRINTFUL_SIGNATURE_HEADER = "x-printful-signature"


def sign_printful(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_printful(body: bytes, signature: str | None, secret: str | None) -> bool:
    """Verify a Printful webhook signature.

    Args:
        body: Raw request body bytes
        signature: Value of X-Printful-Signature header
        secret: Configured webhook secret ("" or None = not configured)

    Returns:
        True if the webhook may be processed
    """
    if not secret:
        logger.warning("Printful webhook secret not set; skipping signature check")
        return True
    if not signature:
        return False
    return hmac.compare_digest(sign_printful(body, secret), signature.strip())
