"""Webhook signature verification (GitHub ``X-Hub-Signature-256``)."""

from __future__ import annotations

import hashlib
import hmac

from contentsync.exceptions import AuthenticationError

SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` signature GitHub sends for *raw_body*."""
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(raw_body: bytes, provided_signature: str | None, secret: str) -> bool:
    """Check a webhook signature against the raw, unparsed request body.

    Every failure (no secret, missing header, wrong prefix, wrong length,
    wrong digest) returns ``False`` without saying which check failed.
    """
    if not secret or not provided_signature:
        return False
    try:
        provided = provided_signature.encode("ascii")
    except UnicodeEncodeError:
        return False
    expected = compute_signature(raw_body, secret).encode("ascii")
    # compare_digest is constant-time for equal lengths and False otherwise
    return hmac.compare_digest(provided, expected)


def require_valid_signature(raw_body: bytes, provided_signature: str | None, secret: str) -> None:
    """Like :func:`verify_signature` but raises on failure.

    Raises:
        AuthenticationError: If the signature is missing or does not match.
    """
    if not verify_signature(raw_body, provided_signature, secret):
        raise AuthenticationError("Invalid signature")
