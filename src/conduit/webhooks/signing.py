"""Webhook signature generation and verification.

Envelopes are signed with HMAC-SHA256 over their canonical serialization
(compact JSON, fixed field order, signature field excluded). The hex digest
is carried both in the envelope's ``signature`` field and, prefixed with
``sha256=``, in the signature header.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

from conduit.models import Envelope, dumps_compact

SIGNATURE_PREFIX = "sha256="


def compute_signature(payload: str, secret: str) -> str:
    """Compute the HMAC-SHA256 hex digest of a payload.

    Args:
        payload: Exact text that was (or will be) sent.
        secret: Shared secret for HMAC.

    Returns:
        Lowercase hex digest.
    """
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=payload.encode("utf-8"),
        digestmod=hashlib.sha256,
    ).hexdigest()


def signature_header(signature: str) -> str:
    """Header value for a hex signature."""
    return f"{SIGNATURE_PREFIX}{signature}"


def verify_signature(payload: str, secret: str, signature: str) -> bool:
    """Verify an HMAC-SHA256 signature.

    Args:
        payload: Text that was signed.
        secret: Shared secret for HMAC.
        signature: Hex digest, with or without the ``sha256=`` prefix.

    Returns:
        True if signature is valid, False otherwise.
    """
    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX) :]
    expected = compute_signature(payload, secret)
    return hmac.compare_digest(expected, signature)


def sign_envelope(envelope: Envelope, secret: str) -> Envelope:
    """Return a copy of the envelope with its signature set."""
    signature = compute_signature(envelope.canonical_json(), secret)
    return envelope.model_copy(update={"signature": signature})


def verify_envelope(body: str | bytes, secret: str) -> bool:
    """Verify a received envelope body against its embedded signature.

    The receiver removes the ``signature`` field, re-serializes the rest
    compactly in received order and recomputes the HMAC.
    """
    try:
        payload: Any = json.loads(body)
    except ValueError:
        return False
    if not isinstance(payload, dict):
        return False
    signature = payload.pop("signature", None)
    if not isinstance(signature, str):
        return False
    return verify_signature(dumps_compact(payload), secret, signature)


__all__ = [
    "SIGNATURE_PREFIX",
    "compute_signature",
    "sign_envelope",
    "signature_header",
    "verify_envelope",
    "verify_signature",
]
