"""
Fiscal Signing - Content Hash
=============================
SHA-256 over the signed payload bytes.

Doctrine:
- Same signed payload -> same hash (deterministic).
- The hash is recomputed every time the payload is (re)signed and is the
  value downstream steps treat as authoritative.
- This module ONLY computes. It does not persist or dispatch.
"""

from __future__ import annotations

import base64
import hashlib
import hmac


def compute_content_hash(signed_payload: bytes) -> str:
    """Return the lowercase hex SHA-256 digest (64 characters)."""
    if not isinstance(signed_payload, (bytes, bytearray)):
        raise ValueError("signed_payload must be bytes.")
    return hashlib.sha256(bytes(signed_payload)).hexdigest()


def verify_content_hash(signed_payload: bytes, expected_hash: str) -> bool:
    """Constant-time comparison against a stored hash."""
    if not isinstance(expected_hash, str) or len(expected_hash) != 64:
        return False
    actual = compute_content_hash(signed_payload)
    return hmac.compare_digest(actual, expected_hash.lower())


def digest_b64(data: bytes) -> str:
    """Base64 SHA-256 digest, the form XML-DSig DigestValue carries."""
    return base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")
