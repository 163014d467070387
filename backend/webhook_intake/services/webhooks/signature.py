"""Webhook signature verification (HMAC-SHA256 over the raw request body).

Contract:
- The digest is always computed over the exact bytes received. Callers must
  read the body before any JSON parsing; a re-serialized body will not match.
- Comparison is constant time (`hmac.compare_digest` on decoded digests).
- `verify` never raises. A missing secret, a missing or malformed header, or a
  digest of the wrong length all return False (fail closed).
- The platform sends base64 digests; hex digests are accepted as well.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass
from typing import Final, Literal

from webhook_intake.core.logging import get_logger

logger = get_logger(__name__)

_DIGEST_SIZE: Final[int] = hashlib.sha256().digest_size
_HEX_LENGTH: Final[int] = _DIGEST_SIZE * 2

SignatureEncoding = Literal["base64", "hex"]


@dataclass(frozen=True, slots=True)
class VerificationResult:
    """Outcome of checking one inbound delivery; never persisted."""

    tenant: str
    topic: str
    payload: bytes
    valid: bool


def _secret_bytes(shared_secret: bytes | str | None) -> bytes | None:
    if shared_secret is None:
        return None
    if isinstance(shared_secret, str):
        shared_secret = shared_secret.encode("utf-8")
    return shared_secret or None


def _decode_signature(candidate: str) -> bytes | None:
    # Only canonical encodings are accepted (lowercase hex, padded base64 with
    # zero trailing bits) so each digest has exactly one valid header value.
    if len(candidate) == _HEX_LENGTH:
        try:
            decoded = bytes.fromhex(candidate)
        except ValueError:
            decoded = b""
        if len(decoded) == _DIGEST_SIZE and decoded.hex() == candidate:
            return decoded
    try:
        decoded = base64.b64decode(candidate, validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(decoded) != _DIGEST_SIZE:
        return None
    if base64.b64encode(decoded).decode("ascii") != candidate:
        return None
    return decoded


def compute_digest(raw_body: bytes, shared_secret: bytes | str) -> bytes:
    secret = _secret_bytes(shared_secret)
    if secret is None:
        msg = "shared secret must not be empty"
        raise ValueError(msg)
    return hmac.new(secret, raw_body, hashlib.sha256).digest()


def sign(
    raw_body: bytes,
    shared_secret: bytes | str,
    *,
    encoding: SignatureEncoding = "base64",
) -> str:
    """Produce the signature header value a trusted sender would attach."""
    digest = compute_digest(raw_body, shared_secret)
    if encoding == "hex":
        return digest.hex()
    return base64.b64encode(digest).decode("ascii")


def verify(
    raw_body: bytes,
    signature_header: str | None,
    shared_secret: bytes | str | None,
) -> bool:
    """Return True only if `signature_header` is the HMAC of `raw_body`."""
    secret = _secret_bytes(shared_secret)
    if secret is None:
        logger.warning("webhook.signature.secret_missing")
        return False
    if not signature_header:
        return False
    supplied = _decode_signature(signature_header)
    if supplied is None:
        return False
    expected = hmac.new(secret, raw_body, hashlib.sha256).digest()
    return hmac.compare_digest(expected, supplied)


def verify_request(
    raw_body: bytes,
    signature_header: str | None,
    *,
    topic: str | None,
    tenant: str | None,
    shared_secret: bytes | str | None,
    require_signature: bool = True,
) -> VerificationResult:
    """Verify one inbound delivery and describe it for the ingress handler.

    A delivery is only valid when it names its topic and tenant and (unless
    the test-only `require_signature=False` bypass is active) its signature
    checks out.
    """
    topic_value = (topic or "").strip()
    tenant_value = (tenant or "").strip()
    if require_signature:
        signature_ok = verify(raw_body, signature_header, shared_secret)
    else:
        logger.warning(
            "webhook.signature.bypassed",
            extra={"topic": topic_value, "tenant": tenant_value},
        )
        signature_ok = True
    return VerificationResult(
        topic=topic_value,
        tenant=tenant_value,
        payload=raw_body,
        valid=bool(signature_ok and topic_value and tenant_value),
    )
