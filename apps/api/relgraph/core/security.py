from __future__ import annotations

import hashlib
import hmac

from relgraph.core.errors import SignatureError


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def _strip_scheme(signature: str) -> str:
    value = signature.strip()
    if value.lower().startswith("sha256="):
        return value.split("=", 1)[1]
    return value


def verify_webhook_signature(secret: str | None, raw_body: bytes, signature_header: str | None) -> None:
    """HMAC-SHA256 over the raw body, hex encoded; no secret means no check."""
    if not secret:
        return
    if not signature_header:
        raise SignatureError("Missing webhook signature")
    expected = compute_signature(secret, raw_body)
    provided = _strip_scheme(signature_header).lower()
    if not hmac.compare_digest(expected.encode("ascii"), provided.encode("ascii", errors="replace")):
        raise SignatureError("Invalid webhook signature")
