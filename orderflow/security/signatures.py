"""HMAC-SHA256 signatures for carrier webhook bodies."""

from __future__ import annotations

import hashlib
import hmac
from typing import Optional

from ..constants import SIGNATURE_PREFIX


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 digest of the raw request ``body``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: Optional[str], body: bytes, signature: Optional[str]) -> bool:
    """Constant-time check of ``signature`` against the body.

    Accepts the bare hex digest or one prefixed with ``sha256=``. A missing
    secret or signature never verifies.
    """
    if not secret or not signature:
        return False
    candidate = signature.strip()
    if candidate.lower().startswith(SIGNATURE_PREFIX):
        candidate = candidate[len(SIGNATURE_PREFIX):]
    expected = compute_signature(secret, body)
    return hmac.compare_digest(candidate.lower(), expected)
