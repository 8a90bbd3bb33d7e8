from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import time
from typing import Optional

DEFAULT_TOLERANCE_SECONDS = 300


def _secret_bytes(secret: str) -> bytes:
    s = (secret or "").strip()
    if s.startswith("whsec_"):
        s = s[len("whsec_"):]
    try:
        return base64.b64decode(s)
    except (binascii.Error, ValueError):
        return s.encode("utf-8")


def sign(secret: str, *, webhook_id: str, timestamp: str, body: bytes) -> str:
    """v1,<base64 hmac-sha256 of "{id}.{timestamp}.{body}">"""
    content = f"{webhook_id}.{timestamp}.".encode("utf-8") + body
    digest = hmac.new(_secret_bytes(secret), content, hashlib.sha256).digest()
    return "v1," + base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(
    secret: str,
    *,
    webhook_id: Optional[str],
    timestamp: Optional[str],
    signature_header: Optional[str],
    body: bytes,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """
    Replicate signs webhooks the Svix way: headers webhook-id / webhook-timestamp /
    webhook-signature, the last one a space-separated list of "v1,<sig>" entries
    (several during secret rotation).
    """
    if not webhook_id or not timestamp or not signature_header:
        return False

    try:
        ts = int(timestamp)
    except ValueError:
        return False
    current = time.time() if now is None else now
    if abs(current - ts) > tolerance_seconds:
        return False

    expected = sign(secret, webhook_id=webhook_id, timestamp=timestamp, body=body)
    for candidate in signature_header.split():
        if hmac.compare_digest(candidate.strip(), expected):
            return True
    return False
