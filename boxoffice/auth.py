"""
Signed admin tokens: ``<payload>.<mac>``, both base64url without padding.

payload = JSON {"sub": admin id, "exp": unix seconds}
mac     = HMAC-SHA256(secret, payload bytes)
"""
from __future__ import annotations
import base64
import hashlib
import hmac
import json
from typing import Optional

from .errors import Unauthorized
from .helpers import now_ts


def _b64e(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def _b64d(s: str) -> bytes:
    return base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))


def _mac(secret: str, payload: bytes) -> bytes:
    return hmac.new(secret.encode(), payload, hashlib.sha256).digest()


def issue_token(admin_id: str, secret: str, ttl_seconds: int,
                now: Optional[float] = None) -> str:
    exp = int((now if now is not None else now_ts()) + ttl_seconds)
    payload = json.dumps(
        {"sub": admin_id, "exp": exp}, separators=(",", ":")
    ).encode()
    return f"{_b64e(payload)}.{_b64e(_mac(secret, payload))}"


def verify_token(token: str, secret: str,
                 now: Optional[float] = None) -> str:
    """Return the admin id carried by a valid, unexpired token."""
    try:
        p64, m64 = token.split(".")
        payload = _b64d(p64)
        mac = _b64d(m64)
    except ValueError:
        raise Unauthorized("malformed token")
    if not hmac.compare_digest(mac, _mac(secret, payload)):
        raise Unauthorized("invalid token")
    try:
        claims = json.loads(payload)
        admin_id = str(claims["sub"])
        exp = float(claims["exp"])
    except (ValueError, KeyError, TypeError):
        raise Unauthorized("malformed token")
    if exp <= (now if now is not None else now_ts()):
        raise Unauthorized("token expired")
    return admin_id


def bearer(header: Optional[str]) -> str:
    if not header or not header.startswith("Bearer "):
        raise Unauthorized("missing bearer token")
    return header[len("Bearer "):].strip()
