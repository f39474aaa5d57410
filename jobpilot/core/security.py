"""Signed bearer tokens for the single-operator API.

A token is ``base64(owner_id:expiry:signature)`` where the signature is an
HMAC-SHA256 over ``owner_id:expiry`` keyed with SECRET_KEY. Owners log in
with the shared LOCAL_API_KEY; every session and profile is scoped to the
owner id carried in the token.
"""

import base64
import hashlib
import hmac
import time
from typing import Optional

from fastapi import HTTPException, status

from jobpilot.core.config import get_settings


def _sign(message: str) -> str:
    digest = hmac.new(
        get_settings().secret_key.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8")


def create_session_token(owner_id: str, *, now: float | None = None) -> str:
    if not owner_id:
        raise ValueError("owner_id is required")
    expiry = int(now if now is not None else time.time()) + get_settings().token_ttl_seconds
    payload = f"{owner_id}:{expiry}"
    return base64.urlsafe_b64encode(f"{payload}:{_sign(payload)}".encode("utf-8")).decode("utf-8")


def verify_session_token(token: str, *, now: float | None = None) -> Optional[str]:
    """Return the owner id for a valid, unexpired token, else None."""
    try:
        decoded = base64.urlsafe_b64decode(token.encode("utf-8")).decode("utf-8")
        # Owner ids may contain ':'; expiry and signature never do.
        owner_id, expiry_raw, signature = decoded.rsplit(":", 2)
        expiry = int(expiry_raw)
    except (ValueError, UnicodeDecodeError):
        return None

    if not owner_id or not hmac.compare_digest(signature, _sign(f"{owner_id}:{expiry_raw}")):
        return None
    if expiry < int(now if now is not None else time.time()):
        return None
    return owner_id


def validate_login_api_key(api_key: str) -> None:
    if not hmac.compare_digest(api_key.encode("utf-8"), get_settings().local_api_key.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
