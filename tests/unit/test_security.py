import base64

import pytest
from fastapi import HTTPException

from jobpilot.core.config import get_settings
from jobpilot.core.security import create_session_token, validate_login_api_key, verify_session_token


def test_token_round_trip():
    token = create_session_token("owner-1")
    assert verify_session_token(token) == "owner-1"


def test_owner_id_may_contain_colons():
    token = create_session_token("team:alex")
    assert verify_session_token(token) == "team:alex"


def test_expired_token_is_rejected():
    token = create_session_token("owner-1", now=1_000)
    ttl = get_settings().token_ttl_seconds

    assert verify_session_token(token, now=1_000 + ttl) == "owner-1"
    assert verify_session_token(token, now=1_000 + ttl + 1) is None


def test_tampered_token_is_rejected():
    decoded = base64.urlsafe_b64decode(create_session_token("owner-1")).decode("utf-8")
    forged = base64.urlsafe_b64encode(decoded.replace("owner-1", "owner-2", 1).encode("utf-8")).decode("utf-8")

    assert verify_session_token(forged) is None
    assert verify_session_token("not base64 at all") is None


def test_login_key_check():
    validate_login_api_key(get_settings().local_api_key)
    with pytest.raises(HTTPException) as exc_info:
        validate_login_api_key("wrong-key")
    assert exc_info.value.status_code == 401
