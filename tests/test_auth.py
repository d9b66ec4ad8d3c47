from datetime import timedelta

import jwt
import pytest
from starlette.requests import Request

from auth import (
    Identity,
    InvalidToken,
    create_access_token,
    decode_access_token,
    extract_token,
    refresh_access_token,
)
from config import settings
from models import utcnow


def _request(headers=None, query_string=b""):
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw_headers,
                    "query_string": query_string})


def test_token_round_trip():
    token, expire = create_access_token(Identity(user_id=7, email="a@example.com", is_admin=True))
    identity = decode_access_token(token)

    assert identity == Identity(user_id=7, email="a@example.com", is_admin=True)
    assert expire > utcnow()


def test_expired_and_forged_tokens_are_rejected():
    past = utcnow() - timedelta(minutes=settings.jwt_expiration_minutes + 1)
    expired, _ = create_access_token(Identity(user_id=1, email="a@example.com"), now=past)
    with pytest.raises(InvalidToken, match="expired"):
        decode_access_token(expired)

    forged = jwt.encode({"id": 1, "exp": utcnow() + timedelta(hours=1)}, "another-secret-that-does-not-match-the-app", algorithm="HS256")
    with pytest.raises(InvalidToken):
        decode_access_token(forged)


def test_refresh_within_window_keeps_original_issue_time():
    issued = utcnow() - timedelta(minutes=settings.jwt_expiration_minutes + 5)
    old, _ = create_access_token(Identity(user_id=3, email="c@example.com"), now=issued)

    fresh, expire = refresh_access_token(old)

    assert decode_access_token(fresh).user_id == 3
    assert expire > utcnow()
    claims = jwt.decode(fresh, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    assert claims["orig_iat"] == int(issued.timestamp())


def test_refresh_outside_window_fails():
    issued = utcnow() - timedelta(minutes=settings.jwt_max_refresh_minutes + 1)
    old, _ = create_access_token(Identity(user_id=3, email="c@example.com"), now=issued)
    with pytest.raises(InvalidToken):
        refresh_access_token(old)


def test_extract_token_lookup_order():
    assert extract_token(_request({"Cookie": "jwt=from-cookie", "Authorization": "Bearer from-header"})) == "from-cookie"
    assert extract_token(_request({"Cookie": "token=legacy-cookie"})) == "legacy-cookie"
    assert extract_token(_request({"Authorization": "Bearer from-header"}, b"token=from-query")) == "from-header"
    assert extract_token(_request(query_string=b"token=from-query")) == "from-query"
    assert extract_token(_request({"Authorization": "Basic abc"})) is None
