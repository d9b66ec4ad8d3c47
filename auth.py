"""Token issuing and verification for the API.

Tokens are HS256 JWTs carrying the user's id, email and admin flag. They are
accepted from the ``jwt``/``token`` cookies, an ``Authorization: Bearer``
header or a ``token`` query parameter, in that order. An expired token can be
exchanged for a fresh one while its original issue time is inside the
refresh window.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import jwt
from fastapi import Depends, HTTPException, Request

from config import settings
from models import User, utcnow


class InvalidToken(Exception):
    pass


@dataclass
class Identity:
    user_id: int
    email: str
    is_admin: bool = False

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(user_id=user.id, email=user.email, is_admin=user.is_admin)


def create_access_token(identity: Identity, now: Optional[datetime] = None,
                        orig_iat: Optional[int] = None) -> Tuple[str, datetime]:
    now = now or utcnow()
    expire = now + timedelta(minutes=settings.jwt_expiration_minutes)
    payload = {
        "id": identity.user_id,
        "email": identity.email,
        "is_admin": identity.is_admin,
        "exp": expire,
        "orig_iat": orig_iat if orig_iat is not None else int(now.timestamp()),
    }
    token = jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
    return token, expire


def _decode(token: str, verify_exp: bool = True) -> dict:
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp"], "verify_exp": verify_exp},
        )
    except jwt.ExpiredSignatureError as e:
        raise InvalidToken("Token has expired") from e
    except jwt.PyJWTError as e:
        raise InvalidToken("Invalid token") from e
    if not isinstance(claims.get("id"), int):
        raise InvalidToken("Token does not identify a user")
    return claims


def decode_access_token(token: str) -> Identity:
    claims = _decode(token)
    return Identity(user_id=claims["id"], email=claims.get("email", ""), is_admin=bool(claims.get("is_admin")))


def refresh_access_token(token: str, now: Optional[datetime] = None) -> Tuple[str, datetime]:
    now = now or utcnow()
    claims = _decode(token, verify_exp=False)
    orig_iat = claims.get("orig_iat")
    if not isinstance(orig_iat, int):
        raise InvalidToken("Token cannot be refreshed")
    issued = datetime.fromtimestamp(orig_iat, tz=timezone.utc)
    if issued + timedelta(minutes=settings.jwt_max_refresh_minutes) < now:
        raise InvalidToken("Token is too old to refresh")
    identity = Identity(user_id=claims["id"], email=claims.get("email", ""), is_admin=bool(claims.get("is_admin")))
    return create_access_token(identity, now=now, orig_iat=orig_iat)


def extract_token(request: Request) -> Optional[str]:
    token = request.cookies.get(settings.jwt_cookie_name) or request.cookies.get("token")
    if not token:
        header = request.headers.get("Authorization", "")
        if header.startswith("Bearer "):
            token = header[len("Bearer "):].strip()
    if not token:
        token = request.query_params.get("token")
    return token or None


# --- FastAPI dependencies ---
def get_current_identity(request: Request) -> Identity:
    """Dependency that resolves the caller from the request's token."""
    token = extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Missing authentication token",
                            headers={"WWW-Authenticate": "Bearer"})
    try:
        return decode_access_token(token)
    except InvalidToken as e:
        raise HTTPException(status_code=401, detail=str(e), headers={"WWW-Authenticate": "Bearer"})


def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity
