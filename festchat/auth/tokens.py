"""
Access and refresh JWTs.

Claims: sub (user id), email, type ("access" | "refresh"), jti, iat, exp.
Access and refresh tokens are signed with different secrets when
JWT_REFRESH_SECRET is set, and a token of one type is never accepted as the other.
"""
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import jwt

from festchat.core.config import settings
from festchat.core.exceptions import InvalidToken, TokenExpired

ACCESS = "access"
REFRESH = "refresh"


@dataclass
class TokenClaims:
    user_id: uuid.UUID
    email: str
    token_type: str
    jti: str
    exp: int


def _encode(user_id, email: str, token_type: str, ttl: int, secret: str) -> tuple:
    now = int(time.time())
    jti = str(uuid.uuid4())
    payload = {
        "sub": str(user_id),
        "email": email,
        "type": token_type,
        "jti": jti,
        "iat": now,
        "exp": now + ttl,
    }
    return jwt.encode(payload, secret, algorithm=settings.JWT_ALGORITHM), jti


def create_access_token(user_id, email: str, ttl: Optional[int] = None) -> str:
    token, _ = _encode(user_id, email, ACCESS, ttl or settings.ACCESS_TOKEN_TTL, settings.JWT_SECRET)
    return token


def create_refresh_token(user_id, email: str, ttl: Optional[int] = None) -> tuple:
    """Returns (token, jti); the jti is what the session layer stores."""
    return _encode(user_id, email, REFRESH, ttl or settings.REFRESH_TOKEN_TTL, settings.refresh_secret)


def _decode(token: str, secret: str, expected_type: str) -> TokenClaims:
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp", "sub", "type", "jti"]},
        )
    except jwt.ExpiredSignatureError as err:
        raise TokenExpired() from err
    except jwt.InvalidTokenError as err:
        raise InvalidToken() from err

    if payload.get("type") != expected_type:
        raise InvalidToken(f"Expected a {expected_type} token")
    try:
        user_id = uuid.UUID(payload["sub"])
    except (TypeError, ValueError) as err:
        raise InvalidToken() from err
    return TokenClaims(
        user_id=user_id,
        email=payload.get("email", ""),
        token_type=payload["type"],
        jti=payload["jti"],
        exp=payload["exp"],
    )


def decode_access_token(token: str) -> TokenClaims:
    return _decode(token, settings.JWT_SECRET, ACCESS)


def decode_refresh_token(token: str) -> TokenClaims:
    return _decode(token, settings.refresh_secret, REFRESH)
