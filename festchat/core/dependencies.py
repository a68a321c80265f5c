"""
FastAPI dependencies for route protection and rate limiting.
"""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from festchat.auth import decode_access_token
from festchat.core.config import settings
from festchat.core.database import get_db
from festchat.core.exceptions import AdminRequired, AuthenticationError, NotAuthenticated
from festchat.core.rate_limit import RateLimiter
from festchat.crud import user_crud
from festchat.model.user import User
from festchat.service.access_control import access_control
from festchat.service.user_service import UserService
from festchat.session import extract_token, get_redis_client

# Security scheme for OpenAPI docs (shows lock icon and Authorization header)
bearer_scheme = HTTPBearer(
    scheme_name="Bearer",
    description="Access token from the login endpoint",
    auto_error=False,
)

rate_limiter = RateLimiter(get_redis_client, window=settings.RATE_LIMIT_WINDOW)


def get_current_token(request: Request) -> str:
    """Bearer token set by TokenMiddleware (falls back to the header)."""
    token = getattr(request.state, "token", None) or extract_token(request.headers.get("authorization"))
    if not token:
        raise NotAuthenticated()
    return token


def load_user_from_token(db: Session, token: str) -> User:
    """
    Resolve an access token to an active user.

    Raises:
        TokenExpired / InvalidToken: bad token
        AuthenticationError: user missing or deactivated
    """
    claims = decode_access_token(token)
    user = user_crud.get(db, claims.user_id)
    if not user:
        raise AuthenticationError("User not found", code="INVALID_TOKEN")
    if not user.is_active:
        raise AuthenticationError("Account is deactivated", code="ACCOUNT_DISABLED")
    return user


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    token = get_current_token(request)
    user = load_user_from_token(db, token)
    UserService(db).touch_activity(user, settings.ACTIVITY_TOUCH_INTERVAL)
    request.state.user = user
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not access_control.is_admin(user):
        raise AdminRequired()
    return user


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def auth_rate_limit(request: Request) -> None:
    rate_limiter.hit("auth", _client_ip(request), settings.AUTH_RATE_LIMIT)


def chat_rate_limit(user: User = Depends(get_current_user)) -> None:
    rate_limiter.hit("chat", str(user.id), settings.CHAT_RATE_LIMIT, is_admin=access_control.is_admin(user))


def message_rate_limit(user: User = Depends(get_current_user)) -> None:
    rate_limiter.hit("message", str(user.id), settings.MESSAGE_RATE_LIMIT, is_admin=access_control.is_admin(user))
