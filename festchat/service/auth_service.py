"""
Authentication service: registration, login, token refresh and revocation.
"""
import uuid
from contextlib import contextmanager
from typing import Optional

import redis
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from festchat.auth import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    hash_password,
    verify_password,
)
from festchat.core.config import settings
from festchat.core.database import retry_transient
from festchat.core.exceptions import (
    AuthenticationError,
    EmailAlreadyExists,
    InvalidCredentials,
    InvalidToken,
    ServiceError,
)
from festchat.crud import user_crud
from festchat.model.user import User, ROLE_ADMIN, ROLE_MEMBER
from festchat.schema.auth import ChangePassword, TokenPair, UserInfo, UserLogin, UserRegister
from festchat.service.access_control import AccessControl, access_control
from festchat.session import (
    has_refresh_token,
    revoke_all_refresh_tokens,
    revoke_refresh_token,
    store_refresh_token,
)
from festchat.utils.timeutil import utcnow
import logging

logger = logging.getLogger(__name__)


def user_info(user: User, acl: AccessControl = access_control) -> UserInfo:
    return UserInfo(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        is_admin=acl.is_admin(user),
        is_active=user.is_active,
        last_active=user.last_active,
        created_at=user.created_at,
    )


@contextmanager
def session_store(action: str):
    """Map Redis failures in the refresh-token store to a 503."""
    try:
        yield
    except (redis.RedisError, RuntimeError) as e:
        logger.error(f"Session store unavailable during {action}: {e}")
        raise ServiceError("Session store unavailable, please try again") from e


class AuthService:
    """Handles user authentication operations."""

    def __init__(self, db: Session, acl: AccessControl = access_control):
        self.db = db
        self.acl = acl

    def _issue_tokens(self, user: User) -> TokenPair:
        access_token = create_access_token(user.id, user.email)
        refresh_token, jti = create_refresh_token(user.id, user.email)
        with session_store("token issue"):
            store_refresh_token(str(user.id), jti)
        return TokenPair(
            user=user_info(user, self.acl),
            access_token=access_token,
            refresh_token=refresh_token,
        )

    @retry_transient
    def register_user(self, user_data: UserRegister) -> TokenPair:
        """Create a local user and sign them in."""
        email = user_data.email.strip().lower()
        if user_crud.get_by_email(self.db, email):
            raise EmailAlreadyExists()

        role = ROLE_ADMIN if email == self.acl.bootstrap_admin_email else ROLE_MEMBER
        user = User(
            id=uuid.uuid4(),
            name=user_data.name.strip(),
            email=email,
            password_hash=hash_password(user_data.password),
            role=role,
            is_active=True,
            last_active=utcnow(),
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise EmailAlreadyExists()
        self.db.refresh(user)
        logger.info(f"User registered: {user.email} ({user.role})")
        return self._issue_tokens(user)

    @retry_transient
    def login(self, login_data: UserLogin) -> TokenPair:
        user = user_crud.get_by_email(self.db, login_data.email)
        if not user or not verify_password(login_data.password, user.password_hash):
            raise InvalidCredentials()
        if not user.is_active:
            raise AuthenticationError("Account is deactivated", code="ACCOUNT_DISABLED")

        user.last_active = utcnow()
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"User logged in: {user.email}")
        return self._issue_tokens(user)

    def refresh(self, refresh_token: str) -> str:
        """Exchange a stored refresh token for a new access token."""
        claims = decode_refresh_token(refresh_token)
        with session_store("token refresh"):
            known = has_refresh_token(str(claims.user_id), claims.jti)
        if not known:
            raise InvalidToken("Refresh token has been revoked")
        user = user_crud.get(self.db, claims.user_id)
        if not user or not user.is_active:
            raise InvalidToken("User not found or inactive")
        return create_access_token(user.id, user.email)

    def logout(self, user: User, refresh_token: Optional[str] = None) -> int:
        """
        Revoke one refresh token, or all of them when none is given.
        Returns the number of revoked tokens.
        """
        if not refresh_token:
            return self.logout_all(user)
        claims = decode_refresh_token(refresh_token)
        if claims.user_id != user.id:
            raise InvalidToken("Refresh token belongs to another user")
        with session_store("logout"):
            revoked = 1 if revoke_refresh_token(str(user.id), claims.jti) else 0
        logger.info(f"User logged out: {user.email}")
        return revoked

    def logout_all(self, user: User) -> int:
        with session_store("logout"):
            count = revoke_all_refresh_tokens(str(user.id))
        logger.info(f"User logged out everywhere: {user.email}")
        return count

    @retry_transient
    def update_profile(self, user: User, name: str) -> User:
        user.name = name.strip()
        self.db.commit()
        self.db.refresh(user)
        return user

    @retry_transient
    def change_password(self, user: User, body: ChangePassword) -> None:
        if not verify_password(body.current_password, user.password_hash):
            raise InvalidCredentials("Current password is incorrect")
        user.password_hash = hash_password(body.new_password)
        self.db.commit()
        with session_store("password change"):
            revoke_all_refresh_tokens(str(user.id))
        logger.info(f"Password changed: {user.email}")
