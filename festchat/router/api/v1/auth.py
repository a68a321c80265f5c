"""
Authentication router - register/login/refresh/logout and profile.
"""
from typing import Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from festchat.core.database import get_db
from festchat.core.dependencies import auth_rate_limit, get_current_user
from festchat.model.user import User
from festchat.service.auth_service import AuthService, user_info
from festchat.schema.auth import (
    AccessToken,
    ChangePassword,
    LogoutBody,
    RefreshBody,
    TokenPair,
    UpdateProfile,
    UserInfo,
    UserLogin,
    UserRegister,
)
from festchat.schema.common import Envelope, MessageOnly
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/register",
    response_model=Envelope[TokenPair],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_rate_limit)],
)
async def register(
    user_data: UserRegister,
    db: Session = Depends(get_db)
):
    """Register a new user and return a token pair."""
    tokens = AuthService(db).register_user(user_data)
    return Envelope(message="User registered successfully", data=tokens)


@router.post("/login", response_model=Envelope[TokenPair], dependencies=[Depends(auth_rate_limit)])
async def login(
    login_data: UserLogin,
    db: Session = Depends(get_db)
):
    tokens = AuthService(db).login(login_data)
    return Envelope(message="Login successful", data=tokens)


@router.post("/refresh", response_model=Envelope[AccessToken], dependencies=[Depends(auth_rate_limit)])
async def refresh(
    body: RefreshBody,
    db: Session = Depends(get_db)
):
    """Exchange a refresh token for a new access token."""
    access_token = AuthService(db).refresh(body.refresh_token)
    return Envelope(message="Token refreshed", data=AccessToken(access_token=access_token))


@router.post("/logout", response_model=MessageOnly)
async def logout(
    body: Optional[LogoutBody] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Revoke the given refresh token, or all of them when none is sent."""
    AuthService(db).logout(current_user, body.refresh_token if body else None)
    return MessageOnly(message="Logged out successfully")


@router.post("/logout-all", response_model=MessageOnly)
async def logout_all(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    AuthService(db).logout_all(current_user)
    return MessageOnly(message="Logged out from all devices")


@router.get("/me", response_model=Envelope[UserInfo])
async def me(current_user: User = Depends(get_current_user)):
    return Envelope(message="OK", data=user_info(current_user))


@router.get("/verify", response_model=Envelope[UserInfo])
async def verify(current_user: User = Depends(get_current_user)):
    """Token check for clients; same body as /me."""
    return Envelope(message="Token is valid", data=user_info(current_user))


@router.put("/me", response_model=Envelope[UserInfo])
async def update_me(
    body: UpdateProfile,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    user = AuthService(db).update_profile(current_user, body.name)
    return Envelope(message="Profile updated", data=user_info(user))


@router.put("/change-password", response_model=MessageOnly)
async def change_password(
    body: ChangePassword,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Change password; every refresh token is revoked."""
    AuthService(db).change_password(current_user, body)
    return MessageOnly(message="Password changed successfully")
