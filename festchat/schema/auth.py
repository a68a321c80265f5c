"""
Authentication and user schemas.
"""
import uuid
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field


class UserRegister(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class RefreshBody(BaseModel):
    refresh_token: str


class LogoutBody(BaseModel):
    refresh_token: Optional[str] = None


class UpdateProfile(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)


class ChangePassword(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6, max_length=128)


class RoleUpdate(BaseModel):
    role: str


class UserInfo(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    role: str
    is_admin: bool
    is_active: bool
    last_active: Optional[datetime] = None
    created_at: Optional[datetime] = None


class TokenPair(BaseModel):
    user: UserInfo
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AccessToken(BaseModel):
    access_token: str
    token_type: str = "bearer"


class CountData(BaseModel):
    count: int
    timeframe: str
    connected: Optional[int] = None
