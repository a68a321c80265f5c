"""
Users router - admin user management and activity counts.
"""
import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from festchat.chat.presence import online_user_ids
from festchat.core.database import get_db
from festchat.core.dependencies import get_current_user, require_admin
from festchat.model.user import User
from festchat.schema.auth import CountData, RoleUpdate, UserInfo
from festchat.schema.common import Envelope, ListEnvelope
from festchat.service.auth_service import user_info
from festchat.service.user_service import UserService

router = APIRouter()


@router.get("", response_model=ListEnvelope[UserInfo])
async def list_users(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """All users, newest first (admin only)."""
    users = UserService(db).list_users(admin)
    return ListEnvelope(count=len(users), data=[user_info(u) for u in users])


@router.get("/active-count", response_model=Envelope[CountData])
async def active_count(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    count = UserService(db).active_count()
    return Envelope(message="OK", data=CountData(count=count, timeframe="24h"))


@router.get("/online-count", response_model=Envelope[CountData])
async def online_count(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    count = UserService(db).online_count()
    return Envelope(
        message="OK",
        data=CountData(count=count, timeframe="5m", connected=len(online_user_ids())),
    )


@router.put("/{user_id}/role", response_model=Envelope[UserInfo])
async def update_role(
    user_id: uuid.UUID,
    body: RoleUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = UserService(db).set_role(admin, user_id, body.role)
    return Envelope(message="User role updated", data=user_info(user))


@router.put("/{user_id}/deactivate", response_model=Envelope[UserInfo])
async def deactivate_user(
    user_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = UserService(db).set_active(admin, user_id, False)
    return Envelope(message="User deactivated", data=user_info(user))


@router.put("/{user_id}/activate", response_model=Envelope[UserInfo])
async def activate_user(
    user_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = UserService(db).set_active(admin, user_id, True)
    return Envelope(message="User activated", data=user_info(user))
