"""
API Router - all endpoints.
"""
from fastapi import APIRouter
from festchat.router.api.v1 import auth, users, chats, messages, realtime

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(
    auth.router,
    prefix="/auth",
    tags=["Authentication"],
)

api_router.include_router(
    users.router,
    prefix="/users",
    tags=["Users"],
)

api_router.include_router(
    chats.router,
    prefix="/chats",
    tags=["Chats"],
)

api_router.include_router(
    messages.router,
    prefix="/messages",
    tags=["Messages"],
)

api_router.include_router(
    realtime.router,
    tags=["Realtime"],
)
