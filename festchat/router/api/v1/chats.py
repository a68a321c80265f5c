"""
Chats router: listing, creation, membership, admin bulk creation.

Static paths are declared before /{chat_id} so they are not captured by it.
"""
import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from festchat.chat.connection_manager import chat_room, connection_manager
from festchat.chat.payloads import chat_to_out
from festchat.core.database import get_db
from festchat.core.dependencies import chat_rate_limit, get_current_user, require_admin
from festchat.model.chat import Chat
from festchat.model.user import User
from festchat.schema.chat import (
    AddParticipantBody,
    BulkCreateBody,
    BulkCreateResponse,
    BulkItemError,
    BulkSummary,
    ChatCreateBody,
    ChatCreateResponse,
    ChatOut,
    ChatUpdateBody,
    JoinByNameBody,
    JoinByNameResponse,
    QuickGroupsBody,
)
from festchat.schema.common import Envelope, ListEnvelope, MessageOnly
from festchat.service.chat_service import ChatService

router = APIRouter(dependencies=[Depends(chat_rate_limit)])
logger = logging.getLogger(__name__)


def _notify_membership(chat: Chat, user: User, event: str) -> None:
    connection_manager.emit_to_room_sync(
        chat_room(chat.id),
        event,
        {"chat_id": str(chat.id), "user_id": str(user.id), "user_name": user.name},
    )


def _bulk_response(created: List[Chat], errors: List[dict], requested: int, admin: User, preset=None) -> JSONResponse:
    body = BulkCreateResponse(
        success=bool(created),
        message=f"Created {len(created)} of {requested} chats",
        data=[chat_to_out(c, admin) for c in created],
        errors=[BulkItemError(**e) for e in errors],
        summary=BulkSummary(requested=requested, created=len(created), failed=len(errors)),
        preset=preset,
    )
    status_code = status.HTTP_201_CREATED if created else status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


# --- collection ---


@router.get("", response_model=ListEnvelope[ChatOut])
async def list_chats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Active chats visible in the listing, most recently active first."""
    chats = ChatService(db).list_chats(current_user)
    return ListEnvelope(count=len(chats), data=[chat_to_out(c, current_user) for c in chats])


@router.post("", response_model=ChatCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_chat(
    body: ChatCreateBody,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a chat. An admin DM that already exists is returned with 200."""
    chat, created = ChatService(db).create_chat(current_user, body)
    if not created:
        response = ChatCreateResponse(
            message="Admin DM already exists",
            created=False,
            data=chat_to_out(chat, current_user),
        )
        return JSONResponse(status_code=status.HTTP_200_OK, content=response.model_dump(mode="json"))
    return ChatCreateResponse(message="Chat created successfully", created=True, data=chat_to_out(chat, current_user))


@router.get("/search-by-name", response_model=ListEnvelope[ChatOut])
async def search_by_name(
    q: str = Query(..., min_length=1, max_length=50),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    chats = ChatService(db).search_by_name(q)
    return ListEnvelope(count=len(chats), data=[chat_to_out(c, current_user) for c in chats])


@router.post("/join-by-name", response_model=JoinByNameResponse)
async def join_by_name(
    body: JoinByNameBody,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Join a chat by exact name; unknown names come back as 404 with suggestions."""
    chat, suggestions = ChatService(db).join_by_name(current_user, body.name)
    if chat is None:
        response = JoinByNameResponse(
            success=False,
            message=f"No chat named '{body.name}'",
            suggestions=suggestions,
        )
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=response.model_dump(mode="json"))
    _notify_membership(chat, current_user, "user_joined_chat")
    return JoinByNameResponse(success=True, message=f"Joined '{chat.name}'", data=chat_to_out(chat, current_user))


@router.post("/bulk-create", response_model=BulkCreateResponse, status_code=status.HTTP_201_CREATED)
async def bulk_create(
    body: BulkCreateBody,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    created, errors = ChatService(db).bulk_create(
        admin,
        count=body.count,
        name_prefix=body.name_prefix,
        description=body.description,
        category=body.category,
        chat_type=body.type,
    )
    return _bulk_response(created, errors, body.count, admin)


@router.post("/quick-groups", response_model=BulkCreateResponse, status_code=status.HTTP_201_CREATED)
async def quick_groups(
    body: QuickGroupsBody,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Create the predefined groups of a preset."""
    created, errors = ChatService(db).quick_groups(admin, body.preset)
    return _bulk_response(created, errors, len(created) + len(errors), admin, preset=body.preset)


# --- single chat ---


@router.get("/{chat_id}", response_model=Envelope[ChatOut])
async def get_chat(
    chat_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    chat = ChatService(db).get_visible_chat(current_user, chat_id)
    return Envelope(message="OK", data=chat_to_out(chat, current_user))


@router.put("/{chat_id}", response_model=Envelope[ChatOut])
async def update_chat(
    chat_id: uuid.UUID,
    body: ChatUpdateBody,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    chat = ChatService(db).update_chat(current_user, chat_id, body)
    return Envelope(message="Chat updated successfully", data=chat_to_out(chat, current_user))


@router.delete("/{chat_id}", response_model=MessageOnly)
async def delete_chat(
    chat_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Soft delete; history stays readable for members. Subscribed sockets are dropped from the room."""
    chat = ChatService(db).soft_delete_chat(current_user, chat_id)
    room = chat_room(chat.id)
    await connection_manager.emit_to_room(room, "chat_deleted", {"chat_id": str(chat.id)})
    await connection_manager.close_room(room)
    return MessageOnly(message="Chat deleted successfully")


@router.post("/{chat_id}/participants", response_model=Envelope[ChatOut])
async def add_participant(
    chat_id: uuid.UUID,
    body: AddParticipantBody,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service = ChatService(db)
    chat = service.add_participant_by(current_user, chat_id, body.user_id, body.role)
    added = chat.participant_for(body.user_id)
    connection_manager.emit_to_room_sync(
        chat_room(chat.id),
        "user_joined_chat",
        {"chat_id": str(chat.id), "user_id": str(body.user_id), "user_name": added.name if added else None},
    )
    return Envelope(message="Participant added", data=chat_to_out(chat, current_user))


@router.delete("/{chat_id}/participants/{user_id}", response_model=Envelope[ChatOut])
async def remove_participant(
    chat_id: uuid.UUID,
    user_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    chat = ChatService(db).remove_participant_by(current_user, chat_id, user_id)
    await connection_manager.unsubscribe_user(user_id, chat_room(chat.id))
    connection_manager.emit_to_room_sync(
        chat_room(chat.id),
        "user_left_chat",
        {"chat_id": str(chat.id), "user_id": str(user_id)},
    )
    return Envelope(message="Participant removed", data=chat_to_out(chat, current_user))


@router.post("/{chat_id}/join", response_model=Envelope[ChatOut])
async def join_chat(
    chat_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    chat = ChatService(db).join_chat(current_user, chat_id)
    _notify_membership(chat, current_user, "user_joined_chat")
    return Envelope(message="Joined chat successfully", data=chat_to_out(chat, current_user))


@router.post("/{chat_id}/leave", response_model=Envelope[ChatOut])
async def leave_chat(
    chat_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    chat = ChatService(db).leave_chat(current_user, chat_id)
    await connection_manager.unsubscribe_user(current_user.id, chat_room(chat.id))
    _notify_membership(chat, current_user, "user_left_chat")
    return Envelope(message="Left chat successfully", data=chat_to_out(chat, current_user))
