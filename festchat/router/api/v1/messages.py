"""
Messages router: chat history, sending, forwarding, editing, read receipts, search, reactions.

Every write is acknowledged after commit; realtime fanout is scheduled afterwards
and never affects the response.
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from festchat.chat.fanout import fanout
from festchat.chat.payloads import message_to_out
from festchat.core.database import get_db
from festchat.core.dependencies import get_current_user, message_rate_limit
from festchat.model.chat import Chat
from festchat.model.user import User
from festchat.schema.common import Envelope, MessageOnly
from festchat.schema.message import (
    ForwardBody,
    ForwardResult,
    MarkReadBody,
    MessageCreateBody,
    MessageOut,
    MessagePage,
    MessageUpdateBody,
    ReactionBody,
    ReadResult,
    SearchResult,
)
from festchat.service.chat_service import ChatService
from festchat.service.message_service import MessageService

router = APIRouter(dependencies=[Depends(message_rate_limit)])
logger = logging.getLogger(__name__)


def _fanout_admin(db: Session, chat: Chat):
    """Designated admin for admin-DM delivery; None for other chats."""
    if not chat.is_admin_dm:
        return None
    return ChatService(db).resolve_admin()


# --- single message ---


@router.get("/message/{message_id}", response_model=Envelope[MessageOut])
async def get_message(
    message_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    message = MessageService(db).get_message(current_user, message_id)
    return Envelope(message="OK", data=message_to_out(message, current_user.id))


@router.put("/message/{message_id}", response_model=Envelope[MessageOut])
async def edit_message(
    message_id: uuid.UUID,
    body: MessageUpdateBody,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    message = MessageService(db).edit_message(current_user, message_id, body.content)
    fanout.message_updated(message.chat, message, _fanout_admin(db, message.chat))
    return Envelope(message="Message updated successfully", data=message_to_out(message, current_user.id))


@router.delete("/message/{message_id}", response_model=MessageOnly)
async def delete_message(
    message_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Permanently remove a message."""
    message = MessageService(db).delete_message(current_user, message_id)
    fanout.message_deleted(message.chat, message, _fanout_admin(db, message.chat))
    return MessageOnly(message="Message deleted successfully")


@router.post("/message/{message_id}/reactions", response_model=Envelope[MessageOut])
async def react_to_message(
    message_id: uuid.UUID,
    body: ReactionBody,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Toggle the caller's reaction."""
    message = MessageService(db).toggle_reaction(current_user, message_id, body.emoji)
    fanout.reaction_updated(message.chat, message, _fanout_admin(db, message.chat))
    return Envelope(message="Reaction updated", data=message_to_out(message, current_user.id))


@router.post("/message/{message_id}/forward", response_model=ForwardResult, status_code=status.HTTP_201_CREATED)
async def forward_message(
    message_id: uuid.UUID,
    body: ForwardBody,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Forward a message to chats the caller may post in; other targets are reported as skipped."""
    forwarded, skipped = MessageService(db).forward_message(
        current_user, message_id, body.target_chat_ids, comment=body.comment
    )
    data = []
    for chat, created in forwarded:
        admin = _fanout_admin(db, chat)
        for message in created:
            fanout.message_created(chat, message, admin)
        data.extend(message_to_out(m, current_user.id) for m in created)
    return ForwardResult(
        message=f"Forwarded to {len(forwarded)} chats",
        original_message_id=message_id,
        forwarded_to=[chat.id for chat, _ in forwarded],
        skipped=skipped,
        data=data,
    )


# --- per chat ---


@router.get("/{chat_id}", response_model=MessagePage)
async def get_messages(
    chat_id: uuid.UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Page of the chat history, oldest first within the page."""
    messages, total = MessageService(db).get_messages(current_user, chat_id, page=page, limit=limit)
    return MessagePage(
        count=len(messages),
        page=page,
        limit=limit,
        total=total,
        data=[message_to_out(m, current_user.id) for m in messages],
    )


@router.post("/{chat_id}", response_model=Envelope[MessageOut], status_code=status.HTTP_201_CREATED)
async def send_message(
    chat_id: uuid.UUID,
    body: MessageCreateBody,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    message, chat = MessageService(db).send_message(
        current_user, chat_id, body.content, message_type=body.type, reply_to=body.reply_to
    )
    fanout.message_created(chat, message, _fanout_admin(db, chat))
    return Envelope(message="Message sent successfully", data=message_to_out(message, current_user.id))


@router.put("/{chat_id}/read", response_model=ReadResult)
async def mark_read(
    chat_id: uuid.UUID,
    body: Optional[MarkReadBody] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service = MessageService(db)
    marked = service.mark_read(current_user, chat_id, body.message_ids if body else None)
    if marked:
        chat = ChatService(db).get_chat(chat_id)
        fanout.messages_read(chat, current_user, marked)
    return ReadResult(message=f"Marked {len(marked)} messages as read", marked=marked)


@router.get("/{chat_id}/search", response_model=SearchResult)
async def search_messages(
    chat_id: uuid.UUID,
    q: str = Query(..., min_length=1, max_length=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    messages = MessageService(db).search_messages(current_user, chat_id, q)
    return SearchResult(
        count=len(messages),
        query=q,
        data=[message_to_out(m, current_user.id) for m in messages],
    )
