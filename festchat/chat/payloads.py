"""
Serialization of chats and messages for REST responses and realtime events.
"""
from typing import Any, Dict

from festchat.model.chat import Chat
from festchat.model.message import Message
from festchat.schema.chat import ChatOut, ChatSettingsOut, LastMessageOut, ParticipantOut
from festchat.schema.message import EditOut, ForwardedFromOut, MessageOut, ReactionOut, ReadOut


def chat_to_out(chat: Chat, viewer=None) -> ChatOut:
    """Chat as seen by viewer; only active participants are listed."""
    active = chat.active_participants
    last_message = None
    if chat.last_message_content is not None:
        last_message = LastMessageOut(
            content=chat.last_message_content,
            sender_id=chat.last_message_sender_id,
            sender_name=chat.last_message_sender_name,
            timestamp=chat.last_message_at,
            type=chat.last_message_type or "text",
        )
    viewer_id = viewer.id if viewer is not None else None
    return ChatOut(
        id=chat.id,
        name=chat.name,
        description=chat.description,
        type=chat.chat_type,
        category=chat.category,
        created_by=chat.created_by,
        is_admin_dm=chat.is_admin_dm,
        is_active=chat.is_active,
        settings=ChatSettingsOut(
            allow_file_sharing=chat.allow_file_sharing,
            allow_media_sharing=chat.allow_media_sharing,
            max_participants=chat.max_participants,
            is_public=chat.is_public,
            require_approval=chat.require_approval,
        ),
        last_message=last_message,
        participants=[
            ParticipantOut(
                user_id=p.user_id,
                name=p.name,
                role=p.role,
                joined_at=p.joined_at,
                last_read=p.last_read,
                is_active=p.is_active,
            )
            for p in active
        ],
        participant_count=len(active),
        is_participant=any(p.user_id == viewer_id for p in active),
        created_at=chat.created_at,
        updated_at=chat.updated_at,
    )


def message_to_out(msg: Message, viewer_id=None) -> MessageOut:
    """Message with per-viewer positioning: own messages sit on the right."""
    is_own = viewer_id is not None and msg.sender_id == viewer_id
    forwarded_from = None
    if msg.is_forwarded:
        forwarded_from = ForwardedFromOut(
            message_id=msg.forwarded_from_message_id,
            sender_id=msg.forwarded_from_sender_id,
            sender_name=msg.forwarded_from_sender_name,
            chat_id=msg.forwarded_from_chat_id,
        )
    return MessageOut(
        id=msg.id,
        chat_id=msg.chat_id,
        sender_id=msg.sender_id,
        sender_name=msg.sender_name,
        sender_email=msg.sender_email,
        content=msg.content,
        type=msg.message_type,
        timestamp=msg.created_at,
        reply_to=msg.reply_to_id,
        is_edited=msg.is_edited,
        edited_at=msg.edited_at,
        is_forwarded=bool(msg.is_forwarded),
        forwarded_from=forwarded_from,
        edit_history=[EditOut(content=e.content, edited_at=e.edited_at) for e in msg.edit_history],
        reactions=[ReactionOut(user_id=r.user_id, emoji=r.emoji) for r in msg.reactions],
        read_by=[ReadOut(user_id=r.user_id, read_at=r.read_at) for r in msg.read_by],
        is_own_message=is_own,
        position="right" if is_own else "left",
    )


def message_payload(msg: Message, viewer_id=None) -> Dict[str, Any]:
    """JSON-ready message for WebSocket delivery."""
    return message_to_out(msg, viewer_id).model_dump(mode="json")

