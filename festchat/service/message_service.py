"""
Message ledger: send, forward, page, edit, delete, read receipts, search, reactions.

Admin-DM privacy is applied after pagination, so a restricted viewer may get
fewer than `limit` messages on a page.
"""
import logging
import uuid
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from festchat.core.config import settings
from festchat.core.database import retry_transient
from festchat.core.exceptions import ConflictError, NotFound, ValidationError
from festchat.crud import chat_crud, message_crud
from festchat.model.chat import Chat
from festchat.model.message import Message, MESSAGE_TYPES, MEDIA_TYPES
from festchat.model.message_extras import MessageEdit, MessageReaction, MessageRead
from festchat.model.user import User
from festchat.service.access_control import AccessControl, access_control, require
from festchat.utils.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)

PAGE_LIMIT_MAX = 100
WRITE_RETRIES = 3


class MessageService:
    def __init__(self, db: Session, acl: AccessControl = access_control):
        self.db = db
        self.acl = acl

    def _visible_chat(self, user: User, chat_id: uuid.UUID) -> Chat:
        chat = chat_crud.get_by_id(self.db, chat_id=chat_id)
        if not chat:
            raise NotFound("Chat")
        require(self.acl.can_view_chat(user, chat), "Access denied to this chat")
        return chat

    def _message(self, message_id: uuid.UUID) -> Message:
        message = message_crud.get_by_id(self.db, message_id=message_id)
        if not message:
            raise NotFound("Message")
        return message

    def _validate_content(self, content: str) -> str:
        content = (content or "").strip()
        if not content:
            raise ValidationError(errors=[{"field": "content", "message": "Message content is required"}])
        if len(content) > settings.MESSAGE_MAX_LENGTH:
            raise ValidationError(
                errors=[{
                    "field": "content",
                    "message": f"Message cannot exceed {settings.MESSAGE_MAX_LENGTH} characters",
                }]
            )
        return content

    @retry_transient
    def send_message(
        self,
        sender: User,
        chat_id: uuid.UUID,
        content: str,
        message_type: str = "text",
        reply_to: Optional[uuid.UUID] = None,
    ) -> Tuple[Message, Chat]:
        """
        Append a message and refresh the chat's last-message summary in one commit.
        """
        chat = chat_crud.get_by_id(self.db, chat_id=chat_id)
        if not chat:
            raise NotFound("Chat")
        require(self.acl.can_send_message(sender, chat), "You are not a participant of this chat")
        if not chat.is_active:
            raise ValidationError("Chat has been deleted")

        content = self._validate_content(content)
        if message_type not in MESSAGE_TYPES:
            raise ValidationError(
                errors=[{"field": "type", "message": f"Type must be one of: {', '.join(MESSAGE_TYPES)}"}]
            )
        sharing_error = self._sharing_error(chat, message_type)
        if sharing_error:
            raise ValidationError(sharing_error)
        if reply_to is not None:
            parent = message_crud.get_by_id(self.db, message_id=reply_to)
            if not parent or parent.chat_id != chat.id:
                raise ValidationError(
                    errors=[{"field": "reply_to", "message": "Replied message not found in this chat"}]
                )

        message = self._append(chat, sender, content, message_type, reply_to=reply_to)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Failed to persist message in chat %s from %s", chat_id, sender.email)
            raise
        self.db.refresh(message)
        return message, chat

    @staticmethod
    def _sharing_error(chat: Chat, message_type: str) -> Optional[str]:
        if message_type == "file" and not chat.allow_file_sharing:
            return "File sharing is disabled in this chat"
        if message_type in MEDIA_TYPES and not chat.allow_media_sharing:
            return "Media sharing is disabled in this chat"
        return None

    def _append(
        self,
        chat: Chat,
        sender: User,
        content: str,
        message_type: str,
        reply_to: Optional[uuid.UUID] = None,
        source: Optional[Message] = None,
    ) -> Message:
        """Stage a message and the chat's last-message summary; the caller commits."""
        now = utcnow()
        message = Message(
            id=uuid.uuid4(),
            chat_id=chat.id,
            sender_id=sender.id,
            sender_name=sender.name,
            sender_email=sender.email,
            content=content,
            message_type=message_type,
            reply_to_id=reply_to,
            is_edited=False,
            is_forwarded=source is not None,
            created_at=now,
        )
        if source is not None:
            message.forwarded_from_message_id = source.id
            message.forwarded_from_sender_id = source.sender_id
            message.forwarded_from_sender_name = source.sender_name
            message.forwarded_from_chat_id = source.chat_id
        self.db.add(message)

        chat.last_message_content = content
        chat.last_message_sender_id = sender.id
        chat.last_message_sender_name = sender.name
        chat.last_message_type = message_type
        chat.last_message_at = now
        chat.updated_at = now
        return message

    @retry_transient
    def forward_message(
        self,
        sender: User,
        message_id: uuid.UUID,
        target_chat_ids: List[uuid.UUID],
        comment: Optional[str] = None,
    ) -> Tuple[List[Tuple[Chat, List[Message]]], List[uuid.UUID]]:
        """
        Copy a visible message into each target chat the sender may post in,
        followed by an optional comment message.

        Returns ([(chat, [forwarded, comment?]), ...], skipped_chat_ids).
        Targets that are missing, deleted, not writable by the sender or that
        disallow the message type are skipped.
        """
        source = self.get_message(sender, message_id)
        if not target_chat_ids:
            raise ValidationError(
                errors=[{"field": "target_chat_ids", "message": "At least one target chat is required"}]
            )
        comment = self._validate_content(comment) if comment and comment.strip() else None

        forwarded = []
        skipped = []
        for chat_id in dict.fromkeys(target_chat_ids):
            chat = chat_crud.get_by_id(self.db, chat_id=chat_id)
            if (
                chat is None
                or not chat.is_active
                or not self.acl.can_send_message(sender, chat)
                or self._sharing_error(chat, source.message_type)
            ):
                skipped.append(chat_id)
                continue
            created = [self._append(chat, sender, source.content, source.message_type, source=source)]
            if comment:
                created.append(self._append(chat, sender, comment, "text"))
            forwarded.append((chat, created))

        if not forwarded:
            return [], skipped
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Failed to forward message %s from %s", message_id, sender.email)
            raise
        for _, created in forwarded:
            for message in created:
                self.db.refresh(message)
        logger.info("Message %s forwarded by %s to %d chats", message_id, sender.email, len(forwarded))
        return forwarded, skipped

    @retry_transient
    def get_messages(self, viewer: User, chat_id: uuid.UUID, page: int = 1, limit: int = 50) -> Tuple[List[Message], int]:
        """
        One page of the chat, oldest first, filtered for the viewer.

        Returns (messages, total) where total counts every message in the chat.
        """
        if page < 1:
            raise ValidationError(errors=[{"field": "page", "message": "Page must be at least 1"}])
        if not 1 <= limit <= PAGE_LIMIT_MAX:
            raise ValidationError(errors=[{"field": "limit", "message": f"Limit must be 1-{PAGE_LIMIT_MAX}"}])
        chat = self._visible_chat(viewer, chat_id)
        newest_first, total = message_crud.list_by_chat_paginated(self.db, chat_id=chat.id, page=page, limit=limit)
        ordered = list(reversed(newest_first))
        return [m for m in ordered if self.acl.can_view_message(viewer, chat, m)], total

    def get_message(self, viewer: User, message_id: uuid.UUID) -> Message:
        message = self._message(message_id)
        chat = self._visible_chat(viewer, message.chat_id)
        require(self.acl.can_view_message(viewer, chat, message), "Access denied to this message")
        return message

    @retry_transient
    def edit_message(self, actor: User, message_id: uuid.UUID, content: str) -> Message:
        """Replace content; the previous content is appended to the edit history."""
        message = self._message(message_id)
        require(self.acl.can_edit_message(actor, message), "You can only edit your own messages")
        content = self._validate_content(content)

        now = utcnow()
        message.edit_history.append(MessageEdit(id=uuid.uuid4(), content=message.content, edited_at=now))
        message.content = content
        message.is_edited = True
        message.edited_at = now

        chat = message.chat
        if chat.last_message_sender_id == message.sender_id and as_utc(chat.last_message_at) == as_utc(message.created_at):
            chat.last_message_content = content
        self.db.commit()
        self.db.refresh(message)
        logger.info("Message %s edited by %s", message_id, actor.email)
        return message

    @retry_transient
    def delete_message(self, actor: User, message_id: uuid.UUID) -> Message:
        """
        Remove the record. Returns the detached message so callers can fan out
        the deletion.
        """
        message = self._message(message_id)
        require(self.acl.can_delete_message(actor, message), "You can only delete your own messages")
        # Loaded before the delete so fanout can still read them.
        _ = message.chat.participants
        _ = message.sender
        self.db.delete(message)
        self.db.commit()
        logger.info("Message %s deleted by %s", message_id, actor.email)
        return message

    @retry_transient
    def mark_read(
        self, reader: User, chat_id: uuid.UUID, message_ids: Optional[List[uuid.UUID]] = None
    ) -> List[uuid.UUID]:
        """
        Record read receipts for visible messages not sent by the reader and
        stamp the participant's lastRead. Returns newly marked ids.

        A receipt written concurrently for the same message makes the commit
        fail on the unique constraint; the batch is then recomputed.
        """
        for attempt in range(1, WRITE_RETRIES + 1):
            chat = self._visible_chat(reader, chat_id)
            candidates = message_crud.list_for_read_marking(
                self.db, chat_id=chat.id, reader_id=reader.id, message_ids=message_ids
            )
            candidates = [m for m in candidates if self.acl.can_view_message(reader, chat, m)]
            already = message_crud.read_message_ids(self.db, user_id=reader.id, message_ids=[m.id for m in candidates])

            now = utcnow()
            marked = []
            for message in candidates:
                if message.id in already:
                    continue
                self.db.add(MessageRead(id=uuid.uuid4(), message_id=message.id, user_id=reader.id, read_at=now))
                marked.append(message.id)

            participant = self.acl.active_participant(reader, chat)
            if participant is not None:
                participant.last_read = now
            try:
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                logger.info("Concurrent read receipts in chat %s (attempt %d): %s", chat_id, attempt, e)
                continue
            return marked
        raise ConflictError("Read receipts changed concurrently, please retry")

    @retry_transient
    def search_messages(self, viewer: User, chat_id: uuid.UUID, query: str, limit: int = 20) -> List[Message]:
        if not query or not query.strip():
            raise ValidationError(errors=[{"field": "q", "message": "Search query is required"}])
        chat = self._visible_chat(viewer, chat_id)
        found = message_crud.search_in_chat(self.db, chat_id=chat.id, term=query.strip(), limit=limit)
        return [m for m in found if self.acl.can_view_message(viewer, chat, m)]

    @retry_transient
    def toggle_reaction(self, actor: User, message_id: uuid.UUID, emoji: str) -> Message:
        """
        One reaction per user per message: same emoji removes it, another
        emoji replaces it. A concurrent first reaction by the same user is
        re-read and toggled against.
        """
        emoji = (emoji or "").strip()
        if not emoji:
            raise ValidationError(errors=[{"field": "emoji", "message": "Emoji is required"}])

        for attempt in range(1, WRITE_RETRIES + 1):
            message = self.get_message(actor, message_id)
            existing = next((r for r in message.reactions if r.user_id == actor.id), None)
            if existing is not None and existing.emoji == emoji:
                message.reactions.remove(existing)
            elif existing is not None:
                existing.emoji = emoji
                existing.created_at = utcnow()
            else:
                message.reactions.append(
                    MessageReaction(id=uuid.uuid4(), user_id=actor.id, emoji=emoji, created_at=utcnow())
                )
            try:
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                logger.info("Concurrent reaction on message %s (attempt %d): %s", message_id, attempt, e)
                continue
            self.db.refresh(message)
            return message
        raise ConflictError("Reactions changed concurrently, please retry")
