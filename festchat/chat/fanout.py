"""
Realtime fanout of message ledger writes.

Regular chats get one emit to the chat room. Admin DMs are delivered per user:
each active participant plus the designated admin, and only to users allowed
to see that message, so member-to-member traffic in an admin DM never leaks.
Delivery is fire-and-forget; nothing here can undo a committed write.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from festchat.chat.connection_manager import ConnectionManager, chat_room, connection_manager
from festchat.chat.payloads import message_payload
from festchat.model.chat import Chat
from festchat.model.message import Message
from festchat.model.user import User
from festchat.service.access_control import AccessControl, access_control

logger = logging.getLogger(__name__)


class Fanout:
    def __init__(self, manager: ConnectionManager = connection_manager, acl: AccessControl = access_control):
        self.manager = manager
        self.acl = acl

    def recipients(self, chat: Chat, message: Message, admin: Optional[User] = None) -> Optional[List[User]]:
        """
        Users to deliver to individually, or None for a single room emit.
        """
        if not chat.is_admin_dm:
            return None
        candidates = [p.user for p in chat.active_participants if p.user is not None]
        if admin is not None:
            candidates.append(admin)
        seen = set()
        result = []
        for user in candidates:
            if user.id in seen:
                continue
            seen.add(user.id)
            if self.acl.can_view_message(user, chat, message):
                result.append(user)
        return result

    def _deliver(
        self,
        chat: Chat,
        message: Message,
        admin: Optional[User],
        event: str,
        build: Callable[[Optional[Any]], Dict[str, Any]],
    ) -> None:
        try:
            targets = self.recipients(chat, message, admin)
            if targets is None:
                self.manager.emit_to_room_sync(chat_room(chat.id), event, build(None))
                return
            for user in targets:
                self.manager.emit_to_user_sync(user.id, event, build(user.id))
        except Exception:
            logger.exception("Fanout of %s for chat %s failed", event, chat.id)

    def message_created(self, chat: Chat, message: Message, admin: Optional[User] = None) -> None:
        self._deliver(chat, message, admin, "new_message", lambda viewer: message_payload(message, viewer))

    def message_updated(self, chat: Chat, message: Message, admin: Optional[User] = None) -> None:
        self._deliver(chat, message, admin, "message_updated", lambda viewer: message_payload(message, viewer))

    def message_deleted(self, chat: Chat, message: Message, admin: Optional[User] = None) -> None:
        payload = {"message_id": str(message.id), "chat_id": str(chat.id)}
        self._deliver(chat, message, admin, "message_deleted", lambda viewer: payload)

    def reaction_updated(self, chat: Chat, message: Message, admin: Optional[User] = None) -> None:
        def build(viewer):
            return {
                "message_id": str(message.id),
                "chat_id": str(chat.id),
                "reactions": [{"user_id": str(r.user_id), "emoji": r.emoji} for r in message.reactions],
            }

        self._deliver(chat, message, admin, "message_reaction_updated", build)

    def messages_read(self, chat: Chat, reader: User, message_ids) -> None:
        payload = {
            "chat_id": str(chat.id),
            "user_id": str(reader.id),
            "message_ids": [str(mid) for mid in message_ids],
        }
        self.manager.emit_to_room_sync(chat_room(chat.id), "messages_read", payload)


fanout = Fanout()
