"""
Access control decisions for chats and messages.

All predicates are pure: they read the user, chat and message objects handed in
and never touch the database or raise. Callers turn a False into the matching
error (NotFound for missing resources is decided before these are consulted).
"""
from typing import Optional

from festchat.core.config import settings
from festchat.core.exceptions import AuthorizationError
from festchat.model.user import ROLE_ADMIN


class AccessControl:
    """Decision functions over (user, chat, message)."""

    def __init__(self, bootstrap_admin_email: Optional[str] = None, open_listing: bool = True):
        self.bootstrap_admin_email = (bootstrap_admin_email or "").strip().lower() or None
        self.open_listing = open_listing

    # --- identity ---

    def is_bootstrap_admin(self, user) -> bool:
        """The configured bootstrap account keeps admin powers whatever its stored role."""
        if user is None or not self.bootstrap_admin_email:
            return False
        return (user.email or "").lower() == self.bootstrap_admin_email

    def is_admin(self, user) -> bool:
        if user is None:
            return False
        return user.role == ROLE_ADMIN or self.is_bootstrap_admin(user)

    # --- chats ---

    @staticmethod
    def active_participant(user, chat):
        for p in chat.participants:
            if p.user_id == user.id and p.is_active:
                return p
        return None

    def is_participant(self, user, chat) -> bool:
        return user is not None and self.active_participant(user, chat) is not None

    def can_view_chat(self, user, chat) -> bool:
        return self.is_admin(user) or self.is_participant(user, chat)

    def can_list_chat(self, user, chat) -> bool:
        if not chat.is_active:
            return False
        if self.open_listing:
            return True
        return self.can_view_chat(user, chat)

    def can_modify_chat(self, user, chat) -> bool:
        if self.is_admin(user) or user.id == chat.created_by:
            return True
        participant = self.active_participant(user, chat)
        return participant is not None and participant.role == "admin"

    def can_join_chat(self, user, chat) -> bool:
        return bool(chat.is_active) and not self.is_participant(user, chat)

    def can_leave_chat(self, user, chat) -> bool:
        return self.is_participant(user, chat)

    def can_send_message(self, user, chat) -> bool:
        return self.can_view_chat(user, chat)

    # --- messages ---

    def can_view_message(self, user, chat, message) -> bool:
        if not self.can_view_chat(user, chat):
            return False
        if chat.is_admin_dm and not self.is_admin(user):
            return message.sender_id == user.id or self.is_admin(message.sender)
        return True

    def can_edit_message(self, user, message) -> bool:
        return user.id == message.sender_id or self.is_admin(user)

    def can_delete_message(self, user, message) -> bool:
        return user.id == message.sender_id or self.is_admin(user)


def require(allowed: bool, message: Optional[str] = None) -> None:
    """Raise AuthorizationError unless allowed."""
    if not allowed:
        raise AuthorizationError(message)


access_control = AccessControl(
    bootstrap_admin_email=settings.bootstrap_admin_email,
    open_listing=settings.OPEN_CHAT_LISTING,
)
