from festchat.model.user import User
from festchat.model.chat import Chat
from festchat.model.chat_participant import ChatParticipant
from festchat.model.message import Message
from festchat.model.message_extras import MessageEdit, MessageReaction, MessageRead

__all__ = ["User", "Chat", "ChatParticipant", "Message", "MessageEdit", "MessageReaction", "MessageRead"]
