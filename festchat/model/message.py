"""
Message model. One message in a chat.
"""
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from festchat.core.database import Base

MESSAGE_TYPES = ("text", "image", "file", "voice", "video", "location", "system")
MEDIA_TYPES = ("image", "voice", "video")


class Message(Base):
    __tablename__ = "messages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    chat_id = Column(UUID(as_uuid=True), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    sender_name = Column(String, nullable=False)
    sender_email = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    message_type = Column(String, nullable=False, default="text")
    reply_to_id = Column(UUID(as_uuid=True), ForeignKey("messages.id", ondelete="SET NULL"), nullable=True, index=True)
    is_edited = Column(Boolean, nullable=False, default=False)
    edited_at = Column(DateTime(timezone=True), nullable=True)
    # Forward provenance, kept as plain ids; the source message may be deleted.
    is_forwarded = Column(Boolean, nullable=False, default=False)
    forwarded_from_message_id = Column(UUID(as_uuid=True), nullable=True)
    forwarded_from_sender_id = Column(UUID(as_uuid=True), nullable=True)
    forwarded_from_sender_name = Column(String, nullable=True)
    forwarded_from_chat_id = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    chat = relationship("Chat", back_populates="messages")
    sender = relationship("User")
    reply_to = relationship("Message", remote_side="Message.id")
    edit_history = relationship(
        "MessageEdit",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageEdit.edited_at",
    )
    reactions = relationship("MessageReaction", back_populates="message", cascade="all, delete-orphan")
    read_by = relationship("MessageRead", back_populates="message", cascade="all, delete-orphan")
