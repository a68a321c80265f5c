"""
Chat model. One conversation: group, channel or dm.

version backs optimistic concurrency for membership changes: every participant
mutation bumps it, so two concurrent read-modify-write cycles cannot both commit.
"""
from sqlalchemy import Column, String, Text, Boolean, Integer, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import uuid
from festchat.core.database import Base

CHAT_TYPES = ("group", "dm", "channel")
CHAT_CATEGORIES = ("general", "event", "workshop", "competition", "announcement", "social", "support")


class Chat(Base):
    __tablename__ = "chats"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False)
    # lower(name) for active group/channel chats, NULL otherwise; unique among non-NULL
    name_key = Column(String(50), nullable=True, unique=True)
    description = Column(Text, nullable=True)
    chat_type = Column(String, nullable=False, default="group")
    category = Column(String, nullable=False, default="general")
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    is_admin_dm = Column(Boolean, nullable=False, default=False)
    # "<lower uuid>:<higher uuid>" of the member and the admin; unique among admin DMs
    admin_dm_key = Column(String, nullable=True, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Settings
    allow_file_sharing = Column(Boolean, nullable=False, default=True)
    allow_media_sharing = Column(Boolean, nullable=False, default=True)
    max_participants = Column(Integer, nullable=False, default=500)
    is_public = Column(Boolean, nullable=False, default=True)
    require_approval = Column(Boolean, nullable=False, default=False)

    # Denormalized last message summary
    last_message_content = Column(Text, nullable=True)
    last_message_sender_id = Column(UUID(as_uuid=True), nullable=True)
    last_message_sender_name = Column(String, nullable=True)
    last_message_type = Column(String, nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    creator = relationship("User", foreign_keys=[created_by])
    participants = relationship(
        "ChatParticipant",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="ChatParticipant.joined_at",
    )
    messages = relationship("Message", back_populates="chat", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}

    @property
    def active_participants(self):
        return [p for p in self.participants if p.is_active]

    def participant_for(self, user_id):
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None
