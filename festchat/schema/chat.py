"""
Chat schemas: chats, participants, bulk creation.
"""
from datetime import datetime
from typing import List, Optional
import uuid
from pydantic import BaseModel, Field


class ChatSettingsBody(BaseModel):
    allow_file_sharing: Optional[bool] = None
    allow_media_sharing: Optional[bool] = None
    max_participants: Optional[int] = Field(None, ge=1, le=100_000)
    is_public: Optional[bool] = None
    require_approval: Optional[bool] = None


class ChatCreateBody(BaseModel):
    """Body for POST /chats. name is optional only for admin DMs."""
    name: Optional[str] = None
    description: Optional[str] = Field(None, max_length=500)
    type: str = "group"
    category: str = "general"
    is_admin_dm: bool = False
    participant_ids: List[uuid.UUID] = Field(default_factory=list)
    settings: Optional[ChatSettingsBody] = None


class ChatUpdateBody(BaseModel):
    """Body for PUT /chats/{id}. Only provided fields change."""
    name: Optional[str] = None
    description: Optional[str] = Field(None, max_length=500)
    type: Optional[str] = None
    category: Optional[str] = None
    settings: Optional[ChatSettingsBody] = None


class AddParticipantBody(BaseModel):
    user_id: uuid.UUID
    role: str = "member"


class JoinByNameBody(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)


class BulkCreateBody(BaseModel):
    count: int
    name_prefix: str = Field(..., min_length=1, max_length=40)
    description: Optional[str] = Field(None, max_length=500)
    category: str = "general"
    type: str = "group"


class QuickGroupsBody(BaseModel):
    preset: str = "general"


class ChatSettingsOut(BaseModel):
    allow_file_sharing: bool
    allow_media_sharing: bool
    max_participants: int
    is_public: bool
    require_approval: bool


class ParticipantOut(BaseModel):
    user_id: uuid.UUID
    name: str
    role: str
    joined_at: datetime
    last_read: Optional[datetime] = None
    is_active: bool


class LastMessageOut(BaseModel):
    content: str
    sender_id: Optional[uuid.UUID] = None
    sender_name: Optional[str] = None
    timestamp: Optional[datetime] = None
    type: str = "text"


class ChatOut(BaseModel):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    type: str
    category: str
    created_by: uuid.UUID
    is_admin_dm: bool
    is_active: bool
    settings: ChatSettingsOut
    last_message: Optional[LastMessageOut] = None
    participants: List[ParticipantOut]
    participant_count: int
    is_participant: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ChatCreateResponse(BaseModel):
    success: bool = True
    message: str
    created: bool
    data: ChatOut


class JoinByNameResponse(BaseModel):
    success: bool
    message: str
    data: Optional[ChatOut] = None
    suggestions: List[str] = Field(default_factory=list)


class BulkItemError(BaseModel):
    index: int
    name: str
    message: str


class BulkSummary(BaseModel):
    requested: int
    created: int
    failed: int


class BulkCreateResponse(BaseModel):
    success: bool
    message: str
    data: List[ChatOut]
    errors: List[BulkItemError]
    summary: BulkSummary
    preset: Optional[str] = None
