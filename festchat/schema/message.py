"""
Message schemas.
"""
from datetime import datetime
from typing import List, Optional
import uuid
from pydantic import BaseModel, Field


class MessageCreateBody(BaseModel):
    """Body for POST /messages/{chat_id}."""
    content: str = Field(..., min_length=1)
    type: str = "text"
    reply_to: Optional[uuid.UUID] = None


class MessageUpdateBody(BaseModel):
    content: str = Field(..., min_length=1)


class MarkReadBody(BaseModel):
    message_ids: Optional[List[uuid.UUID]] = None


class ForwardBody(BaseModel):
    target_chat_ids: List[uuid.UUID] = Field(..., min_length=1, max_length=20)
    comment: Optional[str] = None


class ReactionBody(BaseModel):
    emoji: str = Field(..., min_length=1, max_length=32)


class EditOut(BaseModel):
    content: str
    edited_at: datetime


class ReactionOut(BaseModel):
    user_id: uuid.UUID
    emoji: str


class ReadOut(BaseModel):
    user_id: uuid.UUID
    read_at: datetime


class ForwardedFromOut(BaseModel):
    message_id: Optional[uuid.UUID] = None
    sender_id: Optional[uuid.UUID] = None
    sender_name: Optional[str] = None
    chat_id: Optional[uuid.UUID] = None


class MessageOut(BaseModel):
    id: uuid.UUID
    chat_id: uuid.UUID
    sender_id: uuid.UUID
    sender_name: str
    sender_email: str
    content: str
    type: str
    timestamp: datetime
    reply_to: Optional[uuid.UUID] = None
    is_edited: bool = False
    edited_at: Optional[datetime] = None
    is_forwarded: bool = False
    forwarded_from: Optional[ForwardedFromOut] = None
    edit_history: List[EditOut] = Field(default_factory=list)
    reactions: List[ReactionOut] = Field(default_factory=list)
    read_by: List[ReadOut] = Field(default_factory=list)
    is_own_message: bool = False
    position: str = "left"


class MessagePage(BaseModel):
    success: bool = True
    message: str = "OK"
    count: int
    page: int
    limit: int
    total: int
    data: List[MessageOut]


class SearchResult(BaseModel):
    success: bool = True
    message: str = "OK"
    count: int
    query: str
    data: List[MessageOut]


class ForwardResult(BaseModel):
    success: bool = True
    message: str
    original_message_id: uuid.UUID
    forwarded_to: List[uuid.UUID]
    skipped: List[uuid.UUID] = Field(default_factory=list)
    data: List[MessageOut]


class ReadResult(BaseModel):
    success: bool = True
    message: str
    marked: List[uuid.UUID]
