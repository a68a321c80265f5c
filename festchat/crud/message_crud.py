"""
Message CRUD.
"""
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
import uuid
from sqlalchemy.orm import Session
from sqlalchemy import desc, func

from festchat.model.message import Message
from festchat.model.message_extras import MessageRead
from festchat.crud.base import CRUDBase
from festchat.crud.chat_crud import escape_like


class CRUDMessage(CRUDBase[Message, Dict[str, Any], Dict[str, Any]]):
    def get_by_id(self, db: Session, *, message_id: uuid.UUID) -> Optional[Message]:
        return db.query(self.model).filter(self.model.id == message_id).first()

    def list_by_chat_paginated(
        self,
        db: Session,
        *,
        chat_id: uuid.UUID,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[Message], int]:
        """Page of messages in a chat, newest first, with the chat's total message count."""
        base = db.query(self.model).filter(self.model.chat_id == chat_id)
        total = base.with_entities(func.count(self.model.id)).scalar() or 0
        items = (
            base.order_by(desc(self.model.created_at))
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def search_in_chat(self, db: Session, *, chat_id: uuid.UUID, term: str, limit: int = 20) -> List[Message]:
        """Case-insensitive substring match on content, newest first."""
        pattern = f"%{escape_like(term.lower())}%"
        return (
            db.query(self.model)
            .filter(
                self.model.chat_id == chat_id,
                func.lower(self.model.content).like(pattern, escape="\\"),
            )
            .order_by(desc(self.model.created_at))
            .limit(limit)
            .all()
        )

    def list_for_read_marking(
        self,
        db: Session,
        *,
        chat_id: uuid.UUID,
        reader_id: uuid.UUID,
        message_ids: Optional[Iterable[uuid.UUID]] = None,
    ) -> List[Message]:
        """Messages in the chat not sent by the reader, optionally restricted to ids."""
        query = db.query(self.model).filter(
            self.model.chat_id == chat_id,
            self.model.sender_id != reader_id,
        )
        if message_ids is not None:
            ids = list(message_ids)
            if not ids:
                return []
            query = query.filter(self.model.id.in_(ids))
        return query.all()

    def read_message_ids(self, db: Session, *, user_id: uuid.UUID, message_ids: Iterable[uuid.UUID]) -> Set[uuid.UUID]:
        ids = list(message_ids)
        if not ids:
            return set()
        rows = (
            db.query(MessageRead.message_id)
            .filter(MessageRead.user_id == user_id, MessageRead.message_id.in_(ids))
            .all()
        )
        return {r[0] for r in rows}


message_crud = CRUDMessage(Message)
