"""
Chat CRUD.
"""
from typing import Any, Dict, List, Optional
import uuid
from sqlalchemy.orm import Session
from sqlalchemy import desc, func

from festchat.model.chat import Chat
from festchat.crud.base import CRUDBase


def escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class CRUDChat(CRUDBase[Chat, Dict[str, Any], Dict[str, Any]]):
    def get_by_id(self, db: Session, *, chat_id: uuid.UUID) -> Optional[Chat]:
        return db.query(self.model).filter(self.model.id == chat_id).first()

    def get_by_admin_dm_key(self, db: Session, *, key: str) -> Optional[Chat]:
        return db.query(self.model).filter(self.model.admin_dm_key == key).first()

    def get_active_by_name(self, db: Session, *, name: str) -> Optional[Chat]:
        """Exact, case-insensitive match among active group and channel chats."""
        return (
            db.query(self.model)
            .filter(
                self.model.is_active.is_(True),
                self.model.chat_type != "dm",
                func.lower(self.model.name) == name.strip().lower(),
            )
            .order_by(self.model.created_at)
            .first()
        )

    def search_active_by_name(self, db: Session, *, term: str, limit: int = 5) -> List[Chat]:
        """Substring, case-insensitive match among active group and channel chats."""
        pattern = f"%{escape_like(term.strip().lower())}%"
        return (
            db.query(self.model)
            .filter(
                self.model.is_active.is_(True),
                self.model.chat_type != "dm",
                func.lower(self.model.name).like(pattern, escape="\\"),
            )
            .order_by(self.model.name)
            .limit(limit)
            .all()
        )

    def list_active(self, db: Session) -> List[Chat]:
        """All active chats, most recently active first."""
        return (
            db.query(self.model)
            .filter(self.model.is_active.is_(True))
            .order_by(desc(self.model.last_message_at), desc(self.model.created_at))
            .all()
        )


chat_crud = CRUDChat(Chat)
