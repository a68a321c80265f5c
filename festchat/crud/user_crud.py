"""
User CRUD operations.
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import desc
from festchat.model.user import User, ROLE_ADMIN
from festchat.crud.base import CRUDBase


class CRUDUser(CRUDBase[User, dict, dict]):
    """User-specific CRUD operations."""

    def get_by_email(self, db: Session, email: str) -> Optional[User]:
        """Get user by email (case-insensitive)."""
        return self.get_by_field(db, "email", email.strip().lower())

    def list_all(self, db: Session) -> List[User]:
        return db.query(self.model).order_by(desc(self.model.created_at)).all()

    def list_by_ids(self, db: Session, user_ids) -> List[User]:
        ids = list(user_ids)
        if not ids:
            return []
        return db.query(self.model).filter(self.model.id.in_(ids)).all()

    def first_admin(self, db: Session) -> Optional[User]:
        """Oldest active user holding the admin role."""
        return (
            db.query(self.model)
            .filter(self.model.role == ROLE_ADMIN, self.model.is_active.is_(True))
            .order_by(self.model.created_at)
            .first()
        )

    def count_active_since(self, db: Session, since: datetime) -> int:
        return (
            db.query(self.model)
            .filter(self.model.is_active.is_(True), self.model.last_active >= since)
            .count()
        )


user_crud = CRUDUser(User)
