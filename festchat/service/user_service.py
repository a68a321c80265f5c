"""
User administration: listing, counts, role and activation changes.
"""
import uuid
from datetime import timedelta
from typing import List

from sqlalchemy.orm import Session

from festchat.core.database import retry_transient
from festchat.core.exceptions import AdminRequired, NotFound, ValidationError
from festchat.crud import user_crud
from festchat.model.user import User, USER_ROLES
from festchat.service.access_control import AccessControl, access_control
from festchat.utils.timeutil import as_utc, utcnow
import logging

logger = logging.getLogger(__name__)

ACTIVE_WINDOW = timedelta(hours=24)
ONLINE_WINDOW = timedelta(minutes=5)


class UserService:
    def __init__(self, db: Session, acl: AccessControl = access_control):
        self.db = db
        self.acl = acl

    def _require_admin(self, actor: User) -> None:
        if not self.acl.is_admin(actor):
            raise AdminRequired()

    def _target(self, user_id: uuid.UUID) -> User:
        user = user_crud.get(self.db, user_id)
        if not user:
            raise NotFound("User")
        return user

    @retry_transient
    def list_users(self, actor: User) -> List[User]:
        self._require_admin(actor)
        return user_crud.list_all(self.db)

    @retry_transient
    def active_count(self) -> int:
        return user_crud.count_active_since(self.db, utcnow() - ACTIVE_WINDOW)

    @retry_transient
    def online_count(self) -> int:
        return user_crud.count_active_since(self.db, utcnow() - ONLINE_WINDOW)

    @retry_transient
    def set_role(self, actor: User, user_id: uuid.UUID, role: str) -> User:
        """The only path that changes a stored role."""
        self._require_admin(actor)
        if role not in USER_ROLES:
            raise ValidationError(errors=[{"field": "role", "message": f"Role must be one of: {', '.join(USER_ROLES)}"}])
        user = self._target(user_id)
        user.role = role
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"Role of {user.email} set to {role} by {actor.email}")
        return user

    @retry_transient
    def set_active(self, actor: User, user_id: uuid.UUID, active: bool) -> User:
        self._require_admin(actor)
        user = self._target(user_id)
        if user.id == actor.id and not active:
            raise ValidationError("You cannot deactivate your own account")
        user.is_active = active
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"User {user.email} {'activated' if active else 'deactivated'} by {actor.email}")
        return user

    def touch_activity(self, user: User, interval_seconds: int) -> None:
        """Stamp last_active unless it was stamped within the interval."""
        now = utcnow()
        last = as_utc(user.last_active)
        if last is not None and (now - last).total_seconds() < interval_seconds:
            return
        user.last_active = now
        self.db.commit()
