"""
Chat registry: creation, membership, admin-DM deduplication, bulk creation.

Membership changes go through _mutate_membership, which reloads the chat,
applies the change and commits against the chat's version column. A concurrent
writer makes the commit fail with StaleDataError (or IntegrityError on the
unique (chat, user) participant row) and the change is re-applied on fresh state.
"""
import logging
import uuid
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from festchat.core.config import settings
from festchat.core.database import retry_transient
from festchat.core.exceptions import (
    AdminRequired,
    AppException,
    CapacityExceeded,
    ConflictError,
    NotFound,
    ValidationError,
)
from festchat.crud import chat_crud, user_crud
from festchat.model.chat import Chat, CHAT_CATEGORIES, CHAT_TYPES
from festchat.model.chat_participant import ChatParticipant, PARTICIPANT_ROLES
from festchat.model.user import User
from festchat.schema.chat import ChatCreateBody, ChatSettingsBody, ChatUpdateBody
from festchat.service.access_control import AccessControl, access_control, require
from festchat.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

NAME_MAX_LENGTH = 50
MEMBERSHIP_RETRIES = 3
SUGGESTION_LIMIT = 5

QUICK_GROUP_PRESETS: Dict[str, List[Dict[str, str]]] = {
    "event": [
        {"name": "Main Stage", "category": "event", "description": "Line-up, set times and stage updates"},
        {"name": "Food & Drinks", "category": "event", "description": "Food stalls, bars and recommendations"},
        {"name": "Lost & Found", "category": "support", "description": "Report and recover lost items"},
        {"name": "Rides & Parking", "category": "event", "description": "Car pools, shuttles and parking"},
    ],
    "workshop": [
        {"name": "Workshop Lobby", "category": "workshop", "description": "Questions before the sessions start"},
        {"name": "Workshop Materials", "category": "workshop", "description": "Slides, links and handouts"},
        {"name": "Workshop Feedback", "category": "workshop", "description": "Tell the organisers how it went"},
    ],
    "general": [
        {"name": "General Chat", "category": "general", "description": "Say hi to everyone at the festival"},
        {"name": "Announcements", "category": "announcement", "type": "channel",
         "description": "Official updates from the organisers"},
        {"name": "Help Desk", "category": "support", "description": "Ask the crew for help"},
    ],
}


def admin_dm_key(member_id: uuid.UUID, admin_id: uuid.UUID) -> str:
    """Order-independent key for the participant pair of an admin DM."""
    low, high = sorted([str(member_id), str(admin_id)])
    return f"{low}:{high}"


def validate_chat_fields(
    name: Optional[str] = None,
    chat_type: Optional[str] = None,
    category: Optional[str] = None,
) -> List[Dict[str, str]]:
    """Field errors for the provided chat fields; None means "not provided"."""
    errors = []
    if name is not None and not 1 <= len(name.strip()) <= NAME_MAX_LENGTH:
        errors.append({"field": "name", "message": f"Name must be 1-{NAME_MAX_LENGTH} characters"})
    if chat_type is not None and chat_type not in CHAT_TYPES:
        errors.append({"field": "type", "message": f"Type must be one of: {', '.join(CHAT_TYPES)}"})
    if category is not None and category not in CHAT_CATEGORIES:
        errors.append({"field": "category", "message": f"Category must be one of: {', '.join(CHAT_CATEGORIES)}"})
    return errors


class ChatService:
    """Owns Chat entities and their participant lists."""

    def __init__(self, db: Session, acl: AccessControl = access_control):
        self.db = db
        self.acl = acl

    # --- lookups ---

    def get_chat(self, chat_id: uuid.UUID) -> Chat:
        chat = chat_crud.get_by_id(self.db, chat_id=chat_id)
        if not chat:
            raise NotFound("Chat")
        return chat

    def get_visible_chat(self, user: User, chat_id: uuid.UUID) -> Chat:
        """Chat the user may read; soft-deleted chats stay readable for their members."""
        chat = self.get_chat(chat_id)
        require(self.acl.can_view_chat(user, chat), "Access denied to this chat")
        return chat

    @retry_transient
    def list_chats(self, user: User) -> List[Chat]:
        return [c for c in chat_crud.list_active(self.db) if self.acl.can_list_chat(user, c)]

    def search_by_name(self, term: str, limit: int = 10) -> List[Chat]:
        if not term or not term.strip():
            raise ValidationError(errors=[{"field": "q", "message": "Search term is required"}])
        return chat_crud.search_active_by_name(self.db, term=term, limit=limit)

    def resolve_admin(self) -> Optional[User]:
        """The administrator that admin DMs are opened with."""
        if self.acl.bootstrap_admin_email:
            admin = user_crud.get_by_email(self.db, self.acl.bootstrap_admin_email)
            if admin and admin.is_active:
                return admin
        return user_crud.first_admin(self.db)

    # --- creation ---

    @retry_transient
    def create_chat(self, creator: User, body: ChatCreateBody) -> Tuple[Chat, bool]:
        """
        Create a chat with the creator as its admin participant.

        Returns (chat, created). For admin DMs an existing chat for the same
        member is returned with created=False instead of a duplicate.
        """
        if body.is_admin_dm:
            return self._find_or_create_admin_dm(creator, body)
        errors = validate_chat_fields(body.name or "", body.type, body.category)
        if errors:
            raise ValidationError(errors=errors)

        name = body.name.strip()
        others = self._load_other_users(creator, body.participant_ids)
        if body.type == "dm" and len(others) != 1:
            raise ValidationError(
                errors=[{"field": "participant_ids", "message": "A dm chat needs exactly one other participant"}]
            )

        chat = Chat(
            id=uuid.uuid4(),
            name=name,
            name_key=None if body.type == "dm" else name.lower(),
            description=body.description,
            chat_type=body.type,
            category=body.category,
            created_by=creator.id,
            is_admin_dm=False,
            is_active=True,
        )
        self._apply_settings(chat, body.settings, creating=True)
        if len(others) + 1 > chat.max_participants:
            raise CapacityExceeded()

        now = utcnow()
        chat.participants.append(self._participant(creator, "admin", now))
        for other in others:
            chat.participants.append(self._participant(other, "member", now))

        self.db.add(chat)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(f"A chat named '{name}' already exists", code="NAME_TAKEN")
        self.db.refresh(chat)
        logger.info("Chat created: %s (%s) by %s", chat.name, chat.id, creator.email)
        return chat, True

    def _find_or_create_admin_dm(self, creator: User, body: ChatCreateBody) -> Tuple[Chat, bool]:
        admin = self.resolve_admin()
        if admin is None:
            raise NotFound("Admin user")

        if self.acl.is_admin(creator):
            if len(body.participant_ids) != 1:
                raise ValidationError(
                    errors=[{"field": "participant_ids", "message": "Choose the member to open an admin DM with"}]
                )
            member = user_crud.get(self.db, body.participant_ids[0])
            if not member:
                raise NotFound("User")
            if self.acl.is_admin(member):
                raise ValidationError("Admin DMs are opened with non-admin users")
        else:
            member = creator

        key = admin_dm_key(member.id, admin.id)
        existing = chat_crud.get_by_admin_dm_key(self.db, key=key)
        if existing:
            logger.info("Admin DM already exists for %s: %s", member.email, existing.id)
            return existing, False

        now = utcnow()
        chat = Chat(
            id=uuid.uuid4(),
            name=f"Admin DM - {member.name}"[:NAME_MAX_LENGTH],
            name_key=None,
            description=body.description or f"Direct messages between {member.name} and the festival admin",
            chat_type="dm",
            category="support",
            created_by=creator.id,
            is_admin_dm=True,
            admin_dm_key=key,
            is_active=True,
        )
        self._apply_settings(chat, body.settings, creating=True)
        chat.participants.append(self._participant(member, "member", now))
        chat.participants.append(self._participant(admin, "admin", now))
        self.db.add(chat)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent request for the same member.
            self.db.rollback()
            existing = chat_crud.get_by_admin_dm_key(self.db, key=key)
            if existing:
                logger.info("Admin DM created concurrently for %s: %s", member.email, existing.id)
                return existing, False
            raise
        self.db.refresh(chat)
        logger.info("Admin DM created for %s: %s", member.email, chat.id)
        return chat, True

    def _load_other_users(self, creator: User, user_ids: Sequence[uuid.UUID]) -> List[User]:
        wanted = []
        for uid in user_ids:
            if uid != creator.id and uid not in wanted:
                wanted.append(uid)
        users = {u.id: u for u in user_crud.list_by_ids(self.db, wanted)}
        missing = [str(uid) for uid in wanted if uid not in users or not users[uid].is_active]
        if missing:
            raise NotFound(f"User {', '.join(missing)}")
        return [users[uid] for uid in wanted]

    @staticmethod
    def _participant(user: User, role: str, now) -> ChatParticipant:
        return ChatParticipant(
            id=uuid.uuid4(),
            user_id=user.id,
            name=user.name,
            role=role,
            is_active=True,
            joined_at=now,
            last_read=now,
        )

    def _apply_settings(self, chat: Chat, body: Optional[ChatSettingsBody], creating: bool = False) -> None:
        if creating:
            chat.allow_file_sharing = True
            chat.allow_media_sharing = True
            chat.max_participants = settings.DEFAULT_MAX_PARTICIPANTS
            chat.is_public = True
            chat.require_approval = False
        if body is not None:
            for field, value in body.model_dump(exclude_none=True).items():
                setattr(chat, field, value)
        if chat.chat_type == "dm":
            chat.max_participants = 2

    # --- membership ---

    def _mutate_membership(self, chat_id: uuid.UUID, mutate: Callable[[Chat], T]) -> T:
        for attempt in range(1, MEMBERSHIP_RETRIES + 1):
            chat = self.get_chat(chat_id)
            result = mutate(chat)
            chat.updated_at = utcnow()
            try:
                self.db.commit()
            except (StaleDataError, IntegrityError) as e:
                self.db.rollback()
                logger.info("Concurrent membership change on chat %s (attempt %d): %s", chat_id, attempt, e)
                continue
            self.db.refresh(chat)
            return result
        raise ConflictError("Chat membership changed concurrently, please retry")

    @retry_transient
    def add_participant(self, chat_id: uuid.UUID, user: User, role: Optional[str] = None) -> Chat:
        """
        Idempotently make user an active participant.

        An existing active participant keeps its record; its role changes only
        when role is given. New participants default to "member".
        """
        if role is not None and role not in PARTICIPANT_ROLES:
            raise ValidationError(
                errors=[{"field": "role", "message": f"Role must be one of: {', '.join(PARTICIPANT_ROLES)}"}]
            )

        def _add(chat: Chat) -> Chat:
            if not chat.is_active:
                raise ConflictError("Chat has been deleted")
            existing = chat.participant_for(user.id)
            if existing is not None and existing.is_active:
                if role is not None:
                    existing.role = role
                return chat
            if len(chat.active_participants) >= chat.max_participants:
                raise CapacityExceeded()
            now = utcnow()
            if existing is not None:
                existing.is_active = True
                existing.role = role or "member"
                existing.name = user.name
                existing.joined_at = now
                existing.last_read = now
                existing.left_at = None
            else:
                chat.participants.append(self._participant(user, role or "member", now))
            return chat

        chat = self._mutate_membership(chat_id, _add)
        logger.info("User %s is a participant of chat %s", user.email, chat_id)
        return chat

    @retry_transient
    def remove_participant(self, chat_id: uuid.UUID, user_id: uuid.UUID) -> Chat:
        """
        Mark the participant inactive. A dm left without participants stays
        as an orphan; it is not deleted.
        """

        def _remove(chat: Chat) -> Chat:
            existing = chat.participant_for(user_id)
            if existing is None or not existing.is_active:
                raise ConflictError("User is not a participant of this chat", code="NOT_PARTICIPANT")
            existing.is_active = False
            existing.left_at = utcnow()
            return chat

        chat = self._mutate_membership(chat_id, _remove)
        logger.info("User %s left chat %s", user_id, chat_id)
        return chat

    def join_chat(self, user: User, chat_id: uuid.UUID) -> Chat:
        chat = self.get_chat(chat_id)
        if not chat.is_active:
            raise ConflictError("Chat has been deleted")
        if not self.acl.can_join_chat(user, chat):
            raise ConflictError("You are already a participant of this chat", code="ALREADY_PARTICIPANT")
        return self.add_participant(chat_id, user, "member")

    def leave_chat(self, user: User, chat_id: uuid.UUID) -> Chat:
        chat = self.get_chat(chat_id)
        if not self.acl.can_leave_chat(user, chat):
            raise ConflictError("You are not a participant of this chat", code="NOT_PARTICIPANT")
        return self.remove_participant(chat_id, user.id)

    def add_participant_by(self, actor: User, chat_id: uuid.UUID, user_id: uuid.UUID, role: str = "member") -> Chat:
        chat = self.get_chat(chat_id)
        require(self.acl.can_modify_chat(actor, chat), "Not authorized to add participants")
        target = user_crud.get(self.db, user_id)
        if not target or not target.is_active:
            raise NotFound("User")
        return self.add_participant(chat_id, target, role)

    def remove_participant_by(self, actor: User, chat_id: uuid.UUID, user_id: uuid.UUID) -> Chat:
        chat = self.get_chat(chat_id)
        require(
            actor.id == user_id or self.acl.can_modify_chat(actor, chat),
            "Not authorized to remove participants",
        )
        return self.remove_participant(chat_id, user_id)

    def join_by_name(self, user: User, name: str) -> Tuple[Optional[Chat], List[str]]:
        """
        Join the active chat whose name matches exactly (case-insensitive).

        Returns (chat, []) on a match, or (None, suggestions) with up to five
        names containing the requested one.
        """
        chat = chat_crud.get_active_by_name(self.db, name=name)
        if chat is None:
            suggestions = chat_crud.search_active_by_name(self.db, term=name, limit=SUGGESTION_LIMIT)
            return None, [c.name for c in suggestions]
        return self.add_participant(chat.id, user), []

    # --- mutation ---

    @retry_transient
    def update_chat(self, actor: User, chat_id: uuid.UUID, body: ChatUpdateBody) -> Chat:
        chat = self.get_chat(chat_id)
        require(self.acl.can_modify_chat(actor, chat), "Not authorized to update this chat")
        if not chat.is_active:
            raise ConflictError("Chat has been deleted")

        errors = validate_chat_fields(body.name, body.type, body.category)
        if body.type is not None and (chat.chat_type == "dm") != (body.type == "dm"):
            errors.append({"field": "type", "message": "Type can only change between group and channel"})
        if body.settings is not None and body.settings.max_participants is not None:
            if body.settings.max_participants < len(chat.active_participants):
                errors.append({"field": "settings.max_participants", "message": "Below the current participant count"})
        if errors:
            raise ValidationError(errors=errors)

        if body.name is not None:
            chat.name = body.name.strip()
            if chat.chat_type != "dm":
                chat.name_key = chat.name.lower()
        if body.description is not None:
            chat.description = body.description
        if body.type is not None:
            chat.chat_type = body.type
        if body.category is not None:
            chat.category = body.category
        self._apply_settings(chat, body.settings)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(f"A chat named '{body.name}' already exists", code="NAME_TAKEN")
        except StaleDataError:
            self.db.rollback()
            raise ConflictError("Chat was modified concurrently, please retry")
        self.db.refresh(chat)
        return chat

    @retry_transient
    def soft_delete_chat(self, actor: User, chat_id: uuid.UUID) -> Chat:
        """Flip is_active off. Messages are kept; the name and admin-DM slot are released."""
        chat = self.get_chat(chat_id)
        require(self.acl.can_modify_chat(actor, chat), "Not authorized to delete this chat")
        if not chat.is_active:
            return chat
        chat.is_active = False
        chat.name_key = None
        chat.admin_dm_key = None
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            raise ConflictError("Chat was modified concurrently, please retry")
        self.db.refresh(chat)
        logger.info("Chat %s deleted by %s", chat_id, actor.email)
        return chat

    # --- admin bulk creation ---

    def bulk_create(
        self,
        admin: User,
        count: int,
        name_prefix: str,
        description: Optional[str] = None,
        category: str = "general",
        chat_type: str = "group",
    ) -> Tuple[List[Chat], List[Dict]]:
        """Create `count` chats named "{name_prefix} {i}"; failures are reported per item."""
        if not self.acl.is_admin(admin):
            raise AdminRequired()
        if not 1 <= count <= settings.BULK_CREATE_MAX:
            raise ValidationError(
                errors=[{"field": "count", "message": f"Count must be between 1 and {settings.BULK_CREATE_MAX}"}]
            )
        bodies = [
            ChatCreateBody(
                name=f"{name_prefix.strip()} {i}",
                description=description,
                category=category,
                type=chat_type,
            )
            for i in range(1, count + 1)
        ]
        return self._create_many(admin, bodies)

    def quick_groups(self, admin: User, preset: str) -> Tuple[List[Chat], List[Dict]]:
        if not self.acl.is_admin(admin):
            raise AdminRequired()
        if preset not in QUICK_GROUP_PRESETS:
            raise ValidationError(
                errors=[{"field": "preset", "message": f"Preset must be one of: {', '.join(QUICK_GROUP_PRESETS)}"}]
            )
        bodies = [
            ChatCreateBody(
                name=item["name"],
                description=item.get("description"),
                category=item.get("category", "general"),
                type=item.get("type", "group"),
            )
            for item in QUICK_GROUP_PRESETS[preset]
        ]
        return self._create_many(admin, bodies)

    def _create_many(self, admin: User, bodies: Sequence[ChatCreateBody]) -> Tuple[List[Chat], List[Dict]]:
        created: List[Chat] = []
        errors: List[Dict] = []
        for index, body in enumerate(bodies, start=1):
            try:
                chat, _ = self.create_chat(admin, body)
                created.append(chat)
            except AppException as e:
                logger.warning("Bulk create item %d (%s) failed: %s", index, body.name, e.message)
                errors.append({"index": index, "name": body.name, "message": e.message})
        logger.info("Bulk create by %s: %d created, %d failed", admin.email, len(created), len(errors))
        return created, errors
