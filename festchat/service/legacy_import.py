"""
One-off normalisation of legacy chat documents into the Chat model.

Legacy exports mix several shapes for the same chat:
- participants as sub-documents ({_id|user|userId, name, role, joinedAt, lastRead})
  or as bare user ids
- legacyParticipants: name/role pairs without a user reference
- admins: user ids that hold the admin role
- lastMessage / legacyLastMessage with sender as a name or an id
- settings missing or in an older shape
- createdBy missing

Users are resolved through a lookup built from legacy ids, emails and names.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from festchat.core.config import settings
from festchat.crud import chat_crud
from festchat.model.chat import Chat, CHAT_CATEGORIES, CHAT_TYPES
from festchat.model.chat_participant import ChatParticipant, PARTICIPANT_ROLES
from festchat.model.user import User
from festchat.service.chat_service import admin_dm_key
from festchat.utils.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)

SETTING_FIELDS = {
    "allowFileSharing": "allow_file_sharing",
    "allowMediaSharing": "allow_media_sharing",
    "maxParticipants": "max_participants",
    "isPublic": "is_public",
    "requireApproval": "require_approval",
}


def parse_date(value: Any) -> Optional[datetime]:
    """ISO strings, {"$date": ...} wrappers and epoch milliseconds."""
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("$date")
        if isinstance(value, dict):
            value = value.get("$numberLong")
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def ref_key(value: Any) -> Optional[str]:
    """Reference to a user as a plain string: ids, {"$oid": ...} and sub-documents."""
    if value is None:
        return None
    if isinstance(value, dict):
        if "$oid" in value:
            return str(value["$oid"])
        for key in ("_id", "user", "userId", "id"):
            if value.get(key) is not None:
                return ref_key(value[key])
        return None
    return str(value)


class UserLookup:
    """Resolves legacy user references (id, email or display name) to users."""

    def __init__(self, users: Iterable[User], legacy_ids: Optional[Dict[str, str]] = None):
        self._by_key: Dict[str, User] = {}
        by_email = {}
        for user in users:
            by_email[user.email.lower()] = user
            self._by_key[str(user.id)] = user
            self._by_key[user.email.lower()] = user
            self._by_key.setdefault(f"name:{user.name.lower()}", user)
        # legacy id -> email, from the users export
        for legacy_id, email in (legacy_ids or {}).items():
            user = by_email.get((email or "").lower())
            if user is not None:
                self._by_key[str(legacy_id)] = user

    def resolve(self, ref: Any) -> Optional[User]:
        if isinstance(ref, dict) and ref.get("email"):
            user = self._by_key.get(str(ref["email"]).lower())
            if user is not None:
                return user
        key = ref_key(ref)
        if key is not None:
            user = self._by_key.get(key) or self._by_key.get(key.lower())
            if user is not None:
                return user
        if isinstance(ref, dict) and ref.get("name"):
            return self.by_name(ref["name"])
        return None

    def by_name(self, name: str) -> Optional[User]:
        return self._by_key.get(f"name:{name.strip().lower()}")


@dataclass
class NormalizedParticipant:
    user: User
    role: str
    joined_at: datetime
    last_read: Optional[datetime]
    is_active: bool = True


@dataclass
class NormalizedChat:
    name: str
    description: Optional[str]
    chat_type: str
    category: str
    created_by: User
    is_admin_dm: bool
    is_active: bool
    settings: Dict[str, Any]
    participants: List[NormalizedParticipant]
    last_message: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    skipped_refs: List[str] = field(default_factory=list)


def _role(value: Any) -> str:
    return value if value in PARTICIPANT_ROLES else "member"


def normalize_chat(doc: Dict[str, Any], users: UserLookup, fallback_creator: Optional[User] = None) -> NormalizedChat:
    """
    Map one legacy document onto the canonical chat shape.

    Raises ValueError when the document has no name or no resolvable creator.
    """
    name = (doc.get("name") or "").strip()[:50]
    if not name:
        raise ValueError("chat has no name")
    created_at = parse_date(doc.get("createdAt")) or utcnow()

    participants: Dict[uuid.UUID, NormalizedParticipant] = {}
    skipped: List[str] = []

    def add(user: Optional[User], role: str, joined_at=None, last_read=None, ref=None, active=True):
        if user is None:
            skipped.append(str(ref))
            return
        current = participants.get(user.id)
        if current is not None:
            if role == "admin":
                current.role = "admin"
            return
        participants[user.id] = NormalizedParticipant(
            user=user,
            role=role,
            joined_at=joined_at or created_at,
            last_read=last_read,
            is_active=active,
        )

    for entry in doc.get("participants") or []:
        if isinstance(entry, dict):
            add(
                users.resolve(entry),
                _role(entry.get("role")),
                parse_date(entry.get("joinedAt")),
                parse_date(entry.get("lastRead")),
                ref=ref_key(entry) or entry.get("name"),
                active=entry.get("isActive", True) is not False,
            )
        else:
            add(users.resolve(entry), "member", ref=entry)
    for entry in doc.get("legacyParticipants") or []:
        if isinstance(entry, dict):
            user = users.resolve(entry) if ref_key(entry) else users.by_name(entry.get("name") or "")
            add(user, _role(entry.get("role")), parse_date(entry.get("joinedAt")), ref=entry.get("name"))
        else:
            add(users.resolve(entry), "member", ref=entry)
    for ref in doc.get("admins") or []:
        add(users.resolve(ref), "admin", ref=ref_key(ref))

    creator = users.resolve(doc.get("createdBy")) if doc.get("createdBy") else None
    if creator is None:
        admins = [p.user for p in participants.values() if p.role == "admin"]
        firsts = list(participants.values())
        creator = (admins[0] if admins else None) or (firsts[0].user if firsts else None) or fallback_creator
    if creator is None:
        raise ValueError(f"chat '{name}' has no resolvable creator")

    chat_type = doc.get("type") if doc.get("type") in CHAT_TYPES else "group"
    category = doc.get("category") if doc.get("category") in CHAT_CATEGORIES else "general"

    chat_settings = {
        "allow_file_sharing": True,
        "allow_media_sharing": True,
        "max_participants": settings.DEFAULT_MAX_PARTICIPANTS,
        "is_public": True,
        "require_approval": False,
    }
    for legacy_name, column in SETTING_FIELDS.items():
        value = (doc.get("settings") or {}).get(legacy_name)
        if value is not None:
            chat_settings[column] = value
    if chat_type == "dm":
        chat_settings["max_participants"] = 2

    last = doc.get("lastMessage") or doc.get("legacyLastMessage")
    last_message = None
    if isinstance(last, dict) and last.get("content"):
        sender = users.resolve(last.get("senderId") or last.get("sender"))
        if sender is None and isinstance(last.get("sender"), str):
            sender = users.by_name(last["sender"])
        last_message = {
            "content": last["content"],
            "sender_id": sender.id if sender else None,
            "sender_name": last.get("senderName") or (sender.name if sender else last.get("sender")),
            "type": last.get("type") or "text",
            "at": parse_date(last.get("timestamp")) or created_at,
        }

    return NormalizedChat(
        name=name,
        description=doc.get("description"),
        chat_type=chat_type,
        category=category,
        created_by=creator,
        is_admin_dm=bool(doc.get("isAdminDM")),
        is_active=doc.get("isActive", True) is not False,
        settings=chat_settings,
        participants=list(participants.values()),
        last_message=last_message,
        created_at=created_at,
        skipped_refs=skipped,
    )


def import_chat(db: Session, normalized: NormalizedChat, admin: Optional[User] = None) -> Optional[Chat]:
    """
    Persist a normalised chat. Returns None when an active chat with the same
    name, or the same admin DM, already exists.
    """
    name_key = None
    if normalized.chat_type != "dm" and normalized.is_active:
        name_key = normalized.name.lower()
        if chat_crud.get_active_by_name(db, name=normalized.name):
            logger.info("Skipping '%s': an active chat with that name exists", normalized.name)
            return None

    dm_key = None
    if normalized.is_admin_dm and admin is not None and normalized.is_active:
        members = [p.user for p in normalized.participants if p.user.id != admin.id]
        if members:
            dm_key = admin_dm_key(members[0].id, admin.id)
            if chat_crud.get_by_admin_dm_key(db, key=dm_key):
                logger.info("Skipping admin DM '%s': already imported", normalized.name)
                return None

    chat = Chat(
        id=uuid.uuid4(),
        name=normalized.name,
        name_key=name_key,
        description=normalized.description,
        chat_type=normalized.chat_type,
        category=normalized.category,
        created_by=normalized.created_by.id,
        is_admin_dm=normalized.is_admin_dm,
        admin_dm_key=dm_key,
        is_active=normalized.is_active,
        created_at=normalized.created_at,
        **normalized.settings,
    )
    if normalized.last_message:
        chat.last_message_content = normalized.last_message["content"]
        chat.last_message_sender_id = normalized.last_message["sender_id"]
        chat.last_message_sender_name = normalized.last_message["sender_name"]
        chat.last_message_type = normalized.last_message["type"]
        chat.last_message_at = normalized.last_message["at"]
    for p in normalized.participants:
        chat.participants.append(
            ChatParticipant(
                id=uuid.uuid4(),
                user_id=p.user.id,
                name=p.user.name,
                role=p.role,
                is_active=p.is_active,
                joined_at=p.joined_at,
                last_read=p.last_read or p.joined_at,
            )
        )
    db.add(chat)
    db.commit()
    db.refresh(chat)
    if normalized.skipped_refs:
        logger.warning("Chat '%s': unresolved participants %s", chat.name, normalized.skipped_refs)
    return chat
