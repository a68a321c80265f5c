"""
Realtime WebSocket: chat rooms, typing, forwarding, read receipts, reactions, presence.

Client frames: {"event": <name>, "data": {...}}
Server frames: {"event": <name>, "room": <room or null>, "payload": {...}}
Auth via query ?token=<access token>; a bad token closes the socket with 4001.
"""
import json
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from festchat.chat.connection_manager import chat_room, connection_manager
from festchat.chat.fanout import fanout
from festchat.chat.payloads import message_payload
from festchat.chat.presence import online_user_ids, set_presence
from festchat.core.database import SessionLocal
from festchat.core.dependencies import load_user_from_token
from festchat.core.exceptions import AppException, AuthorizationError, ValidationError
from festchat.model.user import User
from festchat.service.access_control import access_control
from festchat.service.chat_service import ChatService
from festchat.service.message_service import MessageService
from festchat.utils.timeutil import utcnow

router = APIRouter()
logger = logging.getLogger(__name__)

WS_UNAUTHORIZED = 4001


def _uuid_field(data: Dict[str, Any], field: str) -> uuid.UUID:
    value = data.get(field)
    if not value:
        raise ValidationError(f"Missing required field: {field}")
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be a valid UUID")


class RealtimeSession:
    """Handles events of one authenticated socket."""

    def __init__(self, websocket: WebSocket, user: User):
        self.websocket = websocket
        self.user_id = user.id
        self.user_name = user.name

    def _user(self, db) -> User:
        return db.get(User, self.user_id)

    async def dispatch(self, event: Optional[str], data: Dict[str, Any]) -> None:
        handler = getattr(self, f"on_{event}", None) if event else None
        if handler is None:
            raise ValidationError(f"Unknown event: {event}", code="UNKNOWN_EVENT")
        await handler(data)

    async def on_join_chat(self, data: Dict[str, Any]) -> None:
        chat_id = _uuid_field(data, "chat_id")
        db = SessionLocal()
        try:
            chat = ChatService(db).get_visible_chat(self._user(db), chat_id)
            chat_name = chat.name
        finally:
            db.close()
        room = chat_room(chat_id)
        await connection_manager.subscribe(self.websocket, room)
        await connection_manager.send(self.websocket, "joined_chat", {"chat_id": str(chat_id), "name": chat_name})
        await connection_manager.emit_to_room(
            room,
            "user_joined_chat",
            {"chat_id": str(chat_id), "user_id": str(self.user_id), "user_name": self.user_name},
            exclude_websocket=self.websocket,
        )

    async def on_leave_chat(self, data: Dict[str, Any]) -> None:
        chat_id = _uuid_field(data, "chat_id")
        room = chat_room(chat_id)
        await connection_manager.unsubscribe(self.websocket, room)
        await connection_manager.send(self.websocket, "left_chat", {"chat_id": str(chat_id)})
        await connection_manager.emit_to_room(
            room,
            "user_left_chat",
            {"chat_id": str(chat_id), "user_id": str(self.user_id), "user_name": self.user_name},
            exclude_websocket=self.websocket,
        )

    async def on_send_message(self, data: Dict[str, Any]) -> None:
        chat_id = _uuid_field(data, "chat_id")
        reply_to = _uuid_field(data, "reply_to") if data.get("reply_to") else None
        db = SessionLocal()
        try:
            message, chat = MessageService(db).send_message(
                self._user(db),
                chat_id,
                data.get("content") or "",
                message_type=data.get("type") or "text",
                reply_to=reply_to,
            )
            admin = ChatService(db).resolve_admin() if chat.is_admin_dm else None
            fanout.message_created(chat, message, admin)
        finally:
            db.close()

    async def on_forward_message(self, data: Dict[str, Any]) -> None:
        message_id = _uuid_field(data, "message_id")
        raw_targets = data.get("target_chat_ids")
        if not isinstance(raw_targets, list) or not raw_targets:
            raise ValidationError("target_chat_ids must be a non-empty list of UUIDs")
        try:
            targets = [uuid.UUID(str(cid)) for cid in raw_targets]
        except ValueError:
            raise ValidationError("target_chat_ids must be a non-empty list of UUIDs")
        db = SessionLocal()
        try:
            forwarded, skipped = MessageService(db).forward_message(
                self._user(db), message_id, targets, comment=data.get("comment")
            )
            payload = {
                "original_message_id": str(message_id),
                "forwarded_to": [str(chat.id) for chat, _ in forwarded],
                "skipped": [str(cid) for cid in skipped],
                "messages": [],
            }
            for chat, created in forwarded:
                admin = ChatService(db).resolve_admin() if chat.is_admin_dm else None
                for message in created:
                    fanout.message_created(chat, message, admin)
                    payload["messages"].append(message_payload(message, self.user_id))
        finally:
            db.close()
        await connection_manager.send(self.websocket, "message_forwarded", payload)

    async def _typing(self, data: Dict[str, Any], typing: bool) -> None:
        chat_id = _uuid_field(data, "chat_id")
        db = SessionLocal()
        try:
            chat = ChatService(db).get_chat(chat_id)
            if not access_control.can_view_chat(self._user(db), chat):
                raise AuthorizationError("Access denied to this chat")
        finally:
            db.close()
        await connection_manager.emit_to_room(
            chat_room(chat_id),
            "user_typing",
            {"chat_id": str(chat_id), "user_id": str(self.user_id), "user_name": self.user_name, "typing": typing},
            exclude_websocket=self.websocket,
        )

    async def on_typing_start(self, data: Dict[str, Any]) -> None:
        await self._typing(data, True)

    async def on_typing_stop(self, data: Dict[str, Any]) -> None:
        await self._typing(data, False)

    async def on_mark_messages_read(self, data: Dict[str, Any]) -> None:
        chat_id = _uuid_field(data, "chat_id")
        message_ids = data.get("message_ids")
        if message_ids is not None:
            try:
                message_ids = [uuid.UUID(str(mid)) for mid in message_ids]
            except (TypeError, ValueError):
                raise ValidationError("message_ids must be a list of UUIDs")
        db = SessionLocal()
        try:
            user = self._user(db)
            marked = MessageService(db).mark_read(user, chat_id, message_ids)
            if marked:
                fanout.messages_read(ChatService(db).get_chat(chat_id), user, marked)
        finally:
            db.close()

    async def on_react_to_message(self, data: Dict[str, Any]) -> None:
        message_id = _uuid_field(data, "message_id")
        db = SessionLocal()
        try:
            message = MessageService(db).toggle_reaction(self._user(db), message_id, data.get("emoji") or "")
            chat = message.chat
            admin = ChatService(db).resolve_admin() if chat.is_admin_dm else None
            fanout.reaction_updated(chat, message, admin)
        finally:
            db.close()

    async def on_get_online_users(self, data: Dict[str, Any]) -> None:
        user_ids = online_user_ids()
        await connection_manager.send(self.websocket, "online_users", {"user_ids": user_ids, "count": len(user_ids)})


def _authenticate(token: Optional[str]) -> Optional[User]:
    if not token:
        return None
    db = SessionLocal()
    try:
        user = load_user_from_token(db, token)
        db.expunge(user)
        return user
    except AppException as e:
        logger.info("WebSocket auth rejected: %s", e.code)
        return None
    finally:
        db.close()


def _stamp_last_seen(user_id: uuid.UUID):
    db = SessionLocal()
    try:
        user = db.get(User, user_id)
        if user is None:
            return None
        user.last_seen = utcnow()
        db.commit()
        return user.last_seen
    finally:
        db.close()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = None,
):
    """Realtime channel for one user connection."""
    await websocket.accept()
    user = _authenticate(token)
    if user is None:
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    session = RealtimeSession(websocket, user)
    if await connection_manager.connect(websocket, user.id):
        set_presence(user.id, True)
        await connection_manager.broadcast(
            "user_online",
            {"user_id": str(user.id), "user_name": user.name},
            exclude_websocket=websocket,
        )

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await connection_manager.send(
                    websocket, "error", {"code": "INVALID_JSON", "message": "Frame must be valid JSON"}
                )
                continue
            if not isinstance(frame, dict):
                await connection_manager.send(
                    websocket, "error", {"code": "INVALID_FRAME", "message": "Frame must be a JSON object"}
                )
                continue
            event = frame.get("event")
            data = frame.get("data") or {}
            try:
                await session.dispatch(event, data if isinstance(data, dict) else {})
            except AppException as e:
                await connection_manager.send(websocket, "error", {"event": event, "code": e.code, "message": e.message})
            except Exception:
                logger.exception("Realtime event %s from %s failed", event, user.id)
                await connection_manager.send(
                    websocket, "error", {"event": event, "code": "INTERNAL_ERROR", "message": "Event failed"}
                )
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning("WebSocket closed: %s", e)
    finally:
        if await connection_manager.disconnect(websocket, user.id):
            set_presence(user.id, False)
            last_seen = _stamp_last_seen(user.id)
            await connection_manager.broadcast(
                "user_offline",
                {"user_id": str(user.id), "last_seen": last_seen.isoformat() if last_seen else None},
            )
