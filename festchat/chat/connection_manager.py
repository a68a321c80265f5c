"""
In-memory connection manager for the realtime WebSocket: rooms, per-user sockets, presence.

Room names:
- chat:{chat_id} - sockets that joined a chat
- user:{user_id} - every socket of one user
"""
import asyncio
import json
import logging
import uuid
from typing import Any, Coroutine, Dict, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def chat_room(chat_id) -> str:
    return f"chat:{chat_id}"


def user_room(user_id) -> str:
    return f"user:{user_id}"


class ConnectionManager:
    """Tracks WebSocket connections per room and per user and emits events."""

    def __init__(self) -> None:
        # room -> set of WebSocket
        self._rooms: Dict[str, Set[WebSocket]] = {}
        # user_id -> set of WebSocket
        self._users: Dict[uuid.UUID, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # --- connections ---

    async def connect(self, websocket: WebSocket, user_id: uuid.UUID) -> bool:
        """Register an accepted socket. Returns True if this is the user's first connection."""
        self._loop = asyncio.get_running_loop()
        async with self._lock:
            first = user_id not in self._users
            self._users.setdefault(user_id, set()).add(websocket)
            self._rooms.setdefault(user_room(user_id), set()).add(websocket)
        logger.info("WebSocket connected for user %s", user_id)
        return first

    async def disconnect(self, websocket: WebSocket, user_id: uuid.UUID) -> bool:
        """Drop a socket from every room. Returns True if the user has no connections left."""
        async with self._lock:
            for room in list(self._rooms):
                self._rooms[room].discard(websocket)
                if not self._rooms[room]:
                    del self._rooms[room]
            sockets = self._users.get(user_id)
            if sockets is not None:
                sockets.discard(websocket)
                if not sockets:
                    del self._users[user_id]
            last = user_id not in self._users
        logger.info("WebSocket disconnected for user %s", user_id)
        return last

    async def subscribe(self, websocket: WebSocket, room: str) -> None:
        async with self._lock:
            self._rooms.setdefault(room, set()).add(websocket)
        logger.debug("Subscribed ws to room %s", room)

    async def unsubscribe(self, websocket: WebSocket, room: str) -> None:
        async with self._lock:
            if room in self._rooms:
                self._rooms[room].discard(websocket)
                if not self._rooms[room]:
                    del self._rooms[room]
        logger.debug("Unsubscribed ws from room %s", room)

    async def unsubscribe_user(self, user_id: uuid.UUID, room: str) -> int:
        """Drop every socket of one user from a room. Returns how many were removed."""
        async with self._lock:
            sockets = self._users.get(user_id) or set()
            members = self._rooms.get(room)
            if not members:
                return 0
            removed = len(members & sockets)
            members.difference_update(sockets)
            if not members:
                del self._rooms[room]
        logger.debug("Unsubscribed user %s from room %s", user_id, room)
        return removed

    async def close_room(self, room: str) -> None:
        async with self._lock:
            self._rooms.pop(room, None)
        logger.debug("Closed room %s", room)

    def online_user_ids(self) -> Set[uuid.UUID]:
        return set(self._users)

    def is_online(self, user_id: uuid.UUID) -> bool:
        return user_id in self._users

    def connection_count(self) -> int:
        return sum(len(s) for s in self._users.values())

    # --- delivery ---

    @staticmethod
    def encode(event: str, payload: Any, room: Optional[str] = None) -> str:
        return json.dumps({"event": event, "room": room, "payload": payload}, default=str)

    async def send(self, websocket: WebSocket, event: str, payload: Any) -> None:
        """Send one event to a single socket; failures are logged."""
        try:
            await websocket.send_text(self.encode(event, payload))
        except Exception as e:
            logger.warning("Send of %s failed: %s", event, e)

    async def emit_to_room(
        self,
        room: str,
        event: str,
        payload: Any,
        exclude_websocket: Optional[WebSocket] = None,
    ) -> None:
        """Send JSON message to all connections in this room (except exclude_websocket)."""
        msg = self.encode(event, payload, room)
        async with self._lock:
            sockets = set(self._rooms.get(room) or [])
        dead = []
        for ws in sockets:
            if ws is exclude_websocket:
                continue
            try:
                await ws.send_text(msg)
            except Exception as e:
                logger.warning("Delivery of %s to %s failed: %s", event, room, e)
                dead.append(ws)
        if dead:
            async with self._lock:
                for ws in dead:
                    if room in self._rooms:
                        self._rooms[room].discard(ws)
                if room in self._rooms and not self._rooms[room]:
                    del self._rooms[room]

    async def emit_to_user(self, user_id: uuid.UUID, event: str, payload: Any) -> None:
        await self.emit_to_room(user_room(user_id), event, payload)

    async def broadcast(self, event: str, payload: Any, exclude_websocket: Optional[WebSocket] = None) -> None:
        """Send to every connected socket."""
        async with self._lock:
            sockets = [ws for group in self._users.values() for ws in group]
        msg = self.encode(event, payload)
        for ws in sockets:
            if ws is exclude_websocket:
                continue
            try:
                await ws.send_text(msg)
            except Exception as e:
                logger.warning("Broadcast of %s failed: %s", event, e)

    # --- fire-and-forget from sync code ---

    def schedule(self, coro: Coroutine) -> None:
        """
        Run coro on the server's event loop without waiting for it.

        Works from coroutines (running loop) and from sync endpoints running in
        the threadpool. With no loop known there is nobody to deliver to.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            loop.create_task(coro)
            return
        if self._loop is not None and self._loop.is_running():
            asyncio.run_coroutine_threadsafe(coro, self._loop)
            return
        coro.close()

    def emit_to_room_sync(self, room: str, event: str, payload: Any) -> None:
        self.schedule(self.emit_to_room(room, event, payload))

    def emit_to_user_sync(self, user_id: uuid.UUID, event: str, payload: Any) -> None:
        self.schedule(self.emit_to_user(user_id, event, payload))


connection_manager = ConnectionManager()
