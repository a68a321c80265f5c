"""Tests for realtime fanout routing and the connection manager."""

import asyncio
import json

import pytest

from festchat.chat.connection_manager import ConnectionManager, chat_room, user_room
from festchat.chat.fanout import Fanout
from tests.factories import create_test_chat, create_test_message


class RecordingManager:
    """Stands in for ConnectionManager and records sync emits."""

    def __init__(self):
        self.room_emits = []
        self.user_emits = []

    def emit_to_room_sync(self, room, event, payload):
        self.room_emits.append((room, event, payload))

    def emit_to_user_sync(self, user_id, event, payload):
        self.user_emits.append((user_id, event, payload))


class FakeWebSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


@pytest.fixture
def manager():
    return RecordingManager()


@pytest.fixture
def fan(manager):
    return Fanout(manager=manager)


class TestFanoutRouting:
    def test_regular_chat_emits_once_to_room(self, db, fan, manager, alice, bob):
        chat = create_test_chat(db, alice, name="Main Stage", members=[bob])
        message = create_test_message(db, chat, alice, "soundcheck")

        fan.message_created(chat, message)

        assert manager.user_emits == []
        assert len(manager.room_emits) == 1
        room, event, payload = manager.room_emits[0]
        assert room == chat_room(chat.id)
        assert event == "new_message"
        assert payload["content"] == "soundcheck"

    def test_admin_dm_member_message_reaches_only_member_and_admin(self, db, fan, manager, admin, alice, carol):
        chat = create_test_chat(db, alice, name="Admin DM - Alice", chat_type="dm", members=[carol], is_admin_dm=True)
        message = create_test_message(db, chat, alice, "need help")

        fan.message_created(chat, message, admin=admin)

        assert manager.room_emits == []
        assert {user_id for user_id, _, _ in manager.user_emits} == {alice.id, admin.id}

    def test_admin_dm_intruder_message_is_hidden_from_member(self, db, fan, manager, admin, alice, carol):
        chat = create_test_chat(db, alice, name="Admin DM - Alice", chat_type="dm", members=[carol], is_admin_dm=True)
        message = create_test_message(db, chat, carol, "hello?")

        fan.message_created(chat, message, admin=admin)

        # the sender always sees their own message; alice must not
        assert {user_id for user_id, _, _ in manager.user_emits} == {carol.id, admin.id}

    def test_admin_is_not_delivered_twice(self, db, fan, manager, admin, alice):
        chat = create_test_chat(db, alice, name="Admin DM - Alice", chat_type="dm", members=[admin], is_admin_dm=True)
        message = create_test_message(db, chat, admin, "how can I help")

        fan.message_created(chat, message, admin=admin)

        assert sorted(str(u) for u, _, _ in manager.user_emits) == sorted([str(alice.id), str(admin.id)])

    def test_deleted_and_reaction_events(self, db, fan, manager, alice, bob):
        chat = create_test_chat(db, alice, name="Campfire", members=[bob])
        message = create_test_message(db, chat, alice, "marshmallows")

        fan.message_deleted(chat, message)
        fan.reaction_updated(chat, message)
        fan.messages_read(chat, bob, [message.id])

        events = [event for _, event, _ in manager.room_emits]
        assert events == ["message_deleted", "message_reaction_updated", "messages_read"]
        assert manager.room_emits[0][2] == {"message_id": str(message.id), "chat_id": str(chat.id)}
        assert manager.room_emits[2][2]["message_ids"] == [str(message.id)]

    def test_delivery_failure_is_swallowed(self, db, alice):
        class Broken:
            def emit_to_room_sync(self, *args):
                raise RuntimeError("boom")

        chat = create_test_chat(db, alice, name="Quiet Tent")
        message = create_test_message(db, chat, alice)

        Fanout(manager=Broken()).message_created(chat, message)


class TestConnectionManager:
    def test_connect_and_disconnect_track_presence(self, alice):
        async def scenario():
            cm = ConnectionManager()
            first_ws, second_ws = FakeWebSocket(), FakeWebSocket()
            assert await cm.connect(first_ws, alice.id) is True
            assert await cm.connect(second_ws, alice.id) is False
            assert cm.is_online(alice.id)
            assert cm.connection_count() == 2

            assert await cm.disconnect(first_ws, alice.id) is False
            assert await cm.disconnect(second_ws, alice.id) is True
            assert cm.online_user_ids() == set()

        asyncio.run(scenario())

    def test_room_emit_skips_excluded_and_drops_dead_sockets(self, alice, bob):
        async def scenario():
            cm = ConnectionManager()
            sender, listener, dead = FakeWebSocket(), FakeWebSocket(), FakeWebSocket(fail=True)
            await cm.connect(sender, alice.id)
            await cm.connect(listener, bob.id)
            await cm.connect(dead, bob.id)
            for ws in (sender, listener, dead):
                await cm.subscribe(ws, "chat:1")

            await cm.emit_to_room("chat:1", "user_typing", {"is_typing": True}, exclude_websocket=sender)
            await cm.emit_to_room("chat:1", "user_typing", {"is_typing": False})
            return sender, listener, cm

        sender, listener, cm = asyncio.run(scenario())
        assert [f["payload"]["is_typing"] for f in listener.sent] == [True, False]
        assert [f["payload"]["is_typing"] for f in sender.sent] == [False]
        assert listener.sent[0] == {"event": "user_typing", "room": "chat:1", "payload": {"is_typing": True}}

    def test_emit_to_user_reaches_every_socket(self, alice):
        async def scenario():
            cm = ConnectionManager()
            phone, laptop = FakeWebSocket(), FakeWebSocket()
            await cm.connect(phone, alice.id)
            await cm.connect(laptop, alice.id)
            await cm.emit_to_user(alice.id, "new_message", {"content": "hi"})
            return phone, laptop

        phone, laptop = asyncio.run(scenario())
        assert phone.sent[0]["room"] == user_room(alice.id)
        assert laptop.sent[0]["payload"] == {"content": "hi"}

    def test_unsubscribe_user_drops_all_their_sockets(self, alice, bob):
        async def scenario():
            cm = ConnectionManager()
            phone, laptop, other = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
            await cm.connect(phone, bob.id)
            await cm.connect(laptop, bob.id)
            await cm.connect(other, alice.id)
            for ws in (phone, laptop, other):
                await cm.subscribe(ws, "chat:1")

            removed = await cm.unsubscribe_user(bob.id, "chat:1")
            await cm.emit_to_room("chat:1", "new_message", {"content": "after"})
            await cm.emit_to_user(bob.id, "user_online", {})
            return removed, phone, laptop, other

        removed, phone, laptop, other = asyncio.run(scenario())
        assert removed == 2
        assert [f["event"] for f in phone.sent] == ["user_online"]
        assert [f["event"] for f in laptop.sent] == ["user_online"]
        assert [f["payload"] for f in other.sent] == [{"content": "after"}]

    def test_close_room_stops_delivery(self, alice):
        async def scenario():
            cm = ConnectionManager()
            ws = FakeWebSocket()
            await cm.connect(ws, alice.id)
            await cm.subscribe(ws, "chat:1")
            await cm.close_room("chat:1")
            await cm.emit_to_room("chat:1", "new_message", {})
            assert await cm.unsubscribe_user(alice.id, "chat:1") == 0
            return ws

        assert asyncio.run(scenario()).sent == []

    def test_schedule_without_loop_is_a_noop(self):
        cm = ConnectionManager()
        cm.emit_to_room_sync("chat:1", "new_message", {})
