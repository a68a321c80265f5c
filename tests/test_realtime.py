"""Tests for the realtime WebSocket channel."""

import pytest
from starlette.websockets import WebSocketDisconnect

from festchat.auth import create_access_token
from festchat.chat import presence
from tests.factories import create_test_chat, create_test_message


def ws_url(user):
    return f"/api/v1/ws?token={create_access_token(user.id, user.email)}"


def receive_event(ws, event):
    """Next frame named event; presence and membership frames before it are skipped."""
    while True:
        frame = ws.receive_json()
        if frame["event"] == event:
            return frame


def join(ws, chat):
    ws.send_json({"event": "join_chat", "data": {"chat_id": str(chat.id)}})
    return receive_event(ws, "joined_chat")


def test_bad_token_is_rejected(client):
    with client.websocket_connect("/api/v1/ws?token=garbage") as ws:
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_text()
    assert exc.value.code == 4001


def test_join_and_send_message(client, db, alice, bob):
    chat = create_test_chat(db, alice, name="Silent Disco", members=[bob])

    with client.websocket_connect(ws_url(alice)) as ws:
        ws.send_json({"event": "join_chat", "data": {"chat_id": str(chat.id)}})
        joined = ws.receive_json()
        assert joined["event"] == "joined_chat"
        assert joined["payload"]["name"] == "Silent Disco"

        ws.send_json({"event": "send_message", "data": {"chat_id": str(chat.id), "content": "headphones on"}})
        delivered = ws.receive_json()
        assert delivered["event"] == "new_message"
        assert delivered["room"] == f"chat:{chat.id}"
        assert delivered["payload"]["content"] == "headphones on"


def test_errors_come_back_as_events(client, db, alice, carol):
    chat = create_test_chat(db, alice, name="VIP")

    with client.websocket_connect(ws_url(carol)) as ws:
        ws.send_text("not json")
        assert ws.receive_json()["payload"]["code"] == "INVALID_JSON"

        ws.send_json({"event": "dance", "data": {}})
        assert ws.receive_json()["payload"]["code"] == "UNKNOWN_EVENT"

        ws.send_json({"event": "join_chat", "data": {"chat_id": str(chat.id)}})
        error = ws.receive_json()
        assert error["event"] == "error"
        assert error["payload"]["code"] == "FORBIDDEN"


def test_online_users(client, alice):
    with client.websocket_connect(ws_url(alice)) as ws:
        ws.send_json({"event": "get_online_users"})
        frame = ws.receive_json()
    assert frame["event"] == "online_users"
    assert str(alice.id) in frame["payload"]["user_ids"]


def test_online_users_fall_back_to_local_sockets(client, alice, monkeypatch):
    def unavailable():
        raise RuntimeError("Redis client not initialized")

    monkeypatch.setattr(presence, "presence_set", unavailable)
    with client.websocket_connect(ws_url(alice)) as ws:
        ws.send_json({"event": "get_online_users"})
        frame = ws.receive_json()
    assert frame["payload"]["user_ids"] == [str(alice.id)]


def test_online_count_reads_the_presence_set(client, alice, bob, headers, fake_redis):
    fake_redis.sadd("presence:online", str(bob.id), "someone-on-another-worker")

    response = client.get("/api/v1/users/online-count", headers=headers(alice))

    assert response.json()["data"]["connected"] == 2


def test_leaving_over_rest_stops_room_delivery(client, db, alice, bob, headers):
    chat = create_test_chat(db, alice, name="Main Stage", members=[bob])

    with client.websocket_connect(ws_url(alice)) as alice_ws, client.websocket_connect(ws_url(bob)) as bob_ws:
        join(alice_ws, chat)
        join(bob_ws, chat)

        assert client.post(f"/api/v1/chats/{chat.id}/leave", headers=headers(bob)).status_code == 200
        receive_event(alice_ws, "user_left_chat")

        sent = client.post(f"/api/v1/messages/{chat.id}", json={"content": "still there?"}, headers=headers(alice))
        assert sent.status_code == 201
        assert receive_event(alice_ws, "new_message")["payload"]["content"] == "still there?"

        bob_ws.send_json({"event": "get_online_users"})
        assert bob_ws.receive_json()["event"] == "online_users"


def test_removed_participant_stops_receiving(client, db, alice, bob, headers):
    chat = create_test_chat(db, alice, name="Backstage", members=[bob])

    with client.websocket_connect(ws_url(alice)) as alice_ws, client.websocket_connect(ws_url(bob)) as bob_ws:
        join(alice_ws, chat)
        join(bob_ws, chat)

        removed = client.delete(f"/api/v1/chats/{chat.id}/participants/{bob.id}", headers=headers(alice))
        assert removed.status_code == 200
        alice_ws.send_json({"event": "typing_start", "data": {"chat_id": str(chat.id)}})
        alice_ws.send_json({"event": "get_online_users"})
        receive_event(alice_ws, "online_users")

        bob_ws.send_json({"event": "get_online_users"})
        assert bob_ws.receive_json()["event"] == "online_users"


def test_deleting_a_chat_closes_its_room(client, db, alice, bob, headers):
    chat = create_test_chat(db, alice, name="Closing Act", members=[bob])
    message = create_test_message(db, chat, alice, "last song")

    with client.websocket_connect(ws_url(alice)) as alice_ws, client.websocket_connect(ws_url(bob)) as bob_ws:
        join(alice_ws, chat)
        join(bob_ws, chat)

        assert client.delete(f"/api/v1/chats/{chat.id}", headers=headers(alice)).status_code == 200
        assert receive_event(bob_ws, "chat_deleted")["payload"]["chat_id"] == str(chat.id)
        receive_event(alice_ws, "chat_deleted")

        edited = client.put(
            f"/api/v1/messages/message/{message.id}", json={"content": "encore"}, headers=headers(alice)
        )
        assert edited.status_code == 200
        for ws in (alice_ws, bob_ws):
            ws.send_json({"event": "get_online_users"})
            assert ws.receive_json()["event"] == "online_users"


def test_forward_message_over_socket(client, db, alice, bob, carol):
    source = create_test_chat(db, alice, name="Food Court", members=[bob])
    target = create_test_chat(db, alice, name="Camping", members=[carol])
    elsewhere = create_test_chat(db, carol, name="Carol Only")
    message = create_test_message(db, source, bob, "tacos at gate B")

    with client.websocket_connect(ws_url(alice)) as ws:
        join(ws, target)
        ws.send_json({
            "event": "forward_message",
            "data": {
                "message_id": str(message.id),
                "target_chat_ids": [str(target.id), str(elsewhere.id)],
                "comment": "lunch?",
            },
        })
        seen = {}
        while "new_message" not in seen or "message_forwarded" not in seen:
            frame = ws.receive_json()
            seen.setdefault(frame["event"], frame)

    delivered, confirmed = seen["new_message"], seen["message_forwarded"]
    assert delivered["payload"]["is_forwarded"] is True
    assert delivered["payload"]["forwarded_from"]["sender_id"] == str(bob.id)
    assert confirmed["payload"]["forwarded_to"] == [str(target.id)]
    assert confirmed["payload"]["skipped"] == [str(elsewhere.id)]
    assert [m["content"] for m in confirmed["payload"]["messages"]] == ["tacos at gate B", "lunch?"]
