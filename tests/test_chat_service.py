"""Tests for the chat registry: creation, admin DMs, membership, bulk creation."""

import uuid

import pytest

from festchat.core.database import SessionLocal
from festchat.core.exceptions import (
    AdminRequired,
    AuthorizationError,
    CapacityExceeded,
    ConflictError,
    NotFound,
    ValidationError,
)
from festchat.crud import chat_crud
from festchat.model.chat import Chat
from festchat.model.chat_participant import ChatParticipant
from festchat.schema.chat import ChatCreateBody, ChatSettingsBody, ChatUpdateBody
from festchat.service.chat_service import ChatService, admin_dm_key
from tests.factories import create_test_chat, create_test_user


def group(name, **kwargs):
    return ChatCreateBody(name=name, **kwargs)


class TestCreateChat:
    def test_creator_becomes_admin_participant(self, db, alice):
        chat, created = ChatService(db).create_chat(alice, group("Main Stage"))

        assert created
        assert chat.chat_type == "group"
        assert chat.name_key == "main stage"
        assert [(p.user_id, p.role) for p in chat.active_participants] == [(alice.id, "admin")]

    def test_participant_ids_are_added_as_members(self, db, alice, bob):
        chat, _ = ChatService(db).create_chat(alice, group("Crew", participant_ids=[bob.id, alice.id]))

        roles = {p.user_id: p.role for p in chat.active_participants}
        assert roles == {alice.id: "admin", bob.id: "member"}

    @pytest.mark.parametrize(
        "body, field",
        [
            (dict(name=""), "name"),
            (dict(name="x" * 51), "name"),
            (dict(name="Ok", type="forum"), "type"),
            (dict(name="Ok", category="sports"), "category"),
        ],
    )
    def test_rejects_invalid_fields(self, db, alice, body, field):
        with pytest.raises(ValidationError) as exc:
            ChatService(db).create_chat(alice, ChatCreateBody(**body))
        assert field in [e["field"] for e in exc.value.errors]

    def test_dm_needs_exactly_one_other_participant(self, db, alice, bob, carol):
        service = ChatService(db)
        with pytest.raises(ValidationError):
            service.create_chat(alice, group("Pair", type="dm"))
        with pytest.raises(ValidationError):
            service.create_chat(alice, group("Trio", type="dm", participant_ids=[bob.id, carol.id]))

        chat, _ = service.create_chat(alice, group("Pair", type="dm", participant_ids=[bob.id]))
        assert chat.max_participants == 2
        assert chat.name_key is None

    def test_duplicate_active_name_conflicts(self, db, alice, bob):
        service = ChatService(db)
        service.create_chat(alice, group("Food Court"))
        with pytest.raises(ConflictError):
            service.create_chat(bob, group("food court"))

    def test_unknown_participant_is_not_found(self, db, alice):
        with pytest.raises(NotFound):
            ChatService(db).create_chat(alice, group("Ghosts", participant_ids=[uuid.uuid4()]))


class TestAdminDM:
    def test_repeated_creation_returns_the_same_chat(self, db, admin, alice):
        service = ChatService(db)
        results = [service.create_chat(alice, ChatCreateBody(is_admin_dm=True)) for _ in range(3)]

        ids = {chat.id for chat, _ in results}
        assert len(ids) == 1
        assert [created for _, created in results] == [True, False, False]
        assert db.query(Chat).filter(Chat.is_admin_dm.is_(True)).count() == 1

        chat = results[0][0]
        roles = {p.user_id: p.role for p in chat.active_participants}
        assert roles == {alice.id: "member", admin.id: "admin"}
        assert chat.admin_dm_key == admin_dm_key(alice.id, admin.id)

    def test_admin_opening_dm_reuses_members_chat(self, db, admin, alice):
        service = ChatService(db)
        mine, _ = service.create_chat(alice, ChatCreateBody(is_admin_dm=True))
        theirs, created = service.create_chat(admin, ChatCreateBody(is_admin_dm=True, participant_ids=[alice.id]))

        assert not created
        assert theirs.id == mine.id

    def test_admin_must_name_the_member(self, db, admin):
        with pytest.raises(ValidationError):
            ChatService(db).create_chat(admin, ChatCreateBody(is_admin_dm=True))

    def test_lost_race_returns_existing_chat(self, db, admin, alice, monkeypatch):
        service = ChatService(db)
        existing, _ = service.create_chat(alice, ChatCreateBody(is_admin_dm=True))

        real_lookup = chat_crud.get_by_admin_dm_key
        calls = []

        def stale_lookup(db_, *, key):
            calls.append(key)
            if len(calls) == 1:
                return None
            return real_lookup(db_, key=key)

        monkeypatch.setattr(chat_crud, "get_by_admin_dm_key", stale_lookup)
        chat, created = service.create_chat(alice, ChatCreateBody(is_admin_dm=True))

        assert not created
        assert chat.id == existing.id
        assert len(calls) == 2
        assert db.query(Chat).filter(Chat.is_admin_dm.is_(True)).count() == 1

    def test_requires_an_admin_account(self, db, alice):
        with pytest.raises(NotFound):
            ChatService(db).create_chat(alice, ChatCreateBody(is_admin_dm=True))

    def test_bootstrap_account_is_preferred(self, db, alice):
        create_test_user(db, name="Old Admin", email="old-admin@festival.io", role="admin")
        boss = create_test_user(db, name="Boss", email="boss@festival.io", role="member")

        assert ChatService(db).resolve_admin().id == boss.id


class TestMembership:
    def test_add_participant_is_idempotent(self, db, alice, bob):
        chat = create_test_chat(db, alice, name="Stage")
        service = ChatService(db)
        service.add_participant(chat.id, bob)
        service.add_participant(chat.id, bob)
        service.add_participant(chat.id, bob, "moderator")

        rows = db.query(ChatParticipant).filter_by(chat_id=chat.id, user_id=bob.id).all()
        assert [(p.is_active, p.role) for p in rows] == [(True, "moderator")]

    def test_join_then_leave(self, db, alice, bob):
        chat = create_test_chat(db, alice, name="Stage")
        service = ChatService(db)

        service.join_chat(bob, chat.id)
        assert service.acl.is_participant(bob, service.get_chat(chat.id))

        service.leave_chat(bob, chat.id)
        assert not service.acl.is_participant(bob, service.get_chat(chat.id))

    def test_leave_by_non_member_is_rejected(self, db, alice, bob):
        chat = create_test_chat(db, alice, name="Stage")
        with pytest.raises(ConflictError):
            ChatService(db).leave_chat(bob, chat.id)

    def test_join_twice_is_rejected(self, db, alice, bob):
        chat = create_test_chat(db, alice, name="Stage", members=[bob])
        with pytest.raises(ConflictError):
            ChatService(db).join_chat(bob, chat.id)

    def test_rejoin_reactivates_the_same_record(self, db, alice, bob):
        chat = create_test_chat(db, alice, name="Stage")
        service = ChatService(db)
        service.join_chat(bob, chat.id)
        service.leave_chat(bob, chat.id)
        service.join_chat(bob, chat.id)

        rows = [p for p in service.get_chat(chat.id).participants if p.user_id == bob.id]
        assert len(rows) == 1
        assert rows[0].is_active
        assert rows[0].left_at is None

    def test_capacity_is_enforced(self, db, alice, bob, carol):
        service = ChatService(db)
        chat, _ = service.create_chat(
            alice, group("Tiny", settings=ChatSettingsBody(max_participants=2))
        )
        service.join_chat(bob, chat.id)
        with pytest.raises(CapacityExceeded):
            service.join_chat(carol, chat.id)

    def test_last_dm_participant_leaving_keeps_chat(self, db, alice, bob):
        service = ChatService(db)
        chat, _ = service.create_chat(alice, group("Pair", type="dm", participant_ids=[bob.id]))
        service.leave_chat(alice, chat.id)
        service.leave_chat(bob, chat.id)

        orphan = service.get_chat(chat.id)
        assert orphan.is_active
        assert orphan.active_participants == []

    def test_remove_participant_requires_modify_rights(self, db, alice, bob, carol):
        chat = create_test_chat(db, alice, name="Stage", members=[bob, carol])
        service = ChatService(db)
        with pytest.raises(AuthorizationError):
            service.remove_participant_by(bob, chat.id, carol.id)

        service.remove_participant_by(bob, chat.id, bob.id)
        service.remove_participant_by(alice, chat.id, carol.id)
        assert [p.user_id for p in service.get_chat(chat.id).active_participants] == [alice.id]

    def test_concurrent_change_is_retried(self, db, alice, bob, carol, monkeypatch):
        chat = create_test_chat(db, alice, name="Busy")
        service = ChatService(db)
        original_get_chat = ChatService.get_chat
        raced = []

        def racing_get_chat(self, chat_id):
            loaded = original_get_chat(self, chat_id)
            if self is service and not raced:
                raced.append(True)
                other = SessionLocal()
                try:
                    ChatService(other).add_participant(chat_id, carol)
                finally:
                    other.close()
            return loaded

        monkeypatch.setattr(ChatService, "get_chat", racing_get_chat)
        service.add_participant(chat.id, bob)

        db.expire_all()
        active = {p.user_id for p in db.get(Chat, chat.id).active_participants}
        assert active == {alice.id, bob.id, carol.id}


class TestJoinByName:
    def test_case_insensitive_exact_match(self, db, alice, bob):
        chat = create_test_chat(db, alice, name="Fest")
        joined, suggestions = ChatService(db).join_by_name(bob, "fest")

        assert joined.id == chat.id
        assert suggestions == []
        assert joined.participant_for(bob.id).role == "member"

    def test_join_by_name_keeps_existing_role(self, db, alice):
        create_test_chat(db, alice, name="Fest")
        joined, _ = ChatService(db).join_by_name(alice, "FEST")
        assert joined.participant_for(alice.id).role == "admin"

    def test_no_match_returns_suggestions(self, db, alice, bob):
        for name in ["Rock Stage", "Jazz Stage", "Food", "Stage Crew", "Main Stage", "Side Stage", "Kids Stage"]:
            create_test_chat(db, alice, name=name)
        joined, suggestions = ChatService(db).join_by_name(bob, "stage")

        assert joined is None
        assert len(suggestions) == 5
        assert all("stage" in s.lower() for s in suggestions)

    def test_deleted_and_dm_chats_are_not_found(self, db, alice, bob):
        service = ChatService(db)
        chat = create_test_chat(db, alice, name="Gone")
        service.soft_delete_chat(alice, chat.id)
        create_test_chat(db, alice, name="Private", chat_type="dm", members=[bob])

        assert service.join_by_name(bob, "gone") == (None, [])
        assert service.join_by_name(bob, "private") == (None, [])

    def test_search_by_name_is_substring_and_active_only(self, db, alice):
        service = ChatService(db)
        for name in ["Main Stage", "Side Stage", "Food"]:
            create_test_chat(db, alice, name=name)
        gone = create_test_chat(db, alice, name="Old Stage")
        service.soft_delete_chat(alice, gone.id)

        assert sorted(c.name for c in service.search_by_name("STAGE")) == ["Main Stage", "Side Stage"]
        with pytest.raises(ValidationError):
            service.search_by_name("  ")


class TestMutation:
    def test_update_fields_and_settings(self, db, alice):
        service = ChatService(db)
        chat, _ = service.create_chat(alice, group("Stage"))
        updated = service.update_chat(
            alice,
            chat.id,
            ChatUpdateBody(name="Main Stage", type="channel", settings=ChatSettingsBody(allow_file_sharing=False)),
        )
        assert updated.name == "Main Stage"
        assert updated.name_key == "main stage"
        assert updated.chat_type == "channel"
        assert updated.allow_file_sharing is False

    def test_update_rejects_dm_conversion_and_small_capacity(self, db, alice, bob, carol):
        service = ChatService(db)
        chat = create_test_chat(db, alice, name="Stage", members=[bob, carol])
        with pytest.raises(ValidationError):
            service.update_chat(alice, chat.id, ChatUpdateBody(type="dm"))
        with pytest.raises(ValidationError):
            service.update_chat(alice, chat.id, ChatUpdateBody(settings=ChatSettingsBody(max_participants=2)))

    def test_update_requires_modify_rights(self, db, alice, bob):
        chat = create_test_chat(db, alice, name="Stage", members=[bob])
        with pytest.raises(AuthorizationError):
            ChatService(db).update_chat(bob, chat.id, ChatUpdateBody(name="Mine"))

    def test_soft_delete_hides_chat_and_releases_name(self, db, alice, bob):
        service = ChatService(db)
        chat, _ = service.create_chat(alice, group("Stage"))
        service.soft_delete_chat(alice, chat.id)

        assert chat.id not in [c.id for c in service.list_chats(bob)]
        assert service.get_visible_chat(alice, chat.id).is_active is False
        replacement, created = service.create_chat(bob, group("Stage"))
        assert created and replacement.id != chat.id


class TestBulkCreate:
    def test_partial_failure_is_reported_per_item(self, db, admin):
        create_test_chat(db, admin, name="X 3")
        created, errors = ChatService(db).bulk_create(admin, 5, "X")

        assert [c.name for c in created] == ["X 1", "X 2", "X 4", "X 5"]
        assert len(errors) == 1
        assert errors[0]["index"] == 3
        assert errors[0]["name"] == "X 3"

    def test_admin_only(self, db, alice):
        with pytest.raises(AdminRequired):
            ChatService(db).bulk_create(alice, 2, "Y")

    @pytest.mark.parametrize("count", [0, 51])
    def test_count_bounds(self, db, admin, count):
        with pytest.raises(ValidationError):
            ChatService(db).bulk_create(admin, count, "Y")

    def test_quick_groups_preset(self, db, admin):
        service = ChatService(db)
        created, errors = service.quick_groups(admin, "general")
        assert len(created) == 3 and errors == []

        created_again, errors_again = service.quick_groups(admin, "general")
        assert created_again == []
        assert len(errors_again) == 3

    def test_unknown_preset(self, db, admin):
        with pytest.raises(ValidationError):
            ChatService(db).quick_groups(admin, "rave")
