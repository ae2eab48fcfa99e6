"""Tests for the RoomSync facade."""

from __future__ import annotations

import pytest

from roomsync import RoomSync as ExportedRoomSync
from roomsync.core.errors import (
    ChatRoomNotFoundError,
    ExternalTransientError,
    NotEntityMemberError,
    TenantMissingError,
)
from roomsync.core.framework import RoomSync
from roomsync.models.entity import EntityRef
from roomsync.models.enums import ChatRoomKind, SyncOutcome
from roomsync.providers.mock import MockChatBackend
from tests.conftest import ALICE, BOB, CONF_EVENT, DAVE, PRIVATE_GROUP, PUBLIC_GROUP, TENANT


class TestRooms:
    async def test_ensure_event_chat_room_by_slug(
        self, sync: RoomSync, backend: MockChatBackend
    ) -> None:
        room = await sync.ensure_event_chat_room("conf-2025", None, TENANT)
        again = await sync.ensure_event_chat_room(CONF_EVENT, None, TENANT)
        assert room is not None and again is not None
        assert room.name == "event-conf-2025-acme"
        assert again.id == room.id
        assert len(backend.calls_to("create_room")) == 1

    async def test_ensure_group_chat_room_with_creator(
        self, sync: RoomSync, backend: MockChatBackend
    ) -> None:
        room = await sync.ensure_group_chat_room(PUBLIC_GROUP, "bob", TENANT)
        assert room is not None
        assert room.creator_id == BOB

    async def test_ensure_direct_chat_room(self, sync: RoomSync, backend: MockChatBackend) -> None:
        room = await sync.ensure_direct_chat_room("alice", "bob", TENANT)
        again = await sync.ensure_direct_chat_room(BOB, ALICE, TENANT)
        assert room is not None and again is not None
        assert room.kind == ChatRoomKind.DIRECT
        assert again.id == room.id
        assert len(backend.calls_to("create_room")) == 1

    async def test_get_entity_rooms(self, sync: RoomSync) -> None:
        assert await sync.get_entity_rooms(EntityRef.group(PUBLIC_GROUP), TENANT) == []
        await sync.ensure_group_chat_room(PUBLIC_GROUP, None, TENANT)
        rooms = await sync.get_entity_rooms(EntityRef.group(PUBLIC_GROUP), TENANT)
        assert len(rooms) == 1

    async def test_missing_tenant_raises(self, sync: RoomSync, backend: MockChatBackend) -> None:
        with pytest.raises(TenantMissingError):
            await sync.ensure_group_chat_room(PUBLIC_GROUP, None, None)
        assert backend.calls == []


class TestMembership:
    async def test_event_membership_round_trip(self, sync: RoomSync) -> None:
        added = await sync.ensure_member_in_event_room("conf-2025", "bob", TENANT)
        assert added.outcome == SyncOutcome.APPLIED
        room = await sync.ensure_event_chat_room(CONF_EVENT, None, TENANT)
        assert room is not None
        assert [u.id for u in await sync.list_room_members(room.id, TENANT)] == [BOB]

        removed = await sync.remove_member_from_event_room(CONF_EVENT, BOB, TENANT)
        assert removed.outcome == SyncOutcome.APPLIED
        assert await sync.list_room_members(room.id, TENANT) == []

    async def test_group_membership_without_tenant(
        self, sync: RoomSync, backend: MockChatBackend
    ) -> None:
        result = await sync.ensure_member_in_group_room(PUBLIC_GROUP, BOB, None)
        assert result.outcome == SyncOutcome.SKIPPED_ERROR
        removed = await sync.remove_member_from_group_room(PUBLIC_GROUP, BOB, None)
        assert removed.outcome == SyncOutcome.SKIPPED_ERROR
        assert backend.calls == []

    async def test_sync_user(self, sync: RoomSync, backend: MockChatBackend) -> None:
        results = await sync.sync_user(TENANT, "bob")
        assert len(results) == 3
        assert all(r.outcome == SyncOutcome.APPLIED for r in results)
        assert len(backend.calls_to("create_room")) == 3


class TestUserActions:
    async def test_join_room(self, sync: RoomSync) -> None:
        room = await sync.ensure_group_chat_room(PUBLIC_GROUP, None, TENANT)
        assert room is not None
        joined = await sync.join_room(room.id, "bob", TENANT)
        assert joined.members == [BOB]

    async def test_join_direct_room(self, sync: RoomSync, backend: MockChatBackend) -> None:
        room = await sync.ensure_direct_chat_room(ALICE, BOB, TENANT)
        assert room is not None
        joined = await sync.join_room(room.id, BOB, TENANT)
        assert sorted(joined.members) == [ALICE, BOB]
        members = backend.rooms[room.external_room_id].members  # type: ignore[index]
        assert members == {"@alice_acme:mock.local", "@bob_acme:mock.local"}

    async def test_join_direct_room_as_outsider(self, sync: RoomSync) -> None:
        room = await sync.ensure_direct_chat_room(ALICE, BOB, TENANT)
        assert room is not None
        with pytest.raises(ChatRoomNotFoundError):
            await sync.join_room(room.id, DAVE, TENANT)

    async def test_join_unknown_room(self, sync: RoomSync) -> None:
        with pytest.raises(ChatRoomNotFoundError):
            await sync.join_room("nope", BOB, TENANT)

    async def test_join_failure_propagates(self, sync: RoomSync, backend: MockChatBackend) -> None:
        room = await sync.ensure_group_chat_room(PUBLIC_GROUP, None, TENANT)
        assert room is not None
        backend.fail_next("join_room", "Internal server error", times=2)
        with pytest.raises(ExternalTransientError):
            await sync.join_room(room.id, BOB, TENANT)

    async def test_send_and_fetch_messages(self, sync: RoomSync) -> None:
        room = await sync.ensure_group_chat_room(PUBLIC_GROUP, None, TENANT)
        assert room is not None
        await sync.join_room(room.id, BOB, TENANT)

        event_id = await sync.send_message(room.id, BOB, "hello", TENANT)
        await sync.send_message(room.id, BOB, "again", TENANT, formatted="<b>again</b>")
        page = await sync.fetch_messages(room.id, BOB, TENANT, limit=1)

        assert [m.body for m in page.messages] == ["again"]
        assert page.messages[0].formatted_body == "<b>again</b>"
        assert page.external_room_id == room.external_room_id
        assert page.next_page_token is not None

        older = await sync.fetch_messages(room.id, BOB, TENANT, page_token=page.next_page_token)
        assert [m.id for m in older.messages] == [event_id]
        assert older.next_page_token is None

    async def test_non_member_cannot_send(
        self, sync: RoomSync, backend: MockChatBackend
    ) -> None:
        room = await sync.ensure_group_chat_room(PUBLIC_GROUP, None, TENANT)
        assert room is not None
        with pytest.raises(NotEntityMemberError):
            await sync.send_message(room.id, DAVE, "hi", TENANT)
        assert backend.calls_to("send_message") == []


class TestChatAccess:
    async def test_attendee_can_send_without_joining(
        self, sync: RoomSync, backend: MockChatBackend
    ) -> None:
        room = await sync.ensure_event_chat_room(CONF_EVENT, None, TENANT)
        assert room is not None and room.external_room_id is not None

        event_id = await sync.send_message(room.id, BOB, "hi", TENANT)

        assert event_id.startswith("$")
        assert "@bob_acme:mock.local" in backend.rooms[room.external_room_id].members
        assert BOB in [u.id for u in await sync.list_room_members(room.id, TENANT)]

    async def test_attendee_reads_with_own_credentials(
        self, sync: RoomSync, backend: MockChatBackend
    ) -> None:
        room = await sync.ensure_event_chat_room(CONF_EVENT, None, TENANT)
        assert room is not None
        await sync.send_message(room.id, ALICE, "welcome", TENANT)

        page = await sync.fetch_messages(room.id, BOB, TENANT)

        assert [m.body for m in page.messages] == ["welcome"]
        [call] = backend.calls_to("fetch_messages")
        assert call["as_admin"] is False
        assert "@bob_acme:mock.local" in backend.users

    async def test_vanished_room_is_recreated_on_send(
        self, sync: RoomSync, backend: MockChatBackend
    ) -> None:
        room = await sync.ensure_group_chat_room(PUBLIC_GROUP, None, TENANT)
        assert room is not None and room.external_room_id is not None
        await sync.join_room(room.id, BOB, TENANT)
        backend.vanish(room.external_room_id)

        event_id = await sync.send_message(room.id, BOB, "still here", TENANT)

        [replacement] = await sync.get_entity_rooms(EntityRef.group(PUBLIC_GROUP), TENANT)
        assert replacement.external_room_id is not None
        assert replacement.external_room_id != room.external_room_id
        assert BOB in replacement.members
        messages = backend.rooms[replacement.external_room_id].messages
        assert [m.id for m in messages] == [event_id]
        assert len(backend.calls_to("create_room")) == 2

    async def test_outsider_cannot_join_private_group(
        self, sync: RoomSync, backend: MockChatBackend
    ) -> None:
        room = await sync.ensure_group_chat_room(PRIVATE_GROUP, None, TENANT)
        assert room is not None
        with pytest.raises(NotEntityMemberError):
            await sync.join_room(room.id, DAVE, TENANT)
        assert backend.calls_to("invite_user") == []
        assert backend.calls_to("join_room") == []
        assert await sync.list_room_members(room.id, TENANT) == []

    async def test_outsider_cannot_read_private_history(
        self, sync: RoomSync, backend: MockChatBackend
    ) -> None:
        room = await sync.ensure_group_chat_room(PRIVATE_GROUP, None, TENANT)
        assert room is not None
        await sync.send_message(room.id, BOB, "board secret", TENANT)

        with pytest.raises(NotEntityMemberError):
            await sync.fetch_messages(room.id, DAVE, TENANT)
        with pytest.raises(NotEntityMemberError):
            await sync.send_message(room.id, DAVE, "let me in", TENANT)
        assert backend.calls_to("fetch_messages") == []
        assert "@dave_acme:mock.local" not in backend.users

    async def test_creator_is_entitled(self, sync: RoomSync) -> None:
        room = await sync.ensure_group_chat_room(PRIVATE_GROUP, None, TENANT)
        assert room is not None
        await sync.send_message(room.id, ALICE, "agenda", TENANT)
        page = await sync.fetch_messages(room.id, ALICE, TENANT)
        assert [m.body for m in page.messages] == ["agenda"]


class TestLifecycle:
    async def test_close_closes_backend(self, backend: MockChatBackend, sync: RoomSync) -> None:
        await sync.close()
        assert backend.closed is True

    async def test_context_manager(self, backend: MockChatBackend) -> None:
        async with RoomSync(backend) as kit:
            assert kit.bus is not None
        assert backend.closed is True

    def test_public_export(self) -> None:
        assert ExportedRoomSync is RoomSync
