"""Tests for UserRoomSync."""

from __future__ import annotations

import pytest

from roomsync.core.errors import TenantMissingError, UserNotFoundError
from roomsync.core.membership import MembershipReconciler
from roomsync.core.user_sync import UserRoomSync
from roomsync.directory.memory import InMemoryDirectory
from roomsync.models.config import RoomSyncConfig
from roomsync.models.entity import Membership, UserRef
from roomsync.models.enums import EntityKind, SyncOutcome
from roomsync.providers.mock import MockChatBackend
from roomsync.store.memory import InMemoryChatRoomStore
from roomsync.tenancy import InMemoryTenantConnections
from tests.conftest import BOB, DAVE, PUBLIC_GROUP, TENANT


@pytest.fixture
def user_sync(
    tenants: InMemoryTenantConnections,
    membership: MembershipReconciler,
    config: RoomSyncConfig,
) -> UserRoomSync:
    return UserRoomSync(tenants, membership, config)


class TestUserRoomSync:
    async def test_joins_every_room(
        self,
        user_sync: UserRoomSync,
        backend: MockChatBackend,
        store: InMemoryChatRoomStore,
    ) -> None:
        results = await user_sync.sync_user(TENANT, UserRef.of("bob"))
        assert [r.outcome for r in results] == [SyncOutcome.APPLIED] * 3
        for key in ("event:10", "group:9", "group:11"):
            room = await store.get_room_by_key(key)
            assert room is not None and room.members.count(BOB) == 1
        # One identity is provisioned for bob, plus one for the rooms' creator.
        assert len(backend.calls_to("create_external_user")) == 2

    async def test_second_run_is_quiet(
        self, user_sync: UserRoomSync, backend: MockChatBackend
    ) -> None:
        await user_sync.sync_user(TENANT, BOB)
        joins = len(backend.calls_to("join_room"))
        results = await user_sync.sync_user(TENANT, BOB)
        assert all(r.ok for r in results)
        assert len(backend.calls_to("join_room")) == joins

    async def test_user_without_memberships(self, user_sync: UserRoomSync) -> None:
        assert await user_sync.sync_user(TENANT, DAVE) == []

    async def test_failures_are_per_entity(
        self,
        user_sync: UserRoomSync,
        directory: InMemoryDirectory,
        backend: MockChatBackend,
    ) -> None:
        directory.add_membership(
            Membership(entity_id=404, kind=EntityKind.GROUP, user_id=DAVE, role="Member")
        )
        directory.add_membership(
            Membership(entity_id=PUBLIC_GROUP, kind=EntityKind.GROUP, user_id=DAVE, role="Member")
        )
        results = await user_sync.sync_user(TENANT, DAVE)
        outcomes = sorted(r.outcome for r in results)
        assert outcomes == [SyncOutcome.APPLIED, SyncOutcome.SKIPPED_ERROR]
        [failed] = [r for r in results if not r.ok]
        assert failed.reason == "EntityNotFoundError"

    async def test_unknown_user(self, user_sync: UserRoomSync) -> None:
        with pytest.raises(UserNotFoundError):
            await user_sync.sync_user(TENANT, 999)

    async def test_missing_tenant(self, user_sync: UserRoomSync) -> None:
        with pytest.raises(TenantMissingError):
            await user_sync.sync_user(None, BOB)
