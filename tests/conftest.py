"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Coroutine
from typing import Any

import pytest

from roomsync.core.external import ExternalChatClient
from roomsync.core.framework import RoomSync
from roomsync.core.identity import IdentityProvisioner
from roomsync.core.lifecycle import RoomLifecycleManager
from roomsync.core.membership import MembershipReconciler
from roomsync.core.scope import OperationScope
from roomsync.directory.memory import InMemoryDirectory
from roomsync.models.config import RetryPolicy, RoomSyncConfig
from roomsync.models.entity import Entity, ExternalCredentials, Membership, User
from roomsync.models.enums import EntityKind, EntityVisibility
from roomsync.providers.mock import MockChatBackend
from roomsync.store.memory import InMemoryChatRoomStore
from roomsync.tenancy import InMemoryTenantConnections, TenantContext

TENANT = "acme"

ALICE = 1
BOB = 2
CAROL = 3
DAVE = 4

CONF_EVENT = 10
PUBLIC_GROUP = 9
PRIVATE_GROUP = 11


@pytest.fixture
def advance() -> Callable[[int], Coroutine[Any, Any, None]]:
    """Yield control to let pending tasks run without real delay."""

    async def _advance(n: int = 5) -> None:
        for _ in range(n):
            await asyncio.sleep(0)

    return _advance


@pytest.fixture
def backend() -> MockChatBackend:
    return MockChatBackend()


@pytest.fixture
def store() -> InMemoryChatRoomStore:
    return InMemoryChatRoomStore()


@pytest.fixture
def directory() -> InMemoryDirectory:
    """Alice hosts conf-2025 and owns both groups; bob and carol are members.

    Carol already has a chat identity; alice and bob are provisioned on
    first use. Dave belongs to nothing.
    """
    d = InMemoryDirectory()
    d.add_user(User(id=ALICE, slug="alice", first_name="Alice", last_name="Liddell"))
    d.add_user(User(id=BOB, slug="bob", first_name="Bob"))
    d.add_user(
        User(
            id=CAROL,
            slug="carol",
            external_user_id="@carol:mock.local",
            credentials=ExternalCredentials(access_token="carol-token"),
        )
    )
    d.add_user(User(id=DAVE, slug="dave", email="dave@example.com"))

    d.add_entity(
        Entity(
            id=CONF_EVENT,
            kind=EntityKind.EVENT,
            slug="conf-2025",
            name="Conference 2025",
            creator_id=ALICE,
        )
    )
    d.add_entity(
        Entity(id=PUBLIC_GROUP, kind=EntityKind.GROUP, slug="rustaceans", creator_id=ALICE)
    )
    d.add_entity(
        Entity(
            id=PRIVATE_GROUP,
            kind=EntityKind.GROUP,
            slug="board",
            visibility=EntityVisibility.PRIVATE,
            creator_id=ALICE,
        )
    )

    for entity_id, kind, user_id, role in (
        (CONF_EVENT, EntityKind.EVENT, ALICE, "Host"),
        (CONF_EVENT, EntityKind.EVENT, BOB, "Attendee"),
        (PUBLIC_GROUP, EntityKind.GROUP, ALICE, "Owner"),
        (PUBLIC_GROUP, EntityKind.GROUP, BOB, "Member"),
        (PUBLIC_GROUP, EntityKind.GROUP, CAROL, "Moderator"),
        (PRIVATE_GROUP, EntityKind.GROUP, BOB, "Member"),
    ):
        d.add_membership(Membership(entity_id=entity_id, kind=kind, user_id=user_id, role=role))
    return d


@pytest.fixture
def config() -> RoomSyncConfig:
    return RoomSyncConfig(
        call_timeout=1.0,
        retry=RetryPolicy(max_retries=2, base_delay_seconds=0.001, max_delay_seconds=0.005),
    )


@pytest.fixture
def tenants(
    store: InMemoryChatRoomStore, directory: InMemoryDirectory
) -> InMemoryTenantConnections:
    connections = InMemoryTenantConnections()
    connections.register(TENANT, store, directory)
    return connections


@pytest.fixture
def tenant(tenants: InMemoryTenantConnections) -> TenantContext:
    return tenants._tenants[TENANT]


@pytest.fixture
def scope(tenant: TenantContext, config: RoomSyncConfig) -> OperationScope:
    return OperationScope(tenant, config)


@pytest.fixture
async def sync(
    backend: MockChatBackend,
    tenants: InMemoryTenantConnections,
    config: RoomSyncConfig,
) -> AsyncIterator[RoomSync]:
    kit = RoomSync(backend, tenants, config)
    yield kit
    await kit.close()


@pytest.fixture
def client(backend: MockChatBackend, config: RoomSyncConfig) -> ExternalChatClient:
    return ExternalChatClient(backend, config)


@pytest.fixture
def identities(client: ExternalChatClient, config: RoomSyncConfig) -> IdentityProvisioner:
    return IdentityProvisioner(client, config)


@pytest.fixture
def lifecycle(
    client: ExternalChatClient, identities: IdentityProvisioner, config: RoomSyncConfig
) -> RoomLifecycleManager:
    return RoomLifecycleManager(client, identities, config)


@pytest.fixture
def membership(
    client: ExternalChatClient,
    lifecycle: RoomLifecycleManager,
    identities: IdentityProvisioner,
) -> MembershipReconciler:
    return MembershipReconciler(client, lifecycle, identities)
