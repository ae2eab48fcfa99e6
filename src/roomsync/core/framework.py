"""RoomSync - keeps chat rooms in step with event and group membership."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from roomsync.core.adapter import DomainEventAdapter
from roomsync.core.errors import (
    ChatBackendError,
    ChatRoomNotFoundError,
    CleanupError,
    CredentialsUnavailableError,
    DuplicateChatRoomError,
    EntityNotFoundError,
    ExternalAlreadyMemberError,
    ExternalChatError,
    ExternalNotInRoomError,
    ExternalRateLimitedError,
    ExternalRoomMissingError,
    ExternalTimeoutError,
    ExternalTransientError,
    NotEntityMemberError,
    RoomSyncError,
    TenantMissingError,
    UserNotFoundError,
)
from roomsync.core.event_bus import EventBus
from roomsync.core.external import ExternalChatClient
from roomsync.core.identity import IdentityProvisioner
from roomsync.core.lifecycle import RoomLifecycleManager
from roomsync.core.locks import CreationLockManager
from roomsync.core.membership import MembershipReconciler
from roomsync.core.permissions import PermissionSynchronizer
from roomsync.core.scope import OperationScope
from roomsync.core.user_sync import UserRoomSync
from roomsync.models.config import RoomSyncConfig
from roomsync.models.entity import Entity, EntityRef, ExternalCredentials, User, UserRef
from roomsync.models.enums import ChatRoomKind, EntityKind
from roomsync.models.events import MemberAdded, MemberRemoved
from roomsync.models.message import MessagePage
from roomsync.models.result import SyncResult
from roomsync.models.room import ChatRoom
from roomsync.providers.base import ChatBackend
from roomsync.tenancy import InMemoryTenantConnections, TenantConnections

logger = logging.getLogger("roomsync.framework")

T = TypeVar("T")

__all__ = [
    "ChatBackendError",
    "ChatRoomNotFoundError",
    "CleanupError",
    "CredentialsUnavailableError",
    "DuplicateChatRoomError",
    "EntityNotFoundError",
    "ExternalAlreadyMemberError",
    "ExternalChatError",
    "ExternalNotInRoomError",
    "ExternalRateLimitedError",
    "ExternalRoomMissingError",
    "ExternalTimeoutError",
    "ExternalTransientError",
    "NotEntityMemberError",
    "RoomSync",
    "RoomSyncError",
    "TenantMissingError",
    "UserNotFoundError",
]

EntityArg = EntityRef | int | str
UserArg = UserRef | int | str


def _event_ref(value: EntityArg) -> EntityRef:
    return value if isinstance(value, EntityRef) else EntityRef.event(value)


def _group_ref(value: EntityArg) -> EntityRef:
    return value if isinstance(value, EntityRef) else EntityRef.group(value)


def _user_ref(value: UserArg) -> UserRef:
    return value if isinstance(value, UserRef) else UserRef.of(value)


class RoomSync:
    """Entry point wiring the synchronizer's components together.

    Membership operations (``ensure_member_in_*``, ``remove_member_from_*``)
    are best effort: they never raise and report a :class:`SyncResult`.
    Room and message operations invoked on behalf of a user propagate
    errors so callers can surface them.
    """

    def __init__(
        self,
        backend: ChatBackend,
        tenants: TenantConnections | None = None,
        config: RoomSyncConfig | None = None,
        lock_manager: CreationLockManager | None = None,
        bus: EventBus | None = None,
    ) -> None:
        """Initialise the synchronizer.

        Args:
            backend: The external chat backend.
            tenants: Resolves tenant ids to storage. Defaults to
                ``InMemoryTenantConnections``; register tenants on it before use.
            config: Tunables. Defaults to ``RoomSyncConfig()``.
            lock_manager: Process-wide room creation locks. Defaults to
                ``InMemoryCreationLockManager``. For multi-process
                deployments, supply a distributed implementation.
            bus: Event bus that carries domain events and join
                notifications. Defaults to a fresh ``EventBus``.
        """
        self._config = config or RoomSyncConfig()
        self._backend = backend
        self._tenants = tenants or InMemoryTenantConnections()
        self._bus = bus or EventBus(handler_timeout=self._config.bus_handler_timeout)
        self._client = ExternalChatClient(backend, self._config)
        self._identities = IdentityProvisioner(self._client, self._config)
        self._lifecycle = RoomLifecycleManager(
            self._client, self._identities, self._config, lock_manager
        )
        self._membership = MembershipReconciler(
            self._client, self._lifecycle, self._identities, self._bus
        )
        self._permissions = PermissionSynchronizer(self._client)
        self._adapter = DomainEventAdapter(
            self._tenants, self._lifecycle, self._membership, self._permissions, self._config
        )
        self._adapter.register(self._bus)
        self._user_sync = UserRoomSync(self._tenants, self._membership, self._config)

    @property
    def adapter(self) -> DomainEventAdapter:
        return self._adapter

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def tenants(self) -> TenantConnections:
        return self._tenants

    @property
    def lifecycle(self) -> RoomLifecycleManager:
        return self._lifecycle

    @property
    def membership(self) -> MembershipReconciler:
        return self._membership

    @property
    def permissions(self) -> PermissionSynchronizer:
        return self._permissions

    @asynccontextmanager
    async def scope(self, tenant_id: str | None) -> AsyncIterator[OperationScope]:
        """Open an operation scope for *tenant_id*.

        Raises:
            TenantMissingError: *tenant_id* is empty or unknown.
        """
        tenant = await self._tenants.resolve(tenant_id)
        async with OperationScope(tenant, self._config) as scope:
            yield scope

    async def close(self) -> None:
        """Wait for in-flight background handlers, then close the backend."""
        await self._bus.drain()
        await self._backend.close()

    async def __aenter__(self) -> RoomSync:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- Membership (best effort) --

    async def ensure_member_in_event_room(
        self, event: EntityArg, user: UserArg, tenant_id: str | None
    ) -> SyncResult:
        return await self._adapter.on_member_added(
            MemberAdded(tenant_id=tenant_id, entity=_event_ref(event), user=_user_ref(user))
        )

    async def remove_member_from_event_room(
        self, event: EntityArg, user: UserArg, tenant_id: str | None
    ) -> SyncResult:
        return await self._adapter.on_member_removed(
            MemberRemoved(tenant_id=tenant_id, entity=_event_ref(event), user=_user_ref(user))
        )

    async def ensure_member_in_group_room(
        self, group: EntityArg, user: UserArg, tenant_id: str | None
    ) -> SyncResult:
        return await self._adapter.on_member_added(
            MemberAdded(tenant_id=tenant_id, entity=_group_ref(group), user=_user_ref(user))
        )

    async def remove_member_from_group_room(
        self, group: EntityArg, user: UserArg, tenant_id: str | None
    ) -> SyncResult:
        return await self._adapter.on_member_removed(
            MemberRemoved(tenant_id=tenant_id, entity=_group_ref(group), user=_user_ref(user))
        )

    async def sync_user(self, tenant_id: str | None, user: UserArg) -> list[SyncResult]:
        """Reconcile every event and group room *user* belongs to."""
        return await self._user_sync.sync_user(tenant_id, _user_ref(user))

    # -- Rooms --

    async def _ensure_entity_room(
        self, ref: EntityRef, creator: UserArg | None, tenant_id: str | None
    ) -> ChatRoom | None:
        async with self.scope(tenant_id) as scope:
            entity = await scope.entity(ref)
            creator_id = None
            if creator is not None:
                creator_id = (await scope.user(_user_ref(creator))).id
            return await self._lifecycle.get_or_create(scope, entity, creator_id)

    async def ensure_event_chat_room(
        self, event: EntityArg, creator: UserArg | None, tenant_id: str | None
    ) -> ChatRoom | None:
        """Return the event's chat room, creating it if needed."""
        return await self._ensure_entity_room(_event_ref(event), creator, tenant_id)

    async def ensure_group_chat_room(
        self, group: EntityArg, creator: UserArg | None, tenant_id: str | None
    ) -> ChatRoom | None:
        """Return the group's chat room, creating it if needed."""
        return await self._ensure_entity_room(_group_ref(group), creator, tenant_id)

    async def ensure_direct_chat_room(
        self, user_a: UserArg, user_b: UserArg, tenant_id: str | None
    ) -> ChatRoom | None:
        """Return the direct room between two users; *user_a* initiates."""
        async with self.scope(tenant_id) as scope:
            a = await scope.user(_user_ref(user_a))
            b = await scope.user(_user_ref(user_b))
            return await self._lifecycle.get_or_create_direct(scope, a.id, b.id)

    async def get_entity_rooms(self, entity: EntityRef, tenant_id: str | None) -> list[ChatRoom]:
        async with self.scope(tenant_id) as scope:
            return await self._lifecycle.get_entity_rooms(scope, await scope.entity(entity))

    async def _require_room(self, scope: OperationScope, room_id: str) -> ChatRoom:
        room = await scope.store.get_room(room_id)
        if room is None:
            raise ChatRoomNotFoundError(room_id)
        return room

    async def list_room_members(self, room_id: str, tenant_id: str | None) -> list[User]:
        """Users in the room's stored member list; unknown ids are skipped."""
        async with self.scope(tenant_id) as scope:
            room = await self._require_room(scope, room_id)
            members: list[User] = []
            for user_id in room.members:
                try:
                    members.append(await scope.user(user_id))
                except UserNotFoundError:
                    logger.debug("Member %s of room %s no longer exists", user_id, room_id)
            return members

    # -- User actions (errors propagate) --

    async def _entitled_entity(
        self, scope: OperationScope, room: ChatRoom, user: User
    ) -> Entity:
        """The event or group owning *room*, provided *user* belongs to it.

        Raises:
            NotEntityMemberError: *user* is neither a member nor the creator.
        """
        assert room.entity_id is not None
        entity = await scope.entity(EntityRef(kind=EntityKind(room.kind), id=room.entity_id))
        if entity.creator_id == user.id:
            return entity
        if await scope.directory.get_membership(entity.kind, entity.id, user.id) is None:
            logger.warning(
                "User %s is not a member of %s, refusing chat access",
                user.id,
                entity.key,
                extra={"entity_key": entity.key, "user_id": user.id, "tenant_id": scope.tenant_id},
            )
            raise NotEntityMemberError(f"User {user.id} is not a member of {entity.key}")
        return entity

    async def _as_member(
        self,
        scope: OperationScope,
        room: ChatRoom,
        user: User,
        action: Callable[[str, ExternalCredentials], Awaitable[T]],
    ) -> T:
        """Run *action* in *room* with *user*'s own credentials, joining first.

        An event or group room that vanished from the backend is recreated
        once and the user joined to the replacement.
        """
        if room.kind == ChatRoomKind.DIRECT:
            if not room.external_room_id:
                raise ChatRoomNotFoundError(room.id)
            room = await self._membership.ensure_direct_member(scope, room, user.id)
            member = await self._identities.ensure_credentials(scope, await scope.user(user.id))
            assert room.external_room_id is not None and member.credentials is not None
            return await action(room.external_room_id, member.credentials)

        entity = await self._entitled_entity(scope, room, user)

        async def attempt(current: ChatRoom) -> T:
            await self._membership.ensure_member(scope, entity, user.id, strict=True)
            # Joining may already have replaced a vanished room.
            target = scope.cached_room(entity.key) or current
            member = await self._identities.ensure_credentials(scope, await scope.user(user.id))
            assert target.external_room_id is not None and member.credentials is not None
            return await action(target.external_room_id, member.credentials)

        return await self._lifecycle.run_with_recovery(scope, entity, None, attempt)

    async def join_room(self, room_id: str, user: UserArg, tenant_id: str | None) -> ChatRoom:
        """Add the calling user to a room they are entitled to join.

        Raises:
            ChatRoomNotFoundError: No such room, or a direct room between
                two other users.
            NotEntityMemberError: The user does not belong to the room's
                event or group.
        """
        async with self.scope(tenant_id) as scope:
            room = await self._require_room(scope, room_id)
            resolved = await scope.user(_user_ref(user))
            if room.kind == ChatRoomKind.DIRECT:
                return await self._membership.ensure_direct_member(scope, room, resolved.id)
            entity = await self._entitled_entity(scope, room, resolved)
            await self._membership.ensure_member(scope, entity, resolved.id, strict=True)
            refreshed = scope.cached_room(entity.key)
            return refreshed if refreshed is not None else room

    async def send_message(
        self,
        room_id: str,
        user: UserArg,
        content: str,
        tenant_id: str | None,
        formatted: str | None = None,
    ) -> str:
        """Send *content* to the room as *user*. Returns the external event id.

        The sender is joined to the room first if they are entitled to it.
        """
        async with self.scope(tenant_id) as scope:
            room = await self._require_room(scope, room_id)
            sender = await scope.user(_user_ref(user))

            async def send(external_room_id: str, credentials: ExternalCredentials) -> str:
                return await self._client.send_message(
                    external_room_id, content, credentials, formatted
                )

            return await self._as_member(scope, room, sender, send)

    async def fetch_messages(
        self,
        room_id: str,
        user: UserArg,
        tenant_id: str | None,
        limit: int = 50,
        page_token: str | None = None,
    ) -> MessagePage:
        """Read the room's history, newest first, as seen by *user*.

        The read is made with the user's own credentials, never the
        backend's administrative ones.
        """
        async with self.scope(tenant_id) as scope:
            room = await self._require_room(scope, room_id)
            reader = await scope.user(_user_ref(user))

            async def read(external_room_id: str, credentials: ExternalCredentials) -> MessagePage:
                page = await self._client.fetch_messages(
                    external_room_id, limit, page_token, credentials
                )
                if page.external_room_id is None:
                    page.external_room_id = external_room_id
                return page

            return await self._as_member(scope, room, reader, read)
