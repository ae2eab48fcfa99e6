"""Creation, adoption, recovery and deletion of chat rooms."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from roomsync.core.errors import (
    ChatRoomNotFoundError,
    CleanupError,
    CredentialsUnavailableError,
    DuplicateChatRoomError,
    ExternalChatError,
    ExternalRoomMissingError,
    UserNotFoundError,
)
from roomsync.core.external import ExternalChatClient
from roomsync.core.identity import IdentityProvisioner
from roomsync.core.locks import CreationLockManager, InMemoryCreationLockManager
from roomsync.core.scope import OperationScope
from roomsync.models.config import RoomSyncConfig
from roomsync.models.entity import Entity, User
from roomsync.models.enums import ChatRoomKind, ChatRoomVisibility, ErrorCategory
from roomsync.models.room import ChatRoom, ChatRoomSettings, direct_key

logger = logging.getLogger("roomsync.lifecycle")

T = TypeVar("T")


def room_name(kind: str, slug: str, tenant_id: str) -> str:
    return f"{kind}-{slug}-{tenant_id}"


def room_topic(kind: str, slug: str) -> str:
    return f"Discussion for {kind}: {slug}"


class RoomLifecycleManager:
    """Owns the one-room-per-entity binding.

    Rooms are created lazily on first use. Creation is guarded in three
    layers: the scope's creation-lock map stops sibling tasks of one
    operation from racing, the process-wide ``CreationLockManager`` stops
    concurrent operations in this process, and the store's unique entity
    key rejects the loser of a race between processes.
    """

    def __init__(
        self,
        client: ExternalChatClient,
        identities: IdentityProvisioner,
        config: RoomSyncConfig | None = None,
        lock_manager: CreationLockManager | None = None,
    ) -> None:
        self._client = client
        self._identities = identities
        self._config = config or RoomSyncConfig()
        self._locks = lock_manager or InMemoryCreationLockManager(
            max_locks=self._config.max_process_locks
        )

    # Lookup

    async def _lookup(self, scope: OperationScope, key: str) -> ChatRoom | None:
        """Cached or stored room for *key*; unbound records are discarded."""
        cached = scope.cached_room(key)
        if cached is not None:
            return cached
        room = await scope.store.get_room_by_key(key)
        if room is None:
            return None
        if not room.is_bound:
            logger.warning(
                "Chat room %s for %s has no external room, discarding it",
                room.id,
                key,
                extra={"room_id": room.id, "entity_key": key, "tenant_id": scope.tenant_id},
            )
            await scope.store.delete_room(room.id)
            return None
        return scope.cache_room(room)

    async def get_room(self, scope: OperationScope, entity: Entity) -> ChatRoom | None:
        """The entity's room if one exists; never creates."""
        return await self._lookup(scope, entity.key)

    async def get_entity_rooms(self, scope: OperationScope, entity: Entity) -> list[ChatRoom]:
        return await scope.store.find_rooms_for_entity(entity.kind, entity.id)

    # Creation

    async def get_or_create(
        self,
        scope: OperationScope,
        entity: Entity,
        creator_id: int | None = None,
        *,
        adopt: bool = True,
    ) -> ChatRoom | None:
        """Return the entity's room, creating it if needed.

        Returns ``None`` when creation is skipped because too many rooms
        are already being created within *scope*.

        Args:
            scope: The current operation scope.
            entity: The event or group that owns the room.
            creator_id: User to invite as moderator when the room is
                created. Defaults to the entity's creator.
            adopt: Bind to ``entity.external_room_id`` without creating a
                new external room when no record exists.
        """
        key = entity.key
        room = await self._lookup(scope, key)
        if room is not None:
            return room

        if adopt and entity.external_room_id:
            return await self._adopt(scope, entity)

        creator_id = creator_id if creator_id is not None else entity.creator_id
        return await self._guarded_create(
            scope, key, lambda: self._create_entity_room(scope, entity, creator_id)
        )

    async def get_or_create_direct(
        self, scope: OperationScope, user_a_id: int, user_b_id: int
    ) -> ChatRoom | None:
        """Return the direct room for an unordered user pair, creating it if needed.

        *user_a_id* is the initiator: their credentials are provisioned and
        they join the room; the other user is invited.
        """
        if user_a_id == user_b_id:
            raise ValueError("a direct room needs two different users")
        key = direct_key(user_a_id, user_b_id)
        room = await self._lookup(scope, key)
        if room is not None:
            return room
        return await self._guarded_create(
            scope, key, lambda: self._create_direct_room(scope, user_a_id, user_b_id)
        )

    async def _guarded_create(
        self,
        scope: OperationScope,
        key: str,
        create: Callable[[], Awaitable[ChatRoom | None]],
    ) -> ChatRoom | None:
        already_held = scope.acquire_creation_lock(key)
        try:
            if already_held:
                room = await self._lookup(scope, key)
                if room is not None:
                    return room
            if scope.held_lock_count > self._config.max_scope_locks:
                logger.warning(
                    "Too many concurrent room creations (%d) in scope, skipping %s",
                    scope.held_lock_count,
                    key,
                    extra={"entity_key": key, "tenant_id": scope.tenant_id},
                )
                return None
            async with self._locks.locked(f"{scope.tenant_id}:{key}"):
                room = await self._lookup(scope, key)
                if room is not None:
                    return room
                return await create()
        finally:
            if not already_held:
                scope.release_creation_lock(key)

    async def _adopt(self, scope: OperationScope, entity: Entity) -> ChatRoom | None:
        assert entity.external_room_id is not None
        room = ChatRoom(
            external_room_id=entity.external_room_id,
            kind=ChatRoomKind(entity.kind),
            name=room_name(entity.kind, entity.slug, scope.tenant_id),
            topic=room_topic(entity.kind, entity.slug),
            visibility=self._visibility(entity),
            settings=self._settings(public=entity.is_public),
            entity_id=entity.id,
            creator_id=entity.creator_id,
        )
        try:
            await scope.store.create_room(room)
        except DuplicateChatRoomError:
            return await self._lookup(scope, entity.key)
        logger.info(
            "Adopted existing external room %s for %s",
            entity.external_room_id,
            entity.key,
            extra={"entity_key": entity.key, "tenant_id": scope.tenant_id},
        )
        return scope.cache_room(room)

    async def _create_entity_room(
        self, scope: OperationScope, entity: Entity, creator_id: int | None
    ) -> ChatRoom | None:
        creator = await self._optional_user(scope, creator_id)
        invite: list[str] = []
        overrides: dict[str, int] = {}
        if creator is not None and creator.external_user_id:
            invite.append(creator.external_user_id)
            overrides[creator.external_user_id] = self._config.moderator_level

        created = await self._client.create_room(
            room_name(entity.kind, entity.slug, scope.tenant_id),
            room_topic(entity.kind, entity.slug),
            is_public=entity.is_public,
            invite_user_ids=invite,
            power_level_overrides=overrides or None,
        )
        room = ChatRoom(
            external_room_id=created.external_room_id,
            kind=ChatRoomKind(entity.kind),
            name=room_name(entity.kind, entity.slug, scope.tenant_id),
            topic=room_topic(entity.kind, entity.slug),
            visibility=self._visibility(entity),
            settings=self._settings(public=entity.is_public),
            entity_id=entity.id,
            creator_id=creator.id if creator is not None else None,
        )
        stored = await self._persist(scope, room)
        if stored is not None and stored.id == room.id:
            await self._link_entity(scope, entity, created.external_room_id)
        return stored

    async def _create_direct_room(
        self, scope: OperationScope, user_a_id: int, user_b_id: int
    ) -> ChatRoom | None:
        initiator = await self._identities.ensure_credentials(scope, await scope.user(user_a_id))
        other = await scope.user(user_b_id)
        assert initiator.external_user_id is not None and initiator.credentials is not None

        first, second = sorted((initiator, other), key=lambda u: u.slug)
        name = f"{ChatRoomKind.DIRECT}-{first.slug}-{second.slug}-{scope.tenant_id}"
        invite = [initiator.external_user_id]
        if other.external_user_id:
            invite.append(other.external_user_id)

        created = await self._client.create_room(
            name, None, is_public=False, is_direct=True, invite_user_ids=invite
        )
        await self._client.join_room(
            created.external_room_id, initiator.external_user_id, initiator.credentials
        )
        low, high = sorted((user_a_id, user_b_id))
        room = ChatRoom(
            external_room_id=created.external_room_id,
            kind=ChatRoomKind.DIRECT,
            name=name,
            visibility=ChatRoomVisibility.PRIVATE,
            settings=self._settings(public=False),
            user_a_id=low,
            user_b_id=high,
            creator_id=initiator.id,
            members=[initiator.id],
        )
        return await self._persist(scope, room)

    async def _persist(self, scope: OperationScope, room: ChatRoom) -> ChatRoom | None:
        """Store a freshly created room; on a lost race, return the winner."""
        assert room.external_room_id is not None
        try:
            await scope.store.create_room(room)
        except DuplicateChatRoomError:
            logger.info(
                "Another instance created the room for %s first, discarding %s",
                room.entity_key,
                room.external_room_id,
                extra={"entity_key": room.entity_key, "tenant_id": scope.tenant_id},
            )
            try:
                await self._client.delete_room(room.external_room_id)
            except ExternalChatError:
                logger.warning(
                    "Could not delete orphaned external room %s",
                    room.external_room_id,
                    exc_info=True,
                    extra={"tenant_id": scope.tenant_id},
                )
            return await self._lookup(scope, room.entity_key)

        logger.info(
            "Created chat room %s for %s",
            room.external_room_id,
            room.entity_key,
            extra={
                "room_id": room.id,
                "entity_key": room.entity_key,
                "tenant_id": scope.tenant_id,
            },
        )
        return scope.cache_room(room)

    async def _link_entity(
        self, scope: OperationScope, entity: Entity, external_room_id: str | None
    ) -> None:
        entity.external_room_id = external_room_id
        scope.remember_entity(entity)
        try:
            await scope.directory.set_external_room_id(entity.kind, entity.id, external_room_id)
        except Exception:
            logger.warning(
                "Could not update external room id on %s",
                entity.key,
                exc_info=True,
                extra={"entity_key": entity.key, "tenant_id": scope.tenant_id},
            )

    async def _optional_user(self, scope: OperationScope, user_id: int | None) -> User | None:
        if user_id is None:
            return None
        try:
            user = await scope.user(user_id)
        except UserNotFoundError:
            logger.warning("Room creator %s not found", user_id, extra={"user_id": user_id})
            return None
        try:
            return await self._identities.ensure_credentials(scope, user)
        except CredentialsUnavailableError:
            logger.warning(
                "Room creator %s has no chat identity, creating room without them",
                user_id,
                exc_info=True,
                extra={"user_id": user_id, "tenant_id": scope.tenant_id},
            )
            return user

    def _visibility(self, entity: Entity) -> ChatRoomVisibility:
        return ChatRoomVisibility.PUBLIC if entity.is_public else ChatRoomVisibility.PRIVATE

    def _settings(self, *, public: bool) -> ChatRoomSettings:
        return ChatRoomSettings(
            history_visibility=self._config.history_visibility,
            guest_access=False,
            require_invitation=not public,
            encrypted=self._config.encrypt_rooms,
        )

    # Recovery

    async def recover(
        self,
        scope: OperationScope,
        room: ChatRoom,
        entity: Entity,
        creator_id: int | None = None,
    ) -> ChatRoom | None:
        """Replace a room whose external counterpart no longer exists."""
        logger.warning(
            "External room %s for %s is missing, recreating",
            room.external_room_id,
            entity.key,
            extra={"room_id": room.id, "entity_key": entity.key, "tenant_id": scope.tenant_id},
        )
        await self._link_entity(scope, entity, None)
        await scope.store.delete_room(room.id)
        scope.invalidate_entity(entity.key)
        scope.remember_entity(entity)
        return await self.get_or_create(scope, entity, creator_id, adopt=False)

    async def run_with_recovery(
        self,
        scope: OperationScope,
        entity: Entity,
        creator_id: int | None,
        operation: Callable[[ChatRoom], Awaitable[T]],
    ) -> T:
        """Run *operation* against the entity's room, healing a stale room once.

        If *operation* raises :class:`ExternalRoomMissingError` the room is
        recreated and *operation* is retried exactly once; a second failure
        propagates.
        """
        room = await self.get_or_create(scope, entity, creator_id)
        if room is None:
            raise ChatRoomNotFoundError(entity.key)
        try:
            return await operation(room)
        except ExternalRoomMissingError:
            replacement = await self.recover(scope, room, entity, creator_id)
            if replacement is None:
                raise ChatRoomNotFoundError(entity.key) from None
            return await operation(replacement)

    # Deletion

    async def delete_entity_rooms(self, scope: OperationScope, entity: Entity) -> int:
        """Tear down every room bound to *entity*.

        Removing members and deleting the external room are best effort;
        the record is always deleted. Each room is attempted independently.
        Returns the number of rooms removed.

        Raises:
            CleanupError: One or more rooms could not be removed.
        """
        rooms = await scope.store.find_rooms_for_entity(entity.kind, entity.id)
        failures: list[str] = []
        removed = 0
        for room in rooms:
            try:
                if room.is_bound:
                    assert room.external_room_id is not None
                    await self._evict_members(scope, room)
                    await self._delete_external(room.external_room_id)
                await scope.store.delete_room(room.id)
                removed += 1
            except Exception:
                logger.exception(
                    "Failed to clean up chat room %s for %s",
                    room.id,
                    entity.key,
                    extra={"room_id": room.id, "entity_key": entity.key},
                )
                failures.append(room.id)

        if entity.external_room_id or rooms:
            await self._link_entity(scope, entity, None)
        scope.invalidate_entity(entity.key)
        if failures:
            raise CleanupError(
                f"{len(failures)} of {len(rooms)} chat rooms for {entity.key} were not removed",
                failures,
            )
        logger.info(
            "Removed %d chat rooms for %s",
            removed,
            entity.key,
            extra={"entity_key": entity.key, "tenant_id": scope.tenant_id},
        )
        return removed

    async def _evict_members(self, scope: OperationScope, room: ChatRoom) -> None:
        assert room.external_room_id is not None
        for user_id in room.members:
            try:
                user = await scope.user(user_id)
            except UserNotFoundError:
                continue
            if not user.external_user_id:
                continue
            try:
                await self._client.remove_user_from_room(
                    room.external_room_id, user.external_user_id
                )
            except ExternalChatError as exc:
                logger.debug(
                    "Could not remove %s from %s: %s",
                    user.external_user_id,
                    room.external_room_id,
                    exc.message,
                )

    async def _delete_external(self, external_room_id: str) -> None:
        try:
            await self._client.delete_room(external_room_id)
        except ExternalChatError as exc:
            if exc.category == ErrorCategory.ROOM_MISSING:
                return
            logger.warning(
                "Could not delete external room %s: %s",
                external_room_id,
                exc.message,
                extra={"category": str(exc.category)},
            )
