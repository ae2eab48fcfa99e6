"""Per-operation memoization and creation-lock bookkeeping."""

from __future__ import annotations

import asyncio
import logging
import time
from types import TracebackType

from roomsync.core.errors import EntityNotFoundError, UserNotFoundError
from roomsync.directory.base import EntityDirectory
from roomsync.models.config import RoomSyncConfig
from roomsync.models.entity import Entity, EntityRef, User, UserRef
from roomsync.models.enums import MembershipState
from roomsync.models.room import ChatRoom, entity_key
from roomsync.store.base import ChatRoomStore
from roomsync.tenancy import TenantContext

logger = logging.getLogger("roomsync.scope")


class OperationScope:
    """State shared by every step of one logical unit of work.

    A scope belongs to exactly one tenant and is passed explicitly to the
    components that need it. It memoizes entity, user and room lookups,
    remembers which memberships were verified (or failed) so each pair is
    reconciled at most once, and tracks room-creation locks so sibling
    tasks do not create the same room twice.

    Scopes are cheap and short lived: open one per inbound event or
    request, then discard it. Nothing here is persisted.
    """

    def __init__(self, tenant: TenantContext, config: RoomSyncConfig | None = None) -> None:
        self.tenant = tenant
        self.config = config or RoomSyncConfig()
        self._entities: dict[str, Entity] = {}
        self._entity_slugs: dict[tuple[str, str], str] = {}
        self._users: dict[int, User] = {}
        self._rooms: dict[str, ChatRoom] = {}
        self._membership: dict[tuple[str, int], MembershipState] = {}
        self._creation_locks: dict[str, float] = {}
        self._pair_locks: dict[tuple[str, int], asyncio.Lock] = {}

    @property
    def tenant_id(self) -> str:
        return self.tenant.tenant_id

    @property
    def store(self) -> ChatRoomStore:
        return self.tenant.store

    @property
    def directory(self) -> EntityDirectory:
        return self.tenant.directory

    async def __aenter__(self) -> OperationScope:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.clear()

    def clear(self) -> None:
        self._entities.clear()
        self._entity_slugs.clear()
        self._users.clear()
        self._rooms.clear()
        self._membership.clear()
        self._creation_locks.clear()
        self._pair_locks.clear()

    # Entities and users

    async def entity(self, ref: EntityRef) -> Entity:
        """Resolve *ref* to an entity, memoized by key and slug."""
        if ref.slug is not None:
            key = self._entity_slugs.get((ref.kind, ref.slug))
            if key is not None and key in self._entities:
                return self._entities[key]
            found = await self.directory.get_entity_by_slug(ref.kind, ref.slug)
        else:
            assert ref.id is not None
            key = entity_key(ref.kind, ref.id)
            if key in self._entities:
                return self._entities[key]
            found = await self.directory.get_entity(ref.kind, ref.id)
        if found is None:
            raise EntityNotFoundError(str(ref))
        self.remember_entity(found)
        return found

    def remember_entity(self, entity: Entity) -> None:
        self._entities[entity.key] = entity
        self._entity_slugs[(entity.kind, entity.slug)] = entity.key

    async def user(self, ref: UserRef | int) -> User:
        """Resolve a user by id or :class:`UserRef`, memoized by id."""
        if isinstance(ref, int):
            ref = UserRef(id=ref)
        if ref.id is not None and ref.id in self._users:
            return self._users[ref.id]
        if ref.id is not None:
            found = await self.directory.get_user(ref.id)
        else:
            assert ref.slug is not None
            found = next((u for u in self._users.values() if u.slug == ref.slug), None)
            if found is not None:
                return found
            found = await self.directory.get_user_by_slug(ref.slug)
        if found is None:
            raise UserNotFoundError(str(ref))
        self._users[found.id] = found
        return found

    def remember_user(self, user: User) -> None:
        self._users[user.id] = user

    # Rooms

    def cached_room(self, key: str) -> ChatRoom | None:
        return self._rooms.get(key)

    def cache_room(self, room: ChatRoom) -> ChatRoom:
        self._rooms[room.entity_key] = room
        return room

    def invalidate_entity(self, key: str) -> None:
        """Forget everything cached for one entity key."""
        self._rooms.pop(key, None)
        entity = self._entities.pop(key, None)
        if entity is not None:
            self._entity_slugs.pop((entity.kind, entity.slug), None)
        for pair in [p for p in self._membership if p[0] == key]:
            del self._membership[pair]

    # Membership state

    def membership_state(self, key: str, user_id: int) -> MembershipState | None:
        return self._membership.get((key, user_id))

    def mark_membership(self, key: str, user_id: int, state: MembershipState) -> None:
        self._membership[(key, user_id)] = state

    def forget_membership(self, key: str, user_id: int) -> None:
        self._membership.pop((key, user_id), None)

    def pair_lock(self, key: str, user_id: int) -> asyncio.Lock:
        """Lock serializing reconciliation of one (entity, user) pair."""
        lock = self._pair_locks.get((key, user_id))
        if lock is None:
            lock = self._pair_locks[(key, user_id)] = asyncio.Lock()
        return lock

    # Creation locks

    def acquire_creation_lock(self, key: str) -> bool:
        """Mark *key* as being created in this scope.

        Returns ``True`` if another task in the scope already holds it, in
        which case the caller does not own the lock and must not release
        it. Locks older than ``config.lock_ttl`` are assumed stuck and are
        taken over.
        """
        now = time.monotonic()
        acquired_at = self._creation_locks.get(key)
        if acquired_at is not None:
            age = now - acquired_at
            if age < self.config.lock_ttl:
                return True
            logger.warning(
                "Breaking stale creation lock for %s after %.1fs",
                key,
                age,
                extra={"entity_key": key, "tenant_id": self.tenant_id, "age": age},
            )
        self._creation_locks[key] = now
        return False

    def release_creation_lock(self, key: str) -> None:
        self._creation_locks.pop(key, None)

    @property
    def held_lock_count(self) -> int:
        return len(self._creation_locks)
