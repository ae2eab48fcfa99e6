"""In-memory implementation of EntityDirectory."""

from __future__ import annotations

from roomsync.core.errors import UserNotFoundError
from roomsync.directory.base import EntityDirectory
from roomsync.models.entity import Entity, ExternalCredentials, Membership, User


class InMemoryDirectory(EntityDirectory):
    """Dict-based directory for development and testing.

    The ``add_*`` and ``delete_entity`` helpers are not part of the
    interface; they stand in for the host application's own CRUD.
    """

    def __init__(self) -> None:
        self._entities: dict[tuple[str, int], Entity] = {}
        self._users: dict[int, User] = {}
        self._memberships: dict[tuple[str, int, int], Membership] = {}

    # Seeding helpers

    def add_entity(self, entity: Entity) -> Entity:
        self._entities[(entity.kind, entity.id)] = entity
        return entity

    def delete_entity(self, kind: str, entity_id: int) -> None:
        self._entities.pop((kind, entity_id), None)

    def add_user(self, user: User) -> User:
        self._users[user.id] = user
        return user

    def add_membership(self, membership: Membership) -> Membership:
        self._memberships[(membership.kind, membership.entity_id, membership.user_id)] = membership
        return membership

    def remove_membership(self, kind: str, entity_id: int, user_id: int) -> None:
        self._memberships.pop((kind, entity_id, user_id), None)

    # EntityDirectory

    async def get_entity(self, kind: str, entity_id: int) -> Entity | None:
        entity = self._entities.get((kind, entity_id))
        return entity.model_copy() if entity is not None else None

    async def get_entity_by_slug(self, kind: str, slug: str) -> Entity | None:
        for (entity_kind, _), entity in self._entities.items():
            if entity_kind == kind and entity.slug == slug:
                return entity.model_copy()
        return None

    async def set_external_room_id(
        self, kind: str, entity_id: int, external_room_id: str | None
    ) -> None:
        entity = self._entities.get((kind, entity_id))
        if entity is not None:
            entity.external_room_id = external_room_id

    async def get_user(self, user_id: int) -> User | None:
        user = self._users.get(user_id)
        return user.model_copy() if user is not None else None

    async def get_user_by_slug(self, slug: str) -> User | None:
        for user in self._users.values():
            if user.slug == slug:
                return user.model_copy()
        return None

    async def save_external_identity(
        self, user_id: int, external_user_id: str, credentials: ExternalCredentials
    ) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))
        user.external_user_id = external_user_id
        user.credentials = credentials
        return user.model_copy()

    async def get_membership(self, kind: str, entity_id: int, user_id: int) -> Membership | None:
        membership = self._memberships.get((kind, entity_id, user_id))
        return membership.model_copy() if membership is not None else None

    async def list_user_memberships(self, user_id: int) -> list[Membership]:
        return [m.model_copy() for m in self._memberships.values() if m.user_id == user_id]
