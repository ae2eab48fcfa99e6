"""Abstract interface over the application's events, groups and users."""

from __future__ import annotations

from abc import ABC, abstractmethod

from roomsync.models.entity import Entity, ExternalCredentials, Membership, User


class EntityDirectory(ABC):
    """Narrow read/write view of the host application's membership model.

    The directory is owned by the host application; roomsync only reads
    entities, users and memberships, and writes back two denormalized
    fields: an entity's external room id and a user's external identity.
    """

    @abstractmethod
    async def get_entity(self, kind: str, entity_id: int) -> Entity | None: ...

    @abstractmethod
    async def get_entity_by_slug(self, kind: str, slug: str) -> Entity | None: ...

    @abstractmethod
    async def set_external_room_id(
        self, kind: str, entity_id: int, external_room_id: str | None
    ) -> None:
        """Record (or clear, with ``None``) the entity's external room id."""
        ...

    @abstractmethod
    async def get_user(self, user_id: int) -> User | None: ...

    @abstractmethod
    async def get_user_by_slug(self, slug: str) -> User | None: ...

    @abstractmethod
    async def save_external_identity(
        self, user_id: int, external_user_id: str, credentials: ExternalCredentials
    ) -> User:
        """Persist a user's identity and credentials on the chat backend."""
        ...

    @abstractmethod
    async def get_membership(self, kind: str, entity_id: int, user_id: int) -> Membership | None:
        """The user's membership record in an entity, if any."""
        ...

    @abstractmethod
    async def list_user_memberships(self, user_id: int) -> list[Membership]:
        """Every event and group membership the user holds."""
        ...
