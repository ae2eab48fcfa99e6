"""Domain events consumed by the adapter, and the internal join notification."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import ClassVar
from uuid import uuid4

from pydantic import BaseModel, Field

from roomsync.models.entity import EntityRef, UserRef
from roomsync.models.enums import RoleAction


class DomainEvent(BaseModel):
    """Base for every event routed through the bus.

    ``tenant_id`` is optional at the type level so that malformed payloads
    can be represented; handlers treat its absence as terminal.
    """

    topic: ClassVar[str] = "domain"

    id: str = Field(default_factory=lambda: uuid4().hex)
    tenant_id: str | None = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class MembershipIntent(BaseModel):
    """Transient request to make *user* a participant of *entity*'s room."""

    entity: EntityRef
    user: UserRef
    desired_role: str | None = None


class MemberAdded(DomainEvent):
    topic: ClassVar[str] = "member.added"

    entity: EntityRef
    user: UserRef
    role: str | None = None

    def to_intent(self) -> MembershipIntent:
        return MembershipIntent(entity=self.entity, user=self.user, desired_role=self.role)


class MemberRemoved(DomainEvent):
    topic: ClassVar[str] = "member.removed"

    entity: EntityRef
    user: UserRef


class RoleChanged(DomainEvent):
    topic: ClassVar[str] = "role.changed"

    user: UserRef
    entity: EntityRef
    new_role: str
    old_role: str | None = None
    action: RoleAction = RoleAction.UPDATED
    external_user_id: str | None = None


class EntityDeleting(DomainEvent):
    topic: ClassVar[str] = "entity.before_delete"

    entity: EntityRef
    skip_chat_cleanup: bool = False


class EntityCreated(DomainEvent):
    topic: ClassVar[str] = "entity.created"

    entity: EntityRef
    creator: UserRef | None = None


class UserJoinedRoom(DomainEvent):
    """Published by the reconciler after a verified join."""

    topic: ClassVar[str] = "chat.user_joined"

    entity: EntityRef
    user_id: int
    external_user_id: str
    room_id: str
    external_room_id: str
