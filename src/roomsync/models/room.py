"""Chat room model."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from roomsync.models.enums import ChatRoomKind, ChatRoomVisibility


def entity_key(kind: str, entity_id: int) -> str:
    """Canonical key for an event or group binding, e.g. ``group:9``."""
    return f"{kind}:{entity_id}"


def direct_key(user_a_id: int, user_b_id: int) -> str:
    """Canonical key for a direct room; the pair is unordered."""
    low, high = sorted((user_a_id, user_b_id))
    return f"{ChatRoomKind.DIRECT}:{low}:{high}"


class ChatRoomSettings(BaseModel):
    """Fixed room policy written at creation time."""

    history_visibility: str = "shared"
    guest_access: bool = False
    require_invitation: bool = True
    encrypted: bool = False


class ChatRoom(BaseModel):
    """Internal binding of one entity (or user pair) to one external room."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    external_room_id: str | None = None
    kind: ChatRoomKind
    name: str
    topic: str | None = None
    visibility: ChatRoomVisibility = ChatRoomVisibility.PRIVATE
    settings: ChatRoomSettings = Field(default_factory=ChatRoomSettings)
    entity_id: int | None = None
    user_a_id: int | None = None
    user_b_id: int | None = None
    creator_id: int | None = None
    members: list[int] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _check_binding(self) -> ChatRoom:
        if self.kind == ChatRoomKind.DIRECT:
            if self.user_a_id is None or self.user_b_id is None:
                raise ValueError("direct rooms require user_a_id and user_b_id")
            if self.entity_id is not None:
                raise ValueError("direct rooms cannot be bound to an entity")
        elif self.entity_id is None:
            raise ValueError(f"{self.kind} rooms require entity_id")
        return self

    @property
    def entity_key(self) -> str:
        if self.kind == ChatRoomKind.DIRECT:
            assert self.user_a_id is not None and self.user_b_id is not None
            return direct_key(self.user_a_id, self.user_b_id)
        assert self.entity_id is not None
        return entity_key(self.kind, self.entity_id)

    @property
    def is_bound(self) -> bool:
        """True when the room is linked to an external room."""
        return bool(self.external_room_id)

    def has_member(self, user_id: int) -> bool:
        return user_id in self.members
