"""Pydantic models for roomsync."""

from roomsync.models.config import RetryPolicy, RoomSyncConfig
from roomsync.models.entity import (
    Entity,
    EntityRef,
    ExternalCredentials,
    Membership,
    User,
    UserRef,
)
from roomsync.models.enums import (
    ChatRoomKind,
    ChatRoomVisibility,
    EntityKind,
    EntityVisibility,
    ErrorCategory,
    MembershipState,
    PowerLevel,
    RoleAction,
    SyncOutcome,
)
from roomsync.models.events import (
    DomainEvent,
    EntityCreated,
    EntityDeleting,
    MemberAdded,
    MemberRemoved,
    MembershipIntent,
    RoleChanged,
    UserJoinedRoom,
)
from roomsync.models.message import ChatMessage, CreatedRoom, MessagePage, ProvisionedUser
from roomsync.models.result import SyncResult
from roomsync.models.room import ChatRoom, ChatRoomSettings, direct_key, entity_key

__all__ = [
    "ChatMessage",
    "ChatRoom",
    "ChatRoomKind",
    "ChatRoomSettings",
    "ChatRoomVisibility",
    "CreatedRoom",
    "DomainEvent",
    "Entity",
    "EntityCreated",
    "EntityDeleting",
    "EntityKind",
    "EntityRef",
    "EntityVisibility",
    "ErrorCategory",
    "ExternalCredentials",
    "MemberAdded",
    "MemberRemoved",
    "Membership",
    "MembershipIntent",
    "MembershipState",
    "MessagePage",
    "PowerLevel",
    "ProvisionedUser",
    "RetryPolicy",
    "RoleAction",
    "RoleChanged",
    "RoomSyncConfig",
    "SyncOutcome",
    "SyncResult",
    "User",
    "UserJoinedRoom",
    "UserRef",
    "direct_key",
    "entity_key",
]
