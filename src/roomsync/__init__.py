"""RoomSync - Pure async Python library keeping chat rooms in step with membership."""

from roomsync._version import __version__
from roomsync.core.adapter import DomainEventAdapter
from roomsync.core.classify import classify_error
from roomsync.core.event_bus import EventBus
from roomsync.core.framework import (
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
    RoomSync,
    RoomSyncError,
    TenantMissingError,
    UserNotFoundError,
)
from roomsync.core.lifecycle import RoomLifecycleManager
from roomsync.core.locks import CreationLockManager, InMemoryCreationLockManager
from roomsync.core.membership import MembershipReconciler
from roomsync.core.permissions import PermissionSynchronizer, classify_role
from roomsync.core.scope import OperationScope
from roomsync.core.user_sync import UserRoomSync
from roomsync.directory import EntityDirectory, InMemoryDirectory
from roomsync.models import (
    ChatMessage,
    ChatRoom,
    ChatRoomKind,
    ChatRoomSettings,
    ChatRoomVisibility,
    CreatedRoom,
    DomainEvent,
    Entity,
    EntityCreated,
    EntityDeleting,
    EntityKind,
    EntityRef,
    EntityVisibility,
    ErrorCategory,
    ExternalCredentials,
    MemberAdded,
    MemberRemoved,
    Membership,
    MembershipIntent,
    MembershipState,
    MessagePage,
    PowerLevel,
    ProvisionedUser,
    RetryPolicy,
    RoleAction,
    RoleChanged,
    RoomSyncConfig,
    SyncOutcome,
    SyncResult,
    User,
    UserJoinedRoom,
    UserRef,
)
from roomsync.providers import ChatBackend, MockChatBackend
from roomsync.store import ChatRoomStore, InMemoryChatRoomStore
from roomsync.tenancy import InMemoryTenantConnections, TenantConnections, TenantContext

__all__ = [
    "ChatBackend",
    "ChatBackendError",
    "ChatMessage",
    "ChatRoom",
    "ChatRoomKind",
    "ChatRoomNotFoundError",
    "ChatRoomSettings",
    "ChatRoomStore",
    "ChatRoomVisibility",
    "CleanupError",
    "CreatedRoom",
    "CreationLockManager",
    "CredentialsUnavailableError",
    "DomainEvent",
    "DomainEventAdapter",
    "DuplicateChatRoomError",
    "Entity",
    "EntityCreated",
    "EntityDeleting",
    "EntityDirectory",
    "EntityKind",
    "EntityNotFoundError",
    "EntityRef",
    "EntityVisibility",
    "ErrorCategory",
    "EventBus",
    "ExternalAlreadyMemberError",
    "ExternalChatError",
    "ExternalCredentials",
    "ExternalNotInRoomError",
    "ExternalRateLimitedError",
    "ExternalRoomMissingError",
    "ExternalTimeoutError",
    "ExternalTransientError",
    "InMemoryChatRoomStore",
    "InMemoryCreationLockManager",
    "InMemoryDirectory",
    "InMemoryTenantConnections",
    "MatrixChatBackend",
    "MatrixConfig",
    "MemberAdded",
    "MemberRemoved",
    "Membership",
    "MembershipIntent",
    "MembershipReconciler",
    "MembershipState",
    "MessagePage",
    "MockChatBackend",
    "NotEntityMemberError",
    "OperationScope",
    "PermissionSynchronizer",
    "PowerLevel",
    "ProvisionedUser",
    "RetryPolicy",
    "RoleAction",
    "RoleChanged",
    "RoomLifecycleManager",
    "RoomSync",
    "RoomSyncConfig",
    "RoomSyncError",
    "SyncOutcome",
    "SyncResult",
    "TenantConnections",
    "TenantContext",
    "TenantMissingError",
    "User",
    "UserJoinedRoom",
    "UserNotFoundError",
    "UserRef",
    "UserRoomSync",
    "__version__",
    "classify_error",
    "classify_role",
]


def __getattr__(name: str) -> object:
    if name == "MatrixChatBackend":
        from roomsync.providers.matrix import MatrixChatBackend

        return MatrixChatBackend
    if name == "MatrixConfig":
        from roomsync.providers.matrix import MatrixConfig

        return MatrixConfig
    raise AttributeError(f"module 'roomsync' has no attribute {name}")
