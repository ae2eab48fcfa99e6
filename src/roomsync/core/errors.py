"""Exception hierarchy for roomsync."""

from __future__ import annotations

from roomsync.models.enums import ErrorCategory


class RoomSyncError(Exception):
    """Base exception for all roomsync errors."""


class EntityNotFoundError(RoomSyncError):
    """Event or group does not exist."""


class UserNotFoundError(RoomSyncError):
    """User does not exist."""


class ChatRoomNotFoundError(RoomSyncError):
    """No chat room record matches."""


class NotEntityMemberError(RoomSyncError):
    """The user does not belong to the event or group that owns the room."""


class TenantMissingError(RoomSyncError):
    """A required tenant identifier was absent."""


class CredentialsUnavailableError(RoomSyncError):
    """A user could not be given credentials on the chat backend."""


class DuplicateChatRoomError(RoomSyncError):
    """A room is already bound to the same entity key."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Chat room already exists for {key}")
        self.key = key


class CleanupError(RoomSyncError):
    """One or more rooms could not be cleaned up."""

    def __init__(self, message: str, failures: list[str] | None = None) -> None:
        super().__init__(message)
        self.failures = failures or []


class ExternalChatError(RoomSyncError):
    """A chat backend call failed.

    ``category`` is the result of classifying the backend's free-text
    message; ``message`` keeps the original text.
    """

    category: ErrorCategory = ErrorCategory.TRANSIENT

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation


class ExternalAlreadyMemberError(ExternalChatError):
    category = ErrorCategory.ALREADY_MEMBER


class ExternalRoomMissingError(ExternalChatError):
    category = ErrorCategory.ROOM_MISSING


class ExternalNotInRoomError(ExternalChatError):
    category = ErrorCategory.NOT_IN_ROOM


class ExternalTransientError(ExternalChatError):
    """Any failure not covered by a more specific category."""

    category = ErrorCategory.TRANSIENT

    @property
    def retryable(self) -> bool:
        return False


class ExternalRateLimitedError(ExternalTransientError):
    category = ErrorCategory.RATE_LIMITED

    @property
    def retryable(self) -> bool:
        return True


class ExternalTimeoutError(ExternalTransientError):
    category = ErrorCategory.TIMEOUT

    @property
    def retryable(self) -> bool:
        return True


class ChatBackendError(RoomSyncError):
    """Raised by a :class:`~roomsync.providers.base.ChatBackend` on failure.

    Backends report failures as unstructured text. ``errcode`` is set when
    the backend supplies a machine code (e.g. ``M_NOT_FOUND``).
    """

    def __init__(
        self, message: str, errcode: str | None = None, status: int | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.errcode = errcode
        self.status = status

    def __str__(self) -> str:
        if self.errcode and self.errcode not in self.message:
            return f"{self.errcode}: {self.message}"
        return self.message
