"""All string enums for roomsync."""

from __future__ import annotations

from enum import IntEnum, StrEnum, unique


@unique
class EntityKind(StrEnum):
    EVENT = "event"
    GROUP = "group"


@unique
class ChatRoomKind(StrEnum):
    EVENT = "event"
    GROUP = "group"
    DIRECT = "direct"


@unique
class ChatRoomVisibility(StrEnum):
    PUBLIC = "public"
    PRIVATE = "private"


@unique
class EntityVisibility(StrEnum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    PRIVATE = "private"


@unique
class RoleAction(StrEnum):
    GRANTED = "granted"
    REVOKED = "revoked"
    UPDATED = "updated"


@unique
class SyncOutcome(StrEnum):
    APPLIED = "applied"
    SKIPPED_ERROR = "skipped_error"
    SKIPPED_NOOP = "skipped_noop"


@unique
class MembershipState(StrEnum):
    VERIFIED = "verified"
    FAILED = "failed"


@unique
class ErrorCategory(StrEnum):
    """Classification of a free-text chat backend failure."""

    ALREADY_MEMBER = "already_member"
    ROOM_MISSING = "room_missing"
    NOT_IN_ROOM = "not_in_room"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    TRANSIENT = "transient"


class PowerLevel(IntEnum):
    """Power levels understood by the external chat backend."""

    REGULAR = 0
    MODERATOR = 50
    ADMINISTRATOR = 100
