"""Classification of free-text chat backend failures.

Chat servers report most failures as human-readable strings. This module is
the only place that inspects that text; everything else works with
:class:`~roomsync.models.enums.ErrorCategory` and the typed exceptions in
:mod:`roomsync.core.errors`.
"""

from __future__ import annotations

from roomsync.core.errors import (
    ExternalAlreadyMemberError,
    ExternalChatError,
    ExternalNotInRoomError,
    ExternalRateLimitedError,
    ExternalRoomMissingError,
    ExternalTimeoutError,
    ExternalTransientError,
)
from roomsync.models.enums import ErrorCategory

ALREADY_MEMBER_PHRASES: tuple[str, ...] = (
    "already in the room",
    "already a member",
    "already joined",
    "already invited",
    "is already in",
)

ROOM_MISSING_PHRASES: tuple[str, ...] = (
    "m_not_found",
    "room not found",
    "unknown room",
    "no such room",
    "room does not exist",
    "not in room directory",
)

NOT_IN_ROOM_PHRASES: tuple[str, ...] = (
    "not in the room",
    "not a member",
    "not joined",
    "user is not in",
)

RATE_LIMITED_PHRASES: tuple[str, ...] = (
    "m_limit_exceeded",
    "too many requests",
)

# Checked in order; the first matching vocabulary wins.
_VOCABULARY: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (ErrorCategory.RATE_LIMITED, RATE_LIMITED_PHRASES),
    (ErrorCategory.ALREADY_MEMBER, ALREADY_MEMBER_PHRASES),
    (ErrorCategory.ROOM_MISSING, ROOM_MISSING_PHRASES),
    (ErrorCategory.NOT_IN_ROOM, NOT_IN_ROOM_PHRASES),
)

_EXCEPTIONS: dict[ErrorCategory, type[ExternalChatError]] = {
    ErrorCategory.ALREADY_MEMBER: ExternalAlreadyMemberError,
    ErrorCategory.ROOM_MISSING: ExternalRoomMissingError,
    ErrorCategory.NOT_IN_ROOM: ExternalNotInRoomError,
    ErrorCategory.RATE_LIMITED: ExternalRateLimitedError,
    ErrorCategory.TIMEOUT: ExternalTimeoutError,
    ErrorCategory.TRANSIENT: ExternalTransientError,
}


def classify_error(message: str) -> ErrorCategory:
    """Map a backend error message to an :class:`ErrorCategory`.

    Matching is case-insensitive substring search. Anything unrecognized
    is ``TRANSIENT``.
    """
    text = message.lower()
    for category, phrases in _VOCABULARY:
        if any(phrase in text for phrase in phrases):
            return category
    return ErrorCategory.TRANSIENT


def to_external_error(exc: BaseException, operation: str | None = None) -> ExternalChatError:
    """Convert a raw backend failure into the matching typed exception."""
    if isinstance(exc, ExternalChatError):
        return exc
    if isinstance(exc, TimeoutError):
        return ExternalTimeoutError(str(exc) or "timed out", operation=operation)
    # str() of a ChatBackendError carries the errcode, so it is matched too.
    message = str(exc) or exc.__class__.__name__
    category = classify_error(message)
    return _EXCEPTIONS[category](message, operation=operation)
