"""Chat backend providers."""

from roomsync.providers.base import ChatBackend
from roomsync.providers.mock import MockChatBackend

__all__ = ["ChatBackend", "MockChatBackend"]
