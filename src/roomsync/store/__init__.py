"""Chat room storage."""

from roomsync.store.base import ChatRoomStore
from roomsync.store.memory import InMemoryChatRoomStore

__all__ = ["ChatRoomStore", "InMemoryChatRoomStore"]
