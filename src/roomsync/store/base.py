"""Abstract base class for chat room storage."""

from __future__ import annotations

from abc import ABC, abstractmethod

from roomsync.models.room import ChatRoom


class ChatRoomStore(ABC):
    """Persistent storage for chat room records.

    Implement this ABC to plug in any storage backend (SQL, Redis, etc.).
    The library ships with `InMemoryChatRoomStore` for development and
    testing.

    Implementations must enforce uniqueness of `ChatRoom.entity_key`:
    `create_room` raises `DuplicateChatRoomError` when a record for the
    same key already exists. This is the guarantee that keeps concurrent
    creators in different processes from binding two rooms to one entity.
    """

    @abstractmethod
    async def create_room(self, room: ChatRoom) -> ChatRoom:
        """Persist a new room.

        Raises:
            DuplicateChatRoomError: A room with the same entity key exists.
        """
        ...

    @abstractmethod
    async def get_room(self, room_id: str) -> ChatRoom | None:
        """Get a room by internal ID, or ``None`` if it doesn't exist."""
        ...

    @abstractmethod
    async def get_room_by_key(self, key: str) -> ChatRoom | None:
        """Get the room bound to an entity key (``group:9``, ``direct:3:7``)."""
        ...

    @abstractmethod
    async def find_rooms_for_entity(self, kind: str, entity_id: int) -> list[ChatRoom]:
        """All rooms bound to an event or group."""
        ...

    @abstractmethod
    async def delete_room(self, room_id: str) -> bool:
        """Delete a room. Returns ``True`` if the room existed."""
        ...

    @abstractmethod
    async def add_member(self, room_id: str, user_id: int) -> ChatRoom:
        """Add *user_id* to the room's member list if absent."""
        ...

    @abstractmethod
    async def remove_member(self, room_id: str, user_id: int) -> ChatRoom:
        """Remove *user_id* from the room's member list if present."""
        ...

    async def close(self) -> None:  # noqa: B027
        """Release resources. Override in subclasses that hold connections."""
