"""In-memory implementation of ChatRoomStore."""

from __future__ import annotations

from datetime import UTC, datetime

from roomsync.core.errors import ChatRoomNotFoundError, DuplicateChatRoomError
from roomsync.models.room import ChatRoom
from roomsync.store.base import ChatRoomStore


class InMemoryChatRoomStore(ChatRoomStore):
    """Dict-based in-memory store for development and testing."""

    def __init__(self) -> None:
        self._rooms: dict[str, ChatRoom] = {}
        self._key_index: dict[str, str] = {}

    async def create_room(self, room: ChatRoom) -> ChatRoom:
        key = room.entity_key
        if key in self._key_index:
            raise DuplicateChatRoomError(key)
        self._rooms[room.id] = room.model_copy(deep=True)
        self._key_index[key] = room.id
        return room

    async def get_room(self, room_id: str) -> ChatRoom | None:
        room = self._rooms.get(room_id)
        return room.model_copy(deep=True) if room is not None else None

    async def get_room_by_key(self, key: str) -> ChatRoom | None:
        room_id = self._key_index.get(key)
        if room_id is None:
            return None
        return await self.get_room(room_id)

    async def find_rooms_for_entity(self, kind: str, entity_id: int) -> list[ChatRoom]:
        return [
            room.model_copy(deep=True)
            for room in self._rooms.values()
            if room.kind == kind and room.entity_id == entity_id
        ]

    async def delete_room(self, room_id: str) -> bool:
        room = self._rooms.pop(room_id, None)
        if room is None:
            return False
        self._key_index.pop(room.entity_key, None)
        return True

    async def add_member(self, room_id: str, user_id: int) -> ChatRoom:
        room = self._require(room_id)
        if user_id not in room.members:
            room.members.append(user_id)
            room.updated_at = datetime.now(UTC)
        return room.model_copy(deep=True)

    async def remove_member(self, room_id: str, user_id: int) -> ChatRoom:
        room = self._require(room_id)
        if user_id in room.members:
            room.members.remove(user_id)
            room.updated_at = datetime.now(UTC)
        return room.model_copy(deep=True)

    def _require(self, room_id: str) -> ChatRoom:
        room = self._rooms.get(room_id)
        if room is None:
            raise ChatRoomNotFoundError(room_id)
        return room
