"""Mock chat backend for testing."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from roomsync.core.errors import ChatBackendError
from roomsync.models.entity import ExternalCredentials
from roomsync.models.message import ChatMessage, CreatedRoom, MessagePage, ProvisionedUser
from roomsync.providers.base import ChatBackend


@dataclass
class MockRoom:
    """Server-side state of one room in :class:`MockChatBackend`."""

    room_id: str
    name: str
    topic: str | None
    is_public: bool
    is_direct: bool
    members: set[str] = field(default_factory=set)
    invited: set[str] = field(default_factory=set)
    power_levels: dict[str, int] = field(default_factory=dict)
    messages: list[ChatMessage] = field(default_factory=list)


class MockChatBackend(ChatBackend):
    """In-memory Matrix-like server that records calls for verification.

    Joins to a private room require an invitation, invites of members fail
    with an "already in the room" message and kicks of non-members fail
    with "not in the room", mirroring a real homeserver. Failures can be
    scripted per method with :meth:`fail_next`.
    """

    def __init__(self, server_name: str = "mock.local") -> None:
        self.server_name = server_name
        self.rooms: dict[str, MockRoom] = {}
        self.users: dict[str, str] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.closed = False
        self._failures: dict[str, list[ChatBackendError]] = defaultdict(list)

    # Test helpers

    def fail_next(
        self, method: str, message: str, errcode: str | None = None, times: int = 1
    ) -> None:
        """Make the next *times* calls to *method* raise with *message*."""
        for _ in range(times):
            self._failures[method].append(ChatBackendError(message, errcode=errcode))

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    def vanish(self, external_room_id: str) -> None:
        """Delete a room server-side without going through the API."""
        self.rooms.pop(external_room_id, None)

    def _record(self, method: str, **kwargs: Any) -> None:
        self.calls.append((method, kwargs))
        scripted = self._failures.get(method)
        if scripted:
            raise scripted.pop(0)

    def _room(self, external_room_id: str) -> MockRoom:
        room = self.rooms.get(external_room_id)
        if room is None:
            raise ChatBackendError("Room not found", errcode="M_NOT_FOUND", status=404)
        return room

    def _owner(self, credentials: ExternalCredentials) -> str:
        token = credentials.access_token.get_secret_value()
        return next((uid for uid, tok in self.users.items() if tok == token), "@unknown")

    @staticmethod
    def _require_member(room: MockRoom, external_user_id: str) -> None:
        if external_user_id not in room.members:
            raise ChatBackendError(
                f"User {external_user_id} not in room {room.room_id}",
                errcode="M_FORBIDDEN",
                status=403,
            )

    # ChatBackend

    async def create_room(
        self,
        name: str,
        topic: str | None = None,
        *,
        is_public: bool = False,
        is_direct: bool = False,
        invite_user_ids: list[str] | None = None,
        power_level_overrides: dict[str, int] | None = None,
        history_visibility: str = "shared",
        encrypted: bool = False,
    ) -> CreatedRoom:
        self._record(
            "create_room",
            name=name,
            topic=topic,
            is_public=is_public,
            is_direct=is_direct,
            invite_user_ids=list(invite_user_ids or []),
            power_level_overrides=dict(power_level_overrides or {}),
        )
        room_id = f"!{uuid4().hex[:18]}:{self.server_name}"
        room = MockRoom(
            room_id=room_id, name=name, topic=topic, is_public=is_public, is_direct=is_direct
        )
        room.invited.update(invite_user_ids or [])
        room.power_levels.update(power_level_overrides or {})
        self.rooms[room_id] = room
        return CreatedRoom(external_room_id=room_id)

    async def invite_user(self, external_room_id: str, external_user_id: str) -> None:
        self._record("invite_user", room_id=external_room_id, user_id=external_user_id)
        room = self._room(external_room_id)
        if external_user_id in room.members:
            raise ChatBackendError(
                f"{external_user_id} is already in the room.", errcode="M_FORBIDDEN", status=403
            )
        room.invited.add(external_user_id)

    async def join_room(
        self,
        external_room_id: str,
        external_user_id: str,
        credentials: ExternalCredentials,
    ) -> None:
        self._record("join_room", room_id=external_room_id, user_id=external_user_id)
        room = self._room(external_room_id)
        if external_user_id in room.members:
            return
        if not room.is_public and external_user_id not in room.invited:
            raise ChatBackendError(
                "You are not invited to this room.", errcode="M_FORBIDDEN", status=403
            )
        room.invited.discard(external_user_id)
        room.members.add(external_user_id)

    async def remove_user_from_room(self, external_room_id: str, external_user_id: str) -> None:
        self._record("remove_user_from_room", room_id=external_room_id, user_id=external_user_id)
        room = self._room(external_room_id)
        if external_user_id not in room.members and external_user_id not in room.invited:
            raise ChatBackendError(
                "The target user is not in the room", errcode="M_FORBIDDEN", status=403
            )
        room.members.discard(external_user_id)
        room.invited.discard(external_user_id)

    async def set_room_power_levels(
        self, external_room_id: str, levels: dict[str, int]
    ) -> None:
        self._record("set_room_power_levels", room_id=external_room_id, levels=dict(levels))
        self._room(external_room_id).power_levels.update(levels)

    async def create_external_user(
        self, username: str, password: str, display_name: str | None = None
    ) -> ProvisionedUser:
        self._record("create_external_user", username=username, display_name=display_name)
        user_id = f"@{username}:{self.server_name}"
        if user_id in self.users:
            raise ChatBackendError("User ID already taken.", errcode="M_USER_IN_USE", status=400)
        token = f"syt_{uuid4().hex}"
        self.users[user_id] = token
        return ProvisionedUser(external_user_id=user_id, access_token=token, device_id="MOCK")

    async def fetch_messages(
        self,
        external_room_id: str,
        limit: int = 50,
        page_token: str | None = None,
        credentials: ExternalCredentials | None = None,
    ) -> MessagePage:
        self._record(
            "fetch_messages",
            room_id=external_room_id,
            limit=limit,
            page_token=page_token,
            as_admin=credentials is None,
        )
        room = self._room(external_room_id)
        if credentials is not None:
            self._require_member(room, self._owner(credentials))
        newest_first = list(reversed(room.messages))
        start = int(page_token) if page_token else 0
        page = newest_first[start : start + limit]
        end = start + len(page)
        return MessagePage(
            messages=page,
            next_page_token=str(end) if end < len(newest_first) else None,
            external_room_id=external_room_id,
        )

    async def send_message(
        self,
        external_room_id: str,
        content: str,
        credentials: ExternalCredentials,
        formatted: str | None = None,
    ) -> str:
        self._record("send_message", room_id=external_room_id, content=content)
        room = self._room(external_room_id)
        sender = self._owner(credentials)
        self._require_member(room, sender)
        event_id = f"${uuid4().hex}"
        room.messages.append(
            ChatMessage(
                id=event_id,
                sender=sender,
                body=content,
                formatted_body=formatted,
                timestamp=datetime.now(UTC),
            )
        )
        return event_id

    async def delete_room(self, external_room_id: str) -> bool:
        self._record("delete_room", room_id=external_room_id)
        return self.rooms.pop(external_room_id, None) is not None

    async def close(self) -> None:
        self.closed = True
