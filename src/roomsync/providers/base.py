"""Abstract base class for external chat backends."""

from __future__ import annotations

from abc import ABC, abstractmethod

from roomsync.models.entity import ExternalCredentials
from roomsync.models.message import CreatedRoom, MessagePage, ProvisionedUser


class ChatBackend(ABC):
    """Thin adapter over a Matrix-style chat server.

    Implementations translate every failure into
    :class:`~roomsync.core.errors.ChatBackendError` carrying the server's
    message text verbatim; callers classify that text, backends do not.
    """

    @property
    def name(self) -> str:
        """Provider name."""
        return self.__class__.__name__

    @abstractmethod
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
        """Create a room.

        Args:
            name: Room display name.
            topic: Optional room topic.
            is_public: Publish in the room directory and allow joins
                without invitation.
            is_direct: Mark the room as a one-to-one conversation.
            invite_user_ids: External user ids invited at creation.
            power_level_overrides: Power levels applied right after
                creation, keyed by external user id.
            history_visibility: History visibility state for the room.
            encrypted: Enable end-to-end encryption.

        Returns:
            The external id of the new room.
        """
        ...

    @abstractmethod
    async def invite_user(self, external_room_id: str, external_user_id: str) -> None:
        """Invite a user using administrative credentials."""
        ...

    @abstractmethod
    async def join_room(
        self,
        external_room_id: str,
        external_user_id: str,
        credentials: ExternalCredentials,
    ) -> None:
        """Join a room acting as the user."""
        ...

    @abstractmethod
    async def remove_user_from_room(self, external_room_id: str, external_user_id: str) -> None:
        """Remove (kick) a user using administrative credentials."""
        ...

    @abstractmethod
    async def set_room_power_levels(
        self, external_room_id: str, levels: dict[str, int]
    ) -> None:
        """Merge *levels* into the room's power level map."""
        ...

    @abstractmethod
    async def create_external_user(
        self, username: str, password: str, display_name: str | None = None
    ) -> ProvisionedUser:
        """Register a user on the server and log them in."""
        ...

    @abstractmethod
    async def fetch_messages(
        self,
        external_room_id: str,
        limit: int = 50,
        page_token: str | None = None,
        credentials: ExternalCredentials | None = None,
    ) -> MessagePage:
        """Read room history, newest first."""
        ...

    @abstractmethod
    async def send_message(
        self,
        external_room_id: str,
        content: str,
        credentials: ExternalCredentials,
        formatted: str | None = None,
    ) -> str:
        """Send a text message acting as the user. Returns the event id."""
        ...

    @abstractmethod
    async def delete_room(self, external_room_id: str) -> bool:
        """Delete a room server-side. Returns ``False`` if it was already gone."""
        ...

    async def close(self) -> None:  # noqa: B027
        """Release resources. Override in subclasses that hold connections."""
