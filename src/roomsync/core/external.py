"""Guarded access to the chat backend: timeouts, retries, classification."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

from roomsync.core.classify import to_external_error
from roomsync.core.errors import ChatBackendError, ExternalChatError, ExternalTransientError
from roomsync.core.retry import retry_with_backoff
from roomsync.models.config import RoomSyncConfig
from roomsync.models.entity import ExternalCredentials
from roomsync.models.message import CreatedRoom, MessagePage, ProvisionedUser
from roomsync.providers.base import ChatBackend

logger = logging.getLogger("roomsync.external")

T = TypeVar("T")


def _is_retryable(exc: Exception) -> bool:
    return isinstance(exc, ExternalTransientError) and exc.retryable


class ExternalChatClient:
    """Wraps a :class:`ChatBackend` so that every call

    * runs under ``config.call_timeout``,
    * raises a typed :class:`ExternalChatError` subclass instead of the
      backend's free-text error,
    * is retried with backoff when it timed out or was rate limited.

    Already-member, room-missing and not-in-room failures are never retried
    here; the caller decides what they mean.
    """

    def __init__(self, backend: ChatBackend, config: RoomSyncConfig | None = None) -> None:
        self._backend = backend
        self._config = config or RoomSyncConfig()

    @property
    def backend(self) -> ChatBackend:
        return self._backend

    async def _call(
        self,
        operation: str,
        fn: Callable[..., Coroutine[Any, Any, T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        async def attempt() -> T:
            try:
                async with asyncio.timeout(self._config.call_timeout):
                    return await fn(*args, **kwargs)
            except ExternalChatError:
                raise
            except (ChatBackendError, TimeoutError) as exc:
                raise to_external_error(exc, operation) from exc

        try:
            return await retry_with_backoff(attempt, self._config.retry, retry_if=_is_retryable)
        except ExternalChatError as exc:
            logger.debug(
                "%s failed: %s (%s)",
                operation,
                exc.message,
                exc.category,
                extra={"operation": operation, "category": str(exc.category)},
            )
            raise

    async def create_room(
        self,
        name: str,
        topic: str | None = None,
        *,
        is_public: bool = False,
        is_direct: bool = False,
        invite_user_ids: list[str] | None = None,
        power_level_overrides: dict[str, int] | None = None,
    ) -> CreatedRoom:
        return await self._call(
            "create_room",
            self._backend.create_room,
            name,
            topic,
            is_public=is_public,
            is_direct=is_direct,
            invite_user_ids=invite_user_ids,
            power_level_overrides=power_level_overrides,
            history_visibility=self._config.history_visibility,
            encrypted=self._config.encrypt_rooms,
        )

    async def invite_user(self, external_room_id: str, external_user_id: str) -> None:
        await self._call(
            "invite_user", self._backend.invite_user, external_room_id, external_user_id
        )

    async def join_room(
        self, external_room_id: str, external_user_id: str, credentials: ExternalCredentials
    ) -> None:
        await self._call(
            "join_room", self._backend.join_room, external_room_id, external_user_id, credentials
        )

    async def remove_user_from_room(self, external_room_id: str, external_user_id: str) -> None:
        await self._call(
            "remove_user_from_room",
            self._backend.remove_user_from_room,
            external_room_id,
            external_user_id,
        )

    async def set_room_power_levels(self, external_room_id: str, levels: dict[str, int]) -> None:
        await self._call(
            "set_room_power_levels", self._backend.set_room_power_levels, external_room_id, levels
        )

    async def create_external_user(
        self, username: str, password: str, display_name: str | None = None
    ) -> ProvisionedUser:
        return await self._call(
            "create_external_user",
            self._backend.create_external_user,
            username,
            password,
            display_name,
        )

    async def fetch_messages(
        self,
        external_room_id: str,
        limit: int = 50,
        page_token: str | None = None,
        credentials: ExternalCredentials | None = None,
    ) -> MessagePage:
        return await self._call(
            "fetch_messages",
            self._backend.fetch_messages,
            external_room_id,
            limit,
            page_token,
            credentials,
        )

    async def send_message(
        self,
        external_room_id: str,
        content: str,
        credentials: ExternalCredentials,
        formatted: str | None = None,
    ) -> str:
        return await self._call(
            "send_message",
            self._backend.send_message,
            external_room_id,
            content,
            credentials,
            formatted,
        )

    async def delete_room(self, external_room_id: str) -> bool:
        return await self._call("delete_room", self._backend.delete_room, external_room_id)
