"""Matrix chat backend over the client-server and Synapse admin HTTP APIs."""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import quote
from uuid import uuid4

from roomsync.core.errors import ChatBackendError
from roomsync.models.entity import ExternalCredentials
from roomsync.models.message import ChatMessage, CreatedRoom, MessagePage, ProvisionedUser
from roomsync.providers.base import ChatBackend
from roomsync.providers.matrix.config import MatrixConfig

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger("roomsync.providers.matrix")


def _q(value: str) -> str:
    return quote(value, safe="")


class MatrixChatBackend(ChatBackend):
    """Talk to a Matrix homeserver (Synapse admin API for provisioning).

    HTTP error bodies are raised as :class:`ChatBackendError` with the
    server's ``errcode`` and ``error`` text untouched. Transport timeouts
    are raised as :class:`TimeoutError` so callers can tell them apart
    from server-reported failures.
    """

    def __init__(self, config: MatrixConfig) -> None:
        try:
            import httpx as _httpx
        except ImportError as exc:
            raise ImportError(
                "httpx is required for MatrixChatBackend. "
                "Install it with: pip install roomsync[matrix]"
            ) from exc
        self._config = config
        self._httpx = _httpx
        self._client: httpx.AsyncClient = _httpx.AsyncClient(timeout=config.timeout)

    @property
    def _admin_token(self) -> str:
        return self._config.admin_access_token.get_secret_value()

    def _user_id(self, localpart_or_id: str) -> str:
        if localpart_or_id.startswith("@"):
            return localpart_or_id
        return f"@{localpart_or_id}:{self._config.server_name}"

    async def _api_call(
        self,
        method: str,
        url: str,
        *,
        token: str | None = None,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        try:
            resp = await self._client.request(
                method, url, json=json, params=params, headers=headers
            )
            resp.raise_for_status()
        except self._httpx.TimeoutException as exc:
            raise TimeoutError(f"{method} {url} timed out") from exc
        except self._httpx.HTTPStatusError as exc:
            raise self._parse_error(exc) from exc
        except self._httpx.HTTPError as exc:
            raise ChatBackendError(str(exc) or exc.__class__.__name__) from exc
        if not resp.content:
            return {}
        data = resp.json()
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _parse_error(exc: Any) -> ChatBackendError:
        """Extract the Matrix ``errcode``/``error`` pair when available."""
        status = exc.response.status_code
        try:
            body = exc.response.json()
        except ValueError:
            return ChatBackendError(f"HTTP {status}", status=status)
        errcode = body.get("errcode")
        message = body.get("error") or f"HTTP {status}"
        return ChatBackendError(message, errcode=errcode, status=status)

    # Rooms

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
        initial_state: list[dict[str, Any]] = [
            {
                "type": "m.room.guest_access",
                "state_key": "",
                "content": {"guest_access": "forbidden"},
            },
            {
                "type": "m.room.history_visibility",
                "state_key": "",
                "content": {"history_visibility": history_visibility},
            },
        ]
        if encrypted:
            initial_state.append(
                {
                    "type": "m.room.encryption",
                    "state_key": "",
                    "content": {"algorithm": "m.megolm.v1.aes-sha2"},
                }
            )
        payload: dict[str, Any] = {
            "name": name,
            "visibility": "public" if is_public else "private",
            "preset": "public_chat" if is_public else "private_chat",
            "is_direct": is_direct,
            "invite": list(invite_user_ids or []),
            "initial_state": initial_state,
        }
        if topic:
            payload["topic"] = topic

        data = await self._api_call(
            "POST", f"{self._config.client_url}/createRoom", token=self._admin_token, json=payload
        )
        room_id = data.get("room_id")
        if not room_id:
            raise ChatBackendError("createRoom response did not include a room_id")
        logger.debug("Created Matrix room %s (%s)", room_id, name, extra={"room_id": room_id})

        # The admin account keeps its creator level; overrides are merged.
        if power_level_overrides:
            await self.set_room_power_levels(room_id, power_level_overrides)
        return CreatedRoom(external_room_id=room_id)

    async def invite_user(self, external_room_id: str, external_user_id: str) -> None:
        await self._api_call(
            "POST",
            f"{self._config.client_url}/rooms/{_q(external_room_id)}/invite",
            token=self._admin_token,
            json={"user_id": external_user_id},
        )

    async def join_room(
        self,
        external_room_id: str,
        external_user_id: str,
        credentials: ExternalCredentials,
    ) -> None:
        await self._api_call(
            "POST",
            f"{self._config.client_url}/join/{_q(external_room_id)}",
            token=credentials.access_token.get_secret_value(),
            json={},
        )
        logger.debug(
            "User %s joined %s",
            external_user_id,
            external_room_id,
            extra={"room_id": external_room_id, "user_id": external_user_id},
        )

    async def remove_user_from_room(self, external_room_id: str, external_user_id: str) -> None:
        await self._api_call(
            "POST",
            f"{self._config.client_url}/rooms/{_q(external_room_id)}/kick",
            token=self._admin_token,
            json={"user_id": external_user_id, "reason": "Removed from membership"},
        )

    async def set_room_power_levels(
        self, external_room_id: str, levels: dict[str, int]
    ) -> None:
        url = f"{self._config.client_url}/rooms/{_q(external_room_id)}/state/m.room.power_levels/"
        current = await self._api_call("GET", url, token=self._admin_token)
        users = dict(current.get("users") or {})
        users.update(levels)
        await self._api_call("PUT", url, token=self._admin_token, json={**current, "users": users})

    async def delete_room(self, external_room_id: str) -> bool:
        try:
            await self._api_call(
                "DELETE",
                f"{self._config.admin_url}/v2/rooms/{_q(external_room_id)}",
                token=self._admin_token,
                json={"block": False, "purge": True},
            )
        except ChatBackendError as exc:
            if exc.status == 404 or exc.errcode == "M_NOT_FOUND":
                return False
            raise
        return True

    # Users

    async def create_external_user(
        self, username: str, password: str, display_name: str | None = None
    ) -> ProvisionedUser:
        secret = self._config.registration_shared_secret
        if secret is None:
            raise ChatBackendError("registration_shared_secret is not configured")

        register_url = f"{self._config.admin_url}/v1/register"
        nonce = (await self._api_call("GET", register_url)).get("nonce", "")
        mac = hmac.new(secret.get_secret_value().encode(), digestmod=hashlib.sha1)
        for part in (nonce, username, password):
            mac.update(part.encode())
            mac.update(b"\x00")
        mac.update(b"notadmin")

        payload: dict[str, Any] = {
            "nonce": nonce,
            "username": username,
            "password": password,
            "admin": False,
            "mac": mac.hexdigest(),
        }
        if display_name:
            payload["displayname"] = display_name
        data = await self._api_call("POST", register_url, json=payload)
        user_id = data.get("user_id") or self._user_id(username)
        token = data.get("access_token")
        if not token:
            raise ChatBackendError(f"Registration of {user_id} returned no access token")
        return ProvisionedUser(
            external_user_id=user_id, access_token=token, device_id=data.get("device_id")
        )

    # Messages

    async def fetch_messages(
        self,
        external_room_id: str,
        limit: int = 50,
        page_token: str | None = None,
        credentials: ExternalCredentials | None = None,
    ) -> MessagePage:
        params: dict[str, Any] = {"dir": "b", "limit": limit}
        if page_token:
            params["from"] = page_token
        token = (
            credentials.access_token.get_secret_value() if credentials else self._admin_token
        )
        data = await self._api_call(
            "GET",
            f"{self._config.client_url}/rooms/{_q(external_room_id)}/messages",
            token=token,
            params=params,
        )
        messages = [
            self._to_message(event)
            for event in data.get("chunk", [])
            if event.get("type") == "m.room.message"
        ]
        return MessagePage(
            messages=messages,
            next_page_token=data.get("end"),
            external_room_id=external_room_id,
        )

    @staticmethod
    def _to_message(event: dict[str, Any]) -> ChatMessage:
        content = event.get("content", {})
        ts = event.get("origin_server_ts")
        return ChatMessage(
            id=event.get("event_id", ""),
            sender=event.get("sender", ""),
            body=content.get("body", ""),
            formatted_body=content.get("formatted_body"),
            timestamp=datetime.fromtimestamp(ts / 1000, tz=UTC) if ts else None,
            raw=event,
        )

    async def send_message(
        self,
        external_room_id: str,
        content: str,
        credentials: ExternalCredentials,
        formatted: str | None = None,
    ) -> str:
        body: dict[str, Any] = {"msgtype": "m.text", "body": content}
        if formatted:
            body["format"] = "org.matrix.custom.html"
            body["formatted_body"] = formatted
        data = await self._api_call(
            "PUT",
            f"{self._config.client_url}/rooms/{_q(external_room_id)}"
            f"/send/m.room.message/{uuid4().hex}",
            token=credentials.access_token.get_secret_value(),
            json=body,
        )
        return str(data.get("event_id", ""))

    async def close(self) -> None:
        await self._client.aclose()
