"""Tests for the Matrix chat backend."""

from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from roomsync.core.errors import ChatBackendError
from roomsync.models.entity import ExternalCredentials
from roomsync.providers.matrix import MatrixChatBackend, MatrixConfig

Handler = Callable[[httpx.Request], httpx.Response]


def _config(**overrides: Any) -> MatrixConfig:
    defaults: dict[str, Any] = {
        "homeserver_url": "https://matrix.example.org/",
        "server_name": "example.org",
        "admin_access_token": "admin-token",
        "registration_shared_secret": "s3cret",
    }
    defaults.update(overrides)
    return MatrixConfig(**defaults)


class _RoutingTransport(httpx.AsyncBaseTransport):
    """Answers requests from a list of (method, path suffix, handler) routes."""

    def __init__(self, routes: list[tuple[str, str, Handler]]) -> None:
        self._routes = routes
        self.requests: list[httpx.Request] = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.raw_path.decode().split("?")[0]
        for method, suffix, handler in self._routes:
            if request.method == method and path.endswith(suffix):
                return handler(request)
        return httpx.Response(
            404,
            json={"errcode": "M_UNRECOGNIZED", "error": "Unrecognized request"},
            request=request,
        )


class _TimeoutTransport(httpx.AsyncBaseTransport):
    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out")


def _json(data: dict[str, Any], status: int = 200) -> Handler:
    return lambda request: httpx.Response(status, json=data, request=request)


def _backend(transport: httpx.AsyncBaseTransport, **overrides: Any) -> MatrixChatBackend:
    backend = MatrixChatBackend(_config(**overrides))
    backend._client = httpx.AsyncClient(transport=transport)
    return backend


def _body(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content) if request.content else {}


CREDS = ExternalCredentials(access_token="user-token")


class TestMatrixConfig:
    def test_urls(self) -> None:
        cfg = _config()
        assert cfg.client_url == "https://matrix.example.org/_matrix/client/v3"
        assert cfg.admin_url == "https://matrix.example.org/_synapse/admin"

    def test_defaults(self) -> None:
        cfg = _config(registration_shared_secret=None)
        assert cfg.timeout == 30.0
        assert cfg.registration_shared_secret is None


class TestRooms:
    async def test_create_room_with_power_levels(self) -> None:
        transport = _RoutingTransport(
            [
                ("POST", "/createRoom", _json({"room_id": "!abc:example.org"})),
                (
                    "GET",
                    "/state/m.room.power_levels/",
                    _json({"users": {"@admin:example.org": 100}, "ban": 50}),
                ),
                ("PUT", "/state/m.room.power_levels/", _json({"event_id": "$pl"})),
            ]
        )
        backend = _backend(transport)

        created = await backend.create_room(
            "group-rustaceans-acme",
            "Discussion for group: rustaceans",
            is_public=True,
            invite_user_ids=["@alice:example.org"],
            power_level_overrides={"@alice:example.org": 50},
        )

        assert created.external_room_id == "!abc:example.org"
        create, get_levels, put_levels = transport.requests
        payload = _body(create)
        assert create.headers["Authorization"] == "Bearer admin-token"
        assert payload["preset"] == "public_chat"
        assert payload["visibility"] == "public"
        assert payload["invite"] == ["@alice:example.org"]
        assert payload["topic"] == "Discussion for group: rustaceans"
        state_types = [s["type"] for s in payload["initial_state"]]
        assert "m.room.encryption" not in state_types
        assert get_levels.method == "GET"
        assert "%21abc%3Aexample.org" in put_levels.url.raw_path.decode()
        assert _body(put_levels) == {
            "users": {"@admin:example.org": 100, "@alice:example.org": 50},
            "ban": 50,
        }
        await backend.close()

    async def test_private_encrypted_room(self) -> None:
        transport = _RoutingTransport(
            [("POST", "/createRoom", _json({"room_id": "!p:example.org"}))]
        )
        backend = _backend(transport)
        await backend.create_room("r", is_direct=True, encrypted=True, history_visibility="joined")
        [create] = transport.requests
        payload = _body(create)
        assert payload["preset"] == "private_chat"
        assert payload["is_direct"] is True
        assert "topic" not in payload
        state = {s["type"]: s["content"] for s in payload["initial_state"]}
        assert state["m.room.history_visibility"] == {"history_visibility": "joined"}
        assert state["m.room.guest_access"] == {"guest_access": "forbidden"}
        assert "m.room.encryption" in state

    async def test_create_room_without_room_id(self) -> None:
        backend = _backend(_RoutingTransport([("POST", "/createRoom", _json({}))]))
        with pytest.raises(ChatBackendError):
            await backend.create_room("r")

    async def test_join_uses_user_token(self) -> None:
        transport = _RoutingTransport([("POST", "/join/%21r%3Aexample.org", _json({}))])
        backend = _backend(transport)
        await backend.join_room("!r:example.org", "@bob:example.org", CREDS)
        [request] = transport.requests
        assert request.headers["Authorization"] == "Bearer user-token"

    async def test_invite_and_kick_bodies(self) -> None:
        transport = _RoutingTransport(
            [("POST", "/invite", _json({})), ("POST", "/kick", _json({}))]
        )
        backend = _backend(transport)
        await backend.invite_user("!r:example.org", "@bob:example.org")
        await backend.remove_user_from_room("!r:example.org", "@bob:example.org")
        invite, kick = transport.requests
        assert _body(invite) == {"user_id": "@bob:example.org"}
        assert _body(kick)["user_id"] == "@bob:example.org"

    async def test_delete_room(self) -> None:
        transport = _RoutingTransport([("DELETE", "/v2/rooms/%21r%3Aexample.org", _json({}))])
        backend = _backend(transport)
        assert await backend.delete_room("!r:example.org") is True
        [request] = transport.requests
        assert _body(request) == {"block": False, "purge": True}

    async def test_delete_missing_room(self) -> None:
        transport = _RoutingTransport(
            [
                (
                    "DELETE",
                    "/v2/rooms/%21r%3Aexample.org",
                    _json({"errcode": "M_NOT_FOUND", "error": "Room not found"}, 404),
                )
            ]
        )
        assert await _backend(transport).delete_room("!r:example.org") is False


class TestErrors:
    async def test_error_body_is_preserved(self) -> None:
        transport = _RoutingTransport(
            [
                (
                    "POST",
                    "/invite",
                    _json(
                        {
                            "errcode": "M_FORBIDDEN",
                            "error": "@bob:example.org is already in the room.",
                        },
                        403,
                    ),
                )
            ]
        )
        with pytest.raises(ChatBackendError) as exc_info:
            await _backend(transport).invite_user("!r:example.org", "@bob:example.org")
        exc = exc_info.value
        assert exc.errcode == "M_FORBIDDEN"
        assert exc.status == 403
        assert exc.message == "@bob:example.org is already in the room."
        assert str(exc) == "M_FORBIDDEN: @bob:example.org is already in the room."

    async def test_non_json_error(self) -> None:
        transport = _RoutingTransport(
            [("POST", "/invite", lambda r: httpx.Response(502, text="Bad Gateway", request=r))]
        )
        with pytest.raises(ChatBackendError) as exc_info:
            await _backend(transport).invite_user("!r:example.org", "@bob:example.org")
        assert exc_info.value.status == 502
        assert exc_info.value.errcode is None

    async def test_timeout_is_builtin_timeout(self) -> None:
        with pytest.raises(TimeoutError):
            await _backend(_TimeoutTransport()).invite_user("!r:example.org", "@bob:example.org")


class TestUsers:
    async def test_register_with_shared_secret(self) -> None:
        def register(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "user_id": "@bob_acme:example.org",
                    "access_token": "syt_token",
                    "device_id": "DEV",
                },
                request=request,
            )

        transport = _RoutingTransport(
            [
                ("GET", "/v1/register", _json({"nonce": "abc123"})),
                ("POST", "/v1/register", register),
            ]
        )
        backend = _backend(transport)
        user = await backend.create_external_user("bob_acme", "pw", "Bob")

        assert user.external_user_id == "@bob_acme:example.org"
        assert user.access_token == "syt_token"
        assert user.device_id == "DEV"

        payload = _body(transport.requests[1])
        expected = hmac.new(b"s3cret", digestmod=hashlib.sha1)
        expected.update(b"abc123\x00bob_acme\x00pw\x00notadmin")
        assert payload["mac"] == expected.hexdigest()
        assert payload["nonce"] == "abc123"
        assert payload["displayname"] == "Bob"
        assert payload["admin"] is False

    async def test_register_requires_secret(self) -> None:
        backend = _backend(_RoutingTransport([]), registration_shared_secret=None)
        with pytest.raises(ChatBackendError):
            await backend.create_external_user("bob", "pw")

    async def test_user_in_use(self) -> None:
        transport = _RoutingTransport(
            [
                ("GET", "/v1/register", _json({"nonce": "n"})),
                (
                    "POST",
                    "/v1/register",
                    _json({"errcode": "M_USER_IN_USE", "error": "User ID already taken."}, 400),
                ),
            ]
        )
        with pytest.raises(ChatBackendError) as exc_info:
            await _backend(transport).create_external_user("bob", "pw")
        assert exc_info.value.errcode == "M_USER_IN_USE"


class TestMessages:
    async def test_fetch_messages(self) -> None:
        chunk = [
            {
                "type": "m.room.message",
                "event_id": "$2",
                "sender": "@bob:example.org",
                "origin_server_ts": 1_700_000_000_000,
                "content": {"msgtype": "m.text", "body": "hi", "formatted_body": "<b>hi</b>"},
            },
            {"type": "m.room.member", "event_id": "$1", "content": {"membership": "join"}},
        ]
        transport = _RoutingTransport(
            [("GET", "/messages", _json({"chunk": chunk, "end": "t_next"}))]
        )
        backend = _backend(transport)
        page = await backend.fetch_messages("!r:example.org", limit=10, credentials=CREDS)

        assert [m.id for m in page.messages] == ["$2"]
        message = page.messages[0]
        assert message.body == "hi"
        assert message.formatted_body == "<b>hi</b>"
        assert message.timestamp is not None and message.timestamp.year == 2023
        assert page.next_page_token == "t_next"
        [request] = transport.requests
        assert request.url.params["dir"] == "b"
        assert request.url.params["limit"] == "10"
        assert request.headers["Authorization"] == "Bearer user-token"

    async def test_fetch_without_credentials_uses_admin(self) -> None:
        transport = _RoutingTransport([("GET", "/messages", _json({"chunk": []}))])
        page = await _backend(transport).fetch_messages("!r:example.org", page_token="t1")
        assert page.messages == []
        assert page.next_page_token is None
        [request] = transport.requests
        assert request.url.params["from"] == "t1"
        assert request.headers["Authorization"] == "Bearer admin-token"

    async def test_send_message(self) -> None:
        transport = _RoutingTransport([("PUT", "", _json({"event_id": "$sent"}))])
        event_id = await _backend(transport).send_message(
            "!r:example.org", "hello", CREDS, formatted="<i>hello</i>"
        )
        assert event_id == "$sent"
        [request] = transport.requests
        assert "/send/m.room.message/" in request.url.raw_path.decode()
        assert _body(request) == {
            "msgtype": "m.text",
            "body": "hello",
            "format": "org.matrix.custom.html",
            "formatted_body": "<i>hello</i>",
        }
