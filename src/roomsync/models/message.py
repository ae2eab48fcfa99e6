"""Chat message models returned by the backend."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    """A message fetched from an external room."""

    id: str
    sender: str
    body: str
    formatted_body: str | None = None
    timestamp: datetime | None = None
    raw: dict[str, Any] = Field(default_factory=dict)


class MessagePage(BaseModel):
    """One page of room history."""

    messages: list[ChatMessage] = Field(default_factory=list)
    next_page_token: str | None = None
    external_room_id: str | None = None


class CreatedRoom(BaseModel):
    external_room_id: str


class ProvisionedUser(BaseModel):
    external_user_id: str
    access_token: str
    device_id: str | None = None
