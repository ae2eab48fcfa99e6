"""Entity, user and reference models."""

from __future__ import annotations

from pydantic import BaseModel, SecretStr, model_validator

from roomsync.models.enums import EntityKind, EntityVisibility
from roomsync.models.room import entity_key


class EntityRef(BaseModel):
    """Reference to an event or group by id or by slug."""

    kind: EntityKind
    id: int | None = None
    slug: str | None = None

    @model_validator(mode="after")
    def _check_identifier(self) -> EntityRef:
        if (self.id is None) == (self.slug is None):
            raise ValueError("exactly one of id or slug must be set")
        return self

    @classmethod
    def event(cls, value: int | str) -> EntityRef:
        if isinstance(value, int):
            return cls(kind=EntityKind.EVENT, id=value)
        return cls(kind=EntityKind.EVENT, slug=value)

    @classmethod
    def group(cls, value: int | str) -> EntityRef:
        if isinstance(value, int):
            return cls(kind=EntityKind.GROUP, id=value)
        return cls(kind=EntityKind.GROUP, slug=value)

    def __str__(self) -> str:
        return f"{self.kind}:{self.id if self.id is not None else self.slug}"


class UserRef(BaseModel):
    """Reference to a user by id or by slug."""

    id: int | None = None
    slug: str | None = None

    @model_validator(mode="after")
    def _check_identifier(self) -> UserRef:
        if (self.id is None) == (self.slug is None):
            raise ValueError("exactly one of id or slug must be set")
        return self

    @classmethod
    def of(cls, value: int | str) -> UserRef:
        if isinstance(value, int):
            return cls(id=value)
        return cls(slug=value)

    def __str__(self) -> str:
        return str(self.id if self.id is not None else self.slug)


class Entity(BaseModel):
    """An event or group as seen by the chat subsystem."""

    id: int
    kind: EntityKind
    slug: str
    name: str = ""
    visibility: EntityVisibility = EntityVisibility.PUBLIC
    creator_id: int | None = None
    external_room_id: str | None = None

    @property
    def key(self) -> str:
        return entity_key(self.kind, self.id)

    @property
    def is_public(self) -> bool:
        return self.visibility == EntityVisibility.PUBLIC


class ExternalCredentials(BaseModel):
    """Credentials a user acts with on the external chat backend."""

    access_token: SecretStr
    device_id: str | None = None


class User(BaseModel):
    """A user as seen by the chat subsystem."""

    id: int
    slug: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    external_user_id: str | None = None
    credentials: ExternalCredentials | None = None

    @property
    def has_external_identity(self) -> bool:
        return bool(self.external_user_id)

    @property
    def has_credentials(self) -> bool:
        return bool(self.external_user_id) and self.credentials is not None

    @property
    def display_name(self) -> str:
        full = " ".join(part for part in (self.first_name, self.last_name) if part)
        if full:
            return full
        if self.email:
            return self.email.split("@", 1)[0]
        return self.slug


class Membership(BaseModel):
    """A user's role in an event or group."""

    entity_id: int
    kind: EntityKind
    user_id: int
    role: str
