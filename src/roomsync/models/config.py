"""Configuration models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RetryPolicy(BaseModel):
    """Retry behaviour for retryable external failures (timeouts, rate limits)."""

    max_retries: int = Field(default=2, ge=0)
    base_delay_seconds: float = Field(default=0.5, gt=0.0)
    max_delay_seconds: float = Field(default=10.0, gt=0.0)
    exponential_base: float = Field(default=2.0, gt=0.0)


class RoomSyncConfig(BaseModel):
    """Tunables for the synchronizer.

    Attributes:
        call_timeout: Seconds allowed for a single chat backend call.
        retry: Retry policy applied to timeouts and rate-limit responses.
        lock_ttl: Age in seconds after which a scope creation lock is
            considered stuck and may be broken.
        max_scope_locks: Creation is skipped when more than this many
            creation locks are held in one operation scope.
        max_process_locks: LRU bound of the process-wide creation lock map.
        bus_handler_timeout: Seconds allowed for one bus handler invocation.
        moderator_level: Power level granted to a room's creator.
        provision_password_length: Length of generated passwords when a user
            is provisioned on the chat backend.
        history_visibility: History visibility written to new rooms.
        encrypt_rooms: Whether new rooms are created encrypted.
    """

    call_timeout: float = Field(default=15.0, gt=0.0)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    lock_ttl: float = Field(default=30.0, gt=0.0)
    max_scope_locks: int = Field(default=5, ge=1)
    max_process_locks: int = Field(default=1024, ge=1)
    bus_handler_timeout: float = Field(default=60.0, gt=0.0)
    moderator_level: int = Field(default=50, ge=0, le=100)
    provision_password_length: int = Field(default=32, ge=16)
    history_visibility: str = "shared"
    encrypt_rooms: bool = False
