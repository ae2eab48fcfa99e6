"""Outcome of a best-effort synchronization step."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from roomsync.models.enums import SyncOutcome


class SyncResult(BaseModel):
    """What a background handler did.

    Handlers never raise; this is their only output, so it carries enough
    to tell applied work from swallowed failures in logs and tests.
    """

    outcome: SyncOutcome
    operation: str
    tenant_id: str | None = None
    reason: str | None = None
    detail: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def applied(cls, operation: str, tenant_id: str | None = None, **detail: Any) -> SyncResult:
        return cls(
            outcome=SyncOutcome.APPLIED, operation=operation, tenant_id=tenant_id, detail=detail
        )

    @classmethod
    def noop(
        cls, operation: str, reason: str, tenant_id: str | None = None, **detail: Any
    ) -> SyncResult:
        return cls(
            outcome=SyncOutcome.SKIPPED_NOOP,
            operation=operation,
            tenant_id=tenant_id,
            reason=reason,
            detail=detail,
        )

    @classmethod
    def error(
        cls, operation: str, reason: str, tenant_id: str | None = None, **detail: Any
    ) -> SyncResult:
        return cls(
            outcome=SyncOutcome.SKIPPED_ERROR,
            operation=operation,
            tenant_id=tenant_id,
            reason=reason,
            detail=detail,
        )

    @property
    def ok(self) -> bool:
        return self.outcome != SyncOutcome.SKIPPED_ERROR
