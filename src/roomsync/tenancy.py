"""Resolution of a tenant id to that tenant's store and directory."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from roomsync.core.errors import TenantMissingError
from roomsync.directory.base import EntityDirectory
from roomsync.directory.memory import InMemoryDirectory
from roomsync.store.base import ChatRoomStore
from roomsync.store.memory import InMemoryChatRoomStore

logger = logging.getLogger("roomsync.tenancy")


@dataclass
class TenantContext:
    """Everything an operation needs to act within one tenant."""

    tenant_id: str
    store: ChatRoomStore
    directory: EntityDirectory


class TenantConnections(ABC):
    """Maps an explicit tenant id to its storage.

    Every operation carries its tenant id; there is no ambient or default
    tenant. A missing id is rejected before any storage is touched.
    """

    async def resolve(self, tenant_id: str | None) -> TenantContext:
        if not tenant_id:
            raise TenantMissingError("tenant_id is required")
        return await self._connect(tenant_id)

    @abstractmethod
    async def _connect(self, tenant_id: str) -> TenantContext: ...


class InMemoryTenantConnections(TenantConnections):
    """Per-tenant in-memory store and directory.

    Tenants are registered explicitly with :meth:`register`, or created
    lazily on first use when *factory* is given.
    """

    def __init__(
        self,
        factory: Callable[[str], TenantContext] | None = None,
    ) -> None:
        self._tenants: dict[str, TenantContext] = {}
        self._factory = factory

    def register(
        self,
        tenant_id: str,
        store: ChatRoomStore | None = None,
        directory: EntityDirectory | None = None,
    ) -> TenantContext:
        ctx = TenantContext(
            tenant_id=tenant_id,
            store=store or InMemoryChatRoomStore(),
            directory=directory or InMemoryDirectory(),
        )
        self._tenants[tenant_id] = ctx
        return ctx

    async def _connect(self, tenant_id: str) -> TenantContext:
        ctx = self._tenants.get(tenant_id)
        if ctx is not None:
            return ctx
        if self._factory is None:
            raise TenantMissingError(f"Unknown tenant: {tenant_id}")
        logger.debug("Creating tenant context for %s", tenant_id, extra={"tenant_id": tenant_id})
        ctx = self._factory(tenant_id)
        self._tenants[tenant_id] = ctx
        return ctx
