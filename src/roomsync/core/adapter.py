"""Translation of domain events into synchronization calls."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from roomsync.core.errors import (
    EntityNotFoundError,
    TenantMissingError,
    UserNotFoundError,
)
from roomsync.core.event_bus import EventBus
from roomsync.core.lifecycle import RoomLifecycleManager
from roomsync.core.membership import MembershipReconciler
from roomsync.core.permissions import PermissionSynchronizer
from roomsync.core.scope import OperationScope
from roomsync.models.config import RoomSyncConfig
from roomsync.models.enums import SyncOutcome
from roomsync.models.events import (
    DomainEvent,
    EntityCreated,
    EntityDeleting,
    MemberAdded,
    MemberRemoved,
    RoleChanged,
    UserJoinedRoom,
)
from roomsync.models.result import SyncResult
from roomsync.tenancy import TenantConnections

logger = logging.getLogger("roomsync.adapter")


class DomainEventAdapter:
    """Best-effort handlers for membership and lifecycle events.

    Every handler opens its own :class:`OperationScope`, never raises and
    returns a :class:`SyncResult`. Chat failures must not block the
    business operation that emitted the event, so they are reported as
    ``skipped_error`` and logged at ERROR instead of propagating.
    """

    def __init__(
        self,
        tenants: TenantConnections,
        lifecycle: RoomLifecycleManager,
        membership: MembershipReconciler,
        permissions: PermissionSynchronizer,
        config: RoomSyncConfig | None = None,
    ) -> None:
        self._tenants = tenants
        self._lifecycle = lifecycle
        self._membership = membership
        self._permissions = permissions
        self._config = config or RoomSyncConfig()
        self._handlers: dict[str, Callable[[Any], Awaitable[SyncResult]]] = {
            MemberAdded.topic: self.on_member_added,
            MemberRemoved.topic: self.on_member_removed,
            RoleChanged.topic: self.on_role_changed,
            EntityDeleting.topic: self.on_entity_deleting,
            EntityCreated.topic: self.on_entity_created,
            UserJoinedRoom.topic: self.on_user_joined,
        }

    def register(self, bus: EventBus) -> None:
        """Subscribe every handler to its topic on *bus*."""
        for topic, handler in self._handlers.items():
            bus.subscribe(topic, handler)

    async def handle(self, event: DomainEvent) -> SyncResult:
        """Route *event* to its handler."""
        handler = self._handlers.get(event.topic)
        if handler is None:
            return SyncResult.noop(event.topic, "unhandled_event", event.tenant_id)
        return await handler(event)

    async def _run(
        self,
        operation: str,
        event: DomainEvent,
        fn: Callable[[OperationScope], Awaitable[SyncResult]],
    ) -> SyncResult:
        if not event.tenant_id:
            exc = TenantMissingError(f"{event.topic} event {event.id} has no tenant_id")
            logger.error("%s", exc, extra={"operation": operation, "event_id": event.id})
            return SyncResult.error(operation, "tenant_missing", event_id=event.id)

        try:
            tenant = await self._tenants.resolve(event.tenant_id)
            async with OperationScope(tenant, self._config) as scope:
                result = await fn(scope)
        except TenantMissingError as exc:
            logger.error("%s", exc, extra={"operation": operation, "event_id": event.id})
            result = SyncResult.error(operation, "tenant_missing", event.tenant_id)
        except EntityNotFoundError as exc:
            result = SyncResult.noop(
                operation, "entity_not_found", event.tenant_id, entity=str(exc)
            )
        except UserNotFoundError as exc:
            result = SyncResult.noop(operation, "user_not_found", event.tenant_id, user=str(exc))
        except Exception as exc:
            logger.exception(
                "Chat sync %s failed for event %s",
                operation,
                event.id,
                extra={"operation": operation, "tenant_id": event.tenant_id},
            )
            result = SyncResult.error(
                operation, exc.__class__.__name__, event.tenant_id, error=str(exc)
            )

        self._log_result(result, event)
        return result

    @staticmethod
    def _log_result(result: SyncResult, event: DomainEvent) -> None:
        extra = {
            "operation": result.operation,
            "tenant_id": result.tenant_id,
            "event_id": event.id,
            "outcome": str(result.outcome),
        }
        if result.outcome == SyncOutcome.APPLIED:
            logger.info("%s applied", result.operation, extra=extra)
        elif result.outcome == SyncOutcome.SKIPPED_NOOP:
            logger.debug("%s skipped: %s", result.operation, result.reason, extra=extra)
        else:
            logger.error(
                "%s skipped after error: %s", result.operation, result.reason, extra=extra
            )

    # Handlers

    async def on_member_added(self, event: MemberAdded) -> SyncResult:
        async def run(scope: OperationScope) -> SyncResult:
            entity = await scope.entity(event.entity)
            user = await scope.user(event.user)
            if await self._membership.ensure_member(scope, entity, user.id):
                return SyncResult.applied("ensure_member", scope.tenant_id, entity=entity.key)
            return SyncResult.error(
                "ensure_member", "reconcile_failed", scope.tenant_id, entity=entity.key
            )

        return await self._run("ensure_member", event, run)

    async def on_member_removed(self, event: MemberRemoved) -> SyncResult:
        async def run(scope: OperationScope) -> SyncResult:
            entity = await scope.entity(event.entity)
            user = await scope.user(event.user)
            if await self._membership.remove_member(scope, entity, user.id):
                return SyncResult.applied("remove_member", scope.tenant_id, entity=entity.key)
            return SyncResult.error(
                "remove_member", "external_removal_failed", scope.tenant_id, entity=entity.key
            )

        return await self._run("remove_member", event, run)

    async def on_role_changed(self, event: RoleChanged) -> SyncResult:
        async def run(scope: OperationScope) -> SyncResult:
            entity = await scope.entity(event.entity)
            return await self._permissions.sync_role_change(scope, entity, event)

        return await self._run("sync_role_change", event, run)

    async def on_entity_deleting(self, event: EntityDeleting) -> SyncResult:
        if event.skip_chat_cleanup and event.tenant_id:
            return SyncResult.noop("delete_entity_rooms", "skip_chat_cleanup", event.tenant_id)

        async def run(scope: OperationScope) -> SyncResult:
            entity = await scope.entity(event.entity)
            removed = await self._lifecycle.delete_entity_rooms(scope, entity)
            return SyncResult.applied("delete_entity_rooms", scope.tenant_id, rooms=removed)

        return await self._run("delete_entity_rooms", event, run)

    async def on_entity_created(self, event: EntityCreated) -> SyncResult:
        async def run(scope: OperationScope) -> SyncResult:
            # The entity may have been rolled back between emit and handling.
            entity = await scope.entity(event.entity)
            creator_id = entity.creator_id
            if event.creator is not None:
                creator_id = (await scope.user(event.creator)).id
            room = await self._lifecycle.get_or_create(scope, entity, creator_id)
            if room is None:
                return SyncResult.noop("create_room", "creation_skipped", scope.tenant_id)
            return SyncResult.applied(
                "create_room",
                scope.tenant_id,
                room_id=room.id,
                external_room_id=room.external_room_id,
            )

        return await self._run("create_room", event, run)

    async def on_user_joined(self, event: UserJoinedRoom) -> SyncResult:
        async def run(scope: OperationScope) -> SyncResult:
            return await self._permissions.sync_joined(scope, event)

        return await self._run("sync_joined", event, run)
