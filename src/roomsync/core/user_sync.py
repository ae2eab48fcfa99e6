"""Bulk reconciliation of every room a user should be in."""

from __future__ import annotations

import logging

from roomsync.core.membership import MembershipReconciler
from roomsync.core.scope import OperationScope
from roomsync.models.config import RoomSyncConfig
from roomsync.models.entity import EntityRef, UserRef
from roomsync.models.result import SyncResult
from roomsync.tenancy import TenantConnections

logger = logging.getLogger("roomsync.user_sync")


class UserRoomSync:
    """Adds a user to the rooms of all their events and groups.

    Run when a user first connects to the chat backend, so that
    memberships created before they had a chat identity take effect.
    """

    def __init__(
        self,
        tenants: TenantConnections,
        membership: MembershipReconciler,
        config: RoomSyncConfig | None = None,
    ) -> None:
        self._tenants = tenants
        self._membership = membership
        self._config = config or RoomSyncConfig()

    async def sync_user(self, tenant_id: str | None, user: UserRef | int) -> list[SyncResult]:
        """Reconcile every membership of *user*; one result per entity.

        Raises:
            TenantMissingError: *tenant_id* is empty or unknown.
            UserNotFoundError: The user does not exist.
        """
        tenant = await self._tenants.resolve(tenant_id)
        results: list[SyncResult] = []
        async with OperationScope(tenant, self._config) as scope:
            resolved = await scope.user(user)
            memberships = await scope.directory.list_user_memberships(resolved.id)
            logger.info(
                "Syncing %d memberships for user %s",
                len(memberships),
                resolved.id,
                extra={"user_id": resolved.id, "tenant_id": scope.tenant_id},
            )
            for membership in memberships:
                ref = EntityRef(kind=membership.kind, id=membership.entity_id)
                try:
                    entity = await scope.entity(ref)
                    ok = await self._membership.ensure_member(scope, entity, resolved.id)
                except Exception as exc:
                    logger.exception(
                        "Membership sync failed for user %s in %s",
                        resolved.id,
                        ref,
                        extra={"user_id": resolved.id, "tenant_id": scope.tenant_id},
                    )
                    results.append(
                        SyncResult.error(
                            "sync_user", exc.__class__.__name__, scope.tenant_id, entity=str(ref)
                        )
                    )
                    continue
                if ok:
                    results.append(
                        SyncResult.applied("sync_user", scope.tenant_id, entity=str(ref))
                    )
                else:
                    results.append(
                        SyncResult.error(
                            "sync_user", "reconcile_failed", scope.tenant_id, entity=str(ref)
                        )
                    )
        return results
