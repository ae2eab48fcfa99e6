"""Mapping of internal roles to room power levels."""

from __future__ import annotations

import logging

from roomsync.core.errors import ExternalChatError, UserNotFoundError
from roomsync.core.external import ExternalChatClient
from roomsync.core.scope import OperationScope
from roomsync.models.entity import Entity
from roomsync.models.enums import EntityKind, PowerLevel, RoleAction
from roomsync.models.events import RoleChanged, UserJoinedRoom
from roomsync.models.result import SyncResult

logger = logging.getLogger("roomsync.permissions")

MODERATOR_ROLES = frozenset({"host", "cohost", "moderator", "admin", "owner", "creator"})
ADMINISTRATOR_ROLES = frozenset({"superadmin", "systemadmin"})
REGULAR_ROLES = frozenset({"member", "attendee", "guest", "participant", "confirmed", "pending"})

# Role assumed for a joiner without a membership record.
DEFAULT_ROLES: dict[str, str] = {
    EntityKind.EVENT: "Attendee",
    EntityKind.GROUP: "Member",
}


def _normalize(role: str) -> str:
    return "".join(ch for ch in role.lower() if ch not in "_- ")


def classify_role(role: str | None) -> int | None:
    """Power level for an internal role name, or ``None`` if unrecognized.

    Matching ignores case, underscores, hyphens and spaces, so ``CO_HOST``,
    ``co-host`` and ``CoHost`` are the same role.
    """
    if not role:
        return None
    name = _normalize(role)
    if name in ADMINISTRATOR_ROLES:
        return PowerLevel.ADMINISTRATOR
    if name in MODERATOR_ROLES:
        return PowerLevel.MODERATOR
    if name in REGULAR_ROLES:
        return PowerLevel.REGULAR
    return None


class PermissionSynchronizer:
    """Pushes power levels to external rooms when roles change.

    Never creates rooms or changes membership; rooms that do not exist yet
    receive the right level when the user joins (see :meth:`sync_joined`).
    """

    def __init__(self, client: ExternalChatClient) -> None:
        self._client = client

    async def sync_role_change(
        self, scope: OperationScope, entity: Entity, event: RoleChanged
    ) -> SyncResult:
        operation = "sync_role_change"
        if event.action == RoleAction.REVOKED:
            level: int | None = PowerLevel.REGULAR
        else:
            level = classify_role(event.new_role)
        if level is None:
            logger.info(
                "Role %r is not mapped to a power level, skipping",
                event.new_role,
                extra={"entity_key": entity.key, "tenant_id": scope.tenant_id},
            )
            return SyncResult.noop(
                operation, "role_unclassified", scope.tenant_id, role=event.new_role
            )

        external_user_id = event.external_user_id
        if not external_user_id:
            try:
                user = await scope.user(event.user)
            except UserNotFoundError:
                return SyncResult.noop(operation, "user_not_found", scope.tenant_id)
            external_user_id = user.external_user_id
        if not external_user_id:
            return SyncResult.noop(operation, "no_external_identity", scope.tenant_id)

        rooms = [
            room
            for room in await scope.store.find_rooms_for_entity(entity.kind, entity.id)
            if room.external_room_id
        ]
        if not rooms:
            return SyncResult.noop(operation, "no_rooms", scope.tenant_id)

        applied: list[str] = []
        failed: list[str] = []
        for room in rooms:
            assert room.external_room_id is not None
            try:
                await self._client.set_room_power_levels(
                    room.external_room_id, {external_user_id: int(level)}
                )
                applied.append(room.id)
            except ExternalChatError as exc:
                failed.append(room.id)
                logger.warning(
                    "Could not set power level %d for %s in %s: %s",
                    level,
                    external_user_id,
                    room.external_room_id,
                    exc.message,
                    extra={"room_id": room.id, "tenant_id": scope.tenant_id},
                )

        detail = {"level": int(level), "rooms": applied, "failed_rooms": failed}
        if not applied:
            return SyncResult.error(operation, "all_rooms_failed", scope.tenant_id, **detail)
        logger.info(
            "Set power level %d for %s in %d rooms of %s",
            level,
            external_user_id,
            len(applied),
            entity.key,
            extra={"entity_key": entity.key, "tenant_id": scope.tenant_id},
        )
        return SyncResult.applied(operation, scope.tenant_id, **detail)

    async def sync_joined(self, scope: OperationScope, event: UserJoinedRoom) -> SyncResult:
        """Give a freshly joined user the level their current role implies.

        Regular members are left alone; only elevated levels are pushed.
        """
        operation = "sync_joined"
        assert event.entity.id is not None
        membership = await scope.directory.get_membership(
            event.entity.kind, event.entity.id, event.user_id
        )
        role = membership.role if membership is not None else DEFAULT_ROLES[event.entity.kind]
        level = classify_role(role)
        if level is None:
            logger.info("Role %r of joined user is not mapped, skipping", role)
            return SyncResult.noop(operation, "role_unclassified", scope.tenant_id, role=role)
        if level <= PowerLevel.REGULAR:
            return SyncResult.noop(operation, "regular_member", scope.tenant_id, role=role)

        try:
            await self._client.set_room_power_levels(
                event.external_room_id, {event.external_user_id: int(level)}
            )
        except ExternalChatError as exc:
            logger.warning(
                "Could not set power level for %s in %s: %s",
                event.external_user_id,
                event.external_room_id,
                exc.message,
                extra={"tenant_id": scope.tenant_id},
            )
            return SyncResult.error(operation, str(exc.category), scope.tenant_id)
        return SyncResult.applied(operation, scope.tenant_id, level=int(level), role=role)
