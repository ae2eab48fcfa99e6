"""Reconciliation of internal membership with external room membership."""

from __future__ import annotations

import logging

from roomsync.core.errors import (
    ChatRoomNotFoundError,
    CredentialsUnavailableError,
    ExternalAlreadyMemberError,
    ExternalChatError,
    ExternalNotInRoomError,
    ExternalRoomMissingError,
    ExternalTransientError,
)
from roomsync.core.event_bus import EventBus
from roomsync.core.external import ExternalChatClient
from roomsync.core.identity import IdentityProvisioner
from roomsync.core.lifecycle import RoomLifecycleManager
from roomsync.core.scope import OperationScope
from roomsync.models.entity import Entity, EntityRef, User
from roomsync.models.enums import MembershipState
from roomsync.models.events import UserJoinedRoom
from roomsync.models.room import ChatRoom

logger = logging.getLogger("roomsync.membership")


class MembershipReconciler:
    """Makes a user a participant of an entity's room, or removes them.

    The chat backend's join and invite calls are not idempotent and report
    "already a member" as an error; this class turns them into an
    idempotent ``ensure_member``. Within one :class:`OperationScope` a
    given (entity, user) pair is reconciled at most once.
    """

    def __init__(
        self,
        client: ExternalChatClient,
        lifecycle: RoomLifecycleManager,
        identities: IdentityProvisioner,
        bus: EventBus | None = None,
    ) -> None:
        self._client = client
        self._lifecycle = lifecycle
        self._identities = identities
        self._bus = bus

    async def ensure_member(
        self,
        scope: OperationScope,
        entity: Entity,
        user_id: int,
        *,
        strict: bool = False,
    ) -> bool:
        """Make *user_id* a member of *entity*'s room.

        Returns ``True`` when the user is (now) a member. Failures are
        logged and reported as ``False``, or raised when *strict* is set.

        Raises:
            ExternalChatError: Only when *strict*; the last failure seen.
            ChatRoomNotFoundError: Only when *strict* and no room could be
                obtained for the entity.
        """
        key = entity.key
        settled = self._settled(scope, key, user_id, strict)
        if settled is not None:
            return settled

        async with scope.pair_lock(key, user_id):
            settled = self._settled(scope, key, user_id, strict)
            if settled is not None:
                return settled
            try:
                await self._reconcile(scope, entity, user_id)
            except ChatRoomNotFoundError:
                logger.warning(
                    "No chat room available for %s, user %s not added",
                    key,
                    user_id,
                    extra={"entity_key": key, "user_id": user_id, "tenant_id": scope.tenant_id},
                )
                if strict:
                    raise
                return False
            except (ExternalChatError, CredentialsUnavailableError) as exc:
                scope.mark_membership(key, user_id, MembershipState.FAILED)
                logger.warning(
                    "Could not add user %s to chat room for %s: %s",
                    user_id,
                    key,
                    exc,
                    extra={"entity_key": key, "user_id": user_id, "tenant_id": scope.tenant_id},
                )
                if not strict:
                    return False
                if isinstance(exc, ExternalChatError):
                    raise
                raise ExternalTransientError(str(exc), operation="ensure_member") from exc
        return True

    @staticmethod
    def _settled(
        scope: OperationScope, key: str, user_id: int, strict: bool
    ) -> bool | None:
        state = scope.membership_state(key, user_id)
        if state == MembershipState.VERIFIED:
            return True
        if state == MembershipState.FAILED:
            if strict:
                raise ExternalTransientError(
                    f"Adding user {user_id} to {key} already failed in this operation",
                    operation="ensure_member",
                )
            return False
        return None

    async def _reconcile(self, scope: OperationScope, entity: Entity, user_id: int) -> None:
        await scope.user(user_id)
        joined: list[User] = []

        async def attempt(room: ChatRoom) -> ChatRoom:
            if room.has_member(user_id):
                return room
            # Re-read: a previous attempt may have provisioned credentials.
            joined.append(await self._join(scope, room, await scope.user(user_id)))
            return room

        room = await self._lifecycle.run_with_recovery(scope, entity, None, attempt)
        if not room.has_member(user_id):
            room = scope.cache_room(await scope.store.add_member(room.id, user_id))
        scope.mark_membership(entity.key, user_id, MembershipState.VERIFIED)

        if not joined:
            return
        member = joined[-1]
        logger.info(
            "User %s joined chat room for %s",
            user_id,
            entity.key,
            extra={"entity_key": entity.key, "user_id": user_id, "tenant_id": scope.tenant_id},
        )
        if self._bus is not None and member.external_user_id and room.external_room_id:
            self._bus.publish(
                UserJoinedRoom(
                    tenant_id=scope.tenant_id,
                    entity=EntityRef(kind=entity.kind, id=entity.id),
                    user_id=user_id,
                    external_user_id=member.external_user_id,
                    room_id=room.id,
                    external_room_id=room.external_room_id,
                )
            )

    async def _join(self, scope: OperationScope, room: ChatRoom, user: User) -> User:
        """Join *user* to *room* on the backend, inviting first if needed.

        Returns the user as updated by credential provisioning.
        """
        assert room.external_room_id is not None
        try:
            user = await self._identities.ensure_credentials(scope, user)
        except CredentialsUnavailableError:
            if not user.external_user_id:
                raise
            # They can still accept an invitation from their own client.
            logger.info(
                "User %s has no stored credentials, inviting only",
                user.id,
                extra={"user_id": user.id, "tenant_id": scope.tenant_id},
            )
            await self._invite(room.external_room_id, user.external_user_id)
            return user

        assert user.external_user_id is not None and user.credentials is not None
        try:
            await self._client.join_room(
                room.external_room_id, user.external_user_id, user.credentials
            )
            return user
        except ExternalAlreadyMemberError:
            return user
        except ExternalRoomMissingError:
            raise
        except ExternalChatError as exc:
            logger.info(
                "Direct join of %s to %s failed (%s), inviting first",
                user.external_user_id,
                room.external_room_id,
                exc.message,
                extra={"user_id": user.id, "category": str(exc.category)},
            )

        await self._invite(room.external_room_id, user.external_user_id)
        try:
            await self._client.join_room(
                room.external_room_id, user.external_user_id, user.credentials
            )
        except ExternalAlreadyMemberError:
            pass
        return user

    async def ensure_direct_member(
        self, scope: OperationScope, room: ChatRoom, user_id: int
    ) -> ChatRoom:
        """Join one of a direct room's two users. Errors propagate."""
        if user_id not in (room.user_a_id, room.user_b_id):
            raise ChatRoomNotFoundError(room.id)
        if room.has_member(user_id):
            return room
        await self._join(scope, room, await scope.user(user_id))
        return scope.cache_room(await scope.store.add_member(room.id, user_id))

    async def _invite(self, external_room_id: str, external_user_id: str) -> None:
        try:
            await self._client.invite_user(external_room_id, external_user_id)
        except ExternalAlreadyMemberError:
            pass

    async def remove_member(self, scope: OperationScope, entity: Entity, user_id: int) -> bool:
        """Remove *user_id* from every room bound to *entity*.

        "Not in room" and "room missing" answers count as success. Returns
        ``False`` if any external removal failed; those rooms keep the user
        in their member list.
        """
        user = await scope.user(user_id)
        rooms = await self._lifecycle.get_entity_rooms(scope, entity)
        ok = True
        for room in rooms:
            if user.external_user_id and room.external_room_id:
                try:
                    await self._client.remove_user_from_room(
                        room.external_room_id, user.external_user_id
                    )
                except (ExternalNotInRoomError, ExternalRoomMissingError):
                    pass
                except ExternalChatError as exc:
                    ok = False
                    logger.warning(
                        "Could not remove user %s from %s: %s",
                        user_id,
                        room.external_room_id,
                        exc.message,
                        extra={
                            "user_id": user_id,
                            "room_id": room.id,
                            "tenant_id": scope.tenant_id,
                        },
                    )
                    continue
            if room.has_member(user_id):
                updated = await scope.store.remove_member(room.id, user_id)
                if updated.is_bound:
                    scope.cache_room(updated)
        scope.forget_membership(entity.key, user_id)
        logger.info(
            "Removed user %s from %d chat rooms for %s",
            user_id,
            len(rooms),
            entity.key,
            extra={"entity_key": entity.key, "user_id": user_id, "tenant_id": scope.tenant_id},
        )
        return ok
