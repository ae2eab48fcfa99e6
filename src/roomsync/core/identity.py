"""Provisioning of user identities on the chat backend."""

from __future__ import annotations

import logging
import re
import secrets

from roomsync.core.errors import CredentialsUnavailableError, ExternalChatError
from roomsync.core.external import ExternalChatClient
from roomsync.core.scope import OperationScope
from roomsync.models.config import RoomSyncConfig
from roomsync.models.entity import ExternalCredentials, User

logger = logging.getLogger("roomsync.identity")

_INVALID_LOCALPART = re.compile(r"[^a-z0-9._=-]+")


def external_username(user: User, tenant_id: str) -> str:
    """Localpart for *user* on the chat server, unique per tenant."""
    localpart = _INVALID_LOCALPART.sub("-", f"{user.slug}_{tenant_id}".lower()).strip("-")
    return localpart or f"user-{user.id}_{tenant_id}"


class IdentityProvisioner:
    """Gives users an account and credentials on the chat backend."""

    def __init__(self, client: ExternalChatClient, config: RoomSyncConfig | None = None) -> None:
        self._client = client
        self._config = config or RoomSyncConfig()

    async def ensure_credentials(self, scope: OperationScope, user: User) -> User:
        """Return *user* with credentials, registering them if needed.

        Raises:
            CredentialsUnavailableError: The user already has an external
                identity without usable credentials, or registration failed.
        """
        if user.has_credentials:
            return user
        if user.has_external_identity:
            raise CredentialsUnavailableError(
                f"User {user.id} has external identity {user.external_user_id} "
                "but no stored credentials"
            )

        username = external_username(user, scope.tenant_id)
        password = secrets.token_urlsafe(self._config.provision_password_length)
        try:
            provisioned = await self._client.create_external_user(
                username, password, user.display_name
            )
        except ExternalChatError as exc:
            raise CredentialsUnavailableError(
                f"Could not provision chat account for user {user.id}: {exc.message}"
            ) from exc

        credentials = ExternalCredentials(
            access_token=provisioned.access_token, device_id=provisioned.device_id
        )
        updated = await scope.directory.save_external_identity(
            user.id, provisioned.external_user_id, credentials
        )
        scope.remember_user(updated)
        logger.info(
            "Provisioned chat identity %s for user %s",
            provisioned.external_user_id,
            user.id,
            extra={"user_id": user.id, "tenant_id": scope.tenant_id},
        )
        return updated
