"""Matrix homeserver configuration."""

from __future__ import annotations

from pydantic import BaseModel, SecretStr


class MatrixConfig(BaseModel):
    """Matrix homeserver connection settings.

    ``admin_access_token`` belongs to the service account that creates
    rooms, invites, kicks and sets power levels. ``registration_shared_secret``
    enables user provisioning through the admin registration API.
    """

    homeserver_url: str
    server_name: str
    admin_access_token: SecretStr
    registration_shared_secret: SecretStr | None = None
    device_display_name: str = "roomsync"
    timeout: float = 30.0

    @property
    def client_url(self) -> str:
        return f"{self.homeserver_url.rstrip('/')}/_matrix/client/v3"

    @property
    def admin_url(self) -> str:
        return f"{self.homeserver_url.rstrip('/')}/_synapse/admin"
