"""Matrix homeserver chat backend."""

from roomsync.providers.matrix.client import MatrixChatBackend
from roomsync.providers.matrix.config import MatrixConfig

__all__ = ["MatrixChatBackend", "MatrixConfig"]
