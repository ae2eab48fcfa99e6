"""Entity directory interfaces."""

from roomsync.directory.base import EntityDirectory
from roomsync.directory.memory import InMemoryDirectory

__all__ = ["EntityDirectory", "InMemoryDirectory"]
