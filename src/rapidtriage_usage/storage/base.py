"""Key/value store interface for device-local persisted state."""

from abc import ABC, abstractmethod


class StorageError(Exception):
    """Key/value store failure (connection lost, write rejected, ...)."""


class KeyValueStore(ABC):
    """Async string key/value store.

    Holds the pending-event queue and stats snapshots. Implementations
    raise ``StorageError`` on I/O failure.
    """

    async def initialize(self) -> None:
        """Open connections. No-op for stores that need none."""

    async def close(self) -> None:
        """Release connections. No-op for stores that hold none."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key*. Absent keys are ignored."""
