"""Key/value stores for persisted usage state."""

from .base import KeyValueStore, StorageError
from .memory import InMemoryKeyValueStore
from .redis_store import RedisKeyValueStore

__all__ = ["InMemoryKeyValueStore", "KeyValueStore", "RedisKeyValueStore", "StorageError"]
