"""
Factories for the usage tracker and its collaborators.

Builds the key/value store, backend client, stats cache, offline queue
and tracker from ``settings``. ``get_usage_tracker`` returns a lazily
initialised process-wide instance; ``shutdown_usage_tracker`` tears it
down together with the client and store it created.
"""

import asyncio
import logging

from .api.client import UsageApiClient
from .cache.stats_cache import UsageStatsCache
from .config import Settings, settings
from .services.event_queue import OfflineEventQueue
from .services.usage_tracker import UsageTracker
from .storage.base import KeyValueStore
from .storage.memory import InMemoryKeyValueStore
from .storage.redis_store import RedisKeyValueStore

logger = logging.getLogger(__name__)

_tracker: UsageTracker | None = None
_owned: tuple[UsageApiClient, KeyValueStore] | None = None
_tracker_lock = asyncio.Lock()


async def create_key_value_store(config: Settings | None = None) -> KeyValueStore:
    """Create and initialize the configured key/value store."""
    store_config = (config or settings).store

    if store_config.backend == "redis":
        store: KeyValueStore = RedisKeyValueStore(
            url=store_config.redis_url,
            key_prefix=store_config.key_prefix,
            max_connections=store_config.max_connections,
        )
    else:
        store = InMemoryKeyValueStore()

    await store.initialize()
    logger.info(f"Key/value store ready: {store_config.backend}")
    return store


def create_api_client(config: Settings | None = None) -> UsageApiClient:
    """Create a backend client from ``RT_API_*`` settings."""
    api_config = (config or settings).api
    token = api_config.token.get_secret_value() if api_config.token else None
    return UsageApiClient(
        base_url=api_config.base_url,
        timeout=api_config.timeout_seconds,
        token=token,
        max_attempts=api_config.max_attempts,
    )


async def create_usage_tracker(
    config: Settings | None = None,
    store: KeyValueStore | None = None,
    api: UsageApiClient | None = None,
) -> UsageTracker:
    """
    Create and initialize a ``UsageTracker``.

    Args:
        config: Settings to build from (defaults to the module-level ``settings``)
        store: Pre-built store (skips ``create_key_value_store``)
        api: Pre-built backend client (skips ``create_api_client``)

    Returns:
        Initialized tracker with pending events loaded
    """
    config = config or settings
    usage_config = config.usage

    if store is None:
        store = await create_key_value_store(config)
    if api is None:
        api = create_api_client(config)
    await api.initialize()

    cache = UsageStatsCache(
        api=api,
        store=store,
        ttl_seconds=usage_config.cache_ttl_seconds,
        snapshot_prefix=usage_config.stats_snapshot_prefix,
    )
    queue = OfflineEventQueue(store=store, storage_key=usage_config.pending_events_key)

    tracker = UsageTracker(
        api=api,
        cache=cache,
        queue=queue,
        enable_real_time_sync=usage_config.enable_real_time_sync,
        sync_interval_seconds=usage_config.batch_sync_interval_seconds,
        warning_threshold=usage_config.warning_threshold,
        critical_threshold=usage_config.critical_threshold,
    )
    await tracker.initialize()
    return tracker


async def get_usage_tracker() -> UsageTracker:
    """Get or create the process-wide tracker."""
    global _tracker, _owned

    if _tracker is not None:
        return _tracker

    async with _tracker_lock:
        if _tracker is None:
            store = await create_key_value_store()
            api = create_api_client()
            _tracker = await create_usage_tracker(store=store, api=api)
            _owned = (api, store)
            logger.info("Created process-wide UsageTracker")
    return _tracker


async def shutdown_usage_tracker() -> None:
    """Stop the process-wide tracker and release its client and store."""
    global _tracker, _owned

    if _tracker is not None:
        await _tracker.close()
        _tracker = None

    if _owned is not None:
        api, store = _owned
        await api.close()
        await store.close()
        _owned = None
