# success_core/cache/__init__.py
"""
Caches for the sync core: expiring key/value entries, the cached auth
session, and change detection for incoming data.
"""
from .ttl_cache import (
    DEFAULT_TTL,
    KeyValueStore,
    MemoryStore,
    SQLiteKeyValueStore,
    TTLCache,
)
from .session_cache import SessionCache
from .stabilizer import (
    CacheEntry,
    DataStabilizer,
    Debounced,
    Throttled,
    debounce,
    stable_hash,
    throttle,
)

__all__ = [
    "DEFAULT_TTL",
    "KeyValueStore",
    "MemoryStore",
    "SQLiteKeyValueStore",
    "TTLCache",
    "SessionCache",
    "CacheEntry",
    "DataStabilizer",
    "Debounced",
    "Throttled",
    "debounce",
    "stable_hash",
    "throttle",
]
