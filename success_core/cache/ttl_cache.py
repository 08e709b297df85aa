# =============================================================================
# success_core/cache/ttl_cache.py
# Expiring key/value cache with pluggable (memory or durable) storage
# =============================================================================
"""
TTLCache - expiring key/value store.

Expiry is lazy: an expired entry is evicted by the `get` that finds it, there
is no background sweeper. Each entry is stored as two string keys so the
layout stays readable in the durable store:

    <namespace><key>          -> JSON payload
    <namespace><key>:expiry   -> expiry as epoch milliseconds

`expiry_keys` names the expiry key explicitly for keys that need a fixed
layout (the session cache stores `supabase_session_expiry`).
"""

from __future__ import annotations
import json
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Protocol
import logging

from success_core.errors import CacheCorruptionError

if TYPE_CHECKING:
    from success_core.offline.local_database import LocalDatabase

logger = logging.getLogger(__name__)

DEFAULT_TTL = 5 * 60  # seconds
EXPIRY_SUFFIX = ":expiry"

_MISSING = object()


class KeyValueStore(Protocol):
    """String key/value storage used by TTLCache."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def keys(self, prefix: str = "") -> List[str]:
        ...


class MemoryStore:
    """In-process store. Lost on restart."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._data if k.startswith(prefix)]


class SQLiteKeyValueStore:
    """Durable store on top of LocalDatabase.app_settings."""

    def __init__(self, db: LocalDatabase):
        self.db = db.initialize()

    def get(self, key: str) -> Optional[str]:
        return self.db.get_setting(key)

    def set(self, key: str, value: str) -> None:
        self.db.set_setting(key, value)

    def delete(self, key: str) -> None:
        self.db.delete_setting(key)

    def keys(self, prefix: str = "") -> List[str]:
        return self.db.setting_keys(prefix)


class TTLCache:
    """
    Expiring key/value cache.

    Usage:
        cache = TTLCache(MemoryStore(), default_ttl=60)
        cache.put("clients", rows)
        cache.get("clients")          # rows, or None once expired
        cache.touch("clients", 120)   # extend without rewriting the value
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        default_ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
        namespace: str = "",
        expiry_keys: Optional[Dict[str, str]] = None,
    ):
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.store = store if store is not None else MemoryStore()
        self.default_ttl = default_ttl
        self.namespace = namespace
        self.expiry_keys = dict(expiry_keys or {})
        self._clock = clock

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def _expiry_key(self, key: str) -> str:
        if key in self.expiry_keys:
            return f"{self.namespace}{self.expiry_keys[key]}"
        return f"{self.namespace}{key}{EXPIRY_SUFFIX}"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _read_expiry(self, key: str) -> Optional[int]:
        raw = self.store.get(self._expiry_key(key))
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError as e:
            raise CacheCorruptionError("Unreadable expiry timestamp", key=key) from e

    def _evict(self, key: str) -> None:
        self.store.delete(self._key(key))
        self.store.delete(self._expiry_key(key))

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store `value` under `key` for `ttl` seconds (default TTL if None)."""
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        payload = json.dumps(value)
        expires_at = self._now_ms() + int(ttl * 1000)
        self.store.set(self._key(key), payload)
        self.store.set(self._expiry_key(key), str(expires_at))

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value, or `default` when missing, expired or corrupt."""
        try:
            expires_at = self._read_expiry(key)
            if expires_at is None:
                if self.store.get(self._key(key)) is not None:
                    self._evict(key)
                return default

            if self._now_ms() > expires_at:
                logger.debug(f"Cache entry expired: {key}")
                self._evict(key)
                return default

            raw = self.store.get(self._key(key))
            if raw is None:
                self._evict(key)
                return default

            try:
                return json.loads(raw)
            except ValueError as e:
                raise CacheCorruptionError("Unreadable cached payload", key=key) from e

        except CacheCorruptionError as e:
            logger.warning(f"{e}; evicting")
            self._evict(key)
            return default

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def touch(self, key: str, ttl: Optional[float] = None) -> bool:
        """
        Extend the expiry of a live entry without changing its value.

        Expiry never moves backwards. Returns False (and creates nothing) when
        the key is missing or already expired.
        """
        if key not in self:
            return False

        ttl = self.default_ttl if ttl is None else ttl
        new_expiry = self._now_ms() + int(ttl * 1000)
        current = self._read_expiry(key) or 0
        if new_expiry > current:
            self.store.set(self._expiry_key(key), str(new_expiry))
        return True

    def remaining(self, key: str) -> float:
        """Seconds left before `key` expires (0 when missing or expired)."""
        try:
            expires_at = self._read_expiry(key)
        except CacheCorruptionError:
            return 0.0
        if expires_at is None:
            return 0.0
        return max(0.0, (expires_at - self._now_ms()) / 1000)

    def clear(self, key: str) -> None:
        self._evict(key)

    def clear_all(self) -> None:
        """Remove every entry in this cache's namespace."""
        for stored_key in self.store.keys(self.namespace):
            self.store.delete(stored_key)
