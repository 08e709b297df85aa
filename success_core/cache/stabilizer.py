# =============================================================================
# success_core/cache/stabilizer.py
# Change detection for incoming data + debounce/throttle helpers
# =============================================================================
"""
DataStabilizer - suppresses redundant updates.

Polling and realtime pushes often deliver the same payload again. The
stabilizer hashes each payload per key and only reports a change when the
content differs from what was seen within the expiry window.

Also provides `debounce` and `throttle` for rate-limiting callbacks on the
event loop.
"""

from __future__ import annotations
import asyncio
import functools
import hashlib
import inspect
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import logging

logger = logging.getLogger(__name__)


def stable_hash(value: Any) -> str:
    """Deterministic content hash: canonical JSON, then md5."""
    canonical = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    """Last observed payload for a key."""
    value: Any
    hash: str
    stored_at: float


class DataStabilizer:
    """
    Per-key change detector.

    Usage:
        stabilizer = DataStabilizer(expiry=5)
        if stabilizer.has_changed("clients", rows):
            publish(rows)
    """

    DEFAULT_EXPIRY = 5.0  # seconds

    def __init__(
        self,
        expiry: float = DEFAULT_EXPIRY,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.expiry = expiry
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def has_changed(self, key: str, new_value: Any) -> bool:
        """
        True on first sight, on different content, and after the entry expired
        or was cleared; False for identical content within the window.
        """
        digest = stable_hash(new_value)
        now = self._clock()
        entry = self._entries.get(key)

        if entry is not None and now - entry.stored_at <= self.expiry and entry.hash == digest:
            return False

        self._entries[key] = CacheEntry(value=new_value, hash=digest, stored_at=now)
        return True

    def clear_cache(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear_all_cache(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# RATE LIMITING HELPERS
# =============================================================================

def _log_task_error(task: asyncio.Future) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error(f"Debounced call failed: {task.exception()}", exc_info=task.exception())


class Debounced:
    """Trailing-edge debounce. Only the last call of a burst runs, `delay` seconds after it."""

    def __init__(self, fn: Callable[..., Any], delay: float):
        functools.update_wrapper(self, fn)
        self._fn = fn
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None

    def __call__(self, *args, **kwargs) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self.delay, self._fire, args, kwargs)

    def _fire(self, args, kwargs) -> None:
        self._handle = None
        try:
            result = self._fn(*args, **kwargs)
        except Exception as e:
            logger.error(f"Debounced call failed: {e}", exc_info=True)
            return
        if inspect.isawaitable(result):
            asyncio.ensure_future(result).add_done_callback(_log_task_error)

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def cancel(self) -> None:
        """Drop the scheduled call, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class Throttled:
    """Leading-edge throttle. Calls inside the `limit` window after a run are dropped."""

    def __init__(
        self,
        fn: Callable[..., Any],
        limit: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        functools.update_wrapper(self, fn)
        self._fn = fn
        self.limit = limit
        self._clock = clock
        self._last_run: Optional[float] = None

    def __call__(self, *args, **kwargs) -> Any:
        now = self._clock()
        if self._last_run is not None and now - self._last_run < self.limit:
            return None
        self._last_run = now
        return self._fn(*args, **kwargs)


def debounce(fn: Callable[..., Any], delay: float) -> Debounced:
    """Coalesce bursts of calls into a single trailing call."""
    return Debounced(fn, delay)


def throttle(
    fn: Callable[..., Any],
    limit: float,
    clock: Callable[[], float] = time.monotonic,
) -> Throttled:
    """Run at most once per `limit` seconds; the first call of a window runs immediately."""
    return Throttled(fn, limit, clock)
