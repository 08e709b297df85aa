# =============================================================================
# success_core/cache/session_cache.py
# Durable cache for the current Supabase auth session
# =============================================================================
"""
SessionCache - one cached Supabase session with a TTL.

A thin single-slot wrapper over TTLCache. Reading the session on an
authenticated access may refresh its TTL; the payload is never rewritten by a
refresh and the expiry never moves backwards.
"""

from __future__ import annotations
from typing import Any, Optional
import logging

from .ttl_cache import DEFAULT_TTL, KeyValueStore, TTLCache

logger = logging.getLogger(__name__)

SESSION_NAMESPACE = "supabase_"
SESSION_KEY = "session_cache"
SESSION_EXPIRY_KEY = "session_expiry"


class SessionCache:
    """
    Usage:
        sessions = SessionCache(SQLiteKeyValueStore(db))
        sessions.cache_session(session_dict)
        session = sessions.get_cached_session(refresh=True)
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        ttl: float = DEFAULT_TTL,
        cache: Optional[TTLCache] = None,
    ):
        self._cache = cache or TTLCache(store, default_ttl=ttl, namespace=SESSION_NAMESPACE)
        self._cache.expiry_keys.setdefault(SESSION_KEY, SESSION_EXPIRY_KEY)

    @property
    def ttl(self) -> float:
        return self._cache.default_ttl

    def cache_session(self, session: Any, ttl: Optional[float] = None) -> bool:
        """Store the session. Returns False (and logs) if it can't be stored."""
        if not session:
            return False
        try:
            self._cache.put(SESSION_KEY, session, ttl)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to cache session: {e}")
            return False
        logger.debug(f"Session cached, expires in {ttl or self.ttl:.0f}s")
        return True

    def get_cached_session(self, refresh: bool = False) -> Optional[Any]:
        """
        Return the cached session, or None if expired, missing or unreadable.

        Args:
            refresh: Extend the TTL on this (authenticated) access
        """
        session = self._cache.get(SESSION_KEY)
        if session is not None and refresh:
            self._cache.touch(SESSION_KEY)
        return session

    def refresh_ttl(self, ttl: Optional[float] = None) -> bool:
        """Extend the session's TTL. False when there is no live session."""
        return self._cache.touch(SESSION_KEY, ttl)

    def time_remaining(self) -> float:
        """Seconds until the cached session expires (0 if none)."""
        return self._cache.remaining(SESSION_KEY)

    def clear_cached_session(self) -> None:
        self._cache.clear(SESSION_KEY)
