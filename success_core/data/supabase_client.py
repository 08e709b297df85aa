# =============================================================================
# success_core/data/supabase_client.py
# Async Supabase client factory and table adapters
# Handles paginated reads, writes and auth session caching
# =============================================================================

from __future__ import annotations
from typing import Any, Dict, List, Optional
import logging

import httpx
from supabase import AsyncClient, AuthError, AuthRetryableError, acreate_client

from success_core.cache.session_cache import SessionCache
from success_core.config import SyncSettings
from success_core.errors import NetworkError
from success_core.sync.abort import AbortSignal, race_signal

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000  # Supabase row limit per request


async def create_supabase_client(settings: SyncSettings) -> Optional[AsyncClient]:
    """
    Create an async Supabase client from settings.

    Expects credentials in .streamlit/secrets.toml or the environment:
        [supabase]
        url = "https://your-project.supabase.co"
        key = "your-anon-key"

    Returns:
        AsyncClient, or None when credentials are not configured
    """
    if not settings.has_supabase:
        logger.warning("Supabase credentials not found; running in local-only mode")
        return None

    client = await acreate_client(settings.supabase_url, settings.supabase_key)
    logger.info("Supabase client created")
    return client


async def _execute(query, signal: Optional[AbortSignal], table: str):
    try:
        return await race_signal(query.execute(), signal)
    except httpx.TimeoutException as e:
        raise NetworkError(f"Timed out talking to Supabase table {table}", url=table) from e
    except httpx.HTTPError as e:
        raise NetworkError(f"Could not reach Supabase table {table}: {e}", url=table) from e


class SupabaseTable:
    """
    Async CRUD access to one Supabase table.
    """

    def __init__(self, client: AsyncClient, table_name: str):
        """
        Args:
            client: Async Supabase client
            table_name: Name of the Supabase table
        """
        self.client = client
        self.table_name = table_name

    async def fetch_all(
        self,
        signal: Optional[AbortSignal] = None,
        order_by: Optional[str] = None,
        ascending: bool = True,
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        """
        Fetch ALL records from the table (handles Supabase 1000 row limit).

        Uses range pagination; the abort signal is checked between pages.

        Raises:
            NetworkError: When Supabase cannot be reached
            OperationCancelledError: When `signal` aborts
        """
        all_data: List[Dict[str, Any]] = []
        offset = 0

        while True:
            if signal is not None:
                signal.throw_if_aborted()

            query = self.client.table(self.table_name).select(columns)
            if order_by:
                query = query.order(order_by, desc=not ascending)
            query = query.range(offset, offset + BATCH_SIZE - 1)

            response = await _execute(query, signal, self.table_name)

            if not response.data:
                break
            all_data.extend(response.data)
            # Fewer than a full page means we've reached the end
            if len(response.data) < BATCH_SIZE:
                break
            offset += BATCH_SIZE

        logger.debug(f"Fetched {len(all_data)} rows from {self.table_name}")
        return all_data

    async def insert(self, record: Dict[str, Any]) -> List[Dict[str, Any]]:
        response = await _execute(self.client.table(self.table_name).insert(record), None, self.table_name)
        return response.data

    async def update(self, record: Dict[str, Any]) -> List[Dict[str, Any]]:
        values = {k: v for k, v in record.items() if k != "id"}
        query = self.client.table(self.table_name).update(values).eq("id", record["id"])
        response = await _execute(query, None, self.table_name)
        return response.data

    async def delete(self, record_id: Any) -> List[Dict[str, Any]]:
        query = self.client.table(self.table_name).delete().eq("id", record_id)
        response = await _execute(query, None, self.table_name)
        return response.data


class SupabaseSink:
    """MutationSink that writes queued operations to Supabase tables."""

    def __init__(self, client: AsyncClient):
        self.client = client

    async def apply(self, table: str, operation: str, data: Dict[str, Any]) -> Any:
        target = SupabaseTable(self.client, table)
        if operation == "INSERT":
            return await target.insert(data)
        if operation == "UPDATE":
            return await target.update(data)
        if operation == "DELETE":
            return await target.delete(data["id"])
        raise ValueError(f"Unknown operation: {operation}")


# =============================================================================
# AUTH SESSION
# =============================================================================

SIGNED_OUT = "SIGNED_OUT"


def _session_payload(session: Any) -> Any:
    return session.model_dump(mode="json")


async def remember_session(client: AsyncClient, sessions: SessionCache) -> bool:
    """Copy the client's current auth session into the session cache."""
    try:
        session = await client.auth.get_session()
    except (AuthError, httpx.HTTPError) as e:
        logger.warning(f"Could not read the current auth session: {e}")
        return False
    if session is None:
        return False
    return sessions.cache_session(_session_payload(session))


async def restore_session(client: AsyncClient, sessions: SessionCache) -> bool:
    """
    Put a cached session back on the client. Counts as an authenticated
    access, so the cached entry's TTL is extended.

    A payload without usable tokens, or tokens the auth server rejects, is
    evicted. A network failure keeps the cached session for the next start.
    """
    cached = sessions.get_cached_session(refresh=True)
    if not cached:
        return False
    try:
        await client.auth.set_session(cached["access_token"], cached["refresh_token"])
    except (KeyError, TypeError):
        logger.warning("Cached session is missing tokens; clearing it")
        sessions.clear_cached_session()
        return False
    except (AuthRetryableError, httpx.HTTPError) as e:
        logger.warning(f"Could not restore cached session while offline: {e}")
        return False
    except AuthError as e:
        logger.warning(f"Cached session rejected ({e}); clearing it")
        sessions.clear_cached_session()
        return False
    logger.debug("Restored cached Supabase session")
    return True


def watch_auth_state(client: AsyncClient, sessions: SessionCache):
    """
    Keep the session cache in step with the auth client.

    Every event that carries a session rewrites the cache; signing out clears
    it. Returns the auth subscription (call `.unsubscribe()` to stop).
    """
    def on_change(event: str, session: Any) -> None:
        if event == SIGNED_OUT or session is None:
            sessions.clear_cached_session()
            logger.debug(f"Auth event {event}; session cache cleared")
            return
        sessions.cache_session(_session_payload(session))
        logger.debug(f"Auth event {event}; session cached")

    return client.auth.on_auth_state_change(on_change)
