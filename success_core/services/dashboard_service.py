# =============================================================================
# success_core/services/dashboard_service.py
# Composition root: builds and owns every sync component for one dashboard
# =============================================================================
"""
DashboardService - wires the sync core together from SyncSettings.

One instance per running dashboard; nothing here is a module-level global.

Usage:
    settings = load_settings()
    service = DashboardService(settings, notifier=StreamlitNotifier())
    await service.start()
    view = service.dashboard()
    await service.refresh_data()
    await service.close()
"""

from __future__ import annotations
import asyncio
from pathlib import Path
from typing import Any, Dict, Optional, Set

from success_core.cache.session_cache import SessionCache
from success_core.cache.stabilizer import DataStabilizer
from success_core.cache.ttl_cache import SQLiteKeyValueStore
from success_core.config import SyncSettings, load_settings
from success_core.data.client_metrics import (
    STATUSES,
    average_nps,
    churn_rate_by_month,
    count_by_status,
)
from success_core.data.supabase_client import (
    SupabaseSink,
    SupabaseTable,
    create_supabase_client,
    remember_session,
    restore_session,
    watch_auth_state,
)
from success_core.errors import CacheInstallError, ErrorContext
from success_core.logging import setup_logging
from success_core.notifications import LoggingNotifier, Notifier
from success_core.offline.connection_manager import ConnectionManager, NetworkEvent, Subscription
from success_core.offline.local_database import LocalDatabase
from success_core.offline.offline_cache import (
    AiohttpFetcher,
    Fetcher,
    OfflineCache,
    SQLiteResponseStore,
)
from success_core.offline.sync_engine import SyncEngine
from success_core.sync.realtime import ChangeChannel, RealtimeReconciler, SupabaseRealtimeSource
from success_core.sync.refresh import DashboardSnapshot, RefreshOrchestrator
from success_core.sync.synced_query import QueryClient, QueryOptions, SyncedQuery

from .base_service import BaseService, ServiceResult


class DataKeys:
    """Query keys of the dashboard."""
    CLIENTS = "clients"
    CLIENT_COUNTS = "client-counts"
    NPS_DATA = "nps-data"
    CHURN_DATA = "churn-data"


CLIENTS_TABLE = "clients"

# NPS and churn move slowly; poll them less often than the client list.
SLOW_POLL_INTERVAL = 60.0


class DashboardService(BaseService):
    """Owns the query client, caches, connectivity, offline cache and sync engine."""

    def __init__(
        self,
        settings: SyncSettings,
        notifier: Optional[Notifier] = None,
        client: Any = None,
        local_db: Optional[LocalDatabase] = None,
        connection: Optional[ConnectionManager] = None,
        fetcher: Optional[Fetcher] = None,
    ):
        super().__init__()
        self.settings = settings.validate()
        self.notifier = notifier or LoggingNotifier()
        self.client = client

        self.local_db = (local_db or LocalDatabase(settings.db_path)).initialize()
        self.sessions = SessionCache(SQLiteKeyValueStore(self.local_db), ttl=settings.session_ttl)
        self.stabilizer = DataStabilizer(expiry=settings.stabilizer_expiry)
        self.connection = connection or ConnectionManager(
            supabase_url=settings.supabase_url,
            check_interval_online=settings.check_interval_online,
            check_interval_offline=settings.check_interval_offline,
        )
        self.query_client = QueryClient(
            defaults=QueryOptions.from_settings(settings),
            stabilizer=self.stabilizer,
            events=self.connection,
            notifier=self.notifier,
        )
        self.orchestrator = RefreshOrchestrator(self.query_client, self.connection, self.notifier)

        self.fetcher = fetcher or AiohttpFetcher()
        self.offline_cache = OfflineCache(
            SQLiteResponseStore(self.local_db),
            self.fetcher,
            settings.base_url,
            settings.exclude_patterns,
        )

        self.changes = ChangeChannel()
        self.sync_engine = SyncEngine(self.local_db, None, self.connection, self.notifier)
        self.sync_engine.register_channel(CLIENTS_TABLE, self.changes)

        self.reconciler: Optional[RealtimeReconciler] = None
        self.realtime: Optional[SupabaseRealtimeSource] = None
        self._auth_subscription: Any = None
        self._online_subscription: Optional[Subscription] = None
        self._tasks: Set[asyncio.Task] = set()
        self._started = False

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _register_queries(self, table: SupabaseTable) -> Dict[str, SyncedQuery]:
        async def fetch_clients(signal):
            return await table.fetch_all(signal, order_by="name")

        async def fetch_counts(signal):
            return count_by_status(await table.fetch_all(signal, columns="id,status"))

        async def fetch_nps(signal):
            return average_nps(await table.fetch_all(signal, columns="id,nps_score"))

        async def fetch_churn(signal):
            return churn_rate_by_month(await table.fetch_all(signal, columns="id,status,end_date"))

        def options(**overrides) -> QueryOptions:
            return QueryOptions.from_settings(self.settings, **overrides)

        query = self.query_client.query
        return {
            DataKeys.CLIENTS: query(
                DataKeys.CLIENTS, fetch_clients, options(error_title="Error fetching clients")
            ),
            DataKeys.CLIENT_COUNTS: query(
                DataKeys.CLIENT_COUNTS, fetch_counts, options(error_title="Error fetching client counts")
            ),
            DataKeys.NPS_DATA: query(
                DataKeys.NPS_DATA, fetch_nps,
                options(interval=SLOW_POLL_INTERVAL, error_title="Error fetching NPS data"),
            ),
            DataKeys.CHURN_DATA: query(
                DataKeys.CHURN_DATA, fetch_churn,
                options(interval=SLOW_POLL_INTERVAL, error_title="Error fetching churn data"),
            ),
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def install_offline_cache(self) -> bool:
        """Precache the app shell. A failed install is logged, not fatal."""
        try:
            await self.offline_cache.install(self.settings.cache_version, self.settings.precache_manifest)
            return True
        except CacheInstallError as e:
            self.logger.warning(f"Offline cache not installed: {e.message}")
            return False

    async def _connect(self) -> None:
        """Restore the cached session and wire queries, realtime and writes to Supabase."""
        await restore_session(self.client, self.sessions)
        await remember_session(self.client, self.sessions)
        self._auth_subscription = watch_auth_state(self.client, self.sessions)

        table = SupabaseTable(self.client, CLIENTS_TABLE)
        queries = self._register_queries(table)
        dependents = [q for key, q in queries.items() if key != DataKeys.CLIENTS]
        self.reconciler = RealtimeReconciler(queries[DataKeys.CLIENTS], self.changes, dependents)
        self.reconciler.start()

        self.realtime = SupabaseRealtimeSource(self.client, CLIENTS_TABLE, self.changes)
        with ErrorContext("Subscribing to realtime changes", notifier=self.notifier):
            await self.realtime.start()

        self.sync_engine.sink = SupabaseSink(self.client)

    def _on_online(self, _kind: NetworkEvent) -> None:
        if self.realtime is None or self.realtime.is_subscribed:
            return
        task = asyncio.get_running_loop().create_task(self._resubscribe(), name="realtime-resubscribe")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _resubscribe(self) -> None:
        with ErrorContext("Subscribing to realtime changes", notifier=self.notifier):
            await self.realtime.start()

    async def start(self, probe: bool = True, precache: bool = True) -> None:
        """
        Connect and start syncing.

        The Supabase client is built from settings even while offline, so
        the queries and the write path are in place before the first
        reconnect.

        Args:
            probe: Run a connectivity check before starting
            precache: Install the offline cache version from settings
        """
        if self._started:
            return

        with self.log_operation("Starting dashboard sync"):
            if probe:
                await self.connection.check_connection()

            if self.client is None and self.settings.has_supabase:
                with ErrorContext("Connecting to Supabase", notifier=self.notifier):
                    self.client = await create_supabase_client(self.settings)

            if self.client is not None:
                await self._connect()
            else:
                self.logger.warning("No Supabase client; dashboard queries are disabled")

            if precache:
                await self.install_offline_cache()

            self.orchestrator.start()
            self.sync_engine.start()
            self._online_subscription = self.connection.subscribe(NetworkEvent.ONLINE, self._on_online)
            self.connection.start_monitoring()
            self._started = True

    async def close(self) -> None:
        """Stop every component and release connections."""
        self.orchestrator.close()
        self.sync_engine.stop()
        if self._online_subscription is not None:
            self._online_subscription.unsubscribe()
            self._online_subscription = None
        for task in list(self._tasks):
            task.cancel()
        if self._auth_subscription is not None:
            self._auth_subscription.unsubscribe()
            self._auth_subscription = None
        if self.reconciler is not None:
            await self.reconciler.stop()
        if self.realtime is not None:
            await self.realtime.stop()
        await self.connection.stop_monitoring()
        close_fetcher = getattr(self.fetcher, "close", None)
        if close_fetcher is not None:
            await close_fetcher()
        self.local_db.close()
        self._started = False
        self.logger.info("Dashboard sync closed")

    # -------------------------------------------------------------------------
    # Dashboard API
    # -------------------------------------------------------------------------

    def snapshot(self) -> DashboardSnapshot:
        return self.orchestrator.snapshot()

    def dashboard(self) -> Dict[str, Any]:
        """The dashboard view with empty defaults for data not loaded yet."""
        snap = self.snapshot()
        data = snap.data
        return {
            "clients": data.get(DataKeys.CLIENTS) or [],
            "client_counts": data.get(DataKeys.CLIENT_COUNTS) or {s: 0 for s in STATUSES},
            "nps_score": data.get(DataKeys.NPS_DATA) or 0,
            "churn_data": data.get(DataKeys.CHURN_DATA) or [],
            "is_loading": snap.is_loading,
            "is_refreshing": snap.is_refreshing,
            "error": snap.error,
            "last_updated": snap.last_updated,
            "is_online": self.orchestrator.is_online,
            "pending_changes": self.sync_engine.pending_count,
        }

    async def refresh_data(self) -> DashboardSnapshot:
        return await self.orchestrator.refresh_data()

    def notify_focus(self) -> None:
        """Call when the dashboard window regains focus."""
        self.connection.notify_focus()

    async def submit_change(self, operation: str, data: Dict[str, Any], table: str = CLIENTS_TABLE) -> ServiceResult:
        """Write a client change; queued for later when offline."""
        return await self.execute_safely(
            f"{operation.upper()} on {table}", self.sync_engine.submit, table, operation, data
        )

    async def sync_offline_changes(self) -> ServiceResult:
        return await self.execute_safely("Syncing offline changes", self.sync_engine.sync_all)


def create_dashboard(
    path: Optional[Path] = None,
    notifier: Optional[Notifier] = None,
    **overrides: Any,
) -> DashboardService:
    """
    App entry point: load settings, configure logging, build the service.

    Usage (top of the Streamlit script):
        service = create_dashboard(notifier=StreamlitNotifier())
        await service.start()
    """
    settings = load_settings(path, **overrides)
    setup_logging(
        level=settings.log_level_number,
        log_to_file=settings.log_to_file,
        log_dir=settings.log_dir,
    )
    return DashboardService(settings, notifier=notifier)
