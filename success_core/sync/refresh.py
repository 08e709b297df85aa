# =============================================================================
# success_core/sync/refresh.py
# Dashboard-level refresh orchestration
# =============================================================================
"""
RefreshOrchestrator - one view over every dashboard query.

Aggregates the queries of a QueryClient into a single DashboardSnapshot,
offers a manual "refresh everything" action, and reacts to connectivity:
going offline raises the offline banner, coming back online announces it and
refreshes exactly once.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from success_core.notifications import NotificationLevel, Notifier, LoggingNotifier
from success_core.offline.connection_manager import NetworkEvent, NetworkEvents, Subscription

from .synced_query import QueryClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DashboardSnapshot:
    """Everything the dashboard needs to render."""
    data: Dict[str, Any] = field(default_factory=dict)
    is_loading: bool = False
    is_refreshing: bool = False
    error: Optional[Exception] = None
    last_updated: Optional[float] = None


class RefreshOrchestrator:
    """
    Usage:
        orchestrator = RefreshOrchestrator(query_client, connection_manager, notifier)
        orchestrator.start()
        await orchestrator.refresh_data()
        view = orchestrator.snapshot()
        orchestrator.close()
    """

    def __init__(
        self,
        client: QueryClient,
        events: Optional[NetworkEvents] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.client = client
        self.events = events
        self.notifier = notifier or LoggingNotifier()
        self._subscriptions: List[Subscription] = []
        self._refresh_task: Optional[asyncio.Task] = None
        self._event_tasks: set = set()
        self._online = True
        self._started = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_refreshing(self) -> bool:
        manual = self._refresh_task is not None and not self._refresh_task.done()
        return manual or self.client.is_refreshing

    @property
    def is_loading(self) -> bool:
        manual = self._refresh_task is not None and not self._refresh_task.done()
        return manual or self.client.is_loading

    @property
    def error(self) -> Optional[Exception]:
        """First query error, in registration order."""
        errors = self.client.errors()
        return next(iter(errors.values()), None)

    def snapshot(self) -> DashboardSnapshot:
        snapshots = self.client.snapshots()
        timestamps = [s.last_updated_at for s in snapshots.values() if s.last_updated_at is not None]
        return DashboardSnapshot(
            data={key: snap.data for key, snap in snapshots.items()},
            is_loading=self.is_loading,
            is_refreshing=self.is_refreshing,
            error=self.error,
            last_updated=max(timestamps) if timestamps else None,
        )

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    async def refresh_data(self, announce: bool = True) -> DashboardSnapshot:
        """
        Force-refetch every query. Calls made while a refresh is running
        attach to it instead of starting another.
        """
        task = self._refresh_task
        if task is None or task.done():
            if announce:
                self.notifier.notify(
                    "Refreshing dashboard data",
                    "Fetching the latest data from the server.",
                )
            task = asyncio.get_running_loop().create_task(
                self.client.refetch_all(force=True), name="dashboard-refresh"
            )
            self._refresh_task = task

        await asyncio.shield(task)
        return self.snapshot()

    # -------------------------------------------------------------------------
    # Connectivity
    # -------------------------------------------------------------------------

    def _on_online(self, _kind: NetworkEvent) -> None:
        if self._online:
            return
        self._online = True
        self.notifier.notify(
            "Back online",
            "Reconnected to the server. Refreshing data...",
            NotificationLevel.SUCCESS,
        )
        self.notifier.set_offline(False)

        task = asyncio.get_running_loop().create_task(self.refresh_data(announce=False))
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)

    def _on_offline(self, _kind: NetworkEvent) -> None:
        if not self._online:
            return
        self._online = False
        logger.warning("Connection lost, dashboard running on cached data")
        self.notifier.set_offline(True)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Subscribe to connectivity events and start every query."""
        if self._started:
            return
        self._started = True
        if self.events is not None:
            self._online = getattr(self.events, "is_online", True)
            if not self._online:
                self.notifier.set_offline(True)
            self._subscriptions = [
                self.events.subscribe(NetworkEvent.ONLINE, self._on_online),
                self.events.subscribe(NetworkEvent.OFFLINE, self._on_offline),
            ]
        self.client.start_all()

    def close(self) -> None:
        """Unsubscribe from events and stop all queries."""
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []
        for task in list(self._event_tasks):
            task.cancel()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = None
        self.client.stop_all()
        self._started = False
