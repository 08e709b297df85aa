# =============================================================================
# success_core/offline/sync_engine.py
# Offline mutation queue and replay
# =============================================================================
"""
SyncEngine - keeps user writes working while offline.

Features:
- Write-through to Supabase when online
- Durable queue (LocalDatabase.sync_queue) when offline or when the write fails
- Optimistic ChangeEvents once a write is accepted or queued, so the dashboard shows it immediately
- Ordered replay on reconnect, with a retry cap per operation
- Sync status tracking and user notifications
"""

from __future__ import annotations
import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Protocol
import logging

from success_core.errors import NetworkError
from success_core.notifications import LoggingNotifier, NotificationLevel, Notifier
from success_core.sync.realtime import ChangeChannel, ChangeEvent

from .connection_manager import NetworkEvent, NetworkEvents, Subscription
from .local_database import LocalDatabase

logger = logging.getLogger(__name__)

OPERATIONS = ("INSERT", "UPDATE", "DELETE")


class MutationSink(Protocol):
    """Where queued writes end up (Supabase in production)."""

    async def apply(self, table: str, operation: str, data: Dict[str, Any]) -> Any:
        ...


@dataclass
class SyncReport:
    """Outcome of one replay pass."""
    succeeded: int = 0
    failed: int = 0
    remaining: int = 0

    @property
    def ok(self) -> bool:
        return self.failed == 0


@dataclass
class SyncState:
    """Current sync state."""
    is_syncing: bool = False
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    pending_count: int = 0
    failed_count: int = 0
    total_synced: int = 0


class SyncEngine:
    """
    Usage:
        engine = SyncEngine(local_db, SupabaseSink(client), connection_manager, notifier)
        engine.register_channel("clients", clients_channel)
        engine.start()                      # replay automatically on reconnect
        await engine.submit("clients", "UPDATE", {"id": 7, "status": "at-risk"})
        report = await engine.sync_all()
    """

    MAX_RETRY_ATTEMPTS = 5      # Max replays per operation before it is marked failed
    BATCH_SIZE = 50             # Operations per sync pass

    def __init__(
        self,
        local_db: LocalDatabase,
        sink: Optional[MutationSink] = None,
        events: Optional[NetworkEvents] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.local_db = local_db.initialize()
        self.sink = sink
        self.events = events
        self.notifier = notifier or LoggingNotifier()
        self._state = SyncState(pending_count=self.local_db.get_pending_count())
        self._channels: Dict[str, ChangeChannel] = {}
        self._subscription: Optional[Subscription] = None
        self._sync_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state.is_syncing

    @property
    def pending_count(self) -> int:
        return self.local_db.get_pending_count()

    @property
    def is_online(self) -> bool:
        return getattr(self.events, "is_online", True) and self.sink is not None

    def register_channel(self, table: str, channel: ChangeChannel) -> None:
        """Publish optimistic changes for `table` to `channel`."""
        self._channels[table] = channel

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Replay the queue whenever the connection comes back."""
        if self.events is not None and self._subscription is None:
            self._subscription = self.events.subscribe(NetworkEvent.ONLINE, self._on_online)
            logger.info("SyncEngine listening for reconnects")

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._sync_task is not None and not self._sync_task.done():
            self._sync_task.cancel()
        self._sync_task = None

    def _on_online(self, _kind: NetworkEvent) -> None:
        if self._sync_task is not None and not self._sync_task.done():
            return
        logger.info("Connection restored, triggering sync")
        self._sync_task = asyncio.get_running_loop().create_task(self.sync_all(), name="SyncEngine")

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _publish(self, table: str, operation: str, data: Dict[str, Any]) -> None:
        channel = self._channels.get(table)
        if channel is None:
            return
        if operation == "INSERT":
            event = ChangeEvent.insert(data, table=table)
        elif operation == "UPDATE":
            event = ChangeEvent.update(data, table=table)
        else:
            event = ChangeEvent.delete(data.get("id"), table=table)
        channel.publish_nowait(event)

    async def submit(self, table: str, operation: str, data: Dict[str, Any]) -> Optional[int]:
        """
        Apply a write.

        Returns None when it was written through to the server, or the queue
        id when it was stored for later replay.
        """
        operation = operation.upper()
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}")

        data = dict(data)
        if operation == "INSERT" and data.get("id") is None:
            data["id"] = str(uuid.uuid4())

        if self.is_online:
            try:
                await self.sink.apply(table, operation, data)
            except NetworkError as e:
                logger.warning(f"Write-through failed, queueing {operation} on {table}: {e}")
            else:
                logger.debug(f"{operation} on {table} written through")
                self._publish(table, operation, data)
                return None

        queue_id = self.local_db.queue_sync(operation, table, data.get("id"), data)
        self._state.pending_count = self.local_db.get_pending_count()
        logger.info(f"Offline operation queued for {table}: {operation}")
        self._publish(table, operation, data)
        return queue_id

    # -------------------------------------------------------------------------
    # Replay
    # -------------------------------------------------------------------------

    async def sync_all(self) -> SyncReport:
        """Replay pending operations in the order they were queued."""
        if self._state.is_syncing:
            logger.debug("Sync already in progress")
            return SyncReport(remaining=self.pending_count)

        if not self.is_online:
            self.notifier.notify("Offline", "Cannot sync while offline", NotificationLevel.WARNING)
            return SyncReport(remaining=self.pending_count)

        pending = self.local_db.get_pending_sync(limit=self.BATCH_SIZE)
        if not pending:
            return SyncReport()

        self._state.is_syncing = True
        self._state.last_sync = datetime.now()
        self.notifier.notify(
            "Syncing offline changes",
            f"Processing {len(pending)} pending operations...",
        )

        report = SyncReport()
        try:
            for op in pending:
                try:
                    await self.sink.apply(op["table"], op["operation"], op["data"])
                except NetworkError as e:
                    # Connection dropped again; keep the rest queued in order.
                    self.local_db.record_sync_attempt(op["id"], str(e), give_up=False)
                    report.failed += 1
                    logger.warning(f"Sync interrupted at operation {op['id']}: {e}")
                    break
                except Exception as e:
                    give_up = op["attempts"] + 1 >= self.MAX_RETRY_ATTEMPTS
                    self.local_db.record_sync_attempt(op["id"], str(e), give_up=give_up)
                    report.failed += 1
                    logger.error(f"Error syncing operation {op['id']}: {e}")
                else:
                    self.local_db.mark_synced(op["id"])
                    report.succeeded += 1

            self.local_db.clear_synced()
        finally:
            self._state.is_syncing = False

        report.remaining = self.local_db.get_pending_count()
        self._state.total_synced += report.succeeded
        self._state.failed_count = report.failed
        self._state.pending_count = report.remaining
        if report.ok:
            self._state.last_sync_success = datetime.now()

        logger.info(f"Sync complete: {report.succeeded} success, {report.failed} failed")
        self._notify_report(report)
        return report

    def _notify_report(self, report: SyncReport) -> None:
        if report.succeeded > 0:
            suffix = f", {report.failed} failed" if report.failed else ""
            self.notifier.notify(
                "Sync completed",
                f"Successfully synchronized {report.succeeded} operations{suffix}",
                NotificationLevel.SUCCESS,
            )
        elif report.failed > 0:
            self.notifier.notify(
                "Sync issues",
                f"{report.failed} operations couldn't be synchronized",
                NotificationLevel.WARNING,
            )
