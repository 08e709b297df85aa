# =============================================================================
# success_core/sync/realtime.py
# Realtime change events and their reconciliation into local collections
# =============================================================================
"""
Realtime Reconciliation.

Supabase pushes row changes over a realtime channel. Each push becomes a
ChangeEvent on a ChangeChannel (an asyncio.Queue); a RealtimeReconciler
drains the channel and patches the owning SyncedQuery in batches with
`apply_changes`, so a burst of pushes costs one publish instead of many.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence
import logging

from success_core.errors import ReconciliationError

if TYPE_CHECKING:
    from .synced_query import SyncedQuery

logger = logging.getLogger(__name__)

ID_KEY = "id"


class ChangeKind(Enum):
    """Row change types, as named by Postgres replication."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """
    One row change. INSERT/UPDATE carry the full new `record`; DELETE only
    needs the `id` of the removed row.
    """
    kind: ChangeKind
    record: Optional[Dict[str, Any]] = None
    id: Any = None
    table: Optional[str] = None

    @classmethod
    def insert(cls, record: Dict[str, Any], table: Optional[str] = None) -> ChangeEvent:
        return cls(ChangeKind.INSERT, record=record, table=table)

    @classmethod
    def update(cls, record: Dict[str, Any], table: Optional[str] = None) -> ChangeEvent:
        return cls(ChangeKind.UPDATE, record=record, table=table)

    @classmethod
    def delete(cls, id: Any, table: Optional[str] = None) -> ChangeEvent:
        return cls(ChangeKind.DELETE, id=id, table=table)

    @property
    def record_id(self) -> Any:
        if self.kind == ChangeKind.DELETE:
            return self.id
        return self.record.get(ID_KEY) if isinstance(self.record, dict) else None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], table: Optional[str] = None) -> ChangeEvent:
        """
        Parse a Supabase `postgres_changes` payload.

        Accepts both the client-side shape (`eventType`, `new`, `old`) and the
        server message shape (`data.type`, `data.record`, `data.old_record`).
        """
        if not isinstance(payload, dict):
            raise ReconciliationError("Change payload is not a mapping", kind=None)

        body = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        raw_kind = body.get("eventType") or body.get("type")
        try:
            kind = ChangeKind(str(raw_kind).upper())
        except ValueError:
            raise ReconciliationError(f"Unknown change type: {raw_kind}", kind=str(raw_kind))

        table = table or body.get("table")
        new = body.get("new") or body.get("record") or {}
        old = body.get("old") or body.get("old_record") or {}

        if kind == ChangeKind.DELETE:
            return cls.delete(old.get(ID_KEY), table=table)
        return cls(kind, record=dict(new), table=table)


def _validate(change: Any) -> ChangeEvent:
    if not isinstance(change, ChangeEvent):
        raise ReconciliationError(f"Not a change event: {change!r}")
    if change.kind != ChangeKind.DELETE and not isinstance(change.record, dict):
        raise ReconciliationError("Change has no record", kind=change.kind.value)
    if change.record_id is None:
        raise ReconciliationError("Change has no id", kind=change.kind.value)
    return change


def apply_changes(changes: Iterable[ChangeEvent], current: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Apply a batch of changes to a collection and return the new collection.

    All inserts are applied first, then updates, then deletes. Inserts for ids
    that already exist are skipped; updates shallow-merge onto existing rows
    and ignore unknown ids; deletes of unknown ids do nothing. Rows that are
    not touched keep their relative order. `current` is not modified.

    Malformed events are logged and dropped; the rest of the batch still
    applies.
    """
    inserts: List[Dict[str, Any]] = []
    updates: List[Dict[str, Any]] = []
    deletes = set()

    for change in changes:
        try:
            change = _validate(change)
        except ReconciliationError as e:
            logger.warning(f"Dropping malformed change: {e.message}")
            continue

        if change.kind == ChangeKind.INSERT:
            inserts.append(change.record)
        elif change.kind == ChangeKind.UPDATE:
            updates.append(change.record)
        else:
            deletes.add(change.id)

    result = list(current)
    index = {row.get(ID_KEY): i for i, row in enumerate(result) if row.get(ID_KEY) is not None}

    for record in inserts:
        if record[ID_KEY] in index:
            continue
        index[record[ID_KEY]] = len(result)
        result.append(dict(record))

    for record in updates:
        position = index.get(record[ID_KEY])
        if position is None:
            continue
        result[position] = {**result[position], **record}

    if deletes:
        result = [row for row in result if row.get(ID_KEY) not in deletes]

    return result


class ChangeChannel:
    """
    Bounded FIFO of ChangeEvents between a producer (realtime source,
    optimistic writes) and one consumer (RealtimeReconciler).
    """

    DEFAULT_MAXSIZE = 1000

    def __init__(self, maxsize: int = DEFAULT_MAXSIZE):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self.dropped = 0

    async def publish(self, event: ChangeEvent) -> None:
        """Enqueue, waiting for room when the channel is full."""
        await self._queue.put(event)

    def publish_nowait(self, event: ChangeEvent) -> bool:
        """Enqueue from synchronous callbacks. Returns False if the channel is full."""
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Change channel full, dropped {event.kind.value} for {event.record_id}")
            return False

    async def get(self) -> ChangeEvent:
        return await self._queue.get()

    def drain_nowait(self, limit: Optional[int] = None) -> List[ChangeEvent]:
        """Take whatever is queued right now, up to `limit` events."""
        events: List[ChangeEvent] = []
        while not self._queue.empty() and (limit is None or len(events) < limit):
            events.append(self._queue.get_nowait())
        return events

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()


class RealtimeReconciler:
    """
    Consumes a ChangeChannel and patches a SyncedQuery's collection.

    `dependents` are queries derived from the same table (counts, metrics);
    they are refetched whenever a batch changes the collection.
    """

    MAX_BATCH = 100

    def __init__(
        self,
        query: SyncedQuery,
        channel: ChangeChannel,
        dependents: Sequence[SyncedQuery] = (),
        max_batch: int = MAX_BATCH,
    ):
        self.query = query
        self.channel = channel
        self.dependents = list(dependents)
        self.max_batch = max_batch
        self._task: Optional[asyncio.Task] = None
        self._refetches: set = set()

    def apply(self, batch: Sequence[ChangeEvent]) -> bool:
        """Apply one batch now. Returns True if the collection changed."""
        current = self.query.data or []
        updated = apply_changes(batch, current)
        if updated == current:
            return False

        self.query.set_data(updated)
        logger.debug(f"Applied {len(batch)} change(s) to {self.query.key}")

        for dependent in self.dependents:
            task = asyncio.get_running_loop().create_task(dependent.refresh(force=True))
            self._refetches.add(task)
            task.add_done_callback(self._refetches.discard)
        return True

    async def run(self) -> None:
        while True:
            first = await self.channel.get()
            batch = [first] + self.channel.drain_nowait(self.max_batch - 1)
            try:
                self.apply(batch)
            except Exception as e:
                logger.error(f"Failed to apply realtime batch to {self.query.key}: {e}")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(
                self.run(), name=f"reconcile:{self.query.key}"
            )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


class SupabaseRealtimeSource:
    """
    Subscribes to `postgres_changes` for one table on an async Supabase client
    and publishes every change to a ChangeChannel.
    """

    def __init__(self, client, table: str, channel: ChangeChannel, schema: str = "public"):
        self.client = client
        self.table = table
        self.schema = schema
        self.channel = channel
        self._realtime_channel = None

    @property
    def is_subscribed(self) -> bool:
        return self._realtime_channel is not None

    def _on_change(self, payload: Dict[str, Any]) -> None:
        try:
            event = ChangeEvent.from_payload(payload, table=self.table)
        except ReconciliationError as e:
            logger.warning(f"Ignoring realtime payload for {self.table}: {e.message}")
            return
        self.channel.publish_nowait(event)

    async def start(self) -> None:
        if self._realtime_channel is not None:
            return
        realtime_channel = self.client.channel(f"{self.table}-changes")
        realtime_channel.on_postgres_changes(
            "*", schema=self.schema, table=self.table, callback=self._on_change
        )
        await realtime_channel.subscribe()
        self._realtime_channel = realtime_channel
        logger.info(f"Subscribed to realtime changes on {self.schema}.{self.table}")

    async def stop(self) -> None:
        realtime_channel, self._realtime_channel = self._realtime_channel, None
        if realtime_channel is not None:
            await self.client.remove_channel(realtime_channel)
            logger.info(f"Unsubscribed from realtime changes on {self.table}")
