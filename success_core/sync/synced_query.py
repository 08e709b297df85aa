# =============================================================================
# success_core/sync/synced_query.py
# Polled, single-flight queries with freshness tracking
# =============================================================================
"""
Synced Data Layer.

A SyncedQuery owns one keyed piece of server data. It fetches on start, polls
on an interval, refetches on focus/reconnect when stale, retries failures
with exponential backoff, and only publishes data that actually changed.

    client = QueryClient(events=connection_manager, notifier=notifier)
    clients = client.query("clients", fetch_clients, QueryOptions(interval=30))
    clients.start()
    snap = await clients.refresh(force=True)

`fetch_fn(signal)` is an async callable; it receives an AbortSignal and should
pass it to whatever it awaits. An abort (stop or per-attempt timeout) abandons
the attempt even if `fetch_fn` ignores the signal.
"""

from __future__ import annotations
import asyncio
import copy
import random
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
import logging

from success_core.cache.stabilizer import DataStabilizer
from success_core.errors import OperationCancelledError, handle_error
from success_core.notifications import Notifier
from success_core.offline.connection_manager import NetworkEvent, NetworkEvents, Subscription

from .abort import AbortController, AbortSignal, create_timeout_signal, race_signal, safe_abort

logger = logging.getLogger(__name__)

FetchFn = Callable[[AbortSignal], Awaitable[Any]]
DataListener = Callable[[Any], None]

STOP_REASON = "Query stopped"


@dataclass
class QueryOptions:
    """Per-query tunables. Durations in seconds; interval=None disables polling."""
    interval: Optional[float] = 30.0
    stale_time: float = 15.0
    retry: int = 3
    retry_delay_base: float = 1.0
    retry_delay_max: float = 30.0
    timeout: Optional[float] = None
    refetch_on_focus: bool = True
    refetch_on_reconnect: bool = True
    error_title: str = "Failed to load data"

    @classmethod
    def from_settings(cls, settings, **overrides) -> QueryOptions:
        options = cls(
            interval=settings.poll_interval,
            stale_time=settings.stale_time,
            retry=settings.retry,
            retry_delay_base=settings.retry_delay_base,
            retry_delay_max=settings.retry_delay_max,
            timeout=settings.request_timeout,
        )
        return replace(options, **overrides)


@dataclass
class FreshnessState:
    """Mutable bookkeeping for one query."""
    last_updated: Optional[float] = None
    is_loading: bool = False
    is_refreshing: bool = False
    failure_count: int = 0
    error: Optional[Exception] = None


@dataclass(frozen=True)
class QuerySnapshot:
    """Read-only view of a query handed to consumers."""
    data: Any
    is_loading: bool
    error: Optional[Exception]
    last_updated_at: Optional[float]
    is_refreshing: bool


class DataSubscription:
    """Handle for a data listener."""

    def __init__(self, query: SyncedQuery, listener: DataListener):
        self._query = query
        self.listener = listener

    def unsubscribe(self) -> None:
        if self.listener in self._query._listeners:
            self._query._listeners.remove(self.listener)


class SyncedQuery:
    """One keyed query. Create through QueryClient.query()."""

    def __init__(
        self,
        key: str,
        fetch_fn: FetchFn,
        options: Optional[QueryOptions] = None,
        stabilizer: Optional[DataStabilizer] = None,
        events: Optional[NetworkEvents] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.key = key
        self.options = options or QueryOptions()
        self._fetch_fn = fetch_fn
        self._stabilizer = stabilizer or DataStabilizer()
        self._events = events
        self._notifier = notifier
        self._clock = clock
        self._sleep = sleep

        self._data: Any = None
        self._state = FreshnessState()
        self._listeners: List[DataListener] = []
        self._inflight: Optional[asyncio.Task] = None
        self._controller: Optional[AbortController] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._event_subs: List[Subscription] = []
        self._event_tasks: Set[asyncio.Task] = set()
        self._started = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> FreshnessState:
        return self._state

    @property
    def data(self) -> Any:
        return copy.copy(self._data)

    @property
    def is_fetching(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def started(self) -> bool:
        return self._started

    def is_fresh(self) -> bool:
        last = self._state.last_updated
        return last is not None and self._clock() - last < self.options.stale_time

    def snapshot(self) -> QuerySnapshot:
        return QuerySnapshot(
            data=copy.copy(self._data),
            is_loading=self._state.is_loading,
            error=self._state.error,
            last_updated_at=self._state.last_updated,
            is_refreshing=self._state.is_refreshing,
        )

    def subscribe(self, listener: DataListener) -> DataSubscription:
        """`listener(data)` runs whenever the published data changes."""
        self._listeners.append(listener)
        return DataSubscription(self, listener)

    def _publish(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(copy.copy(self._data))
            except Exception as e:
                logger.error(f"Error in data listener for {self.key}: {e}")

    def set_data(self, value: Any) -> None:
        """Replace the data locally (realtime patches, optimistic writes)."""
        self._stabilizer.has_changed(self.key, value)
        self._data = value
        self._state.last_updated = self._clock()
        self._publish()

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    async def refresh(self, force: bool = False) -> QuerySnapshot:
        """
        Fetch unless the data is still fresh (or force=True).

        Concurrent callers share the in-flight fetch. Failures end up on the
        snapshot's `error`, they are not raised.
        """
        if not force and self.is_fresh():
            return self.snapshot()

        task = self._inflight
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(
                self._run_fetch(), name=f"query:{self.key}"
            )
            self._inflight = task

        await asyncio.shield(task)
        return self.snapshot()

    def _retry_delay(self, attempt: int) -> float:
        delay = min(self.options.retry_delay_base * (2 ** attempt), self.options.retry_delay_max)
        delay += delay * random.uniform(0.1, 0.5)
        return min(delay, self.options.retry_delay_max)

    async def _attempt(self, signal: AbortSignal) -> Any:
        if self.options.timeout is None:
            return await race_signal(self._fetch_fn(signal), signal)

        timeout = create_timeout_signal(self.options.timeout)

        def _forward(reason):
            safe_abort(timeout.controller, reason)

        signal.add_listener(_forward)
        try:
            return await race_signal(self._fetch_fn(timeout.signal), timeout.signal)
        finally:
            timeout.clear()
            signal.remove_listener(_forward)

    async def _run_fetch(self) -> None:
        controller = AbortController()
        self._controller = controller
        state = self._state
        state.is_refreshing = True
        state.is_loading = self._data is None
        attempt = 0

        try:
            while True:
                try:
                    data = await self._attempt(controller.signal)
                except OperationCancelledError as e:
                    logger.debug(f"Fetch for {self.key} aborted: {e.reason}")
                    return
                except Exception as e:
                    if controller.signal.aborted:
                        return
                    if attempt >= self.options.retry:
                        self._fail(e)
                        return
                    delay = self._retry_delay(attempt)
                    attempt += 1
                    logger.warning(
                        f"Fetch for {self.key} failed ({e}), retry {attempt}/{self.options.retry} in {delay:.1f}s"
                    )
                    try:
                        await race_signal(self._sleep(delay), controller.signal)
                    except OperationCancelledError:
                        return
                    continue

                if not controller.signal.aborted:
                    self._accept(data)
                return
        finally:
            state.is_loading = False
            state.is_refreshing = False
            if self._controller is controller:
                self._controller = None

    def _accept(self, data: Any) -> None:
        self._state.last_updated = self._clock()
        self._state.error = None
        self._state.failure_count = 0

        if self._stabilizer.has_changed(self.key, data) or self._data is None:
            self._data = data
            self._publish()
        else:
            logger.debug(f"Data for {self.key} unchanged")

    def _fail(self, error: Exception) -> None:
        self._state.error = error
        self._state.failure_count += 1
        handle_error(
            error,
            notifier=self._notifier,
            title=self.options.error_title,
            user_message=f"Could not refresh {self.key}: {error}",
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Fetch now, then poll; refetch on focus/reconnect when stale."""
        if self._started:
            return
        self._started = True

        if self._events is not None:
            if self.options.refetch_on_focus:
                self._event_subs.append(self._events.subscribe(NetworkEvent.FOCUS, self._on_event))
            if self.options.refetch_on_reconnect:
                self._event_subs.append(self._events.subscribe(NetworkEvent.ONLINE, self._on_event))

        self._poll_task = asyncio.get_running_loop().create_task(
            self._poll_loop(), name=f"poll:{self.key}"
        )

    async def _poll_loop(self) -> None:
        await self.refresh()
        if not self.options.interval:
            return
        while True:
            await asyncio.sleep(self.options.interval)
            await self.refresh(force=True)

    def _on_event(self, kind: NetworkEvent) -> None:
        if not self._started or self.is_fresh():
            return
        logger.debug(f"{kind.value} event, refetching stale query {self.key}")
        task = asyncio.get_running_loop().create_task(self.refresh())
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)

    def stop(self) -> None:
        """Stop polling, drop event subscriptions, abort any fetch and reset state."""
        self._started = False
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        for sub in self._event_subs:
            sub.unsubscribe()
        self._event_subs.clear()
        for task in list(self._event_tasks):
            task.cancel()

        safe_abort(self._controller, STOP_REASON)
        self._inflight = None
        self._data = None
        self._state = FreshnessState()
        self._stabilizer.clear_cache(self.key)


class QueryClient:
    """
    Registry of queries sharing one stabilizer, event source and notifier.

    Usage:
        client = QueryClient(defaults=QueryOptions.from_settings(settings))
        query = client.query("nps-data", fetch_nps)
    """

    def __init__(
        self,
        defaults: Optional[QueryOptions] = None,
        stabilizer: Optional[DataStabilizer] = None,
        events: Optional[NetworkEvents] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.defaults = defaults or QueryOptions()
        self.stabilizer = stabilizer or DataStabilizer()
        self.events = events
        self.notifier = notifier
        self._clock = clock
        self._sleep = sleep
        self._queries: Dict[str, SyncedQuery] = {}

    def query(self, key: str, fetch_fn: FetchFn, options: Optional[QueryOptions] = None) -> SyncedQuery:
        """Return the query for `key`, creating it on first use."""
        existing = self._queries.get(key)
        if existing is not None:
            return existing

        query = SyncedQuery(
            key,
            fetch_fn,
            options or replace(self.defaults),
            stabilizer=self.stabilizer,
            events=self.events,
            notifier=self.notifier,
            clock=self._clock,
            sleep=self._sleep,
        )
        self._queries[key] = query
        return query

    def get(self, key: str) -> Optional[SyncedQuery]:
        return self._queries.get(key)

    @property
    def queries(self) -> List[SyncedQuery]:
        return list(self._queries.values())

    @property
    def is_loading(self) -> bool:
        return any(q.state.is_loading for q in self._queries.values())

    @property
    def is_refreshing(self) -> bool:
        return any(q.state.is_refreshing for q in self._queries.values())

    def errors(self) -> Dict[str, Exception]:
        return {k: q.state.error for k, q in self._queries.items() if q.state.error is not None}

    def snapshots(self) -> Dict[str, QuerySnapshot]:
        return {key: query.snapshot() for key, query in self._queries.items()}

    async def refetch_all(self, force: bool = True) -> Dict[str, QuerySnapshot]:
        keys = list(self._queries)
        results = await asyncio.gather(*(self._queries[k].refresh(force=force) for k in keys))
        return dict(zip(keys, results))

    def start_all(self) -> None:
        for query in self._queries.values():
            query.start()

    def stop_all(self) -> None:
        for query in self._queries.values():
            query.stop()
