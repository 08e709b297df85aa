# =============================================================================
# tests/unit/test_synced_query.py
# Unit Tests for SyncedQuery and QueryClient
# =============================================================================

import asyncio

import pytest

from success_core.errors import NetworkError, SyncTimeoutError
from success_core.sync.synced_query import QueryClient, QueryOptions, SyncedQuery


class CountingFetch:
    """Async fetch function that counts calls and can fail on demand"""

    def __init__(self, results=None, failures=0, error=None):
        self.results = list(results or [[{"id": 1}]])
        self.failures = failures
        self.error = error or NetworkError("offline")
        self.calls = 0
        self.signals = []

    async def __call__(self, signal):
        self.calls += 1
        self.signals.append(signal)
        if self.failures > 0:
            self.failures -= 1
            raise self.error
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


def make_query(fetch, clock, sleep, notifier=None, events=None, **options):
    options.setdefault("interval", None)
    return SyncedQuery(
        "clients",
        fetch,
        QueryOptions(**options),
        events=events,
        notifier=notifier,
        clock=clock,
        sleep=sleep,
    )


class TestFreshness:
    """Non-forced refreshes skip the network while data is fresh"""

    @pytest.mark.asyncio
    async def test_fresh_data_short_circuits(self, clock, fast_sleep):
        fetch = CountingFetch()
        query = make_query(fetch, clock, fast_sleep, stale_time=15)

        await query.refresh()
        clock.advance(10)
        snap = await query.refresh()

        assert fetch.calls == 1
        assert snap.data == [{"id": 1}]

    @pytest.mark.asyncio
    async def test_stale_data_refetches(self, clock, fast_sleep):
        fetch = CountingFetch()
        query = make_query(fetch, clock, fast_sleep, stale_time=15)

        await query.refresh()
        clock.advance(16)
        await query.refresh()

        assert fetch.calls == 2

    @pytest.mark.asyncio
    async def test_forced_refresh_ignores_freshness(self, clock, fast_sleep):
        fetch = CountingFetch()
        query = make_query(fetch, clock, fast_sleep)

        await query.refresh()
        await query.refresh(force=True)

        assert fetch.calls == 2


class TestSingleFlight:
    """Concurrent refreshes share one fetch"""

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_fetch_once(self, clock, fast_sleep):
        gate = asyncio.Event()
        calls = 0

        async def fetch(signal):
            nonlocal calls
            calls += 1
            await gate.wait()
            return ["row"]

        query = make_query(fetch, clock, fast_sleep)
        first = asyncio.create_task(query.refresh(force=True))
        second = asyncio.create_task(query.refresh(force=True))
        await asyncio.sleep(0.01)
        gate.set()

        snap_a, snap_b = await asyncio.gather(first, second)

        assert calls == 1
        assert snap_a.data == snap_b.data == ["row"]


class TestRetry:
    """Failures are retried with backoff, then surfaced once"""

    @pytest.mark.asyncio
    async def test_recovers_within_retry_budget(self, clock, fast_sleep, notifier):
        fetch = CountingFetch(failures=2)
        query = make_query(fetch, clock, fast_sleep, notifier=notifier, retry=3)

        snap = await query.refresh()

        assert fetch.calls == 3
        assert snap.error is None
        assert snap.data == [{"id": 1}]
        assert len(fast_sleep.delays) == 2
        assert notifier.notifications == []

    @pytest.mark.asyncio
    async def test_exhausted_retries_notify_exactly_once(self, clock, fast_sleep, notifier):
        fetch = CountingFetch(failures=10)
        query = make_query(fetch, clock, fast_sleep, notifier=notifier, retry=3,
                           error_title="Error fetching clients")

        snap = await query.refresh()

        assert fetch.calls == 4
        assert isinstance(snap.error, NetworkError)
        assert query.state.failure_count == 1
        assert notifier.titles == ["Error fetching clients"]

    @pytest.mark.asyncio
    async def test_backoff_grows_and_is_capped(self, clock, fast_sleep):
        fetch = CountingFetch(failures=10)
        query = make_query(fetch, clock, fast_sleep, retry=4, retry_delay_base=1.0, retry_delay_max=3.0)

        await query.refresh()

        delays = fast_sleep.delays
        assert 1.0 <= delays[0] <= 1.5
        assert 2.0 <= delays[1] <= 3.0
        assert all(d <= 3.0 for d in delays)

    @pytest.mark.asyncio
    async def test_success_clears_previous_error(self, clock, fast_sleep, notifier):
        fetch = CountingFetch(failures=1)
        query = make_query(fetch, clock, fast_sleep, notifier=notifier, retry=0)

        assert (await query.refresh()).error is not None
        assert (await query.refresh(force=True)).error is None


class TestTimeout:
    """Per-attempt timeouts abort the signal handed to fetch_fn"""

    @pytest.mark.asyncio
    async def test_hanging_fetch_times_out(self, clock, fast_sleep, notifier):
        seen = []

        async def fetch(signal):
            seen.append(signal)
            await asyncio.sleep(0.5)
            return ["late"]

        query = make_query(fetch, clock, fast_sleep, notifier=notifier, retry=0, timeout=0.01)
        snap = await query.refresh()

        assert isinstance(snap.error, SyncTimeoutError)
        assert seen[0].aborted
        assert seen[0].reason == "Timeout"
        assert snap.data is None


class TestStabilizedPublishing:
    """Listeners only hear about real changes"""

    @pytest.mark.asyncio
    async def test_identical_payload_not_republished(self, clock, fast_sleep):
        fetch = CountingFetch(results=[[{"id": 1}]])
        query = make_query(fetch, clock, fast_sleep)
        published = []
        query.subscribe(published.append)

        await query.refresh()
        first_update = query.snapshot().last_updated_at
        clock.advance(1)
        await query.refresh(force=True)

        assert published == [[{"id": 1}]]
        assert query.snapshot().last_updated_at == first_update + 1

    @pytest.mark.asyncio
    async def test_changed_payload_is_published(self, clock, fast_sleep):
        fetch = CountingFetch(results=[[{"id": 1}], [{"id": 1}, {"id": 2}]])
        query = make_query(fetch, clock, fast_sleep)
        published = []
        query.subscribe(published.append)

        await query.refresh()
        await query.refresh(force=True)

        assert len(published) == 2

    @pytest.mark.asyncio
    async def test_set_data_publishes_and_unsubscribe_stops(self, clock, fast_sleep):
        query = make_query(CountingFetch(), clock, fast_sleep)
        published = []
        subscription = query.subscribe(published.append)

        query.set_data([{"id": 9}])
        subscription.unsubscribe()
        query.set_data([{"id": 10}])

        assert published == [[{"id": 9}]]
        assert query.snapshot().data == [{"id": 10}]

    @pytest.mark.asyncio
    async def test_snapshot_is_a_copy(self, clock, fast_sleep):
        query = make_query(CountingFetch(), clock, fast_sleep)
        await query.refresh()

        query.snapshot().data.append({"id": 99})

        assert query.snapshot().data == [{"id": 1}]


class TestLifecycle:
    """start/stop, polling and event-driven refetches"""

    @pytest.mark.asyncio
    async def test_start_fetches_immediately_and_polls(self, clock, fast_sleep):
        fetch = CountingFetch()
        query = make_query(fetch, clock, fast_sleep, interval=0.02)

        query.start()
        await asyncio.sleep(0.09)
        query.stop()

        assert fetch.calls >= 3

    @pytest.mark.asyncio
    async def test_focus_refetches_only_when_stale(self, clock, fast_sleep, events):
        fetch = CountingFetch()
        query = make_query(fetch, clock, fast_sleep, events=events, stale_time=15)

        query.start()
        await asyncio.sleep(0.01)
        assert fetch.calls == 1

        events.notify_focus()
        await asyncio.sleep(0.01)
        assert fetch.calls == 1

        clock.advance(20)
        events.notify_focus()
        await asyncio.sleep(0.01)
        assert fetch.calls == 2

        query.stop()

    @pytest.mark.asyncio
    async def test_stop_aborts_in_flight_and_resets(self, clock, fast_sleep, events):
        gate = asyncio.Event()
        signals = []

        async def fetch(signal):
            signals.append(signal)
            await gate.wait()
            return ["row"]

        query = make_query(fetch, clock, fast_sleep, events=events)
        query.start()
        await asyncio.sleep(0.01)

        query.stop()
        gate.set()
        await asyncio.sleep(0.01)

        snap = query.snapshot()
        assert signals[0].aborted
        assert snap.data is None
        assert snap.is_loading is False
        assert snap.last_updated_at is None
        assert events.subscriber_count() == 0


class TestQueryClient:
    """Keyed registry of queries"""

    @pytest.mark.asyncio
    async def test_one_query_per_key(self, clock, fast_sleep):
        client = QueryClient(clock=clock, sleep=fast_sleep)
        first = client.query("clients", CountingFetch())
        second = client.query("clients", CountingFetch())
        assert first is second
        assert client.get("missing") is None

    @pytest.mark.asyncio
    async def test_refetch_all_returns_snapshots(self, clock, fast_sleep):
        client = QueryClient(clock=clock, sleep=fast_sleep)
        client.query("a", CountingFetch(results=[["a"]]))
        client.query("b", CountingFetch(results=[["b"]]))

        snapshots = await client.refetch_all()

        assert snapshots["a"].data == ["a"]
        assert snapshots["b"].data == ["b"]
        assert client.errors() == {}
