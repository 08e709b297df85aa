# =============================================================================
# tests/unit/test_sync_engine.py
# Unit Tests for the offline mutation queue
# =============================================================================

import asyncio

import pytest

from success_core.errors import NetworkError
from success_core.offline.connection_manager import ConnectionManager
from success_core.offline.sync_engine import SyncEngine
from success_core.sync.realtime import ChangeChannel, ChangeKind


class RecordingSink:
    """Mutation sink that records writes and can fail on demand"""

    def __init__(self):
        self.applied = []
        self.fail_with = None
        self.fail_ids = set()

    async def apply(self, table, operation, data):
        if self.fail_with is not None:
            raise self.fail_with
        if data.get("id") in self.fail_ids:
            raise ValueError("rejected")
        self.applied.append((table, operation, data))
        return data


@pytest.fixture
def manager():
    return ConnectionManager()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def engine(local_db, sink, manager, notifier):
    return SyncEngine(local_db, sink, manager, notifier)


class TestSubmit:
    """Write-through when online, queue otherwise"""

    @pytest.mark.asyncio
    async def test_online_write_goes_through(self, engine, sink):
        assert await engine.submit("clients", "update", {"id": "c1", "status": "at-risk"}) is None
        assert sink.applied == [("clients", "UPDATE", {"id": "c1", "status": "at-risk"})]
        assert engine.pending_count == 0

    @pytest.mark.asyncio
    async def test_offline_write_is_queued(self, engine, sink, manager):
        manager.set_online(False)

        queue_id = await engine.submit("clients", "DELETE", {"id": "c2"})

        assert queue_id is not None
        assert sink.applied == []
        assert engine.pending_count == 1

    @pytest.mark.asyncio
    async def test_no_sink_means_queue(self, local_db):
        engine = SyncEngine(local_db)
        assert await engine.submit("clients", "INSERT", {"id": "c9"}) is not None
        assert engine.pending_count == 1

    @pytest.mark.asyncio
    async def test_network_failure_falls_back_to_queue(self, engine, sink):
        sink.fail_with = NetworkError("dropped")

        assert await engine.submit("clients", "UPDATE", {"id": "c1"}) is not None
        assert engine.pending_count == 1

    @pytest.mark.asyncio
    async def test_insert_without_id_gets_one(self, engine, sink):
        await engine.submit("clients", "INSERT", {"name": "New Co"})
        record = sink.applied[0][2]
        assert record["id"]
        assert record["name"] == "New Co"

    @pytest.mark.asyncio
    async def test_unknown_operation_rejected(self, engine):
        with pytest.raises(ValueError):
            await engine.submit("clients", "UPSERT", {"id": 1})

    @pytest.mark.asyncio
    async def test_optimistic_event_published(self, engine):
        channel = ChangeChannel()
        engine.register_channel("clients", channel)

        await engine.submit("clients", "DELETE", {"id": "c3"})
        await engine.submit("invoices", "DELETE", {"id": "i1"})

        events = channel.drain_nowait()
        assert len(events) == 1
        assert events[0].kind == ChangeKind.DELETE
        assert events[0].id == "c3"

    @pytest.mark.asyncio
    async def test_rejected_write_publishes_nothing(self, engine, sink):
        channel = ChangeChannel()
        engine.register_channel("clients", channel)
        sink.fail_ids = {"c1"}

        with pytest.raises(ValueError):
            await engine.submit("clients", "UPDATE", {"id": "c1", "status": "churned"})

        assert channel.drain_nowait() == []
        assert engine.pending_count == 0

    @pytest.mark.asyncio
    async def test_queued_write_is_published(self, engine, manager):
        channel = ChangeChannel()
        engine.register_channel("clients", channel)
        manager.set_online(False)

        await engine.submit("clients", "UPDATE", {"id": "c1", "status": "churned"})

        events = channel.drain_nowait()
        assert [e.kind for e in events] == [ChangeKind.UPDATE]
        assert engine.pending_count == 1


class TestSyncAll:
    """Ordered replay of the queue"""

    @pytest.mark.asyncio
    async def test_replays_in_order_and_clears(self, engine, sink, manager, notifier, local_db):
        manager.set_online(False)
        for i in range(3):
            await engine.submit("clients", "UPDATE", {"id": f"c{i}", "n": i})
        manager.set_online(True)

        report = await engine.sync_all()

        assert report.succeeded == 3
        assert report.ok
        assert [data["id"] for _, _, data in sink.applied] == ["c0", "c1", "c2"]
        assert local_db.query("SELECT COUNT(*) AS n FROM sync_queue")[0]["n"] == 0
        assert notifier.titles == ["Syncing offline changes", "Sync completed"]

    @pytest.mark.asyncio
    async def test_offline_sync_warns(self, engine, manager, notifier):
        manager.set_online(False)
        await engine.submit("clients", "UPDATE", {"id": "c1"})

        report = await engine.sync_all()

        assert report.remaining == 1
        assert notifier.titles == ["Offline"]

    @pytest.mark.asyncio
    async def test_network_error_stops_replay(self, engine, sink, manager, notifier):
        manager.set_online(False)
        await engine.submit("clients", "UPDATE", {"id": "c1"})
        await engine.submit("clients", "UPDATE", {"id": "c2"})
        manager.set_online(True)
        sink.fail_with = NetworkError("gone again")

        report = await engine.sync_all()

        assert report.failed == 1
        assert report.remaining == 2
        assert notifier.titles[-1] == "Sync issues"

    @pytest.mark.asyncio
    async def test_rejected_operation_gives_up_after_max_attempts(self, engine, sink, manager, local_db):
        manager.set_online(False)
        await engine.submit("clients", "UPDATE", {"id": "bad"})
        await engine.submit("clients", "UPDATE", {"id": "good"})
        manager.set_online(True)
        sink.fail_ids = {"bad"}

        first = await engine.sync_all()
        assert first.succeeded == 1
        assert first.remaining == 1

        for _ in range(SyncEngine.MAX_RETRY_ATTEMPTS - 1):
            await engine.sync_all()

        assert engine.pending_count == 0
        status = local_db.query("SELECT status FROM sync_queue WHERE record_id = 'bad'")[0]["status"]
        assert status == "failed"

    @pytest.mark.asyncio
    async def test_reconnect_triggers_replay(self, engine, sink, manager):
        engine.start()
        manager.set_online(False)
        await engine.submit("clients", "UPDATE", {"id": "c1"})

        manager.set_online(True)
        await asyncio.sleep(0.05)

        assert len(sink.applied) == 1
        assert engine.pending_count == 0
        engine.stop()
        assert manager.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_empty_queue_is_silent(self, engine, notifier):
        report = await engine.sync_all()
        assert report.succeeded == 0
        assert notifier.notifications == []
