# =============================================================================
# tests/unit/test_local_database.py
# Unit Tests for the SQLite durable store
# =============================================================================

from success_core.offline.local_database import LocalDatabase


class TestSettings:
    """app_settings key/value table"""

    def test_set_get_delete(self, local_db):
        local_db.set_setting("supabase_session_cache", '{"a": 1}')
        assert local_db.get_setting("supabase_session_cache") == '{"a": 1}'
        assert local_db.delete_setting("supabase_session_cache")
        assert local_db.get_setting("supabase_session_cache") is None

    def test_keys_by_prefix(self, local_db):
        local_db.set_setting("supabase_a", "1")
        local_db.set_setting("supabase_b", "2")
        local_db.set_setting("other", "3")
        assert local_db.setting_keys("supabase_") == ["supabase_a", "supabase_b"]

    def test_initialize_is_idempotent(self, tmp_path):
        db = LocalDatabase(tmp_path / "nested" / "x.db")
        assert db.initialize() is db.initialize()
        db.close()


class TestCachedResponses:
    """Versioned response buckets"""

    def test_batch_write_and_read(self, local_db):
        local_db.put_responses("v1", [
            {"url": "https://x/", "method": "GET", "status": 200, "headers": {"a": "b"}, "body": b"root"},
            {"url": "https://x/app.js", "method": "GET", "status": 200, "headers": {}, "body": b"js"},
        ])

        row = local_db.get_response("v1", "https://x/", "GET")
        assert row["body"] == b"root"
        assert row["headers"] == {"a": "b"}
        assert local_db.count_responses("v1") == 2
        assert local_db.get_response("v1", "https://x/", "POST") is None

    def test_delete_version(self, local_db):
        local_db.put_response("v1", "https://x/", "GET", 200, {}, b"1")
        local_db.put_response("v2", "https://x/", "GET", 200, {}, b"2")

        local_db.delete_response_version("v1")

        assert local_db.response_versions() == ["v2"]


class TestSyncQueue:
    """Pending mutations"""

    def test_queue_is_fifo(self, local_db):
        first = local_db.queue_sync("INSERT", "clients", "c1", {"id": "c1"})
        second = local_db.queue_sync("DELETE", "clients", "c2", {"id": "c2"})

        pending = local_db.get_pending_sync()
        assert [op["id"] for op in pending] == [first, second]
        assert pending[0]["data"] == {"id": "c1"}
        assert pending[0]["table"] == "clients"

    def test_synced_operations_are_cleared(self, local_db):
        op_id = local_db.queue_sync("UPDATE", "clients", 7, {"id": 7})
        local_db.mark_synced(op_id)

        assert local_db.get_pending_count() == 0
        assert local_db.clear_synced() == 1

    def test_failed_attempts_are_counted(self, local_db):
        op_id = local_db.queue_sync("UPDATE", "clients", 7, {"id": 7})
        local_db.record_sync_attempt(op_id, "timeout", give_up=False)

        assert local_db.get_pending_sync()[0]["attempts"] == 1

        local_db.record_sync_attempt(op_id, "rejected", give_up=True)
        assert local_db.get_pending_count() == 0
