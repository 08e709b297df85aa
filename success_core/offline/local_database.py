# =============================================================================
# success_core/offline/local_database.py
# Local SQLite Database for durable offline state
# =============================================================================
"""
LocalDatabase - SQLite-backed durable storage for the sync core.

Holds the only state that has to survive a restart:
- app_settings:      string key/value pairs (the session cache lives here)
- cached_responses:  offline fetch cache, one bucket per cache version
- sync_queue:        mutations made while offline, replayed on reconnect
"""

from __future__ import annotations
import sqlite3
import threading
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from contextlib import contextmanager
import logging

logger = logging.getLogger(__name__)


class LocalDatabase:
    """
    Local SQLite database for the sync core's durable state.

    Construct one per application (see DashboardService) and pass it to the
    stores that need it.
    """

    DEFAULT_DB_PATH = Path("local_data") / "success_core.db"

    SCHEMA = {
        "app_settings": """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
        "cached_responses": """
            CREATE TABLE IF NOT EXISTS cached_responses (
                version TEXT NOT NULL,
                url TEXT NOT NULL,
                method TEXT NOT NULL DEFAULT 'GET',
                status INTEGER NOT NULL,
                headers_json TEXT,
                body BLOB,
                stored_at TEXT DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (version, url, method)
            )
        """,
        "sync_queue": """
            CREATE TABLE IF NOT EXISTS sync_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                operation TEXT NOT NULL,
                table_name TEXT NOT NULL,
                record_id TEXT,
                data_json TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                attempts INTEGER DEFAULT 0,
                last_attempt TEXT,
                status TEXT DEFAULT 'pending',
                error_message TEXT
            )
        """,
    }

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize local database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self._ensure_directory()
        self._local = threading.local()
        self._initialized = False

    def _ensure_directory(self) -> None:
        """Ensure database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, 'connection') or self._local.connection is None:
            self._local.connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
            )
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> LocalDatabase:
        """Initialize database schema."""
        if self._initialized:
            return self

        conn = self._get_connection()
        cursor = conn.cursor()

        for table_name, schema in self.SCHEMA.items():
            cursor.execute(schema)
            logger.debug(f"Created/verified table: {table_name}")

        conn.commit()
        self._initialized = True
        logger.info(f"Local database initialized at: {self.db_path}")
        return self

    def query(self, sql: str, params: Optional[List] = None) -> List[sqlite3.Row]:
        """Execute a raw SQL query."""
        conn = self._get_connection()
        cursor = conn.execute(sql, params or [])
        return cursor.fetchall()

    def execute(self, sql: str, params: Optional[List] = None) -> int:
        """Execute a raw SQL statement."""
        with self.transaction() as conn:
            cursor = conn.execute(sql, params or [])
            return cursor.rowcount

    # =========================================================================
    # KEY/VALUE SETTINGS
    # =========================================================================

    def get_setting(self, key: str) -> Optional[str]:
        """Get a raw string setting, or None."""
        result = self.query("SELECT value FROM app_settings WHERE key = ?", [key])
        return result[0]["value"] if result else None

    def set_setting(self, key: str, value: str) -> None:
        """Set a raw string setting."""
        self.execute(
            """
            INSERT OR REPLACE INTO app_settings (key, value, updated_at)
            VALUES (?, ?, ?)
            """,
            [key, value, datetime.now().isoformat()]
        )

    def delete_setting(self, key: str) -> bool:
        return self.execute("DELETE FROM app_settings WHERE key = ?", [key]) > 0

    def setting_keys(self, prefix: str = "") -> List[str]:
        """List setting keys, optionally restricted to a prefix."""
        rows = self.query(
            "SELECT key FROM app_settings WHERE substr(key, 1, ?) = ? ORDER BY key",
            [len(prefix), prefix]
        )
        return [row["key"] for row in rows]

    # =========================================================================
    # CACHED RESPONSES (offline fetch cache buckets)
    # =========================================================================

    def put_response(
        self,
        version: str,
        url: str,
        method: str,
        status: int,
        headers: Dict[str, str],
        body: bytes,
    ) -> None:
        self.execute(
            """
            INSERT OR REPLACE INTO cached_responses
                (version, url, method, status, headers_json, body, stored_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [version, url, method, status, json.dumps(headers), sqlite3.Binary(body),
             datetime.now().isoformat()]
        )

    def put_responses(self, version: str, responses: Iterable[Dict[str, Any]]) -> int:
        """Write a whole batch in one transaction (all or nothing)."""
        count = 0
        with self.transaction() as conn:
            for r in responses:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO cached_responses
                        (version, url, method, status, headers_json, body, stored_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    [version, r["url"], r["method"], r["status"], json.dumps(r["headers"]),
                     sqlite3.Binary(r["body"]), datetime.now().isoformat()]
                )
                count += 1
        return count

    def get_response(self, version: str, url: str, method: str) -> Optional[Dict[str, Any]]:
        rows = self.query(
            """
            SELECT url, method, status, headers_json, body FROM cached_responses
            WHERE version = ? AND url = ? AND method = ?
            """,
            [version, url, method]
        )
        if not rows:
            return None
        row = rows[0]
        return {
            "url": row["url"],
            "method": row["method"],
            "status": row["status"],
            "headers": json.loads(row["headers_json"]) if row["headers_json"] else {},
            "body": bytes(row["body"]) if row["body"] is not None else b"",
        }

    def response_versions(self) -> List[str]:
        rows = self.query("SELECT DISTINCT version FROM cached_responses ORDER BY version")
        return [row["version"] for row in rows]

    def delete_response_version(self, version: str) -> int:
        return self.execute("DELETE FROM cached_responses WHERE version = ?", [version])

    def count_responses(self, version: str) -> int:
        result = self.query(
            "SELECT COUNT(*) as count FROM cached_responses WHERE version = ?", [version]
        )
        return result[0]["count"] if result else 0

    # =========================================================================
    # SYNC QUEUE MANAGEMENT
    # =========================================================================

    def queue_sync(
        self,
        operation: str,
        table: str,
        record_id: Optional[Any],
        data: Dict[str, Any]
    ) -> int:
        """Add an operation to the sync queue. Returns the queue id."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_queue (operation, table_name, record_id, data_json, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [operation, table, None if record_id is None else str(record_id),
                 json.dumps(data, default=str), datetime.now().isoformat()]
            )
            return cursor.lastrowid

    def get_pending_sync(self, limit: int = 100) -> List[Dict]:
        """Get pending sync operations, oldest first."""
        rows = self.query(
            """
            SELECT * FROM sync_queue
            WHERE status = 'pending'
            ORDER BY id ASC
            LIMIT ?
            """,
            [limit]
        )
        return [
            {
                "id": row["id"],
                "operation": row["operation"],
                "table": row["table_name"],
                "record_id": row["record_id"],
                "data": json.loads(row["data_json"]) if row["data_json"] else {},
                "created_at": row["created_at"],
                "attempts": row["attempts"],
            }
            for row in rows
        ]

    def mark_synced(self, sync_id: int) -> None:
        """Mark a sync operation as completed."""
        self.execute(
            "UPDATE sync_queue SET status = 'synced' WHERE id = ?",
            [sync_id]
        )

    def record_sync_attempt(self, sync_id: int, error: str, give_up: bool) -> None:
        """Record a failed attempt; `give_up` moves it out of the pending set."""
        self.execute(
            """
            UPDATE sync_queue
            SET status = ?, attempts = attempts + 1,
                last_attempt = ?, error_message = ?
            WHERE id = ?
            """,
            ["failed" if give_up else "pending", datetime.now().isoformat(), error, sync_id]
        )

    def get_pending_count(self) -> int:
        """Get count of pending sync operations."""
        result = self.query("SELECT COUNT(*) as count FROM sync_queue WHERE status = 'pending'")
        return result[0]["count"] if result else 0

    def clear_synced(self) -> int:
        """Drop completed operations from the queue."""
        return self.execute("DELETE FROM sync_queue WHERE status = 'synced'")

    def close(self) -> None:
        """Close database connection."""
        if hasattr(self._local, 'connection') and self._local.connection:
            self._local.connection.close()
            self._local.connection = None
