# =============================================================================
# success_core/offline/__init__.py
# Offline Mode Support
# =============================================================================
"""
Offline support for the dashboard.

- LocalDatabase: SQLite storage for settings, cached responses and queued writes
- ConnectionManager: connectivity probing and ONLINE/OFFLINE/FOCUS events
- OfflineCache: versioned network-first response cache
- SyncEngine: offline mutation queue with replay on reconnect
"""

from .local_database import LocalDatabase
from .connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
    NetworkEvent,
    NetworkEvents,
    Subscription,
)
from .offline_cache import (
    AiohttpFetcher,
    MemoryResponseStore,
    OfflineCache,
    Request,
    Response,
    SQLiteResponseStore,
    WorkerState,
)
from .sync_engine import MutationSink, SyncEngine, SyncReport, SyncState

__all__ = [
    "LocalDatabase",
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "NetworkEvent",
    "NetworkEvents",
    "Subscription",
    "AiohttpFetcher",
    "MemoryResponseStore",
    "OfflineCache",
    "Request",
    "Response",
    "SQLiteResponseStore",
    "WorkerState",
    "MutationSink",
    "SyncEngine",
    "SyncReport",
    "SyncState",
]
