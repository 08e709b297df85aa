# success_core/sync/__init__.py
"""
Keeping dashboard data in sync with the server: cancellation and timeouts,
polled queries, realtime patches and the dashboard-level refresh.
"""
from .abort import (
    AbortController,
    AbortSignal,
    TimeoutSignal,
    create_abort_controller,
    create_timeout_signal,
    is_aborted,
    race_signal,
    safe_abort,
    with_timeout,
)
from .synced_query import (
    FreshnessState,
    QueryClient,
    QueryOptions,
    QuerySnapshot,
    SyncedQuery,
)
from .realtime import (
    ChangeChannel,
    ChangeEvent,
    ChangeKind,
    RealtimeReconciler,
    SupabaseRealtimeSource,
    apply_changes,
)
from .refresh import DashboardSnapshot, RefreshOrchestrator

__all__ = [
    "AbortController",
    "AbortSignal",
    "TimeoutSignal",
    "create_abort_controller",
    "create_timeout_signal",
    "is_aborted",
    "race_signal",
    "safe_abort",
    "with_timeout",
    "FreshnessState",
    "QueryClient",
    "QueryOptions",
    "QuerySnapshot",
    "SyncedQuery",
    "ChangeChannel",
    "ChangeEvent",
    "ChangeKind",
    "RealtimeReconciler",
    "SupabaseRealtimeSource",
    "apply_changes",
    "DashboardSnapshot",
    "RefreshOrchestrator",
]
