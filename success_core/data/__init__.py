# success_core/data/__init__.py
"""
Supabase adapters and dashboard aggregates.
"""
from .supabase_client import (
    SupabaseSink,
    SupabaseTable,
    create_supabase_client,
    remember_session,
    restore_session,
    watch_auth_state,
)
from .client_metrics import average_nps, churn_rate_by_month, count_by_status

__all__ = [
    "SupabaseSink",
    "SupabaseTable",
    "create_supabase_client",
    "remember_session",
    "restore_session",
    "watch_auth_state",
    "average_nps",
    "churn_rate_by_month",
    "count_by_status",
]
