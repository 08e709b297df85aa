"""
Client Success dashboard: offline-aware data sync and caching core.

Subpackages:
    cache     - TTL/session cache and the data stabilizer
    offline   - local SQLite storage, connectivity, offline fetch cache, mutation queue
    sync      - abort/timeout utilities, synced queries, realtime reconciliation, refresh
    data      - Supabase adapters and dashboard metrics
    services  - the DashboardService composition root
"""

__version__ = "0.3.0"
