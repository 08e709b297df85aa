# =============================================================================
# success_core/data/client_metrics.py
# Dashboard aggregates over client records
# =============================================================================
"""
Pure pandas aggregations feeding the dashboard cards.

All functions take the client collection as a list of dicts (the shape a
SyncedQuery holds) and never modify it.
"""

from __future__ import annotations
from typing import Any, Dict, List, Sequence

import pandas as pd

STATUSES = ("active", "at-risk", "new", "churned")


def _frame(records: Sequence[Dict[str, Any]]) -> pd.DataFrame:
    return pd.DataFrame(list(records)) if records else pd.DataFrame()


def count_by_status(records: Sequence[Dict[str, Any]]) -> Dict[str, int]:
    """
    Number of clients per status.

    The four dashboard statuses are always present (zero-filled); any other
    status found in the data is counted as well.
    """
    counts = {status: 0 for status in STATUSES}
    df = _frame(records)
    if df.empty or "status" not in df.columns:
        return counts

    for status, count in df["status"].dropna().value_counts().items():
        counts[str(status)] = int(count)
    return counts


def average_nps(records: Sequence[Dict[str, Any]], column: str = "nps_score") -> float:
    """Mean NPS over clients that have a score; 0.0 when nobody does."""
    df = _frame(records)
    if df.empty or column not in df.columns:
        return 0.0

    scores = pd.to_numeric(df[column], errors="coerce").dropna()
    if scores.empty:
        return 0.0
    return round(float(scores.mean()), 1)


def churn_rate_by_month(
    records: Sequence[Dict[str, Any]],
    date_column: str = "end_date",
) -> List[Dict[str, Any]]:
    """
    Monthly churn rate in percent.

    A churned client counts in the month of its `date_column`; the rate is
    churned-that-month over the total number of clients. Months are labelled
    "YYYY-MM" and returned oldest first.
    """
    df = _frame(records)
    if df.empty or "status" not in df.columns or date_column not in df.columns:
        return []

    total = len(df)
    churned = df[df["status"] == "churned"].copy()
    churned[date_column] = pd.to_datetime(churned[date_column], errors="coerce")
    churned = churned.dropna(subset=[date_column])
    if churned.empty:
        return []

    monthly = churned.groupby(churned[date_column].dt.to_period("M")).size().sort_index()
    return [
        {"month": str(period), "rate": round(count / total * 100, 1)}
        for period, count in monthly.items()
    ]
