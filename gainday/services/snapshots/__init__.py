# gainday/services/snapshots/__init__.py
"""
Snapshot package.

Persists one snapshot per day per account plus a global aggregate, and
keeps that time series complete.

Usage:
    from gainday.services.snapshots import (
        SnapshotStore,
        DailySnapshotService,
        HistoricalBackfillEngine,
    )

Architecture:
    snapshots/
    ├── __init__.py        # This file - package exports
    ├── store.py           # SnapshotStore (idempotent upsert, queries)
    ├── refresh.py         # DailySnapshotService (today's snapshots)
    ├── backfill.py        # HistoricalBackfillEngine (missing past days)
    └── notifier.py        # Default notifier and safe notification
"""

from gainday.services.snapshots.backfill import BackfillResult, HistoricalBackfillEngine
from gainday.services.snapshots.notifier import LoggingNotifier, notify_safely
from gainday.services.snapshots.refresh import (
    DailySnapshotService,
    RefreshResult,
    WidgetHolding,
    WidgetSummary,
)
from gainday.services.snapshots.store import HeatmapDay, SnapshotRecord, SnapshotStore

__all__ = [
    # Persistence
    "SnapshotStore",
    "SnapshotRecord",
    "HeatmapDay",
    # Daily refresh
    "DailySnapshotService",
    "RefreshResult",
    "WidgetSummary",
    "WidgetHolding",
    # Backfill
    "HistoricalBackfillEngine",
    "BackfillResult",
    # Notification
    "LoggingNotifier",
    "notify_safely",
]
