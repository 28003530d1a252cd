"""CRM reconciliation: record mapper and sync engine."""
from dealflow_sync_core.sync.engine import (
    Cancelled,
    FullSyncResult,
    Reconciler,
    SyncErrorEntry,
    SyncResult,
)

__all__ = ["Cancelled", "FullSyncResult", "Reconciler", "SyncErrorEntry", "SyncResult"]
