"""
Data Models Layer.

This package contains the value types that define the core data structures
used throughout the application: the manifest, the reconciliation plan,
transfer events, settings and statistics.
"""

from .events import EventKind, TransferEvent, TransferOutcome, TransferResult
from .manifest import (
    ApplicationManifest,
    DirectoryEntry,
    EntryKey,
    FileEntry,
    OptionContext,
    SourceDirectoryEntry,
)
from .plan import DeletedEntry, ReconciliationPlan
from .settings import SyncSettings
from .stats import SyncStats

__all__ = [
    "ApplicationManifest",
    "DeletedEntry",
    "DirectoryEntry",
    "EntryKey",
    "EventKind",
    "FileEntry",
    "OptionContext",
    "ReconciliationPlan",
    "SourceDirectoryEntry",
    "SyncSettings",
    "SyncStats",
    "TransferEvent",
    "TransferOutcome",
    "TransferResult",
]
