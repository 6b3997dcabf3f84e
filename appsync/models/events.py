"""
Events and outcomes streamed from the transfer layer to presentation collaborators.
"""

from dataclasses import dataclass, field
from enum import Enum

from .stats import SyncStats


class EventKind(Enum):
    """Kinds of events emitted while materializing a plan."""

    PHASE_STARTED = "phase_started"
    DIRECTORY_CREATED = "directory_created"
    DIRECTORY_FAILED = "directory_failed"
    FILE_STARTED = "file_started"
    FILE_PROGRESS = "file_progress"
    FILE_COPIED = "file_copied"
    FILE_NOT_FOUND = "file_not_found"
    INTEGRITY_MISMATCH = "integrity_mismatch"
    FILE_DELETED = "file_deleted"
    DELETE_FAILED = "delete_failed"
    ARCHIVE_STARTED = "archive_started"
    ENTRY_EXPANDED = "entry_expanded"
    ARCHIVE_EXPANDED = "archive_expanded"
    CANCELED = "canceled"


@dataclass(frozen=True)
class TransferEvent:
    """
    A single progress or outcome notification.

    'sequence' numbers file-level operations within a phase starting at 1 and
    'total' is the expected size in bytes (for FILE_* events) or the number of
    operations (for PHASE_STARTED).
    """

    kind: EventKind
    source: str = ""
    destination: str = ""
    sequence: int = 0
    total: int = 0
    completed: int = 0
    rollout_order: int | None = None
    message: str | None = None


class TransferOutcome(Enum):
    """Terminal state of a transfer run. Failures surface as exceptions."""

    COMPLETED = "completed"
    CANCELED = "canceled"


@dataclass
class TransferResult:
    outcome: TransferOutcome
    stats: SyncStats = field(default_factory=SyncStats)

    @property
    def canceled(self) -> bool:
        return self.outcome is TransferOutcome.CANCELED
