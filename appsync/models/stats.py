"""
Dataclass for tracking synchronization session statistics.
"""

import asyncio
import time
from dataclasses import dataclass, field


@dataclass
class SyncStats:
    """Tracks statistics for a sync session, including real-time speed."""

    files_copied: int = 0
    files_not_found: int = 0
    files_deleted: int = 0
    delete_failures: int = 0
    directories_created: int = 0
    archives_expanded: int = 0
    entries_expanded: int = 0
    integrity_mismatches: int = 0
    bytes_transferred: int = 0
    phases_completed: int = 0

    # Real-time speed calculation fields
    current_speed_bps: float = 0.0
    peak_speed_bps: float = 0.0
    _speed_samples: list[float] = field(default_factory=list, repr=False)
    _last_progress_time: float = field(default=0.0, repr=False)
    _last_progress_bytes: int = field(default=0, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self):
        self._last_progress_time = time.monotonic()

    async def add_bytes(self, count: int) -> None:
        """Adds transferred bytes and refreshes the speed estimate."""
        async with self._lock:
            self.bytes_transferred += count
            self._update_speed_locked()

    def _update_speed_locked(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_progress_time

        # Update speed roughly twice per second
        if elapsed > 0.5:
            bytes_diff = self.bytes_transferred - self._last_progress_bytes
            if bytes_diff > 0:
                self._speed_samples.append(bytes_diff / elapsed)
                # Keep a sliding window of the last 10 speed samples
                if len(self._speed_samples) > 10:
                    self._speed_samples.pop(0)
                self.current_speed_bps = sum(self._speed_samples) / len(
                    self._speed_samples
                )
                self.peak_speed_bps = max(self.peak_speed_bps, self.current_speed_bps)
            self._last_progress_time = now
            self._last_progress_bytes = self.bytes_transferred
