"""
Materializes a reconciliation plan: creates directories, copies new and changed
files, removes deleted files and expands archives, one rollout phase at a time.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path

from appsync.exceptions import FileIntegrityError, NotFoundError
from appsync.media.downloader import Downloader
from appsync.media.integrity import FileIntegrityChecker
from appsync.media.unpacker import ArchiveUnpacker
from appsync.models.events import (
    EventKind,
    TransferEvent,
    TransferOutcome,
    TransferResult,
)
from appsync.models.manifest import DirectoryEntry, FileEntry
from appsync.models.plan import DeletedEntry, ReconciliationPlan
from appsync.models.settings import SyncSettings
from appsync.models.stats import SyncStats
from appsync.utils.cancellation import CancellationToken

log = logging.getLogger(__name__)

EventCallback = Callable[[TransferEvent], None]


async def run_bounded(coroutines: Iterable[Awaitable], limit: int) -> None:
    """
    Runs coroutines with at most 'limit' in flight. The first failure cancels the
    rest and is re-raised once they have settled.
    """
    semaphore = asyncio.Semaphore(limit)

    async def guarded(coro: Awaitable) -> None:
        async with semaphore:
            await coro

    tasks = [asyncio.create_task(guarded(c)) for c in coroutines]
    if not tasks:
        return
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class TransferExecutor:
    """
    Executes plans against their destination directory.

    Phases run in ascending rollout order and each one is a full barrier: every
    copy, deletion and expansion of a phase completes before the next phase
    starts. Within a phase up to 'max_workers' files are copied concurrently.
    """

    def __init__(
        self,
        settings: SyncSettings | None = None,
        downloader: Downloader | None = None,
        unpacker: ArchiveUnpacker | None = None,
        on_event: EventCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ):
        self.settings = settings or SyncSettings()
        self.downloader = downloader or Downloader(
            chunk_size=self.settings.chunk_size,
            max_workers=self.settings.max_workers,
            connect_timeout=self.settings.connect_timeout,
            read_timeout=self.settings.read_timeout,
        )
        self.unpacker = unpacker or ArchiveUnpacker(self.settings.chunk_size)
        self.on_event = on_event
        self.cancel_token = cancel_token or CancellationToken()
        self.stats = SyncStats()

    @property
    def is_canceled(self) -> bool:
        return self.cancel_token.is_canceled

    def cancel(self) -> None:
        self.cancel_token.cancel()

    def _emit(self, event: TransferEvent) -> None:
        if self.on_event:
            self.on_event(event)

    def _canceled_result(self) -> TransferResult:
        log.info("Transfer canceled by request.")
        self._emit(TransferEvent(EventKind.CANCELED))
        return TransferResult(TransferOutcome.CANCELED, self.stats)

    async def execute(self, plan: ReconciliationPlan) -> TransferResult:
        """
        Runs the plan.

        Returns:
            A COMPLETED or CANCELED result with the session statistics.

        Raises:
            NotFoundError: If a declared remote file does not exist.
            TransferError: On network or disk failures.
            FileIntegrityError: On a hash mismatch when strict_integrity is set.
            ArchiveError: If an archive is invalid or has an unsafe entry.
        """
        destination = plan.destination
        self.create_directories(destination, plan.directories)

        for order in plan.phases():
            if self.is_canceled:
                return self._canceled_result()

            new_files = plan.new_for(order)
            changed_files = plan.changed_for(order)
            deleted_files = plan.deleted_for(order)
            decompress_files = plan.decompress_for(order)
            total = (
                len(new_files)
                + len(changed_files)
                + len(deleted_files)
                + len(decompress_files)
            )
            if total == 0:
                continue

            log.info(f"Phase {order}: {total} operation(s).")
            self._emit(
                TransferEvent(EventKind.PHASE_STARTED, total=total, rollout_order=order)
            )

            copies = [(e, "NEW") for e in new_files] + [
                (e, "CHANGED") for e in changed_files
            ]
            await run_bounded(
                (
                    self.copy_entry(entry, destination, sequence, label)
                    for sequence, (entry, label) in enumerate(copies, start=1)
                ),
                self.settings.max_workers,
            )
            if self.is_canceled:
                return self._canceled_result()

            sequence = len(copies)
            for deleted in deleted_files:
                if self.is_canceled:
                    return self._canceled_result()
                sequence += 1
                self.delete_entry(deleted, destination, sequence)

            for entry in decompress_files:
                if self.is_canceled:
                    return self._canceled_result()
                sequence += 1
                await self.expand_entry(entry, destination, sequence)

            self.stats.phases_completed += 1

        if self.is_canceled:
            return self._canceled_result()
        return TransferResult(TransferOutcome.COMPLETED, self.stats)

    def create_directories(
        self, destination: Path, directories: Iterable[DirectoryEntry]
    ) -> None:
        """Creates declared directories. Failures are logged and skipped."""
        for directory in directories:
            target = directory.dest_dir(destination)
            if target.is_dir():
                log.info(f"MKDIR: {target} (Already exists)")
                continue
            try:
                target.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                log.warning(f"MKDIR FAILED: {target} ({e})")
                self._emit(
                    TransferEvent(
                        EventKind.DIRECTORY_FAILED,
                        destination=str(target),
                        message=str(e),
                    )
                )
                continue
            log.info(f"MKDIR: {target}")
            self.stats.directories_created += 1
            self._emit(TransferEvent(EventKind.DIRECTORY_CREATED, destination=str(target)))

    async def copy_entry(
        self,
        entry: FileEntry,
        destination: Path,
        sequence: int = 1,
        label: str = "COPY",
    ) -> bool:
        """
        Copies one declared file into place and verifies its hash.

        Returns:
            False if the copy was skipped because of cancellation.
        """
        if self.is_canceled:
            return False

        source = entry.source_location
        dest_file = entry.dest_file(destination)
        size = entry.size_as_progress_units()
        self._emit(
            TransferEvent(
                EventKind.FILE_STARTED,
                source=source,
                destination=str(dest_file),
                sequence=sequence,
                total=size,
                rollout_order=entry.rollout_order,
            )
        )

        def on_progress(done: int, total: int) -> None:
            self._emit(
                TransferEvent(
                    EventKind.FILE_PROGRESS,
                    source=source,
                    destination=str(dest_file),
                    sequence=sequence,
                    total=total,
                    completed=done,
                    rollout_order=entry.rollout_order,
                )
            )

        try:
            written = await self.downloader.download_file(
                source, dest_file, size, on_progress
            )
        except NotFoundError as e:
            self.stats.files_not_found += 1
            self._emit(
                TransferEvent(
                    EventKind.FILE_NOT_FOUND,
                    source=source,
                    destination=str(dest_file),
                    sequence=sequence,
                    rollout_order=entry.rollout_order,
                    message=str(e),
                )
            )
            raise
        await self.stats.add_bytes(written)
        await self.verify_entry(entry, dest_file)

        self.stats.files_copied += 1
        log.info(f"{label}: {source} => {dest_file}")
        self._emit(
            TransferEvent(
                EventKind.FILE_COPIED,
                source=source,
                destination=str(dest_file),
                sequence=sequence,
                total=written,
                completed=written,
                rollout_order=entry.rollout_order,
            )
        )
        return True

    async def verify_entry(self, entry: FileEntry, dest_file: Path) -> bool:
        """
        Recomputes the hash of a placed file. A mismatch is logged and reported; it
        only raises when strict_integrity is enabled.
        """
        if await asyncio.to_thread(
            FileIntegrityChecker.matches, dest_file, entry.content_hash
        ):
            return True

        message = (
            f"Hash of local file is different from manifest hash "
            f"({entry.content_hash})! [{entry.source_location}]"
        )
        self.stats.integrity_mismatches += 1
        self._emit(
            TransferEvent(
                EventKind.INTEGRITY_MISMATCH,
                source=entry.source_location,
                destination=str(dest_file),
                rollout_order=entry.rollout_order,
                message=message,
            )
        )
        if self.settings.strict_integrity:
            raise FileIntegrityError(message)
        log.warning(message)
        return False

    def delete_entry(
        self, deleted: DeletedEntry, destination: Path, sequence: int = 1
    ) -> bool:
        """Removes a file. Missing files are fine; failures are logged, not raised."""
        target = deleted.dest_file(destination)
        if not target.exists():
            log.info(f"DELETE (does not exist): {target}")
            return True
        try:
            target.unlink()
        except OSError as e:
            log.warning(f"DELETE FAILED: {target} ({e})")
            self.stats.delete_failures += 1
            self._emit(
                TransferEvent(
                    EventKind.DELETE_FAILED,
                    destination=str(target),
                    sequence=sequence,
                    rollout_order=deleted.rollout_order,
                    message=str(e),
                )
            )
            return False
        log.info(f"DELETED: {target}")
        self.stats.files_deleted += 1
        self._emit(
            TransferEvent(
                EventKind.FILE_DELETED,
                destination=str(target),
                sequence=sequence,
                rollout_order=deleted.rollout_order,
            )
        )
        return True

    async def expand_entry(
        self, entry: FileEntry, destination: Path, sequence: int = 1
    ) -> int:
        """Expands a placed archive into the destination directory."""
        archive = entry.dest_file(destination)
        log.info(f"Decompressing: {archive}")
        self._emit(
            TransferEvent(
                EventKind.ARCHIVE_STARTED,
                source=str(archive),
                destination=str(destination),
                sequence=sequence,
                total=entry.size_as_progress_units(),
                rollout_order=entry.rollout_order,
            )
        )

        loop = asyncio.get_running_loop()

        def on_entry(info, target: Path) -> None:
            event = TransferEvent(
                EventKind.ENTRY_EXPANDED,
                source=str(archive),
                destination=str(target),
                sequence=sequence,
                total=info.file_size,
                completed=info.file_size,
                rollout_order=entry.rollout_order,
            )
            loop.call_soon_threadsafe(self._emit, event)

        count = await asyncio.to_thread(
            self.unpacker.expand, archive, destination, on_entry, self.cancel_token
        )
        # Let queued entry events drain before the summary event.
        await asyncio.sleep(0)

        self.stats.archives_expanded += 1
        self.stats.entries_expanded += count
        self._emit(
            TransferEvent(
                EventKind.ARCHIVE_EXPANDED,
                source=str(archive),
                destination=str(destination),
                sequence=sequence,
                total=count,
                completed=count,
                rollout_order=entry.rollout_order,
            )
        )
        return count
