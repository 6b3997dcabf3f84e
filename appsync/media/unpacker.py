"""
Expands zip archives into a destination directory, rejecting entries that would
land outside of it.
"""

import logging
import shutil
import zipfile
from collections.abc import Callable
from pathlib import Path

from appsync.exceptions import ArchiveError
from appsync.utils.cancellation import CancellationToken
from appsync.utils.path import safe_join

log = logging.getLogger(__name__)

# Largest entry size that fits a single progress unit.
MAX_ENTRY_SIZE = 2**31 - 1

EntryCallback = Callable[[zipfile.ZipInfo, Path], None]


class ArchiveUnpacker:
    """Safe zip expansion with per-entry notifications."""

    def __init__(self, chunk_size: int = 131072):
        self.chunk_size = chunk_size

    def _plan_entries(
        self, archive: zipfile.ZipFile, destination: Path
    ) -> list[tuple[zipfile.ZipInfo, Path]]:
        """Validates every entry before anything is written."""
        targets = []
        for info in archive.infolist():
            name = info.filename
            if name.startswith(("/", "\\")) or (len(name) > 1 and name[1] == ":"):
                raise ArchiveError(f"Archive entry '{name}' has an absolute path.")
            try:
                target = safe_join(destination, name)
            except ValueError as e:
                raise ArchiveError(f"Archive entry '{name}' is not allowed: {e}") from e
            if info.file_size > MAX_ENTRY_SIZE:
                raise ArchiveError(
                    f"Cannot handle archive entries larger than {MAX_ENTRY_SIZE} "
                    f"bytes: '{name}' ({info.file_size} bytes)."
                )
            targets.append((info, target))
        return targets

    def expand(
        self,
        archive_path: Path,
        destination: Path,
        on_entry: EntryCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> int:
        """
        Expands archive_path into destination.

        Returns:
            The number of file entries written.

        Raises:
            ArchiveError: If the archive is invalid or has an unsafe entry.
        """
        try:
            with zipfile.ZipFile(archive_path) as archive:
                targets = self._plan_entries(archive, destination)
                written = 0
                for info, target in targets:
                    if cancel is not None and cancel.is_canceled:
                        log.info(f"UNZIP canceled: {archive_path}")
                        break
                    if info.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with archive.open(info) as src, open(target, "wb") as dst:
                        shutil.copyfileobj(src, dst, self.chunk_size)
                    written += 1
                    log.debug(f"UNZIP {archive_path} => {target}")
                    if on_entry:
                        on_entry(info, target)
                return written
        except zipfile.BadZipFile as e:
            raise ArchiveError(f"'{archive_path}' is not a valid zip archive: {e}") from e
