"""
On-demand retrieval of single files that bulk reconciliation skipped (lazy
loading), plus deletion helpers scoped to the installation directory.
"""

import asyncio
import logging
import shutil
from pathlib import Path

from appsync.exceptions import (
    DeleteError,
    FileNotDeclaredError,
    ValidationError,
)
from appsync.media.integrity import FileIntegrityChecker
from appsync.models.manifest import ApplicationManifest
from appsync.utils.path import join_slash, safe_join

from .transfer_executor import TransferExecutor

log = logging.getLogger(__name__)


class FileLoader:
    """
    Loads a file by path and filename.

    Declared files are copied only when missing or changed. Files that are not
    declared individually are resolved through a source directory entry and
    copied unconditionally, since there is no hash to compare against.
    """

    def __init__(
        self,
        manifest: ApplicationManifest,
        destination: Path | None = None,
        executor: TransferExecutor | None = None,
    ):
        self.manifest = manifest
        if destination is None:
            dest_path = manifest.resolved("dest_path")
            if not dest_path:
                raise ValidationError("The 'destPath' is not set.")
            destination = Path(dest_path)
        self.destination = destination
        self.executor = executor or TransferExecutor()

    async def load_file(self, path: str, filename: str) -> Path:
        """
        Makes sure a file is present in the installation and returns its location.

        Raises:
            FileNotDeclaredError: If neither a file entry nor a source directory
                entry matches.
            NotFoundError: If the matching remote file does not exist.
            TransferError: On network or disk failures.
        """
        if path is None or filename is None:
            raise ValueError("Both 'path' and 'filename' are required.")

        try:
            return await self._load_hashed_file(path, filename)
        except FileNotDeclaredError:
            pass

        try:
            return await self._load_by_directory(path, filename)
        except FileNotDeclaredError as e:
            raise FileNotDeclaredError(path, filename) from e

    async def _load_hashed_file(self, path: str, filename: str) -> Path:
        entry = self.manifest.find_file(path, filename)
        dest_file = entry.dest_file(self.destination)

        if not dest_file.exists():
            await self.executor.copy_entry(entry, self.destination, label="NEW")
        elif not await asyncio.to_thread(
            FileIntegrityChecker.matches, dest_file, entry.content_hash
        ):
            await self.executor.copy_entry(entry, self.destination, label="CHANGED")
        else:
            log.debug(f"UNCHANGED: {dest_file}")
        return dest_file

    async def _load_by_directory(self, path: str, filename: str) -> Path:
        directory = self.manifest.find_directory(path)
        location = directory.source_location_for(filename)
        dest_file = directory.dest_file(self.destination, filename)
        await self.executor.downloader.download_file(location, dest_file)
        log.info(f"COPY: {location} => {dest_file}")
        return dest_file

    def _target(self, path: str, filename: str = "") -> Path:
        try:
            relative = join_slash(path, filename) if filename else path
            return safe_join(self.destination, relative)
        except ValueError as e:
            raise DeleteError(f"Refusing to delete '{path}': {e}") from e

    def delete_file(self, path: str, filename: str) -> bool:
        """
        Deletes one file below the installation directory.

        Returns:
            False if the file did not exist.

        Raises:
            ValueError: If filename is empty.
            DeleteError: If the file exists but cannot be removed.
        """
        if path is None or filename is None or not filename.strip():
            raise ValueError("The argument 'filename' cannot be empty.")

        target = self._target(path.strip(), filename.strip())
        if not target.exists():
            log.info(f"DELETE (does not exist) {target}")
            return False
        try:
            target.unlink()
        except OSError as e:
            raise DeleteError(f"Cannot delete file '{target}'!") from e
        log.info(f"DELETED {target}")
        return True

    def delete_path(self, path: str) -> bool:
        """
        Deletes a directory below the installation directory, recursively.

        Raises:
            ValueError: If path is empty.
            DeleteError: If the directory exists but cannot be removed.
        """
        if path is None or not path.strip():
            raise ValueError("The argument 'path' cannot be empty.")

        target = self._target(path.strip())
        if target.resolve() == self.destination.resolve():
            raise DeleteError("Refusing to delete the installation directory itself.")
        if not target.exists():
            log.info(f"DELETE (does not exist) {target}")
            return False
        try:
            shutil.rmtree(target)
        except OSError as e:
            raise DeleteError(f"Cannot delete directory '{target}'!") from e
        log.info(f"DELETED {target}")
        return True
