"""
Regenerates a manifest's file list from the files an application actually ships.
"""

import logging
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from appsync.exceptions import NotFoundError, ValidationError
from appsync.media.downloader import Downloader
from appsync.media.integrity import DEFAULT_ALGORITHM, FileIntegrityChecker
from appsync.models.manifest import ApplicationManifest, EntryKey, FileEntry
from appsync.utils.path import normalize_path

log = logging.getLogger(__name__)

# (remote file, sequence, total, found)
UpdateCallback = Callable[["RemoteFile", int, int, bool], None]


@dataclass(frozen=True)
class RemoteFile:
    """
    A file to declare in the manifest. When 'content_hash' and a positive 'size'
    are both known the file is not fetched.
    """

    source_location: str
    path: str
    filename: str
    error_if_not_found: bool = False
    content_hash: str | None = None
    size: int = 0

    @property
    def key(self) -> EntryKey:
        return EntryKey.of(self.path, self.filename)


def remote_files_in(base_dir: Path) -> list[RemoteFile]:
    """Lists every file below base_dir as a RemoteFile with a file:// location."""
    remote_files = []
    for file in sorted(p for p in base_dir.rglob("*") if p.is_file()):
        relative_dir = file.parent.relative_to(base_dir).as_posix()
        remote_files.append(
            RemoteFile(
                source_location=file.resolve().as_uri(),
                path=normalize_path(relative_dir),
                filename=file.name,
            )
        )
    return remote_files


class ManifestUpdater:
    """
    Rebuilds the FileEntry list of a manifest. Entries whose key already existed
    keep their unzip, load-always, classpath and order settings; new entries
    start with defaults.
    """

    def __init__(
        self,
        manifest: ApplicationManifest | None = None,
        downloader: Downloader | None = None,
        algorithm: str = DEFAULT_ALGORITHM,
        on_update: UpdateCallback | None = None,
    ):
        self.manifest = manifest or ApplicationManifest()
        self.downloader = downloader or Downloader()
        self.algorithm = algorithm
        self.on_update = on_update

    async def _describe(
        self, remote_file: RemoteFile, scratch: Path, sequence: int, total: int
    ) -> tuple[str, int] | None:
        if remote_file.content_hash and remote_file.size > 0:
            log.info(f"KNOWN {sequence}/{total}: {remote_file.source_location}")
            if self.on_update:
                self.on_update(remote_file, sequence, total, True)
            return remote_file.content_hash, remote_file.size

        try:
            await self.downloader.download_file(remote_file.source_location, scratch)
        except NotFoundError:
            if remote_file.error_if_not_found:
                raise
            log.info(f"NOT FOUND {sequence}/{total}: {remote_file.source_location}")
            if self.on_update:
                self.on_update(remote_file, sequence, total, False)
            return None

        log.info(f"COPY {sequence}/{total}: {remote_file.source_location}")
        if self.on_update:
            self.on_update(remote_file, sequence, total, True)
        return (
            FileIntegrityChecker.compute_hash(scratch, self.algorithm),
            scratch.stat().st_size,
        )

    async def update(self, remote_files: list[RemoteFile]) -> ApplicationManifest:
        """
        Replaces the manifest's file entries with entries for remote_files.

        Raises:
            NotFoundError: If a file marked error_if_not_found does not exist.
            ValidationError: If two remote files share a path and file name.
        """
        keys = [remote_file.key for remote_file in remote_files]
        if len(set(keys)) != len(keys):
            raise ValidationError("A file is listed more than once for the manifest.")

        previous = self.manifest.file_index()
        entries: list[FileEntry] = []
        total = len(remote_files)

        with tempfile.TemporaryDirectory(prefix="appsync-update-") as tmp:
            scratch = Path(tmp) / "content.tmp"
            for sequence, remote_file in enumerate(remote_files, start=1):
                described = await self._describe(remote_file, scratch, sequence, total)
                if described is None:
                    continue
                content_hash, size = described

                old = previous.get(remote_file.key)
                entries.append(
                    FileEntry(
                        path=remote_file.path,
                        filename=remote_file.filename,
                        content_hash=content_hash,
                        size=size,
                        source_location=remote_file.source_location,
                        archive_expand=old.archive_expand if old else False,
                        always_load=old.always_load if old else False,
                        on_classpath=old.on_classpath if old else False,
                        rollout_order=old.rollout_order if old else 0,
                    )
                )

        self.manifest.files = entries
        log.info(f"Manifest now declares {len(entries)} file(s).")
        return self.manifest

    async def update_from_directory(self, base_dir: Path) -> ApplicationManifest:
        """Declares every file found below base_dir."""
        if not base_dir.is_dir():
            raise NotFoundError(f"Directory not found: '{base_dir}'")
        return await self.update(remote_files_in(base_dir))
