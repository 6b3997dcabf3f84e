"""
Compares a manifest's declared files against a destination directory and builds
the reconciliation plan.
"""

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from appsync.exceptions import InstallationError
from appsync.media.integrity import FileIntegrityChecker
from appsync.models.manifest import ApplicationManifest, EntryKey, FileEntry
from appsync.models.plan import DeletedEntry, ReconciliationPlan
from appsync.models.settings import LOCAL_MANIFEST_NAME
from appsync.storage.install_marker import INCOMPLETE_MARKER

log = logging.getLogger(__name__)

# Written next to the installed files with the launch command line.
START_LOG = "start.log"


def is_retained(entry: FileEntry, lazy_loading: bool) -> bool:
    """
    Under lazy loading only files marked 'always load' or contributing to the
    classpath take part in bulk reconciliation; the rest are loaded on demand.
    """
    return not lazy_loading or entry.always_load or entry.on_classpath


def _deleted_entries(
    deleted: Iterable[str | DeletedEntry], previous: ApplicationManifest | None
) -> list[DeletedEntry]:
    previous_index = previous.file_index() if previous else {}
    entries = []
    for item in deleted:
        if isinstance(item, DeletedEntry):
            entries.append(item)
            continue
        key = EntryKey.from_slash_path(item)
        old = previous_index.get(key)
        entries.append(DeletedEntry(key, old.rollout_order if old else 0))
    return entries


def build_plan(
    manifest: ApplicationManifest,
    destination: Path,
    deleted: Iterable[str | DeletedEntry] = (),
    previous: ApplicationManifest | None = None,
) -> ReconciliationPlan:
    """
    Classifies every retained file entry as new, changed or unchanged.

    Args:
        manifest: The manifest to install.
        destination: The installation directory (may not exist yet).
        deleted: Relative slash paths (or DeletedEntry objects) of files to remove.
            Deletions are never derived from the directory contents here.
        previous: The previously installed manifest, used to place deletions in
            the rollout phase their old entry belonged to.

    Raises:
        InstallationError: If destination exists but is not a directory.
    """
    if destination.exists() and not destination.is_dir():
        raise InstallationError(f"'{destination}' is not a directory.")

    plan = ReconciliationPlan(destination=destination)
    plan.directories.extend(manifest.directories)
    orders: set[int] = set()

    for entry in manifest.files:
        orders.add(entry.rollout_order)
        if not is_retained(entry, manifest.lazy_loading):
            continue

        dest = entry.dest_file(destination)
        if not dest.is_file():
            plan.new_files.append(entry)
            if entry.archive_expand:
                plan.decompress_files.append(entry)
        elif FileIntegrityChecker.matches(dest, entry.content_hash):
            plan.unchanged_files.append(entry)
        else:
            plan.changed_files.append(entry)
            if entry.archive_expand:
                plan.decompress_files.append(entry)

        if entry.on_classpath:
            plan.classpath_files.append(entry)

    plan.deleted_files.extend(_deleted_entries(deleted, previous))
    plan.orders = sorted(orders)

    log.info(
        f"Reconciled '{destination}': new={len(plan.new_files)}, "
        f"changed={len(plan.changed_files)}, unchanged={len(plan.unchanged_files)}, "
        f"deleted={len(plan.deleted_files)}, decompress={len(plan.decompress_files)}"
    )
    return plan


def create_classpath(manifest: ApplicationManifest, separator: str = os.pathsep) -> str:
    """
    Builds the launch classpath without touching the filesystem. Classpath entries
    always pass the lazy filter, so this matches the plan's classpath.
    """
    return separator.join(
        f'"{entry.slash_path_and_filename}"'
        for entry in manifest.files
        if entry.on_classpath
    )


def diff_manifests(
    previous: ApplicationManifest, current: ApplicationManifest
) -> list[DeletedEntry]:
    """
    Returns the files declared by previous but no longer by current, in their old
    rollout phase.
    """
    current_keys = set(current.file_index())
    return [
        DeletedEntry(entry.key, entry.rollout_order)
        for entry in previous.files
        if entry.key not in current_keys
    ]


def scan_orphans(
    manifest: ApplicationManifest,
    destination: Path,
    ignore: Iterable[str] = (),
    manifest_name: str = LOCAL_MANIFEST_NAME,
) -> list[str]:
    """
    Lists files under destination that the manifest does not declare.

    This is an opt-in pass producing deletion candidates only; the destination may
    hold user data, so the result is never applied automatically. Files below
    declared source directories, backups, partial transfers and the synchronizer's
    own bookkeeping files (the local manifest copy, the start log and the
    incomplete marker) are skipped.
    """
    if not destination.is_dir():
        return []

    declared = set(manifest.file_index())
    source_dirs = [EntryKey.of(d.path, "").parts for d in manifest.source_directories]
    ignored = set(ignore)
    bookkeeping = {manifest_name, START_LOG, INCOMPLETE_MARKER}

    candidates = []
    for file in sorted(p for p in destination.rglob("*") if p.is_file()):
        relative = file.relative_to(destination).as_posix()
        if relative in bookkeeping or relative in ignored or file.name in ignored:
            continue
        if file.name.endswith((".bak", ".part")):
            continue
        key = EntryKey.from_slash_path(relative)
        if key in declared:
            continue
        if any(key.parts[: len(parts)] == parts for parts in source_dirs if parts):
            continue
        candidates.append(relative)
    return candidates
