"""
The reconciliation plan: a classification of declared files against the current
contents of a destination directory.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from .manifest import DirectoryEntry, EntryKey, FileEntry


@dataclass(frozen=True)
class DeletedEntry:
    """A file scheduled for removal, identified by its key and rollout phase."""

    key: EntryKey
    rollout_order: int = 0

    @classmethod
    def from_slash_path(cls, relative: str, rollout_order: int = 0) -> "DeletedEntry":
        return cls(EntryKey.from_slash_path(relative), rollout_order)

    @property
    def slash_path(self) -> str:
        return self.key.slash_path

    def dest_file(self, base_dir: Path) -> Path:
        return base_dir.joinpath(*self.key.parts, self.key.filename)

    def __str__(self) -> str:
        return self.slash_path


def _for_order(entries, order: int) -> list:
    return [e for e in entries if e.rollout_order == order]


@dataclass
class ReconciliationPlan:
    """
    Disjoint new/changed/unchanged classifications over the retained file entries,
    plus the caller-supplied deletions, archives to expand, directories to create and
    the ascending sequence of rollout phases.
    """

    destination: Path
    new_files: list[FileEntry] = field(default_factory=list)
    changed_files: list[FileEntry] = field(default_factory=list)
    unchanged_files: list[FileEntry] = field(default_factory=list)
    deleted_files: list[DeletedEntry] = field(default_factory=list)
    decompress_files: list[FileEntry] = field(default_factory=list)
    classpath_files: list[FileEntry] = field(default_factory=list)
    directories: list[DirectoryEntry] = field(default_factory=list)
    orders: list[int] = field(default_factory=list)

    def new_for(self, order: int) -> list[FileEntry]:
        return _for_order(self.new_files, order)

    def changed_for(self, order: int) -> list[FileEntry]:
        return _for_order(self.changed_files, order)

    def deleted_for(self, order: int) -> list[DeletedEntry]:
        return _for_order(self.deleted_files, order)

    def decompress_for(self, order: int) -> list[FileEntry]:
        return _for_order(self.decompress_files, order)

    def phases(self) -> list[int]:
        """All phases with work, including phases that only hold deletions."""
        return sorted(set(self.orders) | {d.rollout_order for d in self.deleted_files})

    def is_update_necessary(self) -> bool:
        return (
            len(self.new_files) + len(self.changed_files) + len(self.deleted_files)
        ) > 0

    def transfer_count(self) -> int:
        return len(self.new_files) + len(self.changed_files)

    def transfer_bytes(self) -> int:
        return sum(e.size for e in self.new_files + self.changed_files)

    def create_classpath(self, separator: str = os.pathsep) -> str:
        """
        Joins the classpath entries, in declaration order, as quoted
        destination-relative slash paths.
        """
        return separator.join(
            f'"{entry.slash_path_and_filename}"' for entry in self.classpath_files
        )
