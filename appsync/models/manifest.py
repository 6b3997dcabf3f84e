"""
Value types describing an application manifest: declared files, directories to
create, dynamic source directories, and the root ApplicationManifest aggregate.
"""

import codecs
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import NamedTuple

from pathvalidate import ValidationError as FilenameValidationError
from pathvalidate import validate_filename
from pydantic import BaseModel, ConfigDict, Field, field_validator

from appsync.exceptions import (
    DirectoryNotDeclaredError,
    FileNotDeclaredError,
    ValidationError,
)
from appsync.media.integrity import DEFAULT_ALGORITHM, FileIntegrityChecker
from appsync.utils.path import join_slash, normalize_path, path_parts, to_native
from appsync.utils.template import replace_vars

# Largest size a single progress update can represent.
MAX_PROGRESS_UNITS = 2**31 - 1

FILENAME_VARIABLE = "filename"


def _normalized(path: str | None, what: str) -> str:
    try:
        return normalize_path(path)
    except ValueError as e:
        raise ValidationError(f"Invalid {what}: {e}") from e


def _relative_dir(base_dir: Path, directory: Path) -> str:
    try:
        relative = directory.resolve().relative_to(base_dir.resolve())
    except ValueError as e:
        raise ValidationError(f"'{directory}' is not inside '{base_dir}'.") from e
    return relative.as_posix() if str(relative) != "." else ""


class EntryKey(NamedTuple):
    """Identity of a declared file: normalized directory segments plus filename."""

    parts: tuple[str, ...]
    filename: str

    @classmethod
    def of(cls, path: str, filename: str) -> "EntryKey":
        return cls(path_parts(path), filename)

    @classmethod
    def from_slash_path(cls, relative: str) -> "EntryKey":
        """Builds a key from 'dir/sub/name.ext'."""
        parts = path_parts(relative)
        if not parts:
            raise ValueError(f"'{relative}' does not name a file.")
        return cls(parts[:-1], parts[-1])

    @property
    def slash_path(self) -> str:
        return "/".join((*self.parts, self.filename))


@dataclass(frozen=True)
class FileEntry:
    """
    A remote-declared file. Equality and hashing consider only path and filename,
    so two entries that differ in content hash are the same file.
    """

    path: str
    filename: str
    content_hash: str = field(compare=False)
    size: int = field(default=0, compare=False)
    source_location: str = field(default="", compare=False)
    archive_expand: bool = field(default=False, compare=False)
    always_load: bool = field(default=False, compare=False)
    on_classpath: bool = field(default=False, compare=False)
    rollout_order: int = field(default=0, compare=False)

    def __post_init__(self):
        if self.filename is None:
            raise ValidationError("The argument 'filename' cannot be None.")
        if self.content_hash is None:
            raise ValidationError("The argument 'content_hash' cannot be None.")
        if self.source_location is None:
            raise ValidationError("The argument 'source_location' cannot be None.")
        try:
            validate_filename(self.filename)
        except FilenameValidationError as e:
            raise ValidationError(f"Invalid filename '{self.filename}': {e}") from e
        if self.size is None or self.size < 0:
            raise ValidationError(f"Size of '{self.filename}' must be non-negative.")
        object.__setattr__(self, "path", _normalized(self.path, "path"))

    @classmethod
    def from_local_file(
        cls,
        base_dir: Path,
        file: Path,
        source_location: str,
        archive_expand: bool = False,
        always_load: bool = False,
        on_classpath: bool = False,
        rollout_order: int = 0,
        algorithm: str = DEFAULT_ALGORITHM,
    ) -> "FileEntry":
        """Creates an entry for a file inside base_dir, hashing its content now."""
        return cls(
            path=_relative_dir(base_dir, file.parent),
            filename=file.name,
            content_hash=FileIntegrityChecker.compute_hash(file, algorithm),
            size=file.stat().st_size,
            source_location=source_location,
            archive_expand=archive_expand,
            always_load=always_load,
            on_classpath=on_classpath,
            rollout_order=rollout_order,
        )

    def with_local_content(
        self, file: Path, algorithm: str | None = None
    ) -> "FileEntry":
        """Returns a copy whose hash and size are taken from a local file."""
        algorithm = algorithm or FileIntegrityChecker.algorithm_for(self.content_hash)
        return replace(
            self,
            content_hash=FileIntegrityChecker.compute_hash(file, algorithm),
            size=file.stat().st_size,
        )

    @property
    def key(self) -> EntryKey:
        return EntryKey.of(self.path, self.filename)

    @property
    def native_path(self) -> str:
        return to_native(self.path)

    @property
    def slash_path_and_filename(self) -> str:
        return join_slash(self.path, self.filename)

    def dest_file(self, base_dir: Path) -> Path:
        return base_dir.joinpath(*path_parts(self.path), self.filename)

    def size_as_progress_units(self) -> int:
        return min(self.size, MAX_PROGRESS_UNITS)

    def __str__(self) -> str:
        return self.slash_path_and_filename


@dataclass(frozen=True)
class DirectoryEntry:
    """A directory that must exist below the destination."""

    path: str

    def __post_init__(self):
        object.__setattr__(self, "path", _normalized(self.path, "path"))

    @classmethod
    def from_local_dir(cls, base_dir: Path, directory: Path) -> "DirectoryEntry":
        return cls(_relative_dir(base_dir, directory))

    @property
    def native_path(self) -> str:
        return to_native(self.path)

    def dest_dir(self, base_dir: Path) -> Path:
        return base_dir.joinpath(*path_parts(self.path))

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True)
class SourceDirectoryEntry:
    """
    A remote directory whose files are not enumerated. The source location
    template carries a '${filename}' (or '{filename}') substitution point.
    """

    path: str
    source_location_template: str = field(compare=False)

    def __post_init__(self):
        if self.source_location_template is None:
            raise ValidationError(
                "The argument 'source_location_template' cannot be None."
            )
        if (
            "${filename}" not in self.source_location_template
            and "{filename}" not in self.source_location_template
        ):
            raise ValidationError(
                f"Source location '{self.source_location_template}' has no "
                "'${filename}' substitution point."
            )
        object.__setattr__(self, "path", _normalized(self.path, "path"))

    @property
    def native_path(self) -> str:
        return to_native(self.path)

    def source_location_for(self, filename: str) -> str:
        location = replace_vars(
            self.source_location_template, {FILENAME_VARIABLE: filename}
        )
        return location.replace("{filename}", filename)

    def dest_file(self, base_dir: Path, filename: str) -> Path:
        return base_dir.joinpath(*path_parts(self.path), filename)

    def slash_path_and_filename(self, filename: str) -> str:
        return join_slash(self.path, filename)

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True)
class OptionContext:
    """
    Immutable snapshot of the option map used to resolve '${name}' placeholders.
    """

    variables: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))

    def resolve(self, text: str | None) -> str | None:
        return replace_vars(text, self.variables)

    def with_option(self, key: str, value: str) -> "OptionContext":
        return OptionContext({**self.variables, key: value})


def _default_options() -> dict[str, str]:
    return {"userHome": str(Path.home())}


# Scalar settings that hold free text and support variable substitution.
TEMPLATED_FIELDS = (
    "title",
    "vendor",
    "description",
    "version",
    "dest_path",
    "id_filename",
    "manifest_location",
    "launch_executable",
    "launch_arguments",
    "log_filename",
)

# Settings excluded from simple_attributes_equal and serialization.
_RUNTIME_FIELDS = {"files", "directories", "source_directories", "options"}

_BYTE_ORDER_MARKS = (
    codecs.BOM_UTF8,
    codecs.BOM_UTF16_LE,
    codecs.BOM_UTF16_BE,
    codecs.BOM_UTF32_LE,
    codecs.BOM_UTF32_BE,
)


class ApplicationManifest(BaseModel):
    """Root aggregate: scalar settings, declared entries and the option map."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    title: str | None = None
    vendor: str | None = None
    description: str | None = None
    version: str | None = None
    locale: str | None = None
    exit_after_execute: bool = True
    dest_path: str | None = None
    id_filename: str | None = None
    silent_install: bool = False
    silent_update: bool = False
    first_installation: bool = True
    lazy_loading: bool = False
    manifest_location: str | None = None
    messages_location: str | None = None
    launch_executable: str | None = None
    launch_arguments: str | None = None
    log_filename: str | None = "${userHome}/appsync.log"
    encoding: str = "UTF-8"
    show_start_frame: bool = True
    start_frame_delay_seconds: int = 2

    files: list[FileEntry] = Field(default_factory=list)
    directories: list[DirectoryEntry] = Field(default_factory=list)
    source_directories: list[SourceDirectoryEntry] = Field(default_factory=list)
    options: dict[str, str] = Field(default_factory=_default_options, repr=False)

    @field_validator("locale")
    @classmethod
    def validate_locale(cls, v: str | None) -> str | None:
        """Accepts 'language[,country[,variant]]'."""
        if v is None or not v.strip():
            return None
        parts = [p.strip() for p in v.split(",")]
        if len(parts) > 3 or not parts[0]:
            raise ValueError(f"The locale '{v}' is not valid.")
        return ",".join(parts)

    @field_validator("encoding")
    @classmethod
    def validate_encoding(cls, v: str) -> str:
        try:
            sample = "<?xml".encode(v)
        except (LookupError, UnicodeError) as e:
            raise ValueError(f"Unknown encoding '{v}'.") from e
        # The reader finds the encoding from a byte order mark or an ASCII declaration.
        if sample != b"<?xml" and not sample.startswith(_BYTE_ORDER_MARKS):
            raise ValueError(
                f"Encoding '{v}' cannot be detected when the manifest is read back."
            )
        return v

    @field_validator("files")
    @classmethod
    def validate_unique_files(cls, v: list[FileEntry]) -> list[FileEntry]:
        seen = set()
        for entry in v:
            if entry.key in seen:
                raise ValueError(
                    f"File '{entry.slash_path_and_filename}' is declared more than once."
                )
            seen.add(entry.key)
        return v

    @field_validator("start_frame_delay_seconds")
    @classmethod
    def validate_delay(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Start frame delay cannot be negative.")
        return v

    @property
    def language(self) -> str | None:
        return self.locale.split(",")[0] if self.locale else None

    def context(self) -> OptionContext:
        """Returns an immutable snapshot of the current option map."""
        return OptionContext(self.options)

    def resolved(self, field_name: str, context: OptionContext | None = None) -> str | None:
        """Returns a scalar setting with placeholders resolved against context."""
        context = context or self.context()
        return context.resolve(getattr(self, field_name))

    def set_option(self, key: str, value: str) -> None:
        self.options[key] = value

    def check(self) -> None:
        """
        Validates that the manifest is complete enough to install from.

        Raises:
            ValidationError: If destination or id filename is missing, or lazy
            loading is enabled without a manifest refresh location.
        """
        if self.dest_path is None:
            raise ValidationError("The 'destPath' is not set.")
        if self.id_filename is None:
            raise ValidationError("The 'idFilename' is not set.")
        if self.lazy_loading and not (self.manifest_location or "").strip():
            raise ValidationError(
                "The 'configFileUrl' must be set when lazy loading is enabled."
            )

    def find_file(self, path: str, filename: str) -> FileEntry:
        key = EntryKey.of(path, filename)
        for entry in self.files:
            if entry.key == key:
                return entry
        raise FileNotDeclaredError(path, filename)

    def find_directory(self, path: str) -> SourceDirectoryEntry:
        wanted = path_parts(path)
        for entry in self.source_directories:
            if path_parts(entry.path) == wanted:
                return entry
        raise DirectoryNotDeclaredError(path)

    def replace_file(self, old: FileEntry, new: FileEntry) -> None:
        """Replaces an entry in place, keeping its position."""
        if new.key != old.key and new.key in self.file_index():
            raise ValidationError(
                f"File '{new.slash_path_and_filename}' is already declared."
            )
        for i, entry in enumerate(self.files):
            if entry.key == old.key:
                self.files[i] = new
                return
        raise FileNotDeclaredError(old.path, old.filename)

    def file_index(self) -> dict[EntryKey, FileEntry]:
        return {entry.key: entry for entry in self.files}

    def scalar_settings(self) -> dict[str, object]:
        return self.model_dump(exclude=_RUNTIME_FIELDS | {"first_installation"})

    def simple_attributes_equal(self, other: object) -> bool:
        """Compares all scalar settings, ignoring entries and the option map."""
        if not isinstance(other, ApplicationManifest):
            return False
        return self.scalar_settings() == other.scalar_settings()
