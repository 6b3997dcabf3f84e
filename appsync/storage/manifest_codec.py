"""
Reads and writes the XML manifest format.

A manifest is one <application> root holding one tag per scalar setting plus
repeatable <mkdir>, <dir> and <file> elements:

    <?xml version="1.0" encoding="UTF-8"?>
    <application>
      <title>Demo</title>
      <destPath>${userHome}/demo</destPath>
      <mkdir path="logs"/>
      <dir path="plugins" srcPathUrl="https://example.org/plugins/${filename}"/>
      <file path="lib" file="app.jar" hash="..." size="1000"
            srcFileUrl="https://example.org/lib/app.jar" addToClasspath="true"/>
    </application>
"""

import codecs
import logging
import os
import re
import xml.etree.ElementTree as ET
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from xml.sax.saxutils import escape

from pydantic import ValidationError as PydanticValidationError

from appsync.exceptions import (
    InvalidManifestError,
    NotFoundError,
    TransferError,
    ValidationError,
)
from appsync.media.downloader import Downloader
from appsync.models.manifest import (
    TEMPLATED_FIELDS,
    ApplicationManifest,
    DirectoryEntry,
    FileEntry,
    OptionContext,
    SourceDirectoryEntry,
)
from appsync.utils.formatting import format_bool, parse_bool, parse_int

log = logging.getLogger(__name__)

DEFAULT_ENCODING = "UTF-8"
BACKUP_SUFFIX = ".bak"

_ENCODING_PATTERN = re.compile(r"""encoding\s*=\s*["']([A-Za-z0-9._-]+)["']""")
_DECLARATION_PATTERN = re.compile(r"^\s*<\?xml[^>]*\?>")
_ENCODING_SCAN_LINES = 2
# UTF-32 first: its little-endian mark starts with the UTF-16 one.
_BOM_ENCODINGS = (
    (codecs.BOM_UTF32_LE, "UTF-32"),
    (codecs.BOM_UTF32_BE, "UTF-32"),
    (codecs.BOM_UTF16_LE, "UTF-16"),
    (codecs.BOM_UTF16_BE, "UTF-16"),
)

_ATTR_ESCAPES = {'"': "&quot;", "'": "&apos;"}


class SerializationMode(Enum):
    """TEMPLATE keeps '${name}' placeholders, RESOLVED substitutes them."""

    TEMPLATE = "template"
    RESOLVED = "resolved"


# XML tag -> (model field, kind). Order is the serialization order.
SCALAR_TAGS: dict[str, tuple[str, str]] = {
    "version": ("version", "str"),
    "title": ("title", "str"),
    "vendor": ("vendor", "str"),
    "description": ("description", "str"),
    "exitAfterExecute": ("exit_after_execute", "bool"),
    "destPath": ("dest_path", "str"),
    "idFilename": ("id_filename", "str"),
    "silentInstall": ("silent_install", "bool"),
    "silentUpdate": ("silent_update", "bool"),
    "locale": ("locale", "str"),
    "lazyLoading": ("lazy_loading", "bool"),
    "showStartFrame": ("show_start_frame", "bool"),
    "startFrameDelaySeconds": ("start_frame_delay_seconds", "int"),
    "logFilename": ("log_filename", "str"),
    "javaExe": ("launch_executable", "str"),
    "javaArgs": ("launch_arguments", "str"),
    "msgFileUrl": ("messages_location", "str"),
    "configFileUrl": ("manifest_location", "str"),
}

# Accepted on parse only; the encoding is carried by the XML declaration.
_PARSE_ONLY_TAGS = {"xmlEncoding": ("encoding", "str")}


@dataclass
class _RawElement:
    """A first-level child of <application> before typing."""

    name: str
    attributes: dict[str, str] = field(default_factory=dict)
    text: str | None = None

    def require(self, attribute: str, source: str) -> str:
        value = self.attributes.get(attribute)
        if value is None:
            raise InvalidManifestError(
                f"Element '{self.name}' missing required attribute '{attribute}'!",
                source,
            )
        return value

    def integer(self, attribute: str, default: int, source: str) -> int:
        try:
            return parse_int(self.attributes.get(attribute), default)
        except ValueError as e:
            raise InvalidManifestError(
                f"Element '{self.name}' has a non-integer '{attribute}' "
                f"value '{self.attributes.get(attribute)}'.",
                source,
            ) from e


def detect_encoding(data: bytes) -> str:
    """
    Picks the encoding from a UTF-16/32 byte order mark, else from an explicit
    declaration in the first lines of the document. Falls back to UTF-8.
    """
    for bom, encoding in _BOM_ENCODINGS:
        if data.startswith(bom):
            return encoding
    head = b"\n".join(data.splitlines()[:_ENCODING_SCAN_LINES])
    match = _ENCODING_PATTERN.search(head.decode("latin-1"))
    return match.group(1) if match else DEFAULT_ENCODING


def _read_elements(data: bytes, source: str) -> tuple[list[_RawElement], str]:
    encoding = detect_encoding(data)
    try:
        text = data.decode(encoding)
    except (LookupError, UnicodeDecodeError) as e:
        raise InvalidManifestError(
            f"Cannot decode manifest as '{encoding}': {e}", source
        ) from e
    if text.startswith("\ufeff"):
        text = text[1:]
    # The declaration is dropped so expat reads the already decoded text as UTF-8.
    text = _DECLARATION_PATTERN.sub("", text, count=1)
    try:
        root = ET.fromstring(text.encode("utf-8"))
    except ET.ParseError as e:
        raise InvalidManifestError(f"Malformed manifest: {e}", source) from e

    elements = []
    for child in root:
        value = (child.text or "").strip() or None
        elements.append(_RawElement(child.tag, dict(child.attrib), value))
    return elements, encoding


def _file_entry(element: _RawElement, source: str) -> FileEntry:
    path = element.require("path", source)
    filename = element.require("file", source)
    content_hash = element.require("hash", source)
    element.require("size", source)
    size = element.integer("size", 0, source)
    source_location = element.require("srcFileUrl", source)
    try:
        return FileEntry(
            path=path,
            filename=filename,
            content_hash=content_hash,
            size=size,
            source_location=source_location,
            archive_expand=parse_bool(element.attributes.get("unzip")),
            always_load=parse_bool(element.attributes.get("loadAlways")),
            on_classpath=parse_bool(element.attributes.get("addToClasspath")),
            rollout_order=element.integer("order", 0, source),
        )
    except ValidationError as e:
        raise InvalidManifestError(f"Invalid 'file' element: {e}", source) from e


def _source_directory_entry(element: _RawElement, source: str) -> SourceDirectoryEntry:
    path = element.require("path", source)
    template = element.require("srcPathUrl", source)
    try:
        return SourceDirectoryEntry(path=path, source_location_template=template)
    except ValidationError as e:
        raise InvalidManifestError(f"Invalid 'dir' element: {e}", source) from e


def _directory_entry(element: _RawElement, source: str) -> DirectoryEntry:
    path = element.require("path", source)
    try:
        return DirectoryEntry(path)
    except ValidationError as e:
        raise InvalidManifestError(f"Invalid 'mkdir' element: {e}", source) from e


def _apply_scalar(
    manifest: ApplicationManifest, element: _RawElement, source: str
) -> None:
    mapping = SCALAR_TAGS.get(element.name) or _PARSE_ONLY_TAGS.get(element.name)
    if mapping is None:
        log.debug(f"Ignoring unknown manifest element '{element.name}'.")
        return

    field_name, kind = mapping
    default = ApplicationManifest.model_fields[field_name].default
    try:
        if kind == "bool":
            value = parse_bool(element.text, default)
        elif kind == "int":
            value = parse_int(element.text, default)
        elif field_name == "encoding":
            value = element.text or default
        else:
            value = element.text
        setattr(manifest, field_name, value)
    except (ValueError, PydanticValidationError) as e:
        raise InvalidManifestError(
            f"Invalid value '{element.text}' for '{element.name}': {e}", source
        ) from e


def parse_manifest(
    data: bytes,
    source: str = "<memory>",
    options: Mapping[str, str] | None = None,
) -> ApplicationManifest:
    """
    Parses a serialized manifest.

    Args:
        data: The raw document bytes.
        source: A description of where the bytes came from, used in errors.
        options: Initial option map bindings (e.g. command line overrides).

    Raises:
        InvalidManifestError: If the document is malformed, an element misses a
        required attribute or a file is declared more than once.
    """
    elements, encoding = _read_elements(data, source)
    try:
        manifest = ApplicationManifest(encoding=encoding)
    except PydanticValidationError as e:
        raise InvalidManifestError(f"Unsupported encoding '{encoding}': {e}", source) from e
    if options:
        manifest.options.update(options)

    seen = set()
    for element in elements:
        if element.name == "file":
            entry = _file_entry(element, source)
            if entry.key in seen:
                raise InvalidManifestError(
                    f"File '{entry.slash_path_and_filename}' is declared more than once.",
                    source,
                )
            seen.add(entry.key)
            manifest.files.append(entry)
        elif element.name == "mkdir":
            manifest.directories.append(_directory_entry(element, source))
        elif element.name == "dir":
            manifest.source_directories.append(_source_directory_entry(element, source))
        else:
            _apply_scalar(manifest, element, source)

    log.debug(
        f"Parsed manifest '{source}': {len(manifest.files)} files, "
        f"{len(manifest.directories)} mkdirs, "
        f"{len(manifest.source_directories)} source dirs."
    )
    return manifest


def parse_manifest_file(
    path: Path, options: Mapping[str, str] | None = None
) -> ApplicationManifest:
    """Parses a manifest from a local file."""
    try:
        data = path.read_bytes()
    except OSError as e:
        raise InvalidManifestError(f"Cannot read manifest: {e}", str(path)) from e
    return parse_manifest(data, str(path), options)


async def load_manifest(
    location: str,
    downloader: Downloader | None = None,
    options: Mapping[str, str] | None = None,
) -> ApplicationManifest:
    """
    Loads a manifest from a local path, 'file://' URL or 'http(s)://' URL.

    Raises:
        InvalidManifestError: If the manifest cannot be read or parsed.
    """
    downloader = downloader or Downloader()
    try:
        data = await downloader.fetch_bytes(location)
    except (NotFoundError, TransferError) as e:
        raise InvalidManifestError(f"Cannot load manifest: {e}", location) from e
    return parse_manifest(data, location, options)


def _attr(value: str) -> str:
    return escape(value, _ATTR_ESCAPES)


def _tag(name: str, value: str | None) -> str:
    if value is None:
        return f"<{name}/>"
    return f"<{name}>{escape(value)}</{name}>"


def _scalar_value(
    manifest: ApplicationManifest,
    field_name: str,
    kind: str,
    mode: SerializationMode,
    context: OptionContext,
) -> str | None:
    value = getattr(manifest, field_name)
    if kind == "bool":
        return format_bool(value)
    if kind == "int":
        return str(value)
    if mode is SerializationMode.RESOLVED and field_name in TEMPLATED_FIELDS:
        return context.resolve(value)
    return value


def file_entry_xml(entry: FileEntry) -> str:
    order = f' order="{entry.rollout_order}"' if entry.rollout_order != 0 else ""
    return (
        f'<file path="{_attr(entry.path)}" file="{_attr(entry.filename)}"'
        f' hash="{_attr(entry.content_hash)}" size="{entry.size}"'
        f' unzip="{format_bool(entry.archive_expand)}"'
        f' loadAlways="{format_bool(entry.always_load)}"'
        f' addToClasspath="{format_bool(entry.on_classpath)}"'
        f' srcFileUrl="{_attr(entry.source_location)}"{order}/>'
    )


def to_xml(
    manifest: ApplicationManifest,
    mode: SerializationMode = SerializationMode.TEMPLATE,
    context: OptionContext | None = None,
) -> str:
    """
    Serializes a manifest.

    TEMPLATE mode keeps placeholders intact (for the authoring copy); RESOLVED mode
    substitutes them against context (for the installed application's own record).
    """
    context = context or manifest.context()
    lines = [f'<?xml version="1.0" encoding="{manifest.encoding}"?>', "<application>"]
    for tag, (field_name, kind) in SCALAR_TAGS.items():
        value = _scalar_value(manifest, field_name, kind, mode, context)
        lines.append(f"  {_tag(tag, value)}")
    for directory in manifest.directories:
        lines.append(f'  <mkdir path="{_attr(directory.path)}"/>')
    for source_dir in manifest.source_directories:
        lines.append(
            f'  <dir path="{_attr(source_dir.path)}"'
            f' srcPathUrl="{_attr(source_dir.source_location_template)}"/>'
        )
    for entry in manifest.files:
        lines.append(f"  {file_entry_xml(entry)}")
    lines.append("</application>")
    return "\n".join(lines) + "\n"


def write_manifest(
    manifest: ApplicationManifest,
    target: Path,
    mode: SerializationMode = SerializationMode.TEMPLATE,
    backup: bool = False,
    context: OptionContext | None = None,
) -> None:
    """
    Writes a manifest to target, optionally renaming an existing file to
    '<target>.bak' first (replacing any previous backup).
    """
    xml = to_xml(manifest, mode, context)
    if backup and target.exists():
        backup_path = target.with_name(target.name + BACKUP_SUFFIX)
        os.replace(target, backup_path)
        log.debug(f"Backed up '{target}' to '{backup_path}'.")
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "wb") as f:
        f.write(xml.encode(manifest.encoding, errors="xmlcharrefreplace"))
    log.debug(f"Wrote {mode.value} manifest to '{target}'.")


def create_template_manifest() -> ApplicationManifest:
    """Returns a starter manifest populated with placeholder settings."""
    return ApplicationManifest(
        title="Your title",
        dest_path="${userHome}/yourapp",
        id_filename=".yourapp",
        launch_executable="jre/bin/java",
        launch_arguments="-classpath ${classpath} com.company.product.MainClass",
    )
