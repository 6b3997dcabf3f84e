"""
Utilities for normalizing manifest paths and resolving them inside a destination.
"""

import os
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname


def normalize_path(path: str | None) -> str:
    """
    Normalizes a manifest path to its platform-neutral form.

    Backslashes become forward slashes, empty and '.' segments are dropped and
    leading/trailing slashes are removed. The base directory itself is ''.

    Raises:
        ValueError: If the path contains a '..' segment.
    """
    if not path:
        return ""
    parts = []
    for part in path.replace("\\", "/").split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            raise ValueError(f"Path '{path}' must not contain '..' segments.")
        parts.append(part)
    return "/".join(parts)


def path_parts(path: str) -> tuple[str, ...]:
    """Splits a normalized path into its segments ('' yields an empty tuple)."""
    return tuple(p for p in normalize_path(path).split("/") if p)


def to_native(path: str) -> str:
    """Renders a normalized path with the host's separator."""
    return normalize_path(path).replace("/", os.sep)


def join_slash(path: str, filename: str) -> str:
    """Joins a normalized path and a filename with a forward slash."""
    path = normalize_path(path)
    return f"{path}/{filename}" if path else filename


def is_within(base_dir: Path, candidate: Path) -> bool:
    """Checks whether a candidate path lies inside base_dir after resolution."""
    base = base_dir.resolve()
    try:
        candidate.resolve().relative_to(base)
    except ValueError:
        return False
    return True


def safe_join(base_dir: Path, relative: str) -> Path:
    """
    Resolves a relative slash path below base_dir.

    Raises:
        ValueError: If the path is absolute or escapes base_dir.
    """
    pure = PurePosixPath(relative.replace("\\", "/"))
    if pure.is_absolute() or (len(relative) > 1 and relative[1] == ":"):
        raise ValueError(f"Absolute path '{relative}' is not allowed.")
    target = base_dir.joinpath(*pure.parts)
    if not is_within(base_dir, target):
        raise ValueError(f"Path '{relative}' escapes '{base_dir}'.")
    return target


def is_url(location: str) -> bool:
    """Returns True for locations with a URL scheme (Windows drive letters excluded)."""
    scheme = urlparse(location).scheme
    return len(scheme) > 1


def location_to_path(location: str) -> Path | None:
    """
    Converts a 'file://' URL or a bare filesystem path to a Path.

    Returns None for any other URL scheme.
    """
    parsed = urlparse(location)
    if parsed.scheme == "file":
        return Path(url2pathname(unquote(parsed.path)))
    if not is_url(location):
        return Path(location)
    return None
