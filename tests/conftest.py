import hashlib
from pathlib import Path

import pytest

from appsync.models.manifest import ApplicationManifest, FileEntry


def md5_of(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def make_source(root: Path, relative: str, data: bytes) -> Path:
    """Writes a source file below root and returns its path."""
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def entry_for(source_root: Path, relative: str, data: bytes, **flags) -> FileEntry:
    """Creates a source file and a FileEntry declaring it."""
    source = make_source(source_root, relative, data)
    path, _, filename = relative.rpartition("/")
    return FileEntry(
        path=path,
        filename=filename,
        content_hash=md5_of(data),
        size=len(data),
        source_location=str(source),
        **flags,
    )


@pytest.fixture
def source_root(tmp_path: Path) -> Path:
    root = tmp_path / "server"
    root.mkdir()
    return root


@pytest.fixture
def destination(tmp_path: Path) -> Path:
    return tmp_path / "install"


@pytest.fixture
def manifest(tmp_path: Path) -> ApplicationManifest:
    manifest = ApplicationManifest(
        title="Demo",
        dest_path=str(tmp_path / "install"),
        id_filename=".demo",
        silent_install=True,
        silent_update=True,
    )
    manifest.set_option("userHome", str(tmp_path / "home"))
    return manifest
