import asyncio
import hashlib
import zipfile
from pathlib import Path

import pytest

from appsync.exceptions import ArchiveError, NotFoundError
from appsync.media.downloader import Downloader
from appsync.media.integrity import FileIntegrityChecker
from appsync.media.unpacker import ArchiveUnpacker
from appsync.utils.cancellation import CancellationToken


def test_algorithm_inferred_from_digest_length(tmp_path: Path):
    file = tmp_path / "data.bin"
    file.write_bytes(b"payload")
    md5 = hashlib.md5(b"payload").hexdigest()
    sha256 = hashlib.sha256(b"payload").hexdigest()

    assert FileIntegrityChecker.algorithm_for(md5) == "md5"
    assert FileIntegrityChecker.algorithm_for(sha256) == "sha256"
    assert FileIntegrityChecker.algorithm_for("short") == "md5"
    assert FileIntegrityChecker.matches(file, md5.upper())
    assert FileIntegrityChecker.matches(file, sha256)
    assert not FileIntegrityChecker.matches(file, hashlib.md5(b"other").hexdigest())
    with pytest.raises(ValueError):
        FileIntegrityChecker.compute_hash(file, "crc32")


def test_local_copy_reports_progress(tmp_path: Path):
    source = tmp_path / "source.bin"
    source.write_bytes(b"x" * 5000)
    target = tmp_path / "out" / "target.bin"
    progress = []

    written = asyncio.run(
        Downloader(chunk_size=1024).download_file(
            source.as_uri(), target, on_progress=lambda done, total: progress.append((done, total))
        )
    )

    assert written == 5000
    assert target.read_bytes() == b"x" * 5000
    assert progress[-1] == (5000, 5000)
    assert len(progress) == 5
    assert not (tmp_path / "out" / "target.bin.part").exists()


def test_missing_source_leaves_no_partial_file(tmp_path: Path):
    target = tmp_path / "target.bin"
    with pytest.raises(NotFoundError):
        asyncio.run(Downloader().download_file(str(tmp_path / "missing"), target))
    assert not target.exists()
    assert not (tmp_path / "target.bin.part").exists()


def test_fetch_bytes(tmp_path: Path):
    source = tmp_path / "manifest.xml"
    source.write_bytes(b"<application/>")
    assert asyncio.run(Downloader().fetch_bytes(str(source))) == b"<application/>"
    with pytest.raises(NotFoundError):
        asyncio.run(Downloader().fetch_bytes(str(tmp_path / "missing.xml")))


def _zip(path: Path, entries: dict[str, bytes]) -> Path:
    with zipfile.ZipFile(path, "w") as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    return path


def test_expand_reports_entries(tmp_path: Path):
    archive = _zip(tmp_path / "a.zip", {"x/1.txt": b"1", "x/2.txt": b"22"})
    seen = []
    count = ArchiveUnpacker().expand(
        archive, tmp_path / "out", lambda info, target: seen.append((info.file_size, target))
    )
    assert count == 2
    assert seen == [(1, tmp_path / "out" / "x" / "1.txt"), (2, tmp_path / "out" / "x" / "2.txt")]


@pytest.mark.parametrize("name", ["../escape.txt", "/abs.txt", "x/../../escape.txt"])
def test_expand_rejects_unsafe_entries(tmp_path: Path, name: str):
    info = zipfile.ZipInfo(name)
    archive = tmp_path / "bad.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("first.txt", b"1")
        zf.writestr(info, b"bad")
    out = tmp_path / "out"
    with pytest.raises(ArchiveError):
        ArchiveUnpacker().expand(archive, out)
    assert not out.exists()


def test_expand_invalid_archive(tmp_path: Path):
    archive = tmp_path / "not.zip"
    archive.write_bytes(b"plain text")
    with pytest.raises(ArchiveError):
        ArchiveUnpacker().expand(archive, tmp_path / "out")


def test_expand_stops_when_canceled(tmp_path: Path):
    archive = _zip(tmp_path / "a.zip", {"1.txt": b"1", "2.txt": b"2"})
    token = CancellationToken()
    count = ArchiveUnpacker().expand(
        archive, tmp_path / "out", lambda info, target: token.cancel(), token
    )
    assert count == 1
    assert not (tmp_path / "out" / "2.txt").exists()
