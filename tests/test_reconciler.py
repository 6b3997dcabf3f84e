import asyncio
from pathlib import Path

import pytest

from appsync.core.installer import Installer
from appsync.core.reconciler import (
    build_plan,
    create_classpath,
    diff_manifests,
    is_retained,
    scan_orphans,
)
from appsync.core.transfer_executor import TransferExecutor
from appsync.exceptions import InstallationError
from appsync.models.manifest import ApplicationManifest, FileEntry, SourceDirectoryEntry
from appsync.models.plan import DeletedEntry

from conftest import entry_for


def _place(destination: Path, relative: str, data: bytes) -> None:
    target = destination / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)


def test_classifies_new_changed_and_unchanged(manifest, source_root, destination):
    manifest.files = [
        entry_for(source_root, "lib/new.jar", b"new"),
        entry_for(source_root, "lib/changed.jar", b"changed v2"),
        entry_for(source_root, "lib/same.jar", b"same"),
    ]
    _place(destination, "lib/changed.jar", b"changed v1")
    _place(destination, "lib/same.jar", b"same")

    plan = build_plan(manifest, destination)
    assert [e.filename for e in plan.new_files] == ["new.jar"]
    assert [e.filename for e in plan.changed_files] == ["changed.jar"]
    assert [e.filename for e in plan.unchanged_files] == ["same.jar"]
    assert plan.is_update_necessary()
    assert plan.transfer_count() == 2
    assert plan.transfer_bytes() == len(b"new") + len(b"changed v2")


def test_missing_destination_makes_everything_new(manifest, source_root, destination):
    manifest.files = [entry_for(source_root, "a.txt", b"a"), entry_for(source_root, "b.txt", b"b")]
    plan = build_plan(manifest, destination)
    assert len(plan.new_files) == 2
    assert not destination.exists()


def test_destination_must_be_a_directory(manifest, tmp_path):
    file = tmp_path / "not-a-dir"
    file.write_text("x")
    with pytest.raises(InstallationError):
        build_plan(manifest, file)


def test_archives_are_expanded_only_when_transferred(manifest, source_root, destination):
    manifest.files = [
        entry_for(source_root, "new.zip", b"zip1", archive_expand=True),
        entry_for(source_root, "same.zip", b"zip2", archive_expand=True),
    ]
    _place(destination, "same.zip", b"zip2")
    plan = build_plan(manifest, destination)
    assert [e.filename for e in plan.decompress_files] == ["new.zip"]


def test_lazy_loading_filters_entries(manifest, source_root, destination):
    manifest.lazy_loading = True
    manifest.files = [
        entry_for(source_root, "lazy.txt", b"1"),
        entry_for(source_root, "always.txt", b"2", always_load=True),
        entry_for(source_root, "lib/cp.jar", b"3", on_classpath=True),
    ]
    plan = build_plan(manifest, destination)
    assert [e.filename for e in plan.new_files] == ["always.txt", "cp.jar"]
    assert is_retained(manifest.files[0], lazy_loading=False)
    assert not is_retained(manifest.files[0], lazy_loading=True)


def test_phases_are_sorted_and_include_deletions(manifest, source_root, destination):
    manifest.files = [
        entry_for(source_root, "c.txt", b"c", rollout_order=5),
        entry_for(source_root, "a.txt", b"a", rollout_order=-1),
        entry_for(source_root, "b.txt", b"b"),
    ]
    plan = build_plan(manifest, destination, [DeletedEntry.from_slash_path("old.txt", 3)])
    assert plan.phases() == [-1, 0, 3, 5]
    assert [e.filename for e in plan.new_for(-1)] == ["a.txt"]
    assert [str(d) for d in plan.deleted_for(3)] == ["old.txt"]


def test_deleted_paths_take_their_previous_order(manifest, source_root, destination):
    previous = ApplicationManifest()
    previous.files = [FileEntry("lib", "gone.jar", "h", rollout_order=2)]
    plan = build_plan(manifest, destination, ["lib/gone.jar", "other.txt"], previous)
    assert plan.deleted_files == [
        DeletedEntry.from_slash_path("lib/gone.jar", 2),
        DeletedEntry.from_slash_path("other.txt", 0),
    ]


def test_plan_is_empty_after_execution(manifest, source_root, destination):
    manifest.files = [
        entry_for(source_root, "lib/a.jar", b"a", on_classpath=True),
        entry_for(source_root, "b.txt", b"b", rollout_order=1),
    ]
    first = build_plan(manifest, destination)
    asyncio.run(TransferExecutor().execute(first))

    second = build_plan(manifest, destination)
    assert not second.is_update_necessary()
    assert len(second.unchanged_files) == 2


def test_classpath_in_declaration_order(manifest, source_root, destination):
    manifest.files = [
        entry_for(source_root, "lib/b.jar", b"b", on_classpath=True),
        entry_for(source_root, "readme.txt", b"r"),
        entry_for(source_root, "lib/a.jar", b"a", on_classpath=True),
    ]
    _place(destination, "lib/b.jar", b"b")
    plan = build_plan(manifest, destination)
    assert plan.create_classpath(":") == '"lib/b.jar":"lib/a.jar"'
    assert create_classpath(manifest, ";") == '"lib/b.jar";"lib/a.jar"'


def test_diff_manifests():
    previous = ApplicationManifest()
    previous.files = [
        FileEntry("lib", "kept.jar", "h1"),
        FileEntry("lib", "dropped.jar", "h2", rollout_order=4),
    ]
    current = ApplicationManifest()
    current.files = [FileEntry("lib/", "kept.jar", "other-hash")]
    assert diff_manifests(previous, current) == [
        DeletedEntry.from_slash_path("lib/dropped.jar", 4)
    ]


def test_scan_orphans(manifest, source_root, destination):
    manifest.files = [entry_for(source_root, "lib/a.jar", b"a")]
    manifest.source_directories = [
        SourceDirectoryEntry("plugins", str(source_root / "plugins") + "/${filename}")
    ]
    for relative in (
        "lib/a.jar",
        "lib/stray.jar",
        "notes.txt",
        "plugins/p.jar",
        ".incomplete",
        "start.log",
        "application.xml.bak",
        "lib/b.jar.part",
    ):
        _place(destination, relative, b"x")

    assert scan_orphans(manifest, destination) == ["lib/stray.jar", "notes.txt"]
    assert scan_orphans(manifest, destination, ignore=["notes.txt"]) == ["lib/stray.jar"]
    assert scan_orphans(manifest, destination / "missing") == []


def test_scan_orphans_skips_the_installed_manifest(manifest, source_root, destination):
    manifest.files = [entry_for(source_root, "lib/a.jar", b"a")]
    manifest.launch_executable = "bin/run"
    asyncio.run(Installer(manifest).run())
    assert (destination / "application.xml").is_file()
    assert (destination / "start.log").is_file()
    _place(destination, "lib/stray.jar", b"x")

    assert scan_orphans(manifest, destination) == ["lib/stray.jar"]


def test_scan_orphans_manifest_name_matches_top_level_only(manifest, destination):
    _place(destination, "local.xml", b"<application/>")
    _place(destination, "conf/local.xml", b"x")

    assert scan_orphans(manifest, destination, manifest_name="local.xml") == [
        "conf/local.xml"
    ]
