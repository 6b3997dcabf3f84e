import asyncio
from pathlib import Path

import pytest

from appsync.core.installer import Installer, launch_command
from appsync.exceptions import InstallationError, ValidationError
from appsync.models.manifest import ApplicationManifest
from appsync.storage.install_marker import InstallMarker, is_incomplete
from appsync.storage.manifest_codec import parse_manifest_file

from conftest import entry_for


@pytest.fixture
def home(tmp_path: Path) -> Path:
    return tmp_path / "home"


def _install(manifest, home, **kwargs):
    installer = Installer(manifest, home=home, **kwargs)
    return installer, asyncio.run(installer.run())


def test_first_install(manifest, source_root, destination, home):
    manifest.files = [
        entry_for(source_root, "lib/app.jar", b"app", on_classpath=True),
        entry_for(source_root, "readme.txt", b"readme"),
    ]
    manifest.launch_executable = "${destDir}/bin/run"
    manifest.launch_arguments = "-cp ${classpath} Main"

    installer, result = _install(manifest, home)

    assert result.destination == destination
    assert result.first_installation
    assert result.updated
    assert (destination / "lib" / "app.jar").read_bytes() == b"app"
    assert not is_incomplete(destination)
    assert InstallMarker.in_home(".demo", home).read() == destination

    local = parse_manifest_file(destination / "application.xml")
    assert local.files == manifest.files
    assert local.manifest_location == (destination / "application.xml").resolve().as_uri()

    assert result.command == [f"{destination}/bin/run", "-cp", "lib/app.jar", "Main"]
    assert (destination / "start.log").exists()


def test_second_run_is_up_to_date(manifest, source_root, destination, home):
    manifest.files = [entry_for(source_root, "a.txt", b"a")]
    _install(manifest, home)

    again = manifest.model_copy(deep=True)
    _, result = _install(again, home)

    assert result.transfer is None
    assert not result.plan.is_update_necessary()
    assert not result.first_installation
    assert result.command == []


def test_update_removes_dropped_files(manifest, source_root, destination, home):
    manifest.files = [entry_for(source_root, "a.txt", b"a"), entry_for(source_root, "b.txt", b"b")]
    _install(manifest, home)

    update = manifest.model_copy(deep=True)
    update.files = [entry_for(source_root, "a.txt", b"a v2")]
    _, result = _install(update, home)

    assert result.updated
    assert (destination / "a.txt").read_bytes() == b"a v2"
    assert not (destination / "b.txt").exists()
    assert [str(d) for d in result.plan.deleted_files] == ["b.txt"]


def test_update_can_be_declined(manifest, source_root, destination, home):
    manifest.files = [entry_for(source_root, "a.txt", b"a")]
    _install(manifest, home)

    update = manifest.model_copy(deep=True)
    update.silent_update = False
    update.files = [entry_for(source_root, "a.txt", b"a v2")]
    questions = []

    def decline(question):
        questions.append(question)
        return False

    _, result = _install(update, home, confirm_update=decline)

    assert len(questions) == 1
    assert result.transfer is None
    assert (destination / "a.txt").read_bytes() == b"a"
    local = parse_manifest_file(destination / "application.xml")
    assert local.files[0].content_hash == manifest.files[0].content_hash


def test_directory_chooser_is_used_for_interactive_installs(manifest, source_root, tmp_path, home):
    manifest.silent_install = False
    manifest.files = [entry_for(source_root, "a.txt", b"a")]
    chosen = tmp_path / "chosen"
    offered = []

    def choose(default):
        offered.append(default)
        return chosen

    _, result = _install(manifest, home, choose_directory=choose)

    assert offered == [tmp_path / "install"]
    assert result.destination == chosen
    assert (chosen / "a.txt").exists()


def test_recorded_directory_must_exist(manifest, tmp_path, home):
    InstallMarker.in_home(".demo", home).write(tmp_path / "vanished")
    with pytest.raises(InstallationError):
        Installer(manifest, home=home).resolve_destination()


def test_interrupted_first_install_stays_first(manifest, source_root, destination, home):
    manifest.files = [entry_for(source_root, "a.txt", b"a")]
    installer = Installer(manifest, home=home)
    installer.executor.cancel()

    result = asyncio.run(installer.run())

    assert result.canceled
    assert is_incomplete(destination)
    assert not (destination / "application.xml").exists()

    _, retry = _install(manifest.model_copy(deep=True), home)
    assert retry.first_installation
    assert retry.updated
    assert not is_incomplete(destination)


def test_missing_id_filename(tmp_path):
    manifest = ApplicationManifest(dest_path=str(tmp_path / "x"))
    with pytest.raises(ValidationError):
        Installer(manifest, home=tmp_path).resolve_destination()


def test_launch_command():
    manifest = ApplicationManifest(
        launch_executable="${destDir}/jre/bin/java",
        launch_arguments='-Dname="two words" -classpath ${classpath} Main',
    )
    manifest.set_option("destDir", "/opt/app")
    manifest.set_option("classpath", "lib/a.jar")
    command = launch_command(manifest)
    assert command[0] == "/opt/app/jre/bin/java"
    assert "-classpath" in command
    assert "lib/a.jar" in command
    assert launch_command(ApplicationManifest()) == []
