from pathlib import Path

import pytest
from typer.testing import CliRunner

from appsync.cli import app as cli_app
from appsync.models.manifest import ApplicationManifest
from appsync.storage.manifest_codec import parse_manifest_file, write_manifest

from conftest import entry_for

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(cli_app, "CONFIG_FILE", tmp_path / "config" / "config.ini")


@pytest.fixture
def published(tmp_path: Path, source_root: Path) -> Path:
    """A manifest on the 'server' declaring two files."""
    manifest = ApplicationManifest(
        title="Demo",
        dest_path=str(tmp_path / "install"),
        id_filename=".demo",
        log_filename=None,
    )
    manifest.files = [
        entry_for(source_root, "lib/app.jar", b"app", on_classpath=True),
        entry_for(source_root, "readme.txt", b"readme", rollout_order=1),
    ]
    target = source_root / "application.xml"
    write_manifest(manifest, target)
    return target


def test_version():
    result = runner.invoke(cli_app.app, ["--version"])
    assert result.exit_code == 0
    assert "appsync" in result.output


def test_init_writes_settings(tmp_path: Path):
    result = runner.invoke(cli_app.app, ["init"])
    assert result.exit_code == 0
    assert (tmp_path / "config" / "config.ini").is_file()


def test_manifest_init_and_show(tmp_path: Path):
    target = tmp_path / "new.xml"
    result = runner.invoke(cli_app.app, ["manifest", "init", str(target)])
    assert result.exit_code == 0
    assert parse_manifest_file(target).title == "Your title"

    again = runner.invoke(cli_app.app, ["manifest", "init", str(target)])
    assert again.exit_code == 1

    shown = runner.invoke(cli_app.app, ["manifest", "show", str(target)])
    assert shown.exit_code == 0
    assert "Your title" in shown.output


def test_manifest_refresh(tmp_path: Path, source_root: Path):
    (source_root / "lib").mkdir()
    (source_root / "lib" / "a.jar").write_bytes(b"a")
    target = tmp_path / "refreshed.xml"

    result = runner.invoke(cli_app.app, ["manifest", "refresh", str(target), str(source_root)])

    assert result.exit_code == 0, result.output
    manifest = parse_manifest_file(target)
    assert [e.slash_path_and_filename for e in manifest.files] == ["lib/a.jar"]


def test_plan_does_not_touch_destination(published: Path, tmp_path: Path):
    destination = tmp_path / "install"
    result = runner.invoke(cli_app.app, ["plan", str(published), str(destination)])
    assert result.exit_code == 0, result.output
    assert "2" in result.output
    assert not destination.exists()


def test_sync_dry_run(published: Path, tmp_path: Path):
    result = runner.invoke(
        cli_app.app,
        [
            "sync",
            str(published),
            "--dest",
            str(tmp_path / "install"),
            "--dry-run",
            "-o",
            f"userHome={tmp_path / 'home'}",
        ],
    )
    assert result.exit_code == 0, result.output
    assert not (tmp_path / "install").exists()


def test_sync_installs(published: Path, tmp_path: Path):
    destination = tmp_path / "install"
    result = runner.invoke(
        cli_app.app,
        [
            "sync",
            str(published),
            "--dest",
            str(destination),
            "--yes",
            "--no-launch",
            "-o",
            f"userHome={tmp_path / 'home'}",
        ],
    )
    assert result.exit_code == 0, result.output
    assert (destination / "lib" / "app.jar").read_bytes() == b"app"
    assert (destination / "readme.txt").read_bytes() == b"readme"
    assert (destination / "application.xml").is_file()
    assert (tmp_path / "home" / ".demo").is_file()


def test_fetch_single_file(published: Path, tmp_path: Path):
    destination = tmp_path / "install"
    result = runner.invoke(
        cli_app.app,
        ["fetch", str(published), "", "readme.txt", "--dest", str(destination)],
    )
    assert result.exit_code == 0, result.output
    assert (destination / "readme.txt").read_bytes() == b"readme"


def test_invalid_option_syntax(published: Path):
    result = runner.invoke(cli_app.app, ["sync", str(published), "-o", "novalue"])
    assert result.exit_code != 0
