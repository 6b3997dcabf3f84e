"""
On-disk installation markers.

The id file lives outside the installation (in the user's home directory, named
by the manifest's idFilename) and records where the application was installed.
An '.incomplete' file inside the installation directory flags a first install
that has not finished yet.
"""

import configparser
import logging
from pathlib import Path

from appsync.exceptions import InstallationError

log = logging.getLogger(__name__)

MARKER_SECTION = "installation"
PROGRAM_DIRECTORY_KEY = "program-directory"
INCOMPLETE_MARKER = ".incomplete"

_HEADER = "# --- DO NOT EDIT OR DELETE --- Generated by appsync ---\n"


class InstallMarker:
    """Reads and writes the id file that records the installation directory."""

    def __init__(self, marker_file: Path):
        self.marker_file = marker_file

    @classmethod
    def in_home(cls, id_filename: str, home: Path | None = None) -> "InstallMarker":
        return cls((home or Path.home()) / id_filename)

    def exists(self) -> bool:
        return self.marker_file.is_file()

    def read(self) -> Path:
        """
        Returns the recorded installation directory.

        Raises:
            InstallationError: If the file cannot be parsed or lacks the key.
        """
        parser = configparser.ConfigParser(interpolation=None)
        try:
            parser.read(self.marker_file, encoding="utf-8")
        except configparser.Error as e:
            raise InstallationError(
                f"Cannot parse installation marker '{self.marker_file}': {e}"
            ) from e
        directory = parser.get(MARKER_SECTION, PROGRAM_DIRECTORY_KEY, fallback=None)
        if not directory:
            raise InstallationError(
                f"The property '{PROGRAM_DIRECTORY_KEY}' was not found inside "
                f"'{self.marker_file}'!"
            )
        return Path(directory)

    def write(self, program_directory: Path) -> None:
        parser = configparser.ConfigParser(interpolation=None)
        parser[MARKER_SECTION] = {PROGRAM_DIRECTORY_KEY: str(program_directory)}
        try:
            self.marker_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.marker_file, "w", encoding="utf-8") as f:
                f.write(_HEADER)
                parser.write(f)
        except OSError as e:
            raise InstallationError(
                f"Cannot write installation marker '{self.marker_file}': {e}"
            ) from e
        log.debug(f"Recorded installation directory '{program_directory}'.")


def incomplete_marker(destination: Path) -> Path:
    return destination / INCOMPLETE_MARKER


def is_incomplete(destination: Path) -> bool:
    return incomplete_marker(destination).exists()


def mark_incomplete(destination: Path) -> None:
    """Creates destination together with its '.incomplete' file."""
    try:
        destination.mkdir(parents=True, exist_ok=True)
        incomplete_marker(destination).touch()
    except OSError as e:
        raise InstallationError(
            f"Cannot create file '{incomplete_marker(destination)}': {e}"
        ) from e


def clear_incomplete(destination: Path) -> None:
    incomplete_marker(destination).unlink(missing_ok=True)
