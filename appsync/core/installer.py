"""
End-to-end install/update run: resolves the installation directory, reconciles
it against the manifest, executes the plan and records the result locally.
"""

import logging
import os
import shlex
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from appsync.exceptions import InstallationError, InvalidManifestError, ValidationError
from appsync.models.events import TransferResult
from appsync.models.manifest import ApplicationManifest
from appsync.models.plan import ReconciliationPlan
from appsync.models.settings import SyncSettings
from appsync.storage.install_marker import (
    InstallMarker,
    clear_incomplete,
    is_incomplete,
    mark_incomplete,
)
from appsync.storage.manifest_codec import (
    SerializationMode,
    parse_manifest_file,
    write_manifest,
)

from .reconciler import START_LOG, build_plan, diff_manifests
from .transfer_executor import TransferExecutor

log = logging.getLogger(__name__)

# Returns the directory to install into, given the manifest's default.
DirectoryChooser = Callable[[Path], Path]
# Answers a yes/no question.
ConsentCallback = Callable[[str], bool]


@dataclass
class InstallResult:
    destination: Path
    plan: ReconciliationPlan
    first_installation: bool
    transfer: TransferResult | None = None
    command: list[str] | None = None

    @property
    def updated(self) -> bool:
        return self.transfer is not None and not self.transfer.canceled

    @property
    def canceled(self) -> bool:
        return self.transfer is not None and self.transfer.canceled


def launch_command(manifest: ApplicationManifest) -> list[str]:
    """Builds the argv to start the installed application (empty if none is set)."""
    context = manifest.context()
    executable = context.resolve(manifest.launch_executable)
    if not executable:
        return []
    arguments = context.resolve(manifest.launch_arguments) or ""
    return [executable, *shlex.split(arguments, posix=os.name != "nt")]


class Installer:
    """
    Runs one install or update.

    Interactive decisions are delegated to callbacks: 'choose_directory' is asked
    on a first, non-silent install and 'confirm_update' before an update that is
    neither silent nor part of an unfinished first install.
    """

    def __init__(
        self,
        manifest: ApplicationManifest,
        settings: SyncSettings | None = None,
        executor: TransferExecutor | None = None,
        choose_directory: DirectoryChooser | None = None,
        confirm_update: ConsentCallback | None = None,
        home: Path | None = None,
    ):
        self.manifest = manifest
        self.settings = settings or SyncSettings()
        self.executor = executor or TransferExecutor(self.settings)
        self.choose_directory = choose_directory
        self.confirm_update = confirm_update
        self.home = home or Path(manifest.options.get("userHome") or Path.home())

    def _marker(self) -> InstallMarker:
        id_filename = self.manifest.resolved("id_filename")
        if not id_filename:
            raise ValidationError("The 'idFilename' is not set.")
        return InstallMarker.in_home(id_filename, self.home)

    def default_destination(self) -> Path:
        dest_path = self.manifest.resolved("dest_path")
        if not dest_path:
            raise ValidationError("The 'destPath' is not set.")
        return Path(dest_path).expanduser()

    def recorded_destination(self) -> Path | None:
        """Returns the directory recorded by a previous install, if any."""
        marker = self._marker()
        return marker.read() if marker.exists() else None

    def resolve_destination(self) -> Path:
        """
        Finds the installation directory, recording it on a first install.

        Raises:
            InstallationError: If a recorded directory no longer exists.
            ValidationError: If the manifest lacks 'destPath' or 'idFilename'.
        """
        marker = self._marker()
        if marker.exists():
            destination = marker.read()
            if not destination.is_dir():
                raise InstallationError(
                    f"Recorded installation directory '{destination}' does not exist. "
                    f"Remove '{marker.marker_file}' to install again."
                )
            log.info(f"Updating installation in '{destination}'.")
        else:
            destination = self.default_destination()
            if not self.manifest.silent_install and self.choose_directory:
                destination = self.choose_directory(destination)
            marker.write(destination)
            if not destination.exists():
                mark_incomplete(destination)
            log.info(f"Installing into '{destination}'.")

        self.manifest.first_installation = is_incomplete(destination)
        return destination

    def local_manifest_path(self, destination: Path) -> Path:
        return destination / self.settings.local_manifest_name

    def read_local_manifest(self, destination: Path) -> ApplicationManifest | None:
        """Returns the manifest recorded by the previous run, if readable."""
        path = self.local_manifest_path(destination)
        if not path.is_file():
            return None
        try:
            return parse_manifest_file(path)
        except (InvalidManifestError, ValidationError) as e:
            log.warning(f"Ignoring unreadable local manifest '{path}': {e}")
            return None

    def _should_update(self) -> bool:
        if self.manifest.silent_update or self.manifest.first_installation:
            return True
        if self.confirm_update is None:
            return False
        return self.confirm_update(
            f"An update for '{self.manifest.title or 'the application'}' is available. "
            "Install it now?"
        )

    def save_local_manifest(self, destination: Path) -> Path:
        """Writes the resolved manifest into the installation as its local record."""
        target = self.local_manifest_path(destination)
        location = target.resolve().as_uri()
        self.manifest.set_option("manifestLocation", location)
        context = self.manifest.context()
        self.manifest.manifest_location = location
        write_manifest(
            self.manifest,
            target,
            SerializationMode.RESOLVED,
            backup=self.settings.backup_manifest,
            context=context,
        )
        return target

    def plan(self, destination: Path) -> ReconciliationPlan:
        previous = self.read_local_manifest(destination)
        deleted = diff_manifests(previous, self.manifest) if previous else []
        return build_plan(self.manifest, destination, deleted, previous)

    async def run(self) -> InstallResult:
        """
        Performs the install or update.

        A canceled transfer leaves the installation as it is: the local manifest
        is not rewritten and no launch command is produced. A declined update
        keeps the previous local manifest but still produces the launch command.
        """
        destination = self.resolve_destination()
        self.manifest.set_option("destDir", str(destination))
        self.manifest.check()

        plan = self.plan(destination)
        result = InstallResult(destination, plan, self.manifest.first_installation)
        declined = False

        if plan.is_update_necessary():
            log.info(
                f"An update is available: New={len(plan.new_files)}, "
                f"Changed={len(plan.changed_files)}, Deleted={len(plan.deleted_files)}, "
                f"SilentInstall={self.manifest.silent_install}, "
                f"SilentUpdate={self.manifest.silent_update}, "
                f"FirstInstallation={self.manifest.first_installation}"
            )
            if self._should_update():
                result.transfer = await self.executor.execute(plan)
                if result.transfer.canceled:
                    return result
            else:
                declined = True
                log.info("Update declined.")
        else:
            log.info("Files are up to date")

        self.manifest.set_option("classpath", plan.create_classpath())
        # A declined update leaves the previous record in place.
        if not declined:
            clear_incomplete(destination)
            self.save_local_manifest(destination)

        result.command = launch_command(self.manifest)
        if result.command:
            (destination / START_LOG).write_text(shlex.join(result.command), "utf-8")
        return result
