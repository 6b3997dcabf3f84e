"""
Manages loading, validation, and migration of the INI settings file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from appsync.exceptions import ConfigurationError
from appsync.models.settings import SyncSettings

log = logging.getLogger(__name__)


def _ini_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ConfigManager:
    """Handles all operations related to the synchronizer's INI settings file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(self, cli_options: dict[str, Any] | None = None) -> SyncSettings:
        """
        Loads settings from the INI file, applies CLI overrides, and validates them.

        Args:
            cli_options: A dictionary of options provided via the command line.

        Returns:
            A validated SyncSettings object.

        Raises:
            ConfigurationError: If the settings file is missing, invalid, or
            validation fails.
        """
        if not self.config_file_path.is_file():
            raise ConfigurationError(
                f"Configuration file not found at '{self.config_file_path}'. "
                "Please run 'appsync init' first."
            )

        try:
            self._parser.read(self.config_file_path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigurationError(f"Error parsing configuration file: {e}") from e

        if self._migrate_if_needed():
            log.info(
                "[yellow]Configuration file was updated with new default values."
                "[/yellow]"
            )

        config_from_file = self._get_config_as_dict()

        # Override with CLI options
        if cli_options:
            config_from_file.update(cli_options)

        try:
            config_dir = self.config_file_path.parent
            return SyncSettings(**config_from_file, config_path=str(config_dir))
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def load_or_default(self, cli_options: dict[str, Any] | None = None) -> SyncSettings:
        """Like load_config, but falls back to defaults when no file exists yet."""
        if self.config_file_path.is_file():
            return self.load_config(cli_options)
        try:
            return SyncSettings(**(cli_options or {}))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid option:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any] | None = None) -> None:
        """
        Creates and saves a new settings file.

        Args:
            settings: Values to store; every other key gets its default.
        """
        settings = settings or {}
        config = configparser.ConfigParser(interpolation=None)
        config["DEFAULT"] = {}

        defaults = SyncSettings.model_construct()
        for key in sorted(SyncSettings.get_ini_keys()):
            value = settings.get(key, getattr(defaults, key, None))
            if value is not None:
                config["DEFAULT"][key] = _ini_value(value)

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a dictionary."""
        section = self._parser["DEFAULT"]
        defaults = SyncSettings.model_construct()
        try:
            return {
                "max_workers": section.getint("max_workers", defaults.max_workers),
                "chunk_size": section.getint("chunk_size", defaults.chunk_size),
                "connect_timeout": section.getfloat(
                    "connect_timeout", defaults.connect_timeout
                ),
                "read_timeout": section.getfloat("read_timeout", defaults.read_timeout),
                "strict_integrity": section.getboolean(
                    "strict_integrity", defaults.strict_integrity
                ),
                "hash_algorithm": section.get("hash_algorithm", defaults.hash_algorithm),
                "backup_manifest": section.getboolean(
                    "backup_manifest", defaults.backup_manifest
                ),
                "local_manifest_name": section.get(
                    "local_manifest_name", defaults.local_manifest_name
                ),
            }
        except ValueError as e:
            raise ConfigurationError(f"Invalid value in configuration file: {e}") from e

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing settings file."""
        defaults = SyncSettings.model_construct()
        needs_saving = False

        config_section = self._parser["DEFAULT"]

        for key in sorted(SyncSettings.get_ini_keys()):
            if key not in config_section:
                config_section[key] = _ini_value(getattr(defaults, key))
                needs_saving = True
                log.debug(
                    f"Migrating config: added missing key '{key}' with "
                    f"value '{config_section[key]}'."
                )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving
