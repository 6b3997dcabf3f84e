"""
Storage Layer.

This package handles all data persistence: the manifest document, the
synchronizer's settings file and the installation markers.
"""

from .config_manager import ConfigManager
from .install_marker import InstallMarker
from .manifest_codec import (
    SerializationMode,
    load_manifest,
    parse_manifest,
    parse_manifest_file,
    to_xml,
    write_manifest,
)

__all__ = [
    "ConfigManager",
    "InstallMarker",
    "SerializationMode",
    "load_manifest",
    "parse_manifest",
    "parse_manifest_file",
    "to_xml",
    "write_manifest",
]
