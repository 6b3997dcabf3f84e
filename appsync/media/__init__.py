"""
Transfer Media Layer.

This package is responsible for all low-level file operations, including
copying remote content, archive expansion, and integrity validation.
"""

from .downloader import Downloader
from .integrity import FileIntegrityChecker
from .unpacker import ArchiveUnpacker

__all__ = ["ArchiveUnpacker", "Downloader", "FileIntegrityChecker"]
