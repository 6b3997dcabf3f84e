"""
Provides content hashing used both for change detection and post-transfer integrity
checks.
"""

import hashlib
import logging
from pathlib import Path

log = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "md5"

# Hex digest length -> algorithm. Unknown lengths fall back to the default.
_ALGORITHMS_BY_LENGTH = {
    32: "md5",
    40: "sha1",
    64: "sha256",
    128: "sha512",
}

SUPPORTED_ALGORITHMS = frozenset(_ALGORITHMS_BY_LENGTH.values())

_READ_BLOCK = 1024 * 1024


class FileIntegrityChecker:
    """A collection of static methods for hashing and validating files."""

    @staticmethod
    def algorithm_for(digest: str) -> str:
        """Infers the hash algorithm from the length of a hex digest."""
        return _ALGORITHMS_BY_LENGTH.get(len(digest.strip()), DEFAULT_ALGORITHM)

    @staticmethod
    def compute_hash(filepath: str | Path, algorithm: str = DEFAULT_ALGORITHM) -> str:
        """
        Computes the hex digest of the full file content.

        Args:
            filepath: Path to the file.
            algorithm: One of md5, sha1, sha256, sha512.

        Returns:
            Lower-case hex digest.
        """
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported hash algorithm: {algorithm}")
        digest = hashlib.new(algorithm, usedforsecurity=False)
        with open(filepath, "rb") as f:
            while block := f.read(_READ_BLOCK):
                digest.update(block)
        return digest.hexdigest()

    @staticmethod
    def matches(filepath: str | Path, expected_hash: str) -> bool:
        """
        Checks a local file against a declared digest, hashing with the algorithm
        the digest implies.
        """
        algorithm = FileIntegrityChecker.algorithm_for(expected_hash)
        actual = FileIntegrityChecker.compute_hash(filepath, algorithm)
        if actual != expected_hash.strip().lower():
            log.debug(
                f"Hash mismatch for '{filepath}': expected {expected_hash}, got {actual}"
            )
            return False
        return True
