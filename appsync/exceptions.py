"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class AppSyncError(Exception):
    """Base exception for all application-specific errors."""


class ValidationError(AppSyncError):
    """Raised when manifest data is malformed or incomplete."""


class InvalidManifestError(ValidationError):
    """
    Raised when a serialized manifest cannot be parsed, e.g. a required attribute
    is missing from a 'file', 'dir' or 'mkdir' element.
    """

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        if source:
            message = f"{message} [source='{source}']"
        super().__init__(message)


class ConfigurationError(AppSyncError):
    """Raised for issues related to settings loading or validation."""


class NotFoundError(AppSyncError):
    """Raised when a declared remote file could not be retrieved."""


class FileNotDeclaredError(NotFoundError):
    """Raised when a path and filename match neither a file nor a directory entry."""

    def __init__(self, path: str, filename: str | None = None):
        self.path = path
        self.filename = filename
        if filename is None:
            super().__init__(f"No entry declared for path '{path}'.")
        else:
            super().__init__(
                f"File not declared in manifest [path='{path}', filename='{filename}']."
            )


class DirectoryNotDeclaredError(FileNotDeclaredError):
    """Raised when no source directory entry matches a given path."""


class TransferError(AppSyncError):
    """Raised when copying a remote file into place fails (network or disk)."""


class FileIntegrityError(AppSyncError):
    """Raised when a transferred file fails its post-transfer hash check."""


class ArchiveError(AppSyncError):
    """Raised when an archive entry is unsafe or cannot be expanded."""


class DeleteError(AppSyncError):
    """Raised when a file or directory inside the destination cannot be removed."""


class InstallationError(AppSyncError):
    """Raised when the installation directory or its markers are inconsistent."""
