"""
Pydantic model for the synchronizer's own settings.
Provides robust validation for all settings.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from appsync.media.integrity import SUPPORTED_ALGORITHMS

# File name of the manifest copy kept in the installation directory.
LOCAL_MANIFEST_NAME = "application.xml"


class SyncSettings(BaseModel):
    """A validated settings model for transfers and manifest handling."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Transfer Settings
    max_workers: int = 1
    chunk_size: int = 131072  # 128 KB
    connect_timeout: float = 15.0
    read_timeout: float = 90.0

    # Integrity Settings
    strict_integrity: bool = False
    hash_algorithm: str = "md5"

    # Manifest Settings
    backup_manifest: bool = True
    local_manifest_name: str = LOCAL_MANIFEST_NAME

    # Internal fields not loaded from INI file
    config_path: str = Field("", repr=False)

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of workers."""
        if v < 1 or v > 32:
            raise ValueError("Max workers must be between 1 and 32.")
        return v

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v < 1024:
            raise ValueError("Chunk size must be at least 1024 bytes.")
        return v

    @field_validator("connect_timeout", "read_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be positive.")
        return v

    @field_validator("hash_algorithm")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        v = v.lower()
        if v not in SUPPORTED_ALGORITHMS:
            raise ValueError(
                f"Hash algorithm must be one of {', '.join(sorted(SUPPORTED_ALGORITHMS))}."
            )
        return v

    @field_validator("local_manifest_name")
    @classmethod
    def validate_manifest_name(cls, v: str) -> str:
        if not v or "/" in v or "\\" in v:
            raise ValueError("Local manifest name must be a plain filename.")
        return v

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
