"""Domain errors used by qmetrics services."""

from typing import Any, Dict, Optional


class QMetricsError(Exception):
    """Base exception for user-facing qmetrics errors."""

    exit_code = 1


class ConfigError(QMetricsError):
    """Raised when configuration cannot be located or parsed."""

    exit_code = 2


class ValidationError(ConfigError):
    """Raised when a configuration file parses but its content is malformed."""


class SchemaError(QMetricsError):
    """Raised when a schema migration cannot be applied."""

    exit_code = 3


class StorageError(QMetricsError):
    """Raised when the database file or blob cannot be read, validated or written.

    ``retryable`` tells callers whether a bounded retry around the failed
    operation makes sense (network hiccups) or not (corrupt payloads).
    """

    exit_code = 4

    def __init__(
        self,
        message: str,
        code: str = "STORAGE_ERROR",
        retryable: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.retryable = retryable
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": str(self),
            "retryable": self.retryable,
            "details": self.details,
        }

    @classmethod
    def corrupted_database(cls, message: str, **details: Any) -> "StorageError":
        return cls(message, "DATABASE_CORRUPTED", False, details)

    @classmethod
    def upload_verification_failed(cls, message: str, **details: Any) -> "StorageError":
        return cls(message, "UPLOAD_VERIFICATION_FAILED", False, details)

    @classmethod
    def permission_denied(cls, message: str, **details: Any) -> "StorageError":
        return cls(message, "STORAGE_PERMISSION", False, details)

    @classmethod
    def bucket_not_found(cls, bucket: str, **details: Any) -> "StorageError":
        return cls(f"Bucket '{bucket}' not found or inaccessible", "BUCKET_NOT_FOUND", False, details)

    @classmethod
    def network_error(cls, message: str, **details: Any) -> "StorageError":
        return cls(message, "NETWORK_ERROR", True, details)

    @classmethod
    def not_initialized(cls) -> "StorageError":
        return cls("Storage has not been initialized", "NOT_INITIALIZED", False)

    @classmethod
    def duplicate_build(cls, commit_sha: str, run_id: str) -> "StorageError":
        return cls(
            f"Build for commit {commit_sha[:8]} run {run_id} is already recorded",
            "DUPLICATE_BUILD",
            False,
            {"commit_sha": commit_sha, "run_id": run_id},
        )

    @classmethod
    def write_failed(cls, message: str, **details: Any) -> "StorageError":
        return cls(message, "DATABASE_WRITE_FAILED", False, details)
