"""S3-compatible object storage for the database blob."""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from core.errors import ConfigError, StorageError

logger = logging.getLogger(__name__)

SQLITE_HEADER = b"SQLite format 3\x00"

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_PERMISSION_CODES = {"403", "AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"}


class ObjectStore(Protocol):
    """Minimal blob interface the S3 storage adapter depends on."""

    def exists(self, key: str) -> bool:
        ...

    def download(self, key: str) -> bytes:
        ...

    def upload(self, key: str, data: bytes) -> None:
        ...

    def get_size(self, key: str) -> Optional[int]:
        ...


def is_sqlite_payload(data: bytes) -> bool:
    """True when ``data`` starts with the 16-byte SQLite file header."""
    return len(data) >= len(SQLITE_HEADER) and data[: len(SQLITE_HEADER)] == SQLITE_HEADER


def validate_sqlite_payload(data: bytes, key: str) -> None:
    if len(data) < len(SQLITE_HEADER):
        raise StorageError.corrupted_database(
            f"Database '{key}' is too small to be valid: {len(data)} bytes", key=key, size=len(data)
        )
    if not is_sqlite_payload(data):
        header = data[: len(SQLITE_HEADER)].decode("latin-1")
        raise StorageError.corrupted_database(
            f"Database '{key}' is not a valid SQLite database. Invalid header: {header!r}", key=key
        )


@dataclass
class S3Credentials:
    access_key_id: str
    secret_access_key: str
    session_token: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "S3Credentials":
        """Read credentials from QMETRICS_S3_* variables, falling back to the AWS_* ones."""
        env = os.environ if environ is None else environ
        access_key_id = env.get("QMETRICS_S3_ACCESS_KEY_ID") or env.get("AWS_ACCESS_KEY_ID")
        secret_access_key = env.get("QMETRICS_S3_SECRET_ACCESS_KEY") or env.get("AWS_SECRET_ACCESS_KEY")
        session_token = env.get("QMETRICS_S3_SESSION_TOKEN") or env.get("AWS_SESSION_TOKEN")
        if not access_key_id or not secret_access_key:
            raise ConfigError(
                "S3 credentials are required: set QMETRICS_S3_ACCESS_KEY_ID and QMETRICS_S3_SECRET_ACCESS_KEY"
            )
        return cls(access_key_id, secret_access_key, session_token or None)


class S3ObjectStore:
    """Blocking S3 operations on one bucket. No retries happen here."""

    def __init__(
        self,
        bucket: str,
        region: str,
        credentials: S3Credentials,
        endpoint: Optional[str] = None,
        client=None,
    ):
        self.bucket = bucket
        self.endpoint = endpoint
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint,
            region_name=region,
            aws_access_key_id=credentials.access_key_id,
            aws_secret_access_key=credentials.secret_access_key,
            aws_session_token=credentials.session_token,
            config=BotoConfig(retries={"max_attempts": 1}, s3={"addressing_style": "path"}),
        )

    def exists(self, key: str) -> bool:
        return self._head(key) is not None

    def get_size(self, key: str) -> Optional[int]:
        head = self._head(key)
        return None if head is None else int(head["ContentLength"])

    def download(self, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            data = response["Body"].read()
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, "download", key) from exc
        logger.info(f"Downloaded s3://{self.bucket}/{key} ({len(data)} bytes)")
        return data

    def upload(self, key: str, data: bytes) -> None:
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType="application/x-sqlite3")
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, "upload", key) from exc
        logger.info(f"Uploaded s3://{self.bucket}/{key} ({len(data)} bytes)")

    def _head(self, key: str):
        try:
            return self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if self._error_code(exc) in _NOT_FOUND_CODES:
                return None
            raise self._translate(exc, "stat", key) from exc
        except BotoCoreError as exc:
            raise self._translate(exc, "stat", key) from exc

    @staticmethod
    def _error_code(exc: ClientError) -> str:
        return str(exc.response.get("Error", {}).get("Code", ""))

    def _translate(self, exc: Exception, operation: str, key: str) -> StorageError:
        details = {"bucket": self.bucket, "key": key, "operation": operation}
        if isinstance(exc, ClientError):
            code = self._error_code(exc)
            if code in _PERMISSION_CODES:
                return StorageError.permission_denied(f"Cannot {operation} s3://{self.bucket}/{key}: {code}", **details)
            if code == "NoSuchBucket":
                return StorageError.bucket_not_found(self.bucket, **details)
            if code in _NOT_FOUND_CODES:
                return StorageError(f"Object '{key}' not found", "OBJECT_NOT_FOUND", False, details)
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            return StorageError(
                f"S3 {operation} failed for {key}: {exc}", "S3_ERROR", status >= 500, details
            )
        if isinstance(exc, NoCredentialsError):
            return StorageError(f"S3 credentials were rejected or missing: {exc}", "STORAGE_AUTH_FAILED", False, details)
        return StorageError.network_error(f"S3 {operation} failed for {key}: {exc}", **details)
