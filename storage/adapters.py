"""Storage adapters that own the lifetime of the database file.

``LocalStorageAdapter`` works on a file that already lives on disk.
``S3StorageAdapter`` keeps the file in object storage between CI runs: it is
downloaded and validated on ``initialize()`` and uploaded and verified on
``persist()``.
"""

import logging
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Union

from core.errors import StorageError
from core.schema import DatabaseConfig, LocalStorageConfig, S3StorageConfig

from .database import DEFAULT_BUSY_TIMEOUT_MS, Database, SqlEngine, get_engine
from .migrations import SchemaMigrator
from .s3 import SQLITE_HEADER, ObjectStore, S3Credentials, S3ObjectStore, validate_sqlite_payload

logger = logging.getLogger(__name__)


class StorageAdapter:
    """Common lifecycle: initialize() -> (work) -> persist() -> cleanup()."""

    kind = "base"

    def __init__(
        self,
        engine: Optional[SqlEngine] = None,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        migrator: Optional[SchemaMigrator] = None,
        readonly: bool = False,
        target_version: Optional[str] = None,
    ):
        self.engine = engine or get_engine()
        self.busy_timeout_ms = busy_timeout_ms
        self.migrator = migrator or SchemaMigrator()
        self.readonly = readonly
        self.target_version = target_version
        self.applied_migrations: List[str] = []
        self._db: Optional[Database] = None

    @property
    def db(self) -> Database:
        if self._db is None:
            raise StorageError.not_initialized()
        return self._db

    def is_initialized(self) -> bool:
        return self._db is not None

    @property
    def location(self) -> str:
        raise NotImplementedError

    def initialize(self) -> Database:
        raise NotImplementedError

    def persist(self) -> None:
        raise NotImplementedError

    def cleanup(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None

    def _open(self, path: Path) -> Database:
        db = Database(path, engine=self.engine, busy_timeout_ms=self.busy_timeout_ms, readonly=self.readonly)
        try:
            if not self.readonly:
                self.applied_migrations = self.migrator.ensure(db, self.target_version)
        except Exception:
            db.close()
            raise
        return db

    def __enter__(self) -> Database:
        return self.initialize()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()


class LocalStorageAdapter(StorageAdapter):
    kind = "local"

    def __init__(self, path: Union[str, Path], **kwargs):
        super().__init__(**kwargs)
        self.path = Path(path)

    @property
    def location(self) -> str:
        return str(self.path)

    def initialize(self) -> Database:
        if self._db is None:
            if self.readonly and not self.path.exists():
                raise StorageError(f"Database file not found: {self.path}", "OBJECT_NOT_FOUND")
            if self.path.exists() and self.path.stat().st_size > 0:
                with open(self.path, "rb") as f:
                    validate_sqlite_payload(f.read(len(SQLITE_HEADER)), str(self.path))
            self._db = self._open(self.path)
            logger.info(f"Opened local database {self.path}")
        return self._db

    def persist(self) -> None:
        # The file already is the durable copy; only fold the WAL back in.
        self.db.checkpoint()


class S3StorageAdapter(StorageAdapter):
    kind = "s3"

    def __init__(
        self,
        store: ObjectStore,
        key: str,
        work_dir: Optional[Union[str, Path]] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.store = store
        self.key = key
        self.work_dir = Path(work_dir) if work_dir else None
        self._temp_dir: Optional[Path] = None
        self.first_run = False

    @property
    def location(self) -> str:
        bucket = getattr(self.store, "bucket", None)
        return f"s3://{bucket}/{self.key}" if bucket else self.key

    @property
    def local_path(self) -> Path:
        if self._temp_dir is None:
            raise StorageError.not_initialized()
        return self._temp_dir / Path(self.key).name

    def initialize(self) -> Database:
        if self._db is not None:
            return self._db

        self._temp_dir = Path(tempfile.mkdtemp(prefix="qmetrics-", dir=self.work_dir))
        try:
            if self.store.exists(self.key):
                data = self.store.download(self.key)
                validate_sqlite_payload(data, self.key)
                self.local_path.write_bytes(data)
                self.first_run = False
                logger.info(f"Restored database from {self.location} ({len(data)} bytes)")
            elif self.readonly:
                raise StorageError(f"Object '{self.key}' not found", "OBJECT_NOT_FOUND", False, {"key": self.key})
            else:
                self.first_run = True
                logger.info(f"No database found at {self.location}, starting a new one")
            self._db = self._open(self.local_path)
        except Exception:
            self._remove_temp_dir()
            raise
        return self._db

    def persist(self) -> None:
        db = self.db
        if self.readonly:
            raise StorageError("Cannot persist a database opened read-only", "READONLY")
        db.checkpoint()
        data = self.local_path.read_bytes()
        validate_sqlite_payload(data, self.key)

        self.store.upload(self.key, data)

        if not self.store.exists(self.key):
            raise StorageError.upload_verification_failed(
                f"Database upload verification failed: {self.location} not found after upload", key=self.key
            )
        remote_size = self.store.get_size(self.key)
        if remote_size != len(data):
            raise StorageError.upload_verification_failed(
                f"Database upload size mismatch for {self.location}: expected {len(data)}, got {remote_size}",
                key=self.key,
                expected=len(data),
                actual=remote_size,
            )
        logger.info(f"Persisted database to {self.location} ({len(data)} bytes)")

    def cleanup(self) -> None:
        super().cleanup()
        self._remove_temp_dir()

    def _remove_temp_dir(self) -> None:
        if self._temp_dir is not None:
            shutil.rmtree(self._temp_dir, ignore_errors=True)
            self._temp_dir = None


def create_storage_adapter(
    storage: Union[LocalStorageConfig, S3StorageConfig],
    database: Optional[DatabaseConfig] = None,
    store: Optional[ObjectStore] = None,
    readonly: bool = False,
    target_version: Optional[str] = None,
) -> StorageAdapter:
    """Build the adapter for a validated storage config.

    ``store`` replaces the boto3-backed object store, e.g. in tests.
    """
    database = database or DatabaseConfig()
    options = {
        "engine": get_engine(database.engine),
        "busy_timeout_ms": database.busy_timeout_ms,
        "readonly": readonly,
        "target_version": target_version,
    }

    if isinstance(storage, LocalStorageConfig):
        return LocalStorageAdapter(storage.path, **options)

    if isinstance(storage, S3StorageConfig):
        if store is None:
            store = S3ObjectStore(
                bucket=storage.bucket,
                region=storage.region,
                credentials=S3Credentials.from_env(),
                endpoint=storage.endpoint,
            )
        return S3StorageAdapter(store, storage.key, **options)

    raise StorageError(f"Unsupported storage type: {type(storage).__name__}", "UNSUPPORTED_STORAGE")
