"""Tests for the local and S3 storage adapters."""

from datetime import datetime, timezone
from typing import Dict, Optional

import pytest

from core.errors import StorageError
from core.schema import LocalStorageConfig, S3StorageConfig
from storage.adapters import LocalStorageAdapter, S3StorageAdapter, create_storage_adapter
from storage.models import BuildContextInput, CollectedMetric, MetricDefinitionInput
from storage.repository import MetricsRepository
from storage.s3 import SQLITE_HEADER

KEY = "metrics/qmetrics.db"


class FakeObjectStore:
    """In-memory stand-in for S3ObjectStore."""

    def __init__(self):
        self.bucket = "ci-metrics"
        self.objects: Dict[str, bytes] = {}
        self.uploads = 0

    def exists(self, key: str) -> bool:
        return key in self.objects

    def download(self, key: str) -> bytes:
        return self.objects[key]

    def upload(self, key: str, data: bytes) -> None:
        self.uploads += 1
        self.objects[key] = data

    def get_size(self, key: str) -> Optional[int]:
        data = self.objects.get(key)
        return None if data is None else len(data)


class TruncatingStore(FakeObjectStore):
    def upload(self, key: str, data: bytes) -> None:
        super().upload(key, data[:-1])


class DroppingStore(FakeObjectStore):
    def upload(self, key: str, data: bytes) -> None:
        self.uploads += 1


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def adapter(store, tmp_path):
    a = S3StorageAdapter(store, KEY, work_dir=tmp_path)
    yield a
    a.cleanup()


def record_sample_build(db, value=80.0):
    repo = MetricsRepository(db)
    return repo.record_build(
        BuildContextInput(
            commit_sha="a" * 40,
            branch="main",
            run_id="1",
            run_number=1,
            timestamp=datetime(2024, 6, 1, tzinfo=timezone.utc),
            event_name="push",
        ),
        [CollectedMetric(MetricDefinitionInput("coverage"), value_numeric=value)],
    )


class TestS3StorageAdapter:
    def test_first_run_creates_fresh_database(self, adapter, store):
        db = adapter.initialize()

        assert adapter.first_run is True
        assert adapter.is_initialized()
        assert "metric_values" in {r["name"] for r in db.fetchall("SELECT name FROM sqlite_master")}
        assert store.objects == {}

    def test_persist_then_fresh_initialize_round_trip(self, store, tmp_path):
        first = S3StorageAdapter(store, KEY, work_dir=tmp_path)
        record_sample_build(first.initialize(), value=81.5)
        first.persist()
        first.cleanup()

        assert store.objects[KEY].startswith(SQLITE_HEADER)

        second = S3StorageAdapter(store, KEY, work_dir=tmp_path)
        db = second.initialize()
        try:
            assert second.first_run is False
            repo = MetricsRepository(db)
            builds = repo.get_all_build_contexts()
            assert len(builds) == 1
            assert repo.get_pull_request_metric_value("coverage", builds[0].id) == 81.5
        finally:
            second.cleanup()

    def test_invalid_header_raises_and_returns_no_handle(self, adapter, store, tmp_path):
        store.objects[KEY] = b"this is definitely not sqlite data"

        with pytest.raises(StorageError) as exc_info:
            adapter.initialize()

        assert exc_info.value.code == "DATABASE_CORRUPTED"
        assert "Invalid header" in str(exc_info.value)
        assert not adapter.is_initialized()
        assert list(tmp_path.iterdir()) == []

    def test_undersized_payload_rejected(self, adapter, store):
        store.objects[KEY] = b"SQLite"

        with pytest.raises(StorageError) as exc_info:
            adapter.initialize()
        assert exc_info.value.code == "DATABASE_CORRUPTED"
        assert "too small" in str(exc_info.value)

    def test_upload_size_mismatch_is_fatal(self, tmp_path):
        adapter = S3StorageAdapter(TruncatingStore(), KEY, work_dir=tmp_path)
        adapter.initialize()
        try:
            with pytest.raises(StorageError) as exc_info:
                adapter.persist()
            assert exc_info.value.code == "UPLOAD_VERIFICATION_FAILED"
            assert exc_info.value.retryable is False
        finally:
            adapter.cleanup()

    def test_upload_missing_after_put_is_fatal(self, tmp_path):
        adapter = S3StorageAdapter(DroppingStore(), KEY, work_dir=tmp_path)
        adapter.initialize()
        try:
            with pytest.raises(StorageError, match="not found after upload"):
                adapter.persist()
        finally:
            adapter.cleanup()

    def test_persist_before_initialize(self, adapter):
        with pytest.raises(StorageError) as exc_info:
            adapter.persist()
        assert exc_info.value.code == "NOT_INITIALIZED"

    def test_cleanup_is_idempotent_and_removes_temp_files(self, adapter, tmp_path):
        adapter.initialize()
        assert any(tmp_path.iterdir())

        adapter.cleanup()
        adapter.cleanup()

        assert not adapter.is_initialized()
        assert list(tmp_path.iterdir()) == []

    def test_context_manager(self, store, tmp_path):
        with S3StorageAdapter(store, KEY, work_dir=tmp_path) as db:
            record_sample_build(db)
        assert list(tmp_path.iterdir()) == []

    def test_readonly_missing_object(self, store, tmp_path):
        adapter = S3StorageAdapter(store, KEY, work_dir=tmp_path, readonly=True)
        with pytest.raises(StorageError) as exc_info:
            adapter.initialize()
        assert exc_info.value.code == "OBJECT_NOT_FOUND"

    def test_location(self, adapter):
        assert adapter.location == f"s3://ci-metrics/{KEY}"


class TestLocalStorageAdapter:
    def test_creates_file_and_parent_directories(self, tmp_path):
        path = tmp_path / "data" / "ci" / "qmetrics.db"
        adapter = LocalStorageAdapter(path)
        with adapter as db:
            record_sample_build(db)
            adapter.persist()

        assert path.read_bytes()[:16] == SQLITE_HEADER
        assert not adapter.is_initialized()

    def test_reopen_keeps_data(self, tmp_path):
        path = tmp_path / "qmetrics.db"
        with LocalStorageAdapter(path) as db:
            record_sample_build(db)

        with LocalStorageAdapter(path, readonly=True) as db:
            assert len(MetricsRepository(db).get_all_build_contexts()) == 1

    def test_readonly_missing_file(self, tmp_path):
        with pytest.raises(StorageError) as exc_info:
            LocalStorageAdapter(tmp_path / "missing.db", readonly=True).initialize()
        assert exc_info.value.code == "OBJECT_NOT_FOUND"

    def test_rejects_file_that_is_not_sqlite(self, tmp_path):
        path = tmp_path / "qmetrics.db"
        path.write_text("metrics: not a database, just some text\n")

        adapter = LocalStorageAdapter(path)
        with pytest.raises(StorageError) as exc_info:
            adapter.initialize()

        assert exc_info.value.code == "DATABASE_CORRUPTED"
        assert "Invalid header" in str(exc_info.value)
        assert not adapter.is_initialized()
        assert path.read_text().startswith("metrics:")

    def test_rejects_truncated_file(self, tmp_path):
        path = tmp_path / "qmetrics.db"
        path.write_bytes(SQLITE_HEADER[:8])

        with pytest.raises(StorageError) as exc_info:
            LocalStorageAdapter(path, readonly=True).initialize()
        assert exc_info.value.code == "DATABASE_CORRUPTED"

    def test_empty_file_is_initialized(self, tmp_path):
        path = tmp_path / "qmetrics.db"
        path.touch()

        adapter = LocalStorageAdapter(path)
        with adapter as db:
            record_sample_build(db)
            adapter.persist()

        assert path.read_bytes()[:16] == SQLITE_HEADER

    def test_target_version_is_honoured(self, tmp_path):
        adapter = LocalStorageAdapter(tmp_path / "q.db", target_version="1.0.0")
        db = adapter.initialize()
        try:
            assert adapter.applied_migrations == ["1.0.0"]
            assert "pull_request_number" not in db.table_columns("build_contexts")
        finally:
            adapter.cleanup()


class TestCreateStorageAdapter:
    def test_local(self, tmp_path):
        adapter = create_storage_adapter(LocalStorageConfig(path=str(tmp_path / "q.db")))
        assert isinstance(adapter, LocalStorageAdapter)
        assert adapter.location == str(tmp_path / "q.db")

    def test_s3_with_injected_store(self, store):
        config = S3StorageConfig(type="s3", bucket="ci-metrics", region="us-east-1", key=KEY)
        adapter = create_storage_adapter(config, store=store)
        assert isinstance(adapter, S3StorageAdapter)
        assert adapter.key == KEY
        assert adapter.store is store
