"""Tests for the boto3-backed object store, using botocore's Stubber."""

import io

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber

from core.errors import ConfigError, StorageError
from storage.s3 import SQLITE_HEADER, S3Credentials, S3ObjectStore, is_sqlite_payload, validate_sqlite_payload

BUCKET = "ci-metrics"
KEY = "qmetrics.db"
PARAMS = {"Bucket": BUCKET, "Key": KEY}


@pytest.fixture
def client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="test-key",
        aws_secret_access_key="test-secret",
    )


@pytest.fixture
def store(client):
    return S3ObjectStore(BUCKET, "us-east-1", S3Credentials("test-key", "test-secret"), client=client)


@pytest.fixture
def stubber(client):
    with Stubber(client) as s:
        yield s
        s.assert_no_pending_responses()


class TestS3ObjectStore:
    def test_exists_and_size(self, store, stubber):
        stubber.add_response("head_object", {"ContentLength": 4096}, PARAMS)
        stubber.add_response("head_object", {"ContentLength": 4096}, PARAMS)

        assert store.exists(KEY) is True
        assert store.get_size(KEY) == 4096

    def test_missing_object(self, store, stubber):
        stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)
        stubber.add_client_error("head_object", service_error_code="NotFound", http_status_code=404)

        assert store.exists(KEY) is False
        assert store.get_size(KEY) is None

    def test_head_permission_error_is_not_treated_as_missing(self, store, stubber):
        stubber.add_client_error("head_object", service_error_code="403", http_status_code=403)

        with pytest.raises(StorageError) as exc_info:
            store.exists(KEY)
        assert exc_info.value.code == "STORAGE_PERMISSION"

    def test_download(self, store, stubber):
        data = SQLITE_HEADER + b"\x00" * 100
        stubber.add_response("get_object", {"Body": StreamingBody(io.BytesIO(data), len(data))}, PARAMS)

        assert store.download(KEY) == data

    def test_upload(self, store, stubber):
        data = SQLITE_HEADER + b"payload"
        stubber.add_response(
            "put_object",
            {},
            {**PARAMS, "Body": data, "ContentType": "application/x-sqlite3"},
        )

        store.upload(KEY, data)

    def test_access_denied(self, store, stubber):
        stubber.add_client_error("get_object", service_error_code="AccessDenied", http_status_code=403)

        with pytest.raises(StorageError) as exc_info:
            store.download(KEY)
        assert exc_info.value.code == "STORAGE_PERMISSION"
        assert exc_info.value.retryable is False
        assert exc_info.value.details["operation"] == "download"

    def test_no_such_bucket(self, store, stubber):
        stubber.add_client_error("put_object", service_error_code="NoSuchBucket", http_status_code=404)

        with pytest.raises(StorageError) as exc_info:
            store.upload(KEY, SQLITE_HEADER)
        assert exc_info.value.code == "BUCKET_NOT_FOUND"

    def test_server_error_is_retryable(self, store, stubber):
        stubber.add_client_error("put_object", service_error_code="InternalError", http_status_code=500)

        with pytest.raises(StorageError) as exc_info:
            store.upload(KEY, SQLITE_HEADER)
        assert exc_info.value.code == "S3_ERROR"
        assert exc_info.value.retryable is True


class TestPayloadValidation:
    def test_header_detection(self):
        assert is_sqlite_payload(SQLITE_HEADER + b"rest")
        assert not is_sqlite_payload(b"PK\x03\x04" + b"\x00" * 20)
        assert not is_sqlite_payload(b"")

    def test_validation_errors(self):
        with pytest.raises(StorageError, match="too small"):
            validate_sqlite_payload(b"SQLite form", KEY)
        with pytest.raises(StorageError, match="Invalid header"):
            validate_sqlite_payload(b"x" * 32, KEY)
        validate_sqlite_payload(SQLITE_HEADER, KEY)


class TestS3Credentials:
    def test_prefers_qmetrics_variables(self):
        creds = S3Credentials.from_env({
            "QMETRICS_S3_ACCESS_KEY_ID": "q-id",
            "QMETRICS_S3_SECRET_ACCESS_KEY": "q-secret",
            "AWS_ACCESS_KEY_ID": "aws-id",
            "AWS_SECRET_ACCESS_KEY": "aws-secret",
        })
        assert (creds.access_key_id, creds.secret_access_key, creds.session_token) == ("q-id", "q-secret", None)

    def test_falls_back_to_aws_variables(self):
        creds = S3Credentials.from_env({
            "AWS_ACCESS_KEY_ID": "aws-id",
            "AWS_SECRET_ACCESS_KEY": "aws-secret",
            "AWS_SESSION_TOKEN": "token",
        })
        assert creds.access_key_id == "aws-id"
        assert creds.session_token == "token"

    def test_missing_credentials(self):
        with pytest.raises(ConfigError, match="S3 credentials are required"):
            S3Credentials.from_env({})
