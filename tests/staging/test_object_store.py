"""Tests for object store adapters.

Tests cover:
- LocalObjectStore exists/create_exclusive semantics
- Partial writes are removed on failure
- GcsObjectStore against a mocked google-cloud-storage client
- Lookup and upload failures from GCS surface through the Stager
- object_store_for scheme dispatch
"""

from unittest.mock import MagicMock

import pytest
from google.cloud.exceptions import Forbidden, NotFound, PreconditionFailed, ServiceUnavailable

from stagehand.errors import ObjectExistsError, PermissionDeniedError, StagingError
from stagehand.staging.object_store import (
    BINARY,
    GcsObjectStore,
    LocalObjectStore,
    join_uri,
    object_store_for,
)
from stagehand.staging.stager import Stager
from stagehand.utils import ExponentialBackoff


class TestJoinUri:

    def test_single_slash(self):
        assert join_uri("gs://b/stage/", "x.jar") == "gs://b/stage/x.jar"
        assert join_uri("gs://b/stage", "x.jar") == "gs://b/stage/x.jar"


class TestLocalObjectStore:
    """Tests for LocalObjectStore."""

    def test_exists_missing(self, tmp_path):
        assert LocalObjectStore().exists(str(tmp_path / "nope")) is None

    def test_create_then_exists_reports_size(self, tmp_path):
        store = LocalObjectStore()
        uri = (tmp_path / "stage" / "a.bin").as_uri()

        with store.create_exclusive(uri) as out:
            out.write(b"12345")

        assert store.exists(uri) == 5
        assert (tmp_path / "stage" / "a.bin").read_bytes() == b"12345"

    def test_plain_path_accepted(self, tmp_path):
        store = LocalObjectStore()
        target = str(tmp_path / "a.bin")

        with store.create_exclusive(target) as out:
            out.write(b"x")

        assert store.exists(target) == 1

    def test_create_exclusive_refuses_existing(self, tmp_path):
        store = LocalObjectStore()
        target = tmp_path / "a.bin"
        target.write_bytes(b"old")

        with pytest.raises(ObjectExistsError):
            with store.create_exclusive(str(target)) as out:
                out.write(b"new")

        assert target.read_bytes() == b"old"

    def test_failed_write_leaves_nothing(self, tmp_path):
        store = LocalObjectStore()
        target = tmp_path / "a.bin"

        with pytest.raises(OSError):
            with store.create_exclusive(str(target)) as out:
                out.write(b"partial")
                raise OSError("disk full")

        assert not target.exists()

    def test_permission_error_is_access_denied(self):
        store = LocalObjectStore()
        assert store.is_access_denied(PermissionError("nope"))
        assert not store.is_access_denied(OSError("flaky"))

    def test_rejects_other_schemes(self):
        with pytest.raises(ValueError):
            LocalObjectStore().exists("s3://bucket/key")


class TestGcsObjectStore:
    """Tests for GcsObjectStore with a mocked storage client."""

    def _store(self):
        client = MagicMock()
        bucket = client.bucket.return_value
        return GcsObjectStore(client=client), client, bucket

    def test_parse_uri(self):
        assert GcsObjectStore.parse_uri("gs://bkt/a/b.jar") == ("bkt", "a/b.jar")
        with pytest.raises(ValueError):
            GcsObjectStore.parse_uri("file:///tmp/x")

    def test_exists_returns_blob_size(self):
        store, client, bucket = self._store()
        bucket.get_blob.return_value = MagicMock(size=42)

        assert store.exists("gs://bkt/stage/x.jar") == 42
        client.bucket.assert_called_with("bkt")
        bucket.get_blob.assert_called_with("stage/x.jar")

    def test_exists_missing_blob(self):
        store, _, bucket = self._store()
        bucket.get_blob.return_value = None

        assert store.exists("gs://bkt/x") is None

    def test_exists_missing_bucket(self):
        store, _, bucket = self._store()
        bucket.get_blob.side_effect = NotFound("no bucket")

        assert store.exists("gs://bkt/x") is None

    def test_create_exclusive_uploads_on_clean_exit(self):
        store, _, bucket = self._store()
        blob = bucket.blob.return_value
        uploaded = {}

        def _upload(f, **kwargs):
            uploaded["data"] = f.read()
            uploaded["kwargs"] = kwargs

        blob.upload_from_file.side_effect = _upload

        with store.create_exclusive("gs://bkt/stage/x.jar", content_type=BINARY) as out:
            out.write(b"payload")

        bucket.blob.assert_called_with("stage/x.jar")
        assert uploaded["kwargs"]["if_generation_match"] == 0
        assert uploaded["kwargs"]["content_type"] == BINARY
        assert uploaded["kwargs"]["rewind"] is True

    def test_create_exclusive_skips_upload_on_error(self):
        store, _, bucket = self._store()
        blob = bucket.blob.return_value

        with pytest.raises(RuntimeError):
            with store.create_exclusive("gs://bkt/x") as out:
                out.write(b"partial")
                raise RuntimeError("boom")

        blob.upload_from_file.assert_not_called()

    def test_precondition_failure_means_exists(self):
        store, _, bucket = self._store()
        bucket.blob.return_value.upload_from_file.side_effect = PreconditionFailed("exists")

        with pytest.raises(ObjectExistsError):
            with store.create_exclusive("gs://bkt/x") as out:
                out.write(b"data")

    def test_access_denied_classification(self):
        store, _, _ = self._store()
        assert store.is_access_denied(Forbidden("403"))
        assert not store.is_access_denied(ServiceUnavailable("503"))


class TestObjectStoreFor:

    def test_gcs(self):
        assert isinstance(object_store_for("gs://bucket/stage"), GcsObjectStore)

    def test_local(self, tmp_path):
        assert isinstance(object_store_for(str(tmp_path)), LocalObjectStore)
        assert isinstance(object_store_for(tmp_path.as_uri()), LocalObjectStore)

    def test_unsupported(self):
        with pytest.raises(ValueError, match="Unsupported staging location scheme"):
            object_store_for("ftp://host/stage")


class TestGcsStaging:
    """Stager against a mocked GCS client."""

    def _stager(self, bucket_setup, delays):
        client = MagicMock()
        bucket_setup(client.bucket.return_value)
        store = GcsObjectStore(client=client)

        def backoff():
            return ExponentialBackoff(initial_interval=1.0, max_retries=4, randomization=0)

        return Stager(store, sleeper=delays.append, backoff_factory=backoff), client.bucket.return_value

    @pytest.fixture
    def artifact(self, tmp_path):
        f = tmp_path / "a.txt"
        f.write_bytes(b"abc")
        return f

    def test_forbidden_lookup_is_permission_denied(self, artifact, delays):
        def setup(bucket):
            bucket.get_blob.side_effect = Forbidden("403")

        stager, bucket = self._stager(setup, delays)

        with pytest.raises(PermissionDeniedError) as excinfo:
            stager.stage_all([str(artifact)], "gs://bkt/stage")

        assert "gcloud auth login" in str(excinfo.value)
        assert isinstance(excinfo.value.__cause__, Forbidden)
        bucket.blob.return_value.upload_from_file.assert_not_called()

    def test_failed_lookup_is_staging_error(self, artifact, delays):
        def setup(bucket):
            bucket.get_blob.side_effect = ServiceUnavailable("503")

        stager, _ = self._stager(setup, delays)

        with pytest.raises(StagingError) as excinfo:
            stager.stage_all([str(artifact)], "gs://bkt/stage")

        assert not isinstance(excinfo.value, PermissionDeniedError)
        assert excinfo.value.path == str(artifact)
        assert delays == []

    def test_unavailable_upload_is_retried(self, artifact, delays):
        def setup(bucket):
            bucket.get_blob.return_value = None
            bucket.blob.return_value.upload_from_file.side_effect = [ServiceUnavailable("503"), None]

        stager, bucket = self._stager(setup, delays)

        result = stager.stage_all([str(artifact)], "gs://bkt/stage")

        assert result.report.uploaded == 1
        assert bucket.blob.return_value.upload_from_file.call_count == 2
        assert delays == [1.0]
