# tests/unit/test_s3_storage.py
"""Tests for S3StorageProvider and the storage factory (boto3 client mocked)."""

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError


def _client_error(code: str, operation: str = "GetObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def provider(client):
    from archivist.storage.s3_provider import S3StorageProvider

    return S3StorageProvider(bucket="archives-bucket", client=client)


class TestS3StorageProvider:
    def test_requires_bucket(self, monkeypatch):
        from archivist.storage.s3_provider import S3StorageProvider

        monkeypatch.delenv("S3_BUCKET", raising=False)

        with pytest.raises(ValueError, match="S3 bucket required"):
            S3StorageProvider(client=MagicMock())

    def test_put_prefixes_key_and_records_hash(self, provider, client):
        from archivist.storage.base import compute_content_hash

        meta = provider.put("t/audit_logs/ARC-1.json", b"blob", {"archive_id": "ARC-1"})

        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "archives-bucket"
        assert kwargs["Key"] == "archives/t/audit_logs/ARC-1.json"
        assert kwargs["Body"] == b"blob"
        assert kwargs["Metadata"]["content-hash"] == compute_content_hash(b"blob")
        assert meta.size_bytes == 4

    def test_get_returns_body(self, provider, client):
        client.get_object.return_value = {"Body": io.BytesIO(b"blob")}

        assert provider.get("t/x/ARC-1.json") == b"blob"

    def test_get_missing_returns_none(self, provider, client):
        client.get_object.side_effect = _client_error("NoSuchKey")

        assert provider.get("t/x/ARC-1.json") is None

    def test_get_other_errors_propagate(self, provider, client):
        client.get_object.side_effect = _client_error("AccessDenied")

        with pytest.raises(ClientError):
            provider.get("t/x/ARC-1.json")

    def test_exists(self, provider, client):
        assert provider.exists("t/x/ARC-1.json") is True

        client.head_object.side_effect = _client_error("404", "HeadObject")
        assert provider.exists("t/x/ARC-1.json") is False

    def test_verify_compares_downloaded_hash(self, provider, client):
        from archivist.storage.base import compute_content_hash

        client.get_object.return_value = {"Body": io.BytesIO(b"blob")}

        assert provider.verify("t/x/ARC-1.json", compute_content_hash(b"blob")) is True

    def test_list_keys_strips_prefix(self, provider, client):
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"Contents": [{"Key": "archives/t/a/ARC-1.json"}]},
            {"Contents": [{"Key": "archives/t/b/ARC-2.json"}]},
        ]
        client.get_paginator.return_value = paginator

        assert provider.list_keys("t") == ["t/a/ARC-1.json", "t/b/ARC-2.json"]
        paginator.paginate.assert_called_once_with(Bucket="archives-bucket", Prefix="archives/t")


class TestStorageFactory:
    def test_local(self, tmp_path):
        from archivist.storage.factory import create_storage_provider

        provider = create_storage_provider("local", base_path=str(tmp_path))

        assert provider.name == "local"

    def test_unknown_provider(self):
        from archivist.storage.factory import create_storage_provider

        with pytest.raises(ValueError, match="Unknown storage provider"):
            create_storage_provider("gcs")

    def test_no_bucket_means_no_cloud_replica(self, settings):
        from archivist.storage.factory import cloud_storage_from_settings

        assert cloud_storage_from_settings(settings) is None

    def test_primary_local_uses_archive_base_path(self, settings):
        from archivist.storage.factory import primary_storage_from_settings

        provider = primary_storage_from_settings(settings)

        assert provider.name == "local"
        assert str(provider.base_path) == settings.ARCHIVE_BASE_PATH
