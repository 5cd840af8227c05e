# archivist/storage/s3_provider.py
"""
Cloud replica for archive blobs (AWS S3 or any S3-compatible endpoint).

Archives whose policy location is cloud_storage or both are uploaded here
after the local write. Objects live under the archives/ prefix with the blob
hash in object metadata.
"""

import logging
import os
from datetime import UTC, datetime
from typing import Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from archivist.logging_config import log_storage_operation
from archivist.storage.base import (
    StorageMetadata,
    StorageProvider,
    compute_content_hash,
)

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code", "") in NOT_FOUND_CODES


class S3StorageProvider(StorageProvider):
    """
    S3-backed archive store.

    Settings come from arguments first, then S3_BUCKET, S3_ENDPOINT_URL and
    S3_REGION. Credentials follow the normal boto3 chain.
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        prefix: str = "archives/",
        client=None,
    ):
        """
        Args:
            bucket: Target bucket (required, here or via env)
            endpoint_url: Endpoint override for MinIO and similar
            region: Region name, us-east-1 when unset
            prefix: Object key prefix for archive blobs
            client: Ready-made boto3 S3 client; built from the above when None
        """
        self._bucket = bucket or os.getenv("S3_BUCKET")
        if not self._bucket:
            raise ValueError("S3 bucket required for the archive replica (S3_BUCKET)")
        self._prefix = prefix

        if client is None:
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url or os.getenv("S3_ENDPOINT_URL"),
                region_name=region or os.getenv("S3_REGION", "us-east-1"),
                config=Config(
                    retries={"max_attempts": 3, "mode": "adaptive"},
                    connect_timeout=5,
                    read_timeout=30,
                ),
            )
        self._client = client

        logger.info(f"S3 archive replica initialized: bucket={self._bucket} prefix={self._prefix}")

    @property
    def name(self) -> str:
        return "s3"

    @property
    def bucket(self) -> str:
        return self._bucket

    def _object_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def put(
        self,
        key: str,
        content: bytes,
        metadata: Optional[Dict[str, str]] = None,
    ) -> StorageMetadata:
        """Upload the blob; its hash travels as content-hash object metadata."""
        object_metadata = {**(metadata or {}), "content-hash": compute_content_hash(content)}

        with log_storage_operation(self.name, "upload", key) as metrics:
            self._client.put_object(
                Bucket=self._bucket,
                Key=self._object_key(key),
                Body=content,
                ContentType="application/octet-stream",
                Metadata=object_metadata,
            )
            metrics["size_bytes"] = len(content)

        return StorageMetadata(
            uri=key,
            content_hash=object_metadata["content-hash"],
            size_bytes=len(content),
            uploaded_at=datetime.now(UTC),
            custom_metadata=object_metadata,
        )

    def get(self, key: str) -> Optional[bytes]:
        try:
            with log_storage_operation(self.name, "download", key) as metrics:
                body = self._client.get_object(Bucket=self._bucket, Key=self._object_key(key))["Body"]
                content = body.read()
                metrics["size_bytes"] = len(content)
        except ClientError as e:
            if _is_not_found(e):
                logger.debug(f"Archive replica missing: {key}")
                return None
            raise
        return content

    def _head(self, key: str) -> Optional[dict]:
        try:
            return self._client.head_object(Bucket=self._bucket, Key=self._object_key(key))
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise

    def exists(self, key: str) -> bool:
        return self._head(key) is not None

    def delete(self, key: str) -> bool:
        """Delete the replica. Errors are logged and reported as False."""
        try:
            self._client.delete_object(Bucket=self._bucket, Key=self._object_key(key))
        except ClientError as e:
            logger.error(f"Archive replica delete failed for {key}: {e}")
            return False
        logger.debug(f"Deleted archive replica: {key}")
        return True

    def get_metadata(self, key: str) -> Optional[StorageMetadata]:
        head = self._head(key)
        if head is None:
            return None

        object_metadata = head.get("Metadata", {})
        return StorageMetadata(
            uri=key,
            content_hash=object_metadata.get("content-hash", ""),
            size_bytes=head.get("ContentLength", 0),
            uploaded_at=head.get("LastModified", datetime.now(UTC)),
            custom_metadata=object_metadata,
        )

    def list_keys(self, prefix: str = "") -> list[str]:
        """Replica keys under prefix, with the object prefix stripped."""
        keys = []
        pages = self._client.get_paginator("list_objects_v2").paginate(
            Bucket=self._bucket, Prefix=self._object_key(prefix)
        )
        try:
            for page in pages:
                keys.extend(item["Key"][len(self._prefix):] for item in page.get("Contents", []))
        except ClientError as e:
            logger.error(f"Listing archive replicas failed: {e}")
        return keys
