# archivist/storage/__init__.py
"""
Storage provider abstraction for archive blobs.

Archive contents live in blob storage (local filesystem, optionally
replicated to S3); the database stores only archive metadata and keys.
"""

from archivist.storage.base import (
    ContentEncoding,
    StorageMetadata,
    StorageProvider,
    compress_content,
    compute_content_hash,
    decompress_content,
)
from archivist.storage.factory import (
    cloud_storage_from_settings,
    create_storage_provider,
    primary_storage_from_settings,
)
from archivist.storage.local_provider import LocalStorageProvider

__all__ = [
    "StorageProvider",
    "StorageMetadata",
    "ContentEncoding",
    "LocalStorageProvider",
    "compress_content",
    "compute_content_hash",
    "decompress_content",
    "create_storage_provider",
    "primary_storage_from_settings",
    "cloud_storage_from_settings",
]
