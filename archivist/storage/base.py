# archivist/storage/base.py
"""
Storage provider interface for archive blobs.

Design principles:
- Providers store opaque bytes; the archive pipeline owns compression and
  encryption so the checksum always covers exactly what is on disk
- Every write records a sidecar/metadata entry with the SHA-256 of the bytes
- Keys are relative paths: {tenant}/{dataType}/{archiveId}.json
"""

import gzip
import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional


class ContentEncoding(str, Enum):
    """Supported content encodings."""
    GZIP = "gzip"
    IDENTITY = "identity"  # No compression


@dataclass
class StorageMetadata:
    """Metadata about a stored blob."""
    uri: str  # object key / relative path
    content_hash: str  # SHA256 of the stored bytes
    size_bytes: int
    uploaded_at: datetime
    custom_metadata: Dict[str, str] = field(default_factory=dict)


def compute_content_hash(content: bytes) -> str:
    """Compute SHA256 hash of content."""
    return hashlib.sha256(content).hexdigest()


def compress_content(content: bytes, level: int = 6) -> bytes:
    """Compress content using gzip."""
    return gzip.compress(content, compresslevel=level)


def decompress_content(content: bytes) -> bytes:
    """Decompress gzip content."""
    return gzip.decompress(content)


class StorageProvider(ABC):
    """
    Abstract interface for archive blob storage.

    Implementations must:
    - Write blobs durably (a partially written blob must never be readable)
    - Return None from get() for missing keys rather than raising
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g., 's3', 'local')."""
        pass

    @abstractmethod
    def put(
        self,
        key: str,
        content: bytes,
        metadata: Optional[Dict[str, str]] = None,
    ) -> StorageMetadata:
        """
        Store bytes under key, replacing any previous blob.

        Returns:
            StorageMetadata with the stored size and hash
        """
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return stored bytes, or None if not found."""
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if object exists."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Delete object from storage.

        Returns:
            True if deleted, False if not found
        """
        pass

    @abstractmethod
    def get_metadata(self, key: str) -> Optional[StorageMetadata]:
        """Get metadata without downloading content."""
        pass

    @abstractmethod
    def list_keys(self, prefix: str = "") -> list[str]:
        """List all keys under prefix."""
        pass

    def verify(self, key: str, expected_hash: str) -> bool:
        """True when the stored blob exists and hashes to expected_hash."""
        content = self.get(key)
        if content is None:
            return False
        return compute_content_hash(content) == expected_hash

    @staticmethod
    def generate_key(tenant_id: str, data_type: str, archive_id: str) -> str:
        """
        Generate the storage key for an archive blob.

        Format: {tenant_id}/{data_type}/{archive_id}.json
        """
        return f"{tenant_id}/{data_type}/{archive_id}.json"
