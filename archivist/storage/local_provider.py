# archivist/storage/local_provider.py
"""
Local filesystem storage provider.

Archive blobs live under ARCHIVE_BASE_PATH mirroring their keys, each with a
.meta.json sidecar holding hash, size and custom metadata.
"""

import dataclasses
import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path

from archivist.logging_config import log_storage_operation
from archivist.storage.base import (
    StorageMetadata,
    StorageProvider,
    compute_content_hash,
)

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX = ".meta.json"


def _atomic_write(path: Path, data: bytes) -> None:
    """Write via a sibling temp file and rename; readers never see a partial file."""
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


class LocalStorageProvider(StorageProvider):
    """
    Archive blobs on the local filesystem.

    A blob and its sidecar are each written atomically; the blob goes first
    so a sidecar never describes bytes that are not there.
    """

    def __init__(self, base_path: str | None = None):
        """
        Args:
            base_path: Root directory for archive blobs (or ARCHIVE_BASE_PATH env)
        """
        self._base_path = Path(base_path or os.getenv("ARCHIVE_BASE_PATH", "./archives"))
        self._base_path.mkdir(parents=True, exist_ok=True)
        self._root = self._base_path.resolve()

        logger.info(f"Local archive storage initialized: {self._base_path}")

    @property
    def name(self) -> str:
        return "local"

    @property
    def base_path(self) -> Path:
        return self._base_path

    def _resolve(self, relative: str) -> Path:
        """Map a key onto the filesystem; anything escaping the root is refused."""
        candidate = (self._base_path / relative).resolve()
        if not candidate.is_relative_to(self._root):
            raise ValueError("Path traversal detected")
        return candidate

    def _sidecar_path(self, key: str) -> Path:
        return self._resolve(key + SIDECAR_SUFFIX)

    def put(
        self,
        key: str,
        content: bytes,
        metadata: dict[str, str] | None = None,
    ) -> StorageMetadata:
        """Store the blob, then its sidecar."""
        blob_path = self._resolve(key)
        sidecar_path = self._sidecar_path(key)
        blob_path.parent.mkdir(parents=True, exist_ok=True)

        with log_storage_operation(self.name, "write", key) as metrics:
            _atomic_write(blob_path, content)
            metrics["size_bytes"] = len(content)

        stored = StorageMetadata(
            uri=key,
            content_hash=compute_content_hash(content),
            size_bytes=len(content),
            uploaded_at=datetime.now(UTC),
            custom_metadata=dict(metadata or {}),
        )
        sidecar = dataclasses.asdict(stored)
        sidecar["uploaded_at"] = stored.uploaded_at.isoformat()
        _atomic_write(sidecar_path, json.dumps(sidecar, indent=2).encode("utf-8"))
        return stored

    def get(self, key: str) -> bytes | None:
        blob_path = self._resolve(key)
        if not blob_path.is_file():
            return None

        with log_storage_operation(self.name, "read", key) as metrics:
            content = blob_path.read_bytes()
            metrics["size_bytes"] = len(content)
        return content

    def exists(self, key: str) -> bool:
        return self._resolve(key).is_file()

    def delete(self, key: str) -> bool:
        """Remove blob and sidecar. True if either existed."""
        removed = []
        for path in (self._resolve(key), self._sidecar_path(key)):
            if path.exists():
                path.unlink()
                removed.append(path.name)

        if removed:
            logger.debug(f"Deleted from local: {key}")
        return bool(removed)

    def get_metadata(self, key: str) -> StorageMetadata | None:
        """Sidecar contents, or None when the blob or its sidecar is missing or unreadable."""
        sidecar_path = self._sidecar_path(key)
        if not self.exists(key) or not sidecar_path.is_file():
            return None

        try:
            raw = json.loads(sidecar_path.read_text())
            raw["uploaded_at"] = datetime.fromisoformat(raw["uploaded_at"])
            return StorageMetadata(**raw)
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning(f"Unreadable sidecar for {key}: {e}")
            return None

    def list_keys(self, prefix: str = "") -> list[str]:
        """Blob keys under prefix, sidecars excluded."""
        start = self._resolve(prefix) if prefix else self._root
        if not start.is_dir():
            return []

        return sorted(
            path.relative_to(self._root).as_posix()
            for path in start.rglob("*.json")
            if not path.name.endswith(SIDECAR_SUFFIX)
        )
