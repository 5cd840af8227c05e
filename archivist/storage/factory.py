# archivist/storage/factory.py
"""
Factory functions for creating storage providers.

Providers are built explicitly and handed to the RetentionContext; there is
no process-wide instance.
"""

import logging
from typing import Optional

from archivist.config import Settings
from archivist.storage.base import StorageProvider

logger = logging.getLogger(__name__)


def create_storage_provider(
    provider_name: str,
    **kwargs,
) -> StorageProvider:
    """
    Create a storage provider.

    Args:
        provider_name: 's3' or 'local'
        **kwargs: Additional arguments for the provider
    """
    name = provider_name.lower().strip()

    if name == "local":
        from archivist.storage.local_provider import LocalStorageProvider
        provider = LocalStorageProvider(**kwargs)
    elif name == "s3":
        from archivist.storage.s3_provider import S3StorageProvider
        provider = S3StorageProvider(**kwargs)
    else:
        raise ValueError(f"Unknown storage provider: {name}. Available: s3, local")

    logger.info(f"Storage provider initialized: {provider.name}")
    return provider


def primary_storage_from_settings(settings: Settings) -> StorageProvider:
    """Primary archive store; local uses ARCHIVE_BASE_PATH."""
    if settings.STORAGE_PROVIDER.lower() == "local":
        return create_storage_provider("local", base_path=settings.ARCHIVE_BASE_PATH)
    return create_storage_provider(
        settings.STORAGE_PROVIDER,
        bucket=settings.S3_BUCKET,
        endpoint_url=settings.S3_ENDPOINT_URL,
        region=settings.S3_REGION,
    )


def cloud_storage_from_settings(settings: Settings) -> Optional[StorageProvider]:
    """Cloud replica store, or None when no bucket is configured."""
    if not settings.S3_BUCKET:
        return None
    return create_storage_provider(
        "s3",
        bucket=settings.S3_BUCKET,
        endpoint_url=settings.S3_ENDPOINT_URL,
        region=settings.S3_REGION,
    )
