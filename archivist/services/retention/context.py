# archivist/services/retention/context.py
"""
RetentionContext: the collaborators every retention operation needs.

Built once at startup (or per test) and passed explicitly; nothing in the
retention services reaches for module-level state.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import sessionmaker

from archivist.config import Settings, get_settings
from archivist.constants import ChainDefaults
from archivist.database import create_db_engine, create_session_factory, init_db
from archivist.services.retention.audit_chain import ImmutableAuditChain
from archivist.services.retention.keys import ArchiveKeyVault
from archivist.services.retention.registry import CollectionRegistry
from archivist.storage import StorageProvider, cloud_storage_from_settings, primary_storage_from_settings

logger = logging.getLogger(__name__)


@dataclass
class RetentionContext:
    session_factory: sessionmaker
    registry: CollectionRegistry
    storage: StorageProvider
    key_vault: ArchiveKeyVault
    audit_chain: ImmutableAuditChain
    settings: Settings
    cloud_storage: StorageProvider | None = None
    audit_category: str = field(default=ChainDefaults.RETENTION_CATEGORY)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, create_tables: bool = False) -> "RetentionContext":
        """Wire database, storage, keys and audit chain from configuration."""
        settings = settings or get_settings()
        engine = create_db_engine(settings.DATABASE_URL)
        if create_tables:
            init_db(engine)

        return cls(
            session_factory=create_session_factory(engine),
            registry=CollectionRegistry.default(),
            storage=primary_storage_from_settings(settings),
            cloud_storage=cloud_storage_from_settings(settings),
            key_vault=ArchiveKeyVault(settings.ARCHIVE_MASTER_KEY),
            audit_chain=ImmutableAuditChain(settings.IMMUTABLE_LOG_PATH, settings.PLATFORM_IMMUTABLE_SECRET),
            settings=settings,
        )

    def audit(self, event_type: str, data: dict[str, Any]) -> dict | None:
        """
        Record a retention event in the immutable chain.

        Called after the database change has committed; a chain write
        failure is logged at ERROR and does not undo that change.
        """
        try:
            return self.audit_chain.append(self.audit_category, event_type, data)
        except OSError as e:
            logger.error(
                f"Failed to append {event_type} to audit chain: {e}",
                extra={"event": "chain_append_failed", "category": self.audit_category},
                exc_info=True,
            )
            return None
