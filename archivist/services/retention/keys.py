# archivist/services/retention/keys.py
"""
Per-archive data keys.

Each encrypted archive gets a fresh Fernet key. The key is stored wrapped
(encrypted) with the platform master key in archive_keys, addressed by
key_id, so restore can resolve it later.
"""

import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from archivist.constants import ArchiveDefaults
from archivist.models import ArchiveKey
from archivist.services.retention.errors import ConfigurationError, IntegrityError, NotFoundError

logger = logging.getLogger(__name__)


class ArchiveKeyVault:
    """Generates, wraps and resolves archive data keys."""

    def __init__(self, master_key: str | bytes | None):
        self._master: Fernet | None = None
        if master_key:
            try:
                self._master = Fernet(master_key)
            except (ValueError, TypeError) as e:
                raise ConfigurationError(f"ARCHIVE_MASTER_KEY is not a valid Fernet key: {e}")

    @property
    def enabled(self) -> bool:
        return self._master is not None

    def _require_master(self) -> Fernet:
        if self._master is None:
            raise ConfigurationError("Archive encryption requested but ARCHIVE_MASTER_KEY is not configured")
        return self._master

    def create_data_key(self, db: Session, tenant_id: str) -> tuple[str, bytes]:
        """
        Generate and persist a new data key.

        Returns:
            (key_id, raw_key)
        """
        master = self._require_master()
        raw_key = Fernet.generate_key()
        key_id = hashlib.sha256(raw_key).hexdigest()[:32]

        db.add(ArchiveKey(
            key_id=key_id,
            tenant_id=tenant_id,
            wrapped_key=master.encrypt(raw_key).decode("ascii"),
            algorithm=ArchiveDefaults.ENCRYPTION_ALGORITHM,
        ))
        db.flush()

        logger.debug(f"Created archive data key {key_id} for tenant {tenant_id}")
        return key_id, raw_key

    def resolve(self, db: Session, key_id: str) -> bytes:
        """
        Unwrap a stored data key.

        Raises:
            NotFoundError: unknown key_id
            IntegrityError: wrapped key cannot be decrypted with the master key
        """
        master = self._require_master()
        stored = db.query(ArchiveKey).filter(ArchiveKey.key_id == key_id).first()
        if stored is None:
            raise NotFoundError(f"Archive key {key_id} not found")

        try:
            return master.decrypt(stored.wrapped_key.encode("ascii"))
        except InvalidToken:
            raise IntegrityError(f"Archive key {key_id} cannot be unwrapped with the configured master key")
