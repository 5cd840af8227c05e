# archivist/services/retention/registry.py
"""
Collection registry: DataType -> entity store.

Each store wraps one SQLAlchemy model and knows which column carries the
record's age. Every query is scoped to a single tenant.
"""

import logging
import uuid
from datetime import date, datetime
from typing import Iterable, Protocol

from sqlalchemy import DateTime, Uuid, inspect
from sqlalchemy.orm import Session

from archivist import models
from archivist.models import DataType
from archivist.services.retention.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Fields cleared when a record is reinserted from an archive
RESTORE_STRIPPED_FIELDS = (
    "id",
    "archived_at",
    "archive_reference",
    "deleted_at",
    "deleted_by",
    "deletion_reason",
)


class EntityStore(Protocol):
    """Operations the retention engine needs from a tenant record store."""

    collection: str
    date_field: str

    def query_older_than(self, db: Session, tenant_id: str, cutoff: datetime) -> list: ...

    def query_between(self, db: Session, tenant_id: str, start: datetime, end: datetime) -> list: ...

    def query_soft_deleted_before(self, db: Session, tenant_id: str, cutoff: datetime) -> list: ...

    def soft_delete(self, db: Session, records: Iterable, deleted_by: str, reason: str, now: datetime) -> int: ...

    def hard_delete(self, db: Session, records: Iterable) -> int: ...

    def mark_archived(self, db: Session, records: Iterable, archive_id: str, now: datetime) -> int: ...

    def insert(self, db: Session, data: dict): ...

    def serialize(self, record) -> dict: ...


class SqlAlchemyEntityStore:
    """EntityStore over a TenantRecordMixin model."""

    def __init__(self, model, date_field: str):
        if not hasattr(model, date_field):
            raise ConfigurationError(f"{model.__name__} has no date field '{date_field}'")
        self.model = model
        self.date_field = date_field
        self.collection = model.__tablename__
        self._columns = {c.key: c for c in inspect(model).columns}

    @property
    def _date_column(self):
        return getattr(self.model, self.date_field)

    def _live(self, db: Session, tenant_id: str):
        """Tenant's records that are neither deleted nor on legal hold."""
        return db.query(self.model).filter(
            self.model.tenant_id == tenant_id,
            self.model.deleted_at.is_(None),
            self.model.legal_hold.is_(False),
        )

    def query_older_than(self, db: Session, tenant_id: str, cutoff: datetime) -> list:
        """Live records whose date field is before cutoff."""
        return (
            self._live(db, tenant_id)
            .filter(self._date_column < cutoff)
            .order_by(self._date_column)
            .all()
        )

    def query_between(self, db: Session, tenant_id: str, start: datetime, end: datetime) -> list:
        """Live, not yet archived records with start <= date < end."""
        return (
            self._live(db, tenant_id)
            .filter(
                self._date_column >= start,
                self._date_column < end,
                self.model.archived_at.is_(None),
            )
            .order_by(self._date_column)
            .all()
        )

    def query_soft_deleted_before(self, db: Session, tenant_id: str, cutoff: datetime) -> list:
        """Tombstoned records deleted before cutoff (candidates for hard delete)."""
        return (
            db.query(self.model)
            .filter(
                self.model.tenant_id == tenant_id,
                self.model.deleted_at.is_not(None),
                self.model.deleted_at < cutoff,
                self.model.legal_hold.is_(False),
            )
            .all()
        )

    def soft_delete(self, db: Session, records: Iterable, deleted_by: str, reason: str, now: datetime) -> int:
        count = 0
        for record in records:
            if record.legal_hold or record.deleted_at is not None:
                continue
            record.deleted_at = now
            record.deleted_by = deleted_by
            record.deletion_reason = reason
            count += 1
        db.flush()
        return count

    def hard_delete(self, db: Session, records: Iterable) -> int:
        count = 0
        for record in records:
            if record.legal_hold:
                continue
            db.delete(record)
            count += 1
        db.flush()
        return count

    def mark_archived(self, db: Session, records: Iterable, archive_id: str, now: datetime) -> int:
        count = 0
        for record in records:
            record.archived_at = now
            record.archive_reference = archive_id
            count += 1
        db.flush()
        return count

    def serialize(self, record) -> dict:
        """Column values as JSON-safe primitives."""
        data = {}
        for key in self._columns:
            value = getattr(record, key)
            if isinstance(value, (datetime, date)):
                value = value.isoformat()
            elif isinstance(value, uuid.UUID):
                value = str(value)
            data[key] = value
        return data

    def deserialize(self, data: dict) -> dict:
        """
        Convert archived primitives back into column values.

        Raises:
            ValueError: unknown field or unparseable value
        """
        values = {}
        for key, value in data.items():
            column = self._columns.get(key)
            if column is None:
                raise ValueError(f"Unknown field '{key}' for {self.collection}")
            if value is not None and isinstance(value, str):
                if isinstance(column.type, DateTime):
                    value = datetime.fromisoformat(value)
                elif isinstance(column.type, Uuid):
                    value = uuid.UUID(value)
            values[key] = value
        return values

    def insert(self, db: Session, data: dict):
        """Insert one record; flushes so constraint errors surface here."""
        record = self.model(**self.deserialize(data))
        db.add(record)
        db.flush()
        return record


DEFAULT_COLLECTIONS: dict[DataType, tuple] = {
    DataType.AUDIT_LOGS: (models.AuditLogRecord, "timestamp"),
    DataType.SECURITY_LOGS: (models.SecurityEventRecord, "timestamp"),
    DataType.USER_DATA: (models.UserRecord, "created_at"),
    DataType.EMPLOYEE_RECORDS: (models.UserRecord, "created_at"),
    DataType.INSURANCE_POLICIES: (models.InsurancePolicyRecord, "created_at"),
    DataType.INSURANCE_CLAIMS: (models.InsuranceClaimRecord, "created_at"),
    DataType.FAMILY_MEMBERS: (models.FamilyMemberRecord, "created_at"),
    DataType.BENEFICIARIES: (models.BeneficiaryRecord, "created_at"),
    DataType.LICENSE_DATA: (models.LicenseRecord, "created_at"),
    DataType.BACKUP_LOGS: (models.BackupLogRecord, "created_at"),
    DataType.PERFORMANCE_LOGS: (models.PerformanceLogRecord, "timestamp"),
    DataType.SYSTEM_LOGS: (models.SystemLogRecord, "timestamp"),
    DataType.COMPLIANCE_LOGS: (models.ComplianceLogRecord, "timestamp"),
    DataType.FINANCIAL_RECORDS: (models.FinancialRecord, "created_at"),
    DataType.DOCUMENTS: (models.DocumentRecord, "created_at"),
    DataType.REPORTS: (models.ReportRecord, "created_at"),
}


class CollectionRegistry:
    """Resolves data types to entity stores; built per RetentionContext."""

    def __init__(self, stores: dict | None = None):
        self._stores: dict[str, EntityStore] = {}
        for data_type, store in (stores or {}).items():
            self.register(data_type, store)

    @classmethod
    def default(cls) -> "CollectionRegistry":
        return cls({
            data_type: SqlAlchemyEntityStore(model, date_field)
            for data_type, (model, date_field) in DEFAULT_COLLECTIONS.items()
        })

    @staticmethod
    def _key(data_type) -> str:
        return data_type.value if isinstance(data_type, DataType) else str(data_type)

    def register(self, data_type, store: EntityStore) -> None:
        self._stores[self._key(data_type)] = store

    def resolve(self, data_type) -> EntityStore:
        """
        Raises:
            ConfigurationError: data type has no store
        """
        store = self._stores.get(self._key(data_type))
        if store is None:
            raise ConfigurationError(f"Unsupported data type: {self._key(data_type)}")
        return store

    def supports(self, data_type) -> bool:
        return self._key(data_type) in self._stores

    def data_types(self) -> list[str]:
        return sorted(self._stores)
