# archivist/models.py
"""
Archivist database models

Tables:
- RetentionPolicy: per (tenant, dataType) retention configuration + running statistics
- PolicyConfigurationChange: append-only history of policy updates
- DeletionApproval: approval requests gating hard deletes
- RetentionLease: per (tenant, dataType) execution lease
- Archive: one completed archival operation (blob + metadata)
- ArchiveAuditEntry / ArchiveAccessLog / ArchiveRestoration: append-only children of Archive
- ArchiveKey: wrapped per-archive data keys, resolvable by key_id
- Tenant record tables: the live stores subject to retention (one per data type)
"""

import uuid
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from archivist.database import Base, utcnow


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class DataType(str, Enum):
    """Logical categories of tenant data subject to retention."""
    AUDIT_LOGS = "audit_logs"
    SECURITY_LOGS = "security_logs"
    USER_DATA = "user_data"
    EMPLOYEE_RECORDS = "employee_records"
    INSURANCE_POLICIES = "insurance_policies"
    INSURANCE_CLAIMS = "insurance_claims"
    FAMILY_MEMBERS = "family_members"
    BENEFICIARIES = "beneficiaries"
    LICENSE_DATA = "license_data"
    BACKUP_LOGS = "backup_logs"
    PERFORMANCE_LOGS = "performance_logs"
    SYSTEM_LOGS = "system_logs"
    COMPLIANCE_LOGS = "compliance_logs"
    FINANCIAL_RECORDS = "financial_records"
    DOCUMENTS = "documents"
    REPORTS = "reports"


class TimeUnit(str, Enum):
    DAYS = "days"
    MONTHS = "months"
    YEARS = "years"


class PolicyStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class ExecutionFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ArchiveLocation(str, Enum):
    """Where archive blobs are written."""
    LOCAL = "local"
    CLOUD_STORAGE = "cloud_storage"  # local blob + S3 replica
    BOTH = "both"


class ArchiveStatus(str, Enum):
    CREATING = "creating"
    COMPLETED = "completed"
    FAILED = "failed"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    CORRUPTED = "corrupted"


class ArchiveAuditAction(str, Enum):
    CREATED = "created"
    RESTORED = "restored"
    VERIFIED = "verified"
    CORRUPTED = "corrupted"
    LEGAL_HOLD_APPLIED = "legal_hold_applied"
    LEGAL_HOLD_RELEASED = "legal_hold_released"
    DELETION_SCHEDULED = "deletion_scheduled"
    DELETED = "deleted"


class AccessType(str, Enum):
    VIEW = "view"
    DOWNLOAD = "download"
    RESTORE = "restore"
    VERIFY = "verify"


class RestorationStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CONSUMED = "consumed"


# -----------------------------------------------------------------------------
# RetentionPolicy
# -----------------------------------------------------------------------------

class RetentionPolicy(Base):
    """
    Tenant-scoped retention configuration for one data type.

    Settings blocks are stored as JSON documents validated by
    archivist.schemas.retention; statistics are flat counters so they can be
    updated without rewriting the documents.
    """
    __tablename__ = "retention_policies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False)
    policy_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    data_type = Column(String(64), nullable=False)  # DataType enum value

    retention_period = Column(JSON, nullable=False)  # {"value": 30, "unit": "days"}
    archival_settings = Column(JSON, nullable=False, default=dict)
    deletion_settings = Column(JSON, nullable=False, default=dict)
    legal_requirements = Column(JSON, nullable=False, default=dict)
    execution_schedule = Column(JSON, nullable=False, default=dict)

    status = Column(String(16), nullable=False, default=PolicyStatus.ACTIVE.value)
    next_execution = Column(DateTime, nullable=True)
    last_executed = Column(DateTime, nullable=True)

    # Statistics
    total_processed = Column(Integer, default=0, nullable=False)
    total_archived = Column(Integer, default=0, nullable=False)
    total_deleted = Column(Integer, default=0, nullable=False)
    success_count = Column(Integer, default=0, nullable=False)
    failure_count = Column(Integer, default=0, nullable=False)
    avg_processing_time_ms = Column(Float, default=0.0, nullable=False)
    last_processed_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)

    created_by = Column(String(64), nullable=True)
    updated_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    configuration_history = relationship(
        "PolicyConfigurationChange",
        back_populates="policy",
        order_by="PolicyConfigurationChange.changed_at",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "data_type", name="uq_retention_policies_tenant_data_type"),
        Index("ix_retention_policies_status_next_execution", "status", "next_execution"),
        Index("ix_retention_policies_tenant_id", "tenant_id"),
    )


class PolicyConfigurationChange(Base):
    """Append-only snapshot of one policy update."""
    __tablename__ = "policy_configuration_changes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    policy_id = Column(Uuid, ForeignKey("retention_policies.id", ondelete="CASCADE"), nullable=False)
    changed_by = Column(String(64), nullable=True)
    changed_at = Column(DateTime, default=utcnow, nullable=False)
    changes = Column(JSON, nullable=False)  # {"field": {"from": ..., "to": ...}}
    reason = Column(Text, nullable=True)

    policy = relationship("RetentionPolicy", back_populates="configuration_history")

    __table_args__ = (
        Index("ix_policy_configuration_changes_policy_id", "policy_id"),
    )


class DeletionApproval(Base):
    """Approval request gating hard deletion for a policy."""
    __tablename__ = "deletion_approvals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    policy_id = Column(Uuid, ForeignKey("retention_policies.id", ondelete="CASCADE"), nullable=False)
    tenant_id = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False, default=ApprovalStatus.PENDING.value)
    requested_at = Column(DateTime, default=utcnow, nullable=False)
    decided_by = Column(String(64), nullable=True)
    decided_at = Column(DateTime, nullable=True)
    consumed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_deletion_approvals_policy_status", "policy_id", "status"),
    )


class RetentionLease(Base):
    """Exclusive, time-bounded claim on a (tenant, dataType) pair."""
    __tablename__ = "retention_leases"

    tenant_id = Column(String(64), primary_key=True)
    data_type = Column(String(64), primary_key=True)
    holder = Column(String(128), nullable=False)
    acquired_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)


# -----------------------------------------------------------------------------
# Archive
# -----------------------------------------------------------------------------

class Archive(Base):
    """
    One archival operation.

    Immutable once completed: record_count and checksum never change. The
    only later mutations are status moves during verification, legal hold
    flips, scheduled deletion and the append-only child tables.
    """
    __tablename__ = "archives"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    archive_id = Column(String(64), unique=True, nullable=False)  # ARC-<ts36>-<rand36>
    tenant_id = Column(String(64), nullable=False)
    retention_policy_id = Column(
        Uuid, ForeignKey("retention_policies.id", ondelete="SET NULL"), nullable=True
    )
    source_collection = Column(String(64), nullable=False)
    data_type = Column(String(64), nullable=False)
    record_count = Column(Integer, nullable=False)
    date_range_start = Column(DateTime, nullable=True)
    date_range_end = Column(DateTime, nullable=True)

    # Storage
    storage_location = Column(String(32), nullable=False, default=ArchiveLocation.LOCAL.value)
    storage_path = Column(String(1024), nullable=False)  # key relative to the archive base
    cloud_key = Column(String(1024), nullable=True)

    # File info
    original_size = Column(Integer, nullable=False)
    compressed_size = Column(Integer, nullable=False)
    compression_ratio = Column(Float, nullable=False, default=0.0)
    checksum = Column(String(64), nullable=False)
    checksum_algorithm = Column(String(16), nullable=False, default="sha256")
    compression_enabled = Column(Boolean, nullable=False, default=False)
    compression_algorithm = Column(String(16), nullable=True)

    # Encryption
    encryption_enabled = Column(Boolean, nullable=False, default=False)
    encryption_algorithm = Column(String(32), nullable=True)
    encryption_key_id = Column(String(64), ForeignKey("archive_keys.key_id"), nullable=True)

    status = Column(String(16), nullable=False, default=ArchiveStatus.CREATING.value)
    can_restore = Column(Boolean, nullable=False, default=True)

    # Legal hold
    legal_hold = Column(Boolean, nullable=False, default=False)
    legal_hold_reason = Column(Text, nullable=True)
    legal_hold_placed_by = Column(String(64), nullable=True)
    legal_hold_placed_at = Column(DateTime, nullable=True)
    legal_hold_released_at = Column(DateTime, nullable=True)

    # Scheduled deletion
    delete_after = Column(DateTime, nullable=True)
    deletion_approval_required = Column(Boolean, nullable=False, default=False)

    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    verified_at = Column(DateTime, nullable=True)

    audit_trail = relationship(
        "ArchiveAuditEntry",
        back_populates="archive",
        order_by="ArchiveAuditEntry.performed_at",
        cascade="all, delete-orphan",
    )
    access_log = relationship(
        "ArchiveAccessLog",
        back_populates="archive",
        order_by="ArchiveAccessLog.accessed_at",
        cascade="all, delete-orphan",
    )
    restoration_history = relationship(
        "ArchiveRestoration",
        back_populates="archive",
        order_by="ArchiveRestoration.restored_at",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_archives_tenant_data_type", "tenant_id", "data_type"),
        Index("ix_archives_status", "status"),
        Index("ix_archives_delete_after", "delete_after"),
    )


class ArchiveAuditEntry(Base):
    __tablename__ = "archive_audit_entries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    archive_pk = Column(Uuid, ForeignKey("archives.id", ondelete="CASCADE"), nullable=False)
    action = Column(String(32), nullable=False)  # ArchiveAuditAction
    performed_by = Column(String(64), nullable=True)
    performed_at = Column(DateTime, default=utcnow, nullable=False)
    details = Column(JSON, nullable=True)

    archive = relationship("Archive", back_populates="audit_trail")

    __table_args__ = (
        Index("ix_archive_audit_entries_archive_pk", "archive_pk"),
    )


class ArchiveAccessLog(Base):
    __tablename__ = "archive_access_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    archive_pk = Column(Uuid, ForeignKey("archives.id", ondelete="CASCADE"), nullable=False)
    accessed_by = Column(String(64), nullable=True)
    accessed_at = Column(DateTime, default=utcnow, nullable=False)
    access_type = Column(String(16), nullable=False)  # AccessType
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    archive = relationship("Archive", back_populates="access_log")

    __table_args__ = (
        Index("ix_archive_access_logs_archive_pk", "archive_pk"),
    )


class ArchiveRestoration(Base):
    __tablename__ = "archive_restorations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    archive_pk = Column(Uuid, ForeignKey("archives.id", ondelete="CASCADE"), nullable=False)
    restored_at = Column(DateTime, default=utcnow, nullable=False)
    restored_by = Column(String(64), nullable=True)
    target_location = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False)  # RestorationStatus
    records_restored = Column(Integer, nullable=False)
    total_records = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)

    archive = relationship("Archive", back_populates="restoration_history")

    __table_args__ = (
        Index("ix_archive_restorations_archive_pk", "archive_pk"),
    )


class ArchiveKey(Base):
    """Per-archive data key, wrapped (encrypted) with the platform master key."""
    __tablename__ = "archive_keys"

    key_id = Column(String(64), primary_key=True)  # sha256 of the raw data key
    tenant_id = Column(String(64), nullable=False)
    wrapped_key = Column(Text, nullable=False)
    algorithm = Column(String(32), nullable=False, default="fernet")
    created_at = Column(DateTime, default=utcnow, nullable=False)


# -----------------------------------------------------------------------------
# Tenant record stores
# -----------------------------------------------------------------------------

class TenantRecordMixin:
    """
    Columns every retention-managed store carries.

    Soft delete uses the tombstone columns; archive_reference points at the
    Archive.archive_id that captured the record.
    """
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    payload = Column(JSON, nullable=True)
    legal_hold = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    deleted_by = Column(String(64), nullable=True)
    deletion_reason = Column(String(255), nullable=True)
    archived_at = Column(DateTime, nullable=True)
    archive_reference = Column(String(64), nullable=True)


class AuditLogRecord(TenantRecordMixin, Base):
    __tablename__ = "audit_log_records"

    action = Column(String(64), nullable=True)
    resource = Column(String(128), nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)


class SecurityEventRecord(TenantRecordMixin, Base):
    __tablename__ = "security_event_records"

    event_type = Column(String(64), nullable=True)
    severity = Column(String(16), nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)


class UserRecord(TenantRecordMixin, Base):
    """Backs both user_data and employee_records."""
    __tablename__ = "user_records"

    email = Column(String(255), nullable=True)
    full_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class InsurancePolicyRecord(TenantRecordMixin, Base):
    __tablename__ = "insurance_policy_records"

    policy_number = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class InsuranceClaimRecord(TenantRecordMixin, Base):
    __tablename__ = "insurance_claim_records"

    claim_number = Column(String(64), nullable=True)
    amount = Column(Float, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class FamilyMemberRecord(TenantRecordMixin, Base):
    __tablename__ = "family_member_records"

    name = Column(String(255), nullable=True)
    relationship_type = Column(String(32), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class BeneficiaryRecord(TenantRecordMixin, Base):
    __tablename__ = "beneficiary_records"

    name = Column(String(255), nullable=True)
    share_percentage = Column(Float, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class LicenseRecord(TenantRecordMixin, Base):
    __tablename__ = "license_records"

    license_key = Column(String(128), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class BackupLogRecord(TenantRecordMixin, Base):
    __tablename__ = "backup_log_records"

    status = Column(String(16), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class PerformanceLogRecord(TenantRecordMixin, Base):
    __tablename__ = "performance_log_records"

    metric = Column(String(64), nullable=True)
    value = Column(Float, nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)


class SystemLogRecord(TenantRecordMixin, Base):
    __tablename__ = "system_log_records"

    level = Column(String(16), nullable=True)
    message = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)


class ComplianceLogRecord(TenantRecordMixin, Base):
    __tablename__ = "compliance_log_records"

    framework = Column(String(32), nullable=True)
    message = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)


class FinancialRecord(TenantRecordMixin, Base):
    __tablename__ = "financial_records"

    amount = Column(Float, nullable=True)
    currency = Column(String(3), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class DocumentRecord(TenantRecordMixin, Base):
    __tablename__ = "document_records"

    title = Column(String(512), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class ReportRecord(TenantRecordMixin, Base):
    __tablename__ = "report_records"

    title = Column(String(512), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
