# archivist/services/retention/archive_service.py
"""
Archive service: the archive pipeline and archive management.

Handles:
- Selecting records in the archive window [retention cutoff, archive cutoff)
- Encoding them into one blob (JSON -> gzip -> Fernet -> SHA-256)
- Writing the blob (local, optionally replicated to S3) and the Archive row
- Verification, legal holds, scheduled and expired-archive deletion
- Startup reconciliation of half-created archives and orphaned blobs

Archive rows are committed in status 'creating' before the blob is written,
so every blob on disk is either referenced by a row or removable by
reconcile_incomplete_archives().
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import PurePosixPath

from sqlalchemy.orm import Session

from archivist.constants import ArchiveDefaults, RetentionDefaults
from archivist.database import utcnow
from archivist.models import (
    AccessType,
    Archive,
    ArchiveAccessLog,
    ArchiveAuditAction,
    ArchiveAuditEntry,
    ArchiveKey,
    ArchiveLocation,
    ArchiveStatus,
    RetentionPolicy,
)
from archivist.schemas.retention import ArchivalSettings
from archivist.services.retention.codec import encode_archive, generate_archive_id
from archivist.services.retention.cutoff import add_period, calculate_cutoff
from archivist.services.retention.errors import ConfigurationError, IntegrityError, NotFoundError
from archivist.services.retention.purge_service import is_due_for_deletion
from archivist.storage.base import StorageProvider, compute_content_hash

logger = logging.getLogger(__name__)

# Archives in these states hold a complete blob
SETTLED_STATUSES = (
    ArchiveStatus.COMPLETED.value,
    ArchiveStatus.VERIFYING.value,
    ArchiveStatus.VERIFIED.value,
    ArchiveStatus.CORRUPTED.value,
)


@dataclass
class ArchiveResult:
    """Result of an archive operation."""

    success: bool
    archive_id: str | None = None
    records_archived: int = 0
    original_size: int = 0
    compressed_size: int = 0
    skipped_reason: str | None = None


@dataclass
class VerificationResult:
    archive_id: str
    valid: bool
    status: str
    checksum_valid: bool
    replica_valid: bool | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class ExpiredArchivesResult:
    deleted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)


@dataclass
class ReconcileResult:
    stale_archives_removed: int = 0
    orphaned_blobs_removed: int = 0
    errors: list[str] = field(default_factory=list)


def add_audit_entry(
    db: Session,
    archive: Archive,
    action: ArchiveAuditAction,
    performed_by: str | None,
    details: dict | None = None,
) -> ArchiveAuditEntry:
    entry = ArchiveAuditEntry(
        archive_pk=archive.id,
        action=action.value,
        performed_by=performed_by,
        details=details,
    )
    db.add(entry)
    return entry


def log_access(
    db: Session,
    archive: Archive,
    accessed_by: str | None,
    access_type: AccessType,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> ArchiveAccessLog:
    entry = ArchiveAccessLog(
        archive_pk=archive.id,
        accessed_by=accessed_by,
        access_type=access_type.value,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(entry)
    return entry


# -----------------------------------------------------------------------------
# Archive pipeline
# -----------------------------------------------------------------------------


def archive_window(policy: RetentionPolicy, now: datetime) -> tuple[datetime, datetime] | None:
    """(retention cutoff, archive cutoff) for an archival-enabled policy, else None."""
    archival = ArchivalSettings.model_validate(policy.archival_settings or {})
    if not archival.enabled or archival.archive_after is None:
        return None
    return calculate_cutoff(policy.retention_period, now), calculate_cutoff(archival.archive_after, now)


def archive_records(
    ctx,
    db: Session,
    policy: RetentionPolicy,
    now: datetime | None = None,
    created_by: str | None = None,
) -> ArchiveResult:
    """
    Archive the policy's records that fall in the archive window.

    Produces at most one Archive. Errors propagate after cleanup.
    """
    now = now or utcnow()
    window = archive_window(policy, now)
    if window is None:
        return ArchiveResult(success=True, skipped_reason="archival disabled")

    retention_cutoff, archive_cutoff = window
    store = ctx.registry.resolve(policy.data_type)
    records = store.query_between(db, policy.tenant_id, retention_cutoff, archive_cutoff)

    if not records:
        logger.info(f"No records to archive for {policy.tenant_id}/{policy.data_type}")
        return ArchiveResult(success=True, skipped_reason="no records in archive window")

    archive = create_archive(ctx, db, policy, store, records, now=now, created_by=created_by)
    return ArchiveResult(
        success=True,
        archive_id=archive.archive_id,
        records_archived=archive.record_count,
        original_size=archive.original_size,
        compressed_size=archive.compressed_size,
    )


def create_archive(
    ctx,
    db: Session,
    policy: RetentionPolicy,
    store,
    records: list,
    now: datetime | None = None,
    created_by: str | None = None,
) -> Archive:
    """
    Encode records into one archive blob and record it.

    Failure at any step removes the blob, the row and its data key, then
    re-raises.
    """
    now = now or utcnow()
    archival = ArchivalSettings.model_validate(policy.archival_settings or {})
    tenant_id = policy.tenant_id
    actor = created_by or RetentionDefaults.SYSTEM_ACTOR

    archive_id = generate_archive_id()
    key = StorageProvider.generate_key(tenant_id, policy.data_type, archive_id)
    replicate = archival.location in (ArchiveLocation.CLOUD_STORAGE, ArchiveLocation.BOTH)
    if replicate and ctx.cloud_storage is None:
        raise ConfigurationError(f"Archive location '{archival.location.value}' requires S3_BUCKET")

    dates = [getattr(r, store.date_field) for r in records if getattr(r, store.date_field) is not None]
    metadata = {
        "archiveId": archive_id,
        "tenantId": tenant_id,
        "dataType": policy.data_type,
        "sourceCollection": store.collection,
        "recordCount": len(records),
        "createdAt": now.isoformat(),
        "retentionPolicyId": str(policy.id),
    }

    key_id, data_key = None, None
    if archival.encryption.enabled:
        key_id, data_key = ctx.key_vault.create_data_key(db, tenant_id)

    encoded = encode_archive(
        metadata,
        [store.serialize(r) for r in records],
        compress=archival.compression.enabled,
        compression_level=archival.compression.level,
        data_key=data_key,
    )

    archive = Archive(
        archive_id=archive_id,
        tenant_id=tenant_id,
        retention_policy_id=policy.id,
        source_collection=store.collection,
        data_type=policy.data_type,
        record_count=len(records),
        date_range_start=min(dates) if dates else None,
        date_range_end=max(dates) if dates else None,
        storage_location=archival.location.value,
        storage_path=key,
        original_size=encoded.original_size,
        compressed_size=encoded.compressed_size,
        compression_ratio=encoded.compression_ratio,
        checksum=encoded.checksum,
        checksum_algorithm=ArchiveDefaults.CHECKSUM_ALGORITHM,
        compression_enabled=archival.compression.enabled,
        compression_algorithm=archival.compression.algorithm if archival.compression.enabled else None,
        encryption_enabled=archival.encryption.enabled,
        encryption_algorithm=archival.encryption.algorithm if archival.encryption.enabled else None,
        encryption_key_id=key_id,
        status=ArchiveStatus.CREATING.value,
        created_by=actor,
        created_at=now,
    )
    db.add(archive)
    db.commit()

    try:
        blob_metadata = {"archive_id": archive_id, "tenant_id": tenant_id, "checksum": encoded.checksum}
        ctx.storage.put(key, encoded.content, blob_metadata)
        if replicate:
            ctx.cloud_storage.put(key, encoded.content, blob_metadata)
            archive.cloud_key = key

        store.mark_archived(db, records, archive_id, now)

        archive.status = ArchiveStatus.COMPLETED.value
        if archival.delete_archives_after:
            archive.delete_after = add_period(archival.delete_archives_after, now)
        add_audit_entry(db, archive, ArchiveAuditAction.CREATED, actor, {
            "recordCount": archive.record_count,
            "checksum": archive.checksum,
            "storagePath": key,
        })
        db.commit()
    except Exception:
        db.rollback()
        _discard_archive(ctx, db, archive_id, key, key_id)
        raise

    logger.info(
        f"Created archive {archive_id} with {archive.record_count} records "
        f"({encoded.original_size} -> {encoded.compressed_size} bytes)",
        extra={
            "event": "archive_created",
            "archive_id": archive_id,
            "data_type": policy.data_type,
            "records_archived": archive.record_count,
            "size_bytes": encoded.compressed_size,
        },
    )
    ctx.audit("archive_created", {
        "archiveId": archive_id,
        "tenantId": tenant_id,
        "dataType": policy.data_type,
        "policyId": str(policy.id),
        "recordCount": archive.record_count,
        "checksum": archive.checksum,
        "createdBy": actor,
    })
    return archive


def _delete_blobs(ctx, archive_key: str, cloud_key: str | None = None) -> None:
    ctx.storage.delete(archive_key)
    if cloud_key and ctx.cloud_storage is not None:
        ctx.cloud_storage.delete(cloud_key)


def _discard_archive(ctx, db: Session, archive_id: str, key: str, key_id: str | None) -> None:
    """Best-effort removal of a failed archive; reconciliation covers what remains."""
    try:
        _delete_blobs(ctx, key, key if ctx.cloud_storage is not None else None)
        db.query(Archive).filter(Archive.archive_id == archive_id).delete()
        if key_id:
            db.query(ArchiveKey).filter(ArchiveKey.key_id == key_id).delete()
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Cleanup of failed archive {archive_id} incomplete: {e}", exc_info=True)


# -----------------------------------------------------------------------------
# Archive management
# -----------------------------------------------------------------------------


def get_archive(
    db: Session,
    tenant_id: str,
    archive_id: str,
    accessed_by: str | None = None,
) -> Archive:
    """
    Get a tenant's archive; records a 'view' access when accessed_by is given.

    Raises:
        NotFoundError: unknown archive or owned by another tenant
    """
    archive = (
        db.query(Archive)
        .filter(Archive.archive_id == archive_id, Archive.tenant_id == tenant_id)
        .first()
    )
    if not archive:
        raise NotFoundError(f"Archive {archive_id} not found")

    if accessed_by:
        log_access(db, archive, accessed_by, AccessType.VIEW)
        db.commit()
    return archive


def list_archives(
    db: Session,
    tenant_id: str,
    data_type: str | None = None,
    status: str | None = None,
    legal_hold: bool | None = None,
) -> list[Archive]:
    query = db.query(Archive).filter(
        Archive.tenant_id == tenant_id,
        Archive.status != ArchiveStatus.CREATING.value,
    )
    if data_type:
        query = query.filter(Archive.data_type == data_type)
    if status:
        query = query.filter(Archive.status == ArchiveStatus(status).value)
    if legal_hold is not None:
        query = query.filter(Archive.legal_hold.is_(legal_hold))
    return query.order_by(Archive.created_at.desc()).all()


def _check_blobs(ctx, archive: Archive) -> tuple[bool, bool | None, list[str]]:
    """(checksum_valid, replica_valid or None without a replica, errors)."""
    errors = []
    content = ctx.storage.get(archive.storage_path)
    if content is None:
        checksum_valid = False
        errors.append("archive blob missing")
    else:
        checksum_valid = compute_content_hash(content) == archive.checksum
        if not checksum_valid:
            errors.append("checksum mismatch")

    replica_valid = None
    if archive.cloud_key:
        if ctx.cloud_storage is None:
            errors.append("cloud replica configured but no cloud storage available")
            replica_valid = False
        else:
            replica_valid = ctx.cloud_storage.verify(archive.cloud_key, archive.checksum)
            if not replica_valid:
                errors.append("cloud replica missing or checksum mismatch")

    return checksum_valid, replica_valid, errors


def verify_archive(ctx, db: Session, tenant_id: str, archive_id: str, verified_by: str | None = None) -> VerificationResult:
    """
    Recompute the blob checksum (and the replica's, if any).

    Moves the archive through 'verifying' to 'verified' or 'corrupted'.
    """
    archive = get_archive(db, tenant_id, archive_id)
    if archive.status not in SETTLED_STATUSES:
        raise IntegrityError(f"Archive {archive_id} is {archive.status} and cannot be verified")

    prior_status = archive.status
    archive.status = ArchiveStatus.VERIFYING.value
    db.commit()

    try:
        checksum_valid, replica_valid, errors = _check_blobs(ctx, archive)
    except Exception:
        # Storage failure says nothing about the blob; do not leave it 'verifying'
        archive.status = prior_status
        db.commit()
        raise

    valid = checksum_valid and replica_valid is not False
    archive.status = ArchiveStatus.VERIFIED.value if valid else ArchiveStatus.CORRUPTED.value
    archive.verified_at = utcnow()
    actor = verified_by or RetentionDefaults.SYSTEM_ACTOR
    add_audit_entry(
        db,
        archive,
        ArchiveAuditAction.VERIFIED if valid else ArchiveAuditAction.CORRUPTED,
        actor,
        {"errors": errors} if errors else None,
    )
    log_access(db, archive, actor, AccessType.VERIFY)
    db.commit()

    if valid:
        logger.info(f"Archive {archive_id} verified", extra={"event": "archive_verified", "archive_id": archive_id})
    else:
        logger.error(
            f"Archive {archive_id} corrupted: {'; '.join(errors)}",
            extra={"event": "archive_corrupted", "archive_id": archive_id},
        )
        ctx.audit("archive_corrupted", {"archiveId": archive_id, "tenantId": tenant_id, "errors": errors})

    return VerificationResult(
        archive_id=archive_id,
        valid=valid,
        status=archive.status,
        checksum_valid=checksum_valid,
        replica_valid=replica_valid,
        errors=errors,
    )


def set_legal_hold(ctx, db: Session, tenant_id: str, archive_id: str, reason: str, placed_by: str) -> Archive:
    """Place an archive on legal hold; held archives are never deleted."""
    archive = get_archive(db, tenant_id, archive_id)
    archive.legal_hold = True
    archive.legal_hold_reason = reason
    archive.legal_hold_placed_by = placed_by
    archive.legal_hold_placed_at = utcnow()
    archive.legal_hold_released_at = None
    add_audit_entry(db, archive, ArchiveAuditAction.LEGAL_HOLD_APPLIED, placed_by, {"reason": reason})
    db.commit()

    logger.info(f"Legal hold placed on archive {archive_id}", extra={"event": "legal_hold_applied", "archive_id": archive_id})
    ctx.audit("archive_legal_hold_applied", {
        "archiveId": archive_id,
        "tenantId": tenant_id,
        "reason": reason,
        "placedBy": placed_by,
    })
    return archive


def release_legal_hold(ctx, db: Session, tenant_id: str, archive_id: str, released_by: str, reason: str | None = None) -> Archive:
    archive = get_archive(db, tenant_id, archive_id)
    if not archive.legal_hold:
        return archive

    archive.legal_hold = False
    archive.legal_hold_released_at = utcnow()
    add_audit_entry(db, archive, ArchiveAuditAction.LEGAL_HOLD_RELEASED, released_by, {"reason": reason})
    db.commit()

    logger.info(f"Legal hold released on archive {archive_id}", extra={"event": "legal_hold_released", "archive_id": archive_id})
    ctx.audit("archive_legal_hold_released", {
        "archiveId": archive_id,
        "tenantId": tenant_id,
        "releasedBy": released_by,
        "reason": reason,
    })
    return archive


def schedule_archive_deletion(
    ctx,
    db: Session,
    tenant_id: str,
    archive_id: str,
    delete_after: datetime,
    scheduled_by: str,
    approval_required: bool = False,
) -> Archive:
    """Set (or move) an archive's deletion date."""
    archive = get_archive(db, tenant_id, archive_id)
    archive.delete_after = delete_after
    archive.deletion_approval_required = approval_required
    add_audit_entry(db, archive, ArchiveAuditAction.DELETION_SCHEDULED, scheduled_by, {
        "deleteAfter": delete_after.isoformat(),
        "approvalRequired": approval_required,
    })
    db.commit()

    ctx.audit("archive_deletion_scheduled", {
        "archiveId": archive_id,
        "tenantId": tenant_id,
        "deleteAfter": delete_after.isoformat(),
        "scheduledBy": scheduled_by,
    })
    return archive


def delete_expired_archives(
    ctx,
    db: Session,
    tenant_id: str | None = None,
    now: datetime | None = None,
    deleted_by: str | None = None,
) -> ExpiredArchivesResult:
    """
    Delete archives whose scheduled deletion date has passed.

    Blob, data key and row are removed per archive; a failure on one archive
    is recorded and the rest continue. Archives still awaiting deletion
    approval are skipped.
    """
    now = now or utcnow()
    actor = deleted_by or RetentionDefaults.SYSTEM_ACTOR
    result = ExpiredArchivesResult()

    query = db.query(Archive).filter(
        Archive.delete_after.is_not(None),
        Archive.delete_after <= now,
        Archive.legal_hold.is_(False),
        Archive.status.in_(SETTLED_STATUSES),
    )
    if tenant_id:
        query = query.filter(Archive.tenant_id == tenant_id)

    for archive in query.all():
        archive_id = archive.archive_id
        summary = {
            "archiveId": archive_id,
            "tenantId": archive.tenant_id,
            "dataType": archive.data_type,
            "recordCount": archive.record_count,
        }
        if not is_due_for_deletion(archive, now):
            continue
        if archive.deletion_approval_required:
            logger.info(f"Archive {archive_id} due for deletion but awaiting approval")
            result.skipped.append(archive_id)
            continue

        try:
            key_id = archive.encryption_key_id
            _delete_blobs(ctx, archive.storage_path, archive.cloud_key)
            db.delete(archive)
            db.flush()
            if key_id:
                db.query(ArchiveKey).filter(ArchiveKey.key_id == key_id).delete()
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to delete expired archive {archive_id}: {e}", exc_info=True)
            result.failed.append({"archive_id": archive_id, "error": str(e)})
            continue

        result.deleted.append(archive_id)
        logger.info(f"Deleted expired archive {archive_id}", extra={"event": "archive_deleted", "archive_id": archive_id})
        ctx.audit("archive_deleted", {
            **summary,
            "action": ArchiveAuditAction.DELETED.value,
            "deletedBy": actor,
        })

    return result


def reconcile_incomplete_archives(
    ctx,
    db: Session,
    older_than_minutes: int | None = None,
    now: datetime | None = None,
) -> ReconcileResult:
    """
    Remove archives stuck in 'creating' and blobs no row references.

    Only 'creating' rows older than the threshold are touched, so an
    archive being written right now is left alone.
    """
    now = now or utcnow()
    minutes = older_than_minutes if older_than_minutes is not None else ctx.settings.ARCHIVE_RECONCILE_AFTER_MINUTES
    threshold = now - timedelta(minutes=minutes)
    result = ReconcileResult()

    stale = (
        db.query(Archive)
        .filter(Archive.status == ArchiveStatus.CREATING.value, Archive.created_at < threshold)
        .all()
    )
    for archive in stale:
        try:
            _delete_blobs(ctx, archive.storage_path, archive.storage_path if ctx.cloud_storage else None)
            key_id = archive.encryption_key_id
            db.delete(archive)
            db.flush()
            if key_id:
                db.query(ArchiveKey).filter(ArchiveKey.key_id == key_id).delete()
            db.commit()
            result.stale_archives_removed += 1
        except Exception as e:
            db.rollback()
            result.errors.append(f"{archive.archive_id}: {e}")
            logger.error(f"Failed to reconcile archive {archive.archive_id}: {e}", exc_info=True)

    known_keys = {path for (path,) in db.query(Archive.storage_path).all()}
    for key in ctx.storage.list_keys():
        if key in known_keys:
            continue
        try:
            ctx.storage.delete(key)
            result.orphaned_blobs_removed += 1
            logger.warning(f"Removed orphaned archive blob {key} ({PurePosixPath(key).stem})")
        except (OSError, ValueError) as e:
            result.errors.append(f"{key}: {e}")

    if result.stale_archives_removed or result.orphaned_blobs_removed:
        logger.info(
            f"Reconciled archives: {result.stale_archives_removed} stale, "
            f"{result.orphaned_blobs_removed} orphaned blobs",
            extra={"event": "archives_reconciled"},
        )
    return result
