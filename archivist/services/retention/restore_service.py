# archivist/services/retention/restore_service.py
"""
Restore service: reinsert an archive's records into their live store.

Each record is inserted in its own savepoint so one bad record does not
abort the rest; the result lists what was restored and what failed.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from archivist.constants import ArchiveDefaults, RetentionDefaults
from archivist.models import AccessType, ArchiveAuditAction, ArchiveRestoration, RestorationStatus
from archivist.services.retention.archive_service import (
    SETTLED_STATUSES,
    add_audit_entry,
    get_archive,
    log_access,
)
from archivist.services.retention.codec import decode_archive
from archivist.services.retention.errors import IntegrityError, RestoreError
from archivist.services.retention.registry import RESTORE_STRIPPED_FIELDS

logger = logging.getLogger(__name__)


@dataclass
class RestoreResult:
    archive_id: str
    records_restored: int
    total_records: int
    status: str  # RestorationStatus
    restored: list[dict] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)  # {"record": ..., "error": ...}


def load_archive_document(ctx, db: Session, archive) -> dict:
    """
    Read, verify and decode an archive blob.

    Falls back to the cloud replica when the primary blob is missing.

    Raises:
        IntegrityError: blob missing, checksum mismatch or undecodable
    """
    content = ctx.storage.get(archive.storage_path)
    if content is None and archive.cloud_key and ctx.cloud_storage is not None:
        logger.warning(f"Archive {archive.archive_id} missing locally, reading cloud replica")
        content = ctx.cloud_storage.get(archive.cloud_key)
    if content is None:
        raise IntegrityError(f"Archive blob for {archive.archive_id} not found")

    data_key = None
    if archive.encryption_enabled:
        data_key = ctx.key_vault.resolve(db, archive.encryption_key_id)

    return decode_archive(
        content,
        expected_checksum=archive.checksum,
        compressed=archive.compression_enabled,
        data_key=data_key,
    )


def restore_archive(
    ctx,
    db: Session,
    tenant_id: str,
    archive_id: str,
    restored_by: str | None = None,
    target_location: str = ArchiveDefaults.RESTORE_TARGET,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> RestoreResult:
    """
    Restore an archive's records, continuing past individual failures.

    Returns:
        RestoreResult; status is 'partial' when any record failed

    Raises:
        NotFoundError: unknown archive for this tenant
        RestoreError: archive not restorable, or no record could be restored
        IntegrityError: blob missing or fails its checksum
    """
    archive = get_archive(db, tenant_id, archive_id)
    if not archive.can_restore:
        raise RestoreError(f"Archive {archive_id} cannot be restored")
    if archive.status not in SETTLED_STATUSES:
        raise RestoreError(f"Archive {archive_id} is {archive.status} and cannot be restored")

    document = load_archive_document(ctx, db, archive)
    store = ctx.registry.resolve(archive.data_type)
    records = document["records"]
    actor = restored_by or RetentionDefaults.SYSTEM_ACTOR

    restored, failed = [], []
    for record in records:
        if not isinstance(record, dict):
            failed.append({"record": record, "error": "record is not an object"})
            continue

        data = {k: v for k, v in record.items() if k not in RESTORE_STRIPPED_FIELDS}
        if data.get("tenant_id", tenant_id) != tenant_id:
            failed.append({"record": record, "error": "record belongs to another tenant"})
            continue
        data["tenant_id"] = tenant_id

        try:
            with db.begin_nested():
                inserted = store.insert(db, data)
            restored.append(store.serialize(inserted))
        except (SQLAlchemyError, ValueError, TypeError) as e:
            failed.append({"record": record, "error": str(e)})

    total = len(records)
    if total and not restored:
        db.rollback()
        logger.error(
            f"Restore of archive {archive_id} failed for all {total} records",
            extra={"event": "archive_restore_failed", "archive_id": archive_id},
        )
        raise RestoreError(f"No records restored from archive {archive_id}: {failed[0]['error']}")

    status = RestorationStatus.SUCCESS if len(restored) == total else RestorationStatus.PARTIAL
    notes = f"Restored {len(restored)} of {total} records"

    db.add(ArchiveRestoration(
        archive_pk=archive.id,
        restored_by=actor,
        target_location=target_location,
        status=status.value,
        records_restored=len(restored),
        total_records=total,
        notes=notes,
    ))
    add_audit_entry(db, archive, ArchiveAuditAction.RESTORED, actor, {
        "recordsRestored": len(restored),
        "totalRecords": total,
        "targetLocation": target_location,
    })
    log_access(db, archive, actor, AccessType.RESTORE, ip_address=ip_address, user_agent=user_agent)
    db.commit()

    logger.info(
        f"Archive {archive_id}: {notes}",
        extra={"event": "archive_restored", "archive_id": archive_id, "records_restored": len(restored)},
    )
    ctx.audit("archive_restored", {
        "archiveId": archive_id,
        "tenantId": tenant_id,
        "recordsRestored": len(restored),
        "totalRecords": total,
        "status": status.value,
        "restoredBy": actor,
    })

    return RestoreResult(
        archive_id=archive_id,
        records_restored=len(restored),
        total_records=total,
        status=status.value,
        restored=restored,
        failed=failed,
    )
