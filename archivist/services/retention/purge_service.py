# archivist/services/retention/purge_service.py
"""
Purge service: deletion of records past their retention period.

Handles:
- Soft delete (tombstone columns) or hard delete per policy
- Second-phase hard delete of records soft-deleted longer than hard_delete_after
- Approval gate for hard deletes when the policy requires it
- Legal hold protection (held records are never selected)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from archivist.constants import RetentionDefaults
from archivist.database import utcnow
from archivist.models import ApprovalStatus, Archive, RetentionPolicy
from archivist.schemas.retention import DeletionSettings
from archivist.services.retention.cutoff import calculate_cutoff
from archivist.services.retention.policy_service import find_usable_approval, request_deletion_approval

logger = logging.getLogger(__name__)


@dataclass
class PurgeResult:
    """Result of a purge operation."""

    success: bool
    records_soft_deleted: int = 0
    records_hard_deleted: int = 0
    awaiting_approval: bool = False
    approval_id: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def deleted(self) -> int:
        return self.records_soft_deleted + self.records_hard_deleted


def is_due_for_deletion(archive: Archive, now: datetime | None = None) -> bool:
    """Not on legal hold, deletion scheduled, and the date has been reached."""
    if archive.legal_hold:
        return False
    if archive.delete_after is None:
        return False
    return (now or utcnow()) >= archive.delete_after


def _hard_delete_allowed(db: Session, policy: RetentionPolicy, deletion: DeletionSettings, result: PurgeResult) -> bool:
    """
    Consume an approved request, or open a pending one and refuse.
    """
    if not deletion.require_approval:
        return True

    approval = find_usable_approval(db, policy)
    if approval is not None:
        approval.status = ApprovalStatus.CONSUMED.value
        approval.consumed_at = utcnow()
        return True

    pending = request_deletion_approval(db, policy, notes="Hard deletion requested by retention run")
    result.awaiting_approval = True
    result.approval_id = str(pending.id)
    return False


def delete_expired_records(
    ctx,
    db: Session,
    policy: RetentionPolicy,
    now: datetime | None = None,
) -> PurgeResult:
    """
    Delete the policy's records older than its retention cutoff.

    Only the policy's tenant and data type are touched. Commits.
    """
    now = now or utcnow()
    deletion = DeletionSettings.model_validate(policy.deletion_settings or {})
    store = ctx.registry.resolve(policy.data_type)
    retention_cutoff = calculate_cutoff(policy.retention_period, now)
    result = PurgeResult(success=True)

    expired = store.query_older_than(db, policy.tenant_id, retention_cutoff)

    if deletion.soft_delete:
        result.records_soft_deleted = store.soft_delete(
            db,
            expired,
            deleted_by=RetentionDefaults.DELETED_BY,
            reason=f"Retention policy: {policy.policy_name}",
            now=now,
        )
        if deletion.hard_delete_after:
            hard_cutoff = calculate_cutoff(deletion.hard_delete_after, now)
            tombstoned = store.query_soft_deleted_before(db, policy.tenant_id, hard_cutoff)
            if tombstoned and _hard_delete_allowed(db, policy, deletion, result):
                result.records_hard_deleted = store.hard_delete(db, tombstoned)
    elif expired and _hard_delete_allowed(db, policy, deletion, result):
        result.records_hard_deleted = store.hard_delete(db, expired)

    db.commit()

    if result.awaiting_approval:
        logger.warning(
            f"Hard deletion for policy {policy.policy_name} skipped: awaiting approval {result.approval_id}",
            extra={"event": "deletion_awaiting_approval", "policy_id": str(policy.id)},
        )

    if result.deleted:
        logger.info(
            f"Deleted {result.deleted} {policy.data_type} records for {policy.tenant_id} "
            f"(soft={result.records_soft_deleted}, hard={result.records_hard_deleted})",
            extra={
                "event": "records_deleted",
                "policy_id": str(policy.id),
                "data_type": policy.data_type,
                "records_deleted": result.deleted,
            },
        )
        ctx.audit("retention_records_deleted", {
            "policyId": str(policy.id),
            "tenantId": policy.tenant_id,
            "dataType": policy.data_type,
            "softDeleted": result.records_soft_deleted,
            "hardDeleted": result.records_hard_deleted,
            "cutoff": retention_cutoff.isoformat(),
        })

    return result
