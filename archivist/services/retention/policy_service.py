# archivist/services/retention/policy_service.py
"""
Retention policy management service.

Handles CRUD for tenant retention policies (one per tenant and data type),
configuration history on every update, and the approval requests that gate
hard deletion.
"""

import logging
import uuid
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy.orm import Session

from archivist.database import utcnow
from archivist.models import (
    ApprovalStatus,
    DeletionApproval,
    PolicyConfigurationChange,
    PolicyStatus,
    RetentionPolicy,
)
from archivist.schemas.retention import (
    ArchivalSettings,
    DeletionSettings,
    ExecutionSchedule,
    LegalRequirements,
    RetentionPeriod,
    RetentionPolicyCreate,
    RetentionPolicyUpdate,
)
from archivist.services.retention.errors import ApprovalError, ConfigurationError, NotFoundError
from archivist.services.retention.cutoff import calculate_cutoff
from archivist.services.retention.schedule import calculate_next_execution

logger = logging.getLogger(__name__)

SETTINGS_FIELDS = (
    "retention_period",
    "archival_settings",
    "deletion_settings",
    "legal_requirements",
    "execution_schedule",
)
TRACKED_FIELDS = ("policy_name", "description", "status") + SETTINGS_FIELDS


def _parse(model, data, what: str):
    """Validate a payload, surfacing pydantic errors as ConfigurationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {what}: {e}")


def validate_policy_config(ctx, data_type: str, config: dict, now: datetime | None = None) -> None:
    """
    Check a complete policy configuration against the registry, the legal
    bounds and the collaborators the context can offer.

    Raises:
        ConfigurationError: first violated rule
    """
    now = now or utcnow()
    ctx.registry.resolve(data_type)

    retention = _parse(RetentionPeriod, config["retention_period"], "retention period")
    archival = _parse(ArchivalSettings, config.get("archival_settings"), "archival settings")
    deletion = _parse(DeletionSettings, config.get("deletion_settings"), "deletion settings")
    legal = _parse(LegalRequirements, config.get("legal_requirements"), "legal requirements")
    _parse(ExecutionSchedule, config.get("execution_schedule"), "execution schedule")

    # A later cutoff means a shorter period; compare from a common instant
    retention_cutoff = calculate_cutoff(retention, now)
    if legal.min_retention and retention_cutoff > calculate_cutoff(legal.min_retention, now):
        raise ConfigurationError("Retention period is shorter than the legal minimum retention")
    if legal.max_retention and retention_cutoff < calculate_cutoff(legal.max_retention, now):
        raise ConfigurationError("Retention period exceeds the legal maximum retention")

    if archival.enabled:
        if archival.archive_after is None:
            raise ConfigurationError("Archival enabled without archive_after")
        if calculate_cutoff(archival.archive_after, now) <= retention_cutoff:
            raise ConfigurationError("archive_after must be shorter than the retention period")
        if archival.encryption.enabled and not ctx.key_vault.enabled:
            raise ConfigurationError("Archive encryption requires ARCHIVE_MASTER_KEY")
        if archival.location.value != "local" and ctx.cloud_storage is None:
            raise ConfigurationError(f"Archive location '{archival.location.value}' requires S3_BUCKET")

    if deletion.require_approval and not deletion.approvers:
        raise ConfigurationError("Deletion approval required but no approvers configured")


def as_uuid(value, what: str) -> uuid.UUID:
    """Coerce an id; malformed ids are reported as not found."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFoundError(f"{what} {value} not found")


def _policy_config(policy: RetentionPolicy) -> dict:
    return {name: getattr(policy, name) for name in SETTINGS_FIELDS}


def get_policy(db: Session, tenant_id: str, policy_id) -> RetentionPolicy:
    """
    Get a tenant's policy.

    Raises:
        NotFoundError: no such policy for this tenant
    """
    policy_id = as_uuid(policy_id, "Retention policy")
    policy = (
        db.query(RetentionPolicy)
        .filter(RetentionPolicy.id == policy_id, RetentionPolicy.tenant_id == tenant_id)
        .first()
    )
    if not policy:
        raise NotFoundError(f"Retention policy {policy_id} not found")
    return policy


def list_policies(
    db: Session,
    tenant_id: str,
    status: str | None = None,
    data_type: str | None = None,
) -> list[RetentionPolicy]:
    """List a tenant's policies, optionally filtered."""
    query = db.query(RetentionPolicy).filter(RetentionPolicy.tenant_id == tenant_id)
    if status:
        query = query.filter(RetentionPolicy.status == PolicyStatus(status).value)
    if data_type:
        query = query.filter(RetentionPolicy.data_type == data_type)
    return query.order_by(RetentionPolicy.created_at).all()


def create_policy(
    ctx,
    db: Session,
    tenant_id: str,
    data: RetentionPolicyCreate | dict,
    created_by: str | None = None,
) -> RetentionPolicy:
    """
    Create a retention policy for a tenant and data type.

    Returns:
        The created RetentionPolicy

    Raises:
        ConfigurationError: invalid configuration or a policy already
            exists for this tenant and data type
    """
    payload = _parse(RetentionPolicyCreate, data, "retention policy")
    document = payload.model_dump(mode="json")
    data_type = document["data_type"]

    validate_policy_config(ctx, data_type, document)

    existing = (
        db.query(RetentionPolicy)
        .filter(RetentionPolicy.tenant_id == tenant_id, RetentionPolicy.data_type == data_type)
        .first()
    )
    if existing:
        raise ConfigurationError(f"Tenant {tenant_id} already has a retention policy for {data_type}")

    policy = RetentionPolicy(
        tenant_id=tenant_id,
        policy_name=document["policy_name"],
        description=document["description"],
        data_type=data_type,
        status=document["status"],
        next_execution=calculate_next_execution(document["execution_schedule"]),
        created_by=created_by,
        updated_by=created_by,
        **{name: document[name] for name in SETTINGS_FIELDS},
    )
    db.add(policy)
    db.commit()
    db.refresh(policy)

    logger.info(
        f"Created retention policy {policy.policy_name} for {tenant_id}/{data_type}",
        extra={"event": "policy_created", "policy_id": str(policy.id), "data_type": data_type},
    )
    ctx.audit("retention_policy_created", {
        "policyId": str(policy.id),
        "tenantId": tenant_id,
        "dataType": data_type,
        "retentionPeriod": policy.retention_period,
        "createdBy": created_by,
    })
    return policy


def update_policy(
    ctx,
    db: Session,
    tenant_id: str,
    policy_id,
    data: RetentionPolicyUpdate | dict,
    updated_by: str | None = None,
) -> RetentionPolicy:
    """
    Update a policy and snapshot the diff into its configuration history.

    Only fields explicitly provided are applied. An update that changes
    nothing records no history.
    """
    policy = get_policy(db, tenant_id, policy_id)
    payload = _parse(RetentionPolicyUpdate, data, "policy update")
    updates = payload.model_dump(mode="json", exclude_unset=True)
    reason = updates.pop("reason", None)

    changes = {}
    for name in TRACKED_FIELDS:
        if name in updates and updates[name] is not None and updates[name] != getattr(policy, name):
            changes[name] = {"from": getattr(policy, name), "to": updates[name]}

    if not changes:
        return policy

    merged = _policy_config(policy)
    merged.update({k: v["to"] for k, v in changes.items() if k in SETTINGS_FIELDS})
    validate_policy_config(ctx, policy.data_type, merged)

    for name, change in changes.items():
        setattr(policy, name, change["to"])
    if "execution_schedule" in changes:
        policy.next_execution = calculate_next_execution(policy.execution_schedule)
    policy.updated_by = updated_by

    db.add(PolicyConfigurationChange(
        policy_id=policy.id,
        changed_by=updated_by,
        changes=changes,
        reason=reason,
    ))
    db.commit()
    db.refresh(policy)

    logger.info(
        f"Updated retention policy {policy.policy_name}: {', '.join(sorted(changes))}",
        extra={"event": "policy_updated", "policy_id": str(policy.id), "data_type": policy.data_type},
    )
    ctx.audit("retention_policy_updated", {
        "policyId": str(policy.id),
        "tenantId": tenant_id,
        "changes": changes,
        "reason": reason,
        "updatedBy": updated_by,
    })
    return policy


def set_policy_status(
    ctx,
    db: Session,
    tenant_id: str,
    policy_id,
    status: PolicyStatus | str,
    changed_by: str | None = None,
    reason: str | None = None,
) -> RetentionPolicy:
    """Activate, deactivate or suspend a policy (recorded like any update)."""
    return update_policy(
        ctx,
        db,
        tenant_id,
        policy_id,
        RetentionPolicyUpdate(status=PolicyStatus(status), reason=reason),
        updated_by=changed_by,
    )


# -----------------------------------------------------------------------------
# Deletion approvals
# -----------------------------------------------------------------------------


def find_usable_approval(db: Session, policy: RetentionPolicy) -> DeletionApproval | None:
    """Approved request not yet consumed by a run."""
    return (
        db.query(DeletionApproval)
        .filter(
            DeletionApproval.policy_id == policy.id,
            DeletionApproval.status == ApprovalStatus.APPROVED.value,
        )
        .order_by(DeletionApproval.decided_at)
        .first()
    )


def request_deletion_approval(db: Session, policy: RetentionPolicy, notes: str | None = None) -> DeletionApproval:
    """Open a pending request, or return the one already pending. Caller commits."""
    pending = (
        db.query(DeletionApproval)
        .filter(
            DeletionApproval.policy_id == policy.id,
            DeletionApproval.status == ApprovalStatus.PENDING.value,
        )
        .first()
    )
    if pending:
        return pending

    approval = DeletionApproval(
        policy_id=policy.id,
        tenant_id=policy.tenant_id,
        status=ApprovalStatus.PENDING.value,
        notes=notes,
    )
    db.add(approval)
    db.flush()

    logger.info(
        f"Hard deletion for policy {policy.policy_name} awaits approval",
        extra={"event": "deletion_approval_requested", "policy_id": str(policy.id)},
    )
    return approval


def _decide(
    db: Session,
    tenant_id: str,
    approval_id,
    decided_by: str,
    status: ApprovalStatus,
    notes: str | None,
) -> DeletionApproval:
    approval_id = as_uuid(approval_id, "Deletion approval")
    approval = (
        db.query(DeletionApproval)
        .filter(DeletionApproval.id == approval_id, DeletionApproval.tenant_id == tenant_id)
        .first()
    )
    if not approval:
        raise NotFoundError(f"Deletion approval {approval_id} not found")
    if approval.status != ApprovalStatus.PENDING.value:
        raise ApprovalError(f"Deletion approval {approval_id} is already {approval.status}")

    policy = get_policy(db, tenant_id, approval.policy_id)
    approvers = (policy.deletion_settings or {}).get("approvers", [])
    if decided_by not in approvers:
        raise ApprovalError(f"{decided_by} is not an approver for policy {policy.policy_name}")

    approval.status = status.value
    approval.decided_by = decided_by
    approval.decided_at = utcnow()
    if notes:
        approval.notes = notes
    db.commit()
    db.refresh(approval)

    logger.info(
        f"Deletion approval {approval_id} {status.value} by {decided_by}",
        extra={"event": f"deletion_{status.value}", "policy_id": str(policy.id)},
    )
    return approval


def approve_deletion(
    ctx, db: Session, tenant_id: str, approval_id, approver: str, notes: str | None = None
) -> DeletionApproval:
    """
    Approve a pending hard-deletion request.

    Raises:
        NotFoundError: unknown request
        ApprovalError: approver not listed on the policy, or request not pending
    """
    approval = _decide(db, tenant_id, approval_id, approver, ApprovalStatus.APPROVED, notes)
    ctx.audit("deletion_approved", {
        "approvalId": str(approval.id),
        "policyId": str(approval.policy_id),
        "tenantId": tenant_id,
        "approvedBy": approver,
    })
    return approval


def reject_deletion(
    ctx, db: Session, tenant_id: str, approval_id, approver: str, notes: str | None = None
) -> DeletionApproval:
    approval = _decide(db, tenant_id, approval_id, approver, ApprovalStatus.REJECTED, notes)
    ctx.audit("deletion_rejected", {
        "approvalId": str(approval.id),
        "policyId": str(approval.policy_id),
        "tenantId": tenant_id,
        "rejectedBy": approver,
    })
    return approval
