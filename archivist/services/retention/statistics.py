# archivist/services/retention/statistics.py
"""
Policy run statistics and the tenant retention report.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.orm import Session

from archivist.constants import RetentionDefaults
from archivist.models import Archive, ArchiveStatus, PolicyStatus, RetentionPolicy
from archivist.services.retention.cutoff import period_in_days

logger = logging.getLogger(__name__)


@dataclass
class RunOutcome:
    """What one policy run did."""

    processed: int = 0
    archived: int = 0
    deleted: int = 0
    processing_time_ms: float = 0.0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


def update_statistics(policy: RetentionPolicy, outcome: RunOutcome) -> RetentionPolicy:
    """
    Fold one run into the policy's running statistics.

    Counters add on every run. The average processing time only moves on
    success, weighted by the prior success count. Caller commits.
    """
    policy.total_processed = (policy.total_processed or 0) + outcome.processed
    policy.total_archived = (policy.total_archived or 0) + outcome.archived
    policy.total_deleted = (policy.total_deleted or 0) + outcome.deleted
    policy.last_processed_count = outcome.processed

    if outcome.success:
        n = policy.success_count or 0
        avg = policy.avg_processing_time_ms or 0.0
        policy.avg_processing_time_ms = (avg * n + outcome.processing_time_ms) / (n + 1)
        policy.success_count = n + 1
        policy.last_error = None
    else:
        policy.failure_count = (policy.failure_count or 0) + 1
        policy.last_error = outcome.error

    return policy


def get_retention_statistics(db: Session, tenant_id: str) -> dict:
    """Aggregate policy and archive figures for one tenant."""
    policies = db.query(RetentionPolicy).filter(RetentionPolicy.tenant_id == tenant_id).all()

    archive_rows = (
        db.query(
            Archive.data_type,
            func.count(Archive.id),
            func.coalesce(func.sum(Archive.record_count), 0),
            func.coalesce(func.sum(Archive.compressed_size), 0),
        )
        .filter(
            Archive.tenant_id == tenant_id,
            Archive.status.notin_([ArchiveStatus.CREATING.value, ArchiveStatus.FAILED.value]),
        )
        .group_by(Archive.data_type)
        .all()
    )

    archives_by_data_type = {
        data_type: {"count": count, "records": int(records), "size": int(size)}
        for data_type, count, records, size in archive_rows
    }

    policies_by_data_type: dict[str, int] = {}
    for policy in policies:
        policies_by_data_type[policy.data_type] = policies_by_data_type.get(policy.data_type, 0) + 1

    executed = sorted(
        (p for p in policies if p.last_executed is not None),
        key=lambda p: p.last_executed,
        reverse=True,
    )[:RetentionDefaults.RECENT_EXECUTIONS_LIMIT]

    return {
        "total_policies": len(policies),
        "active_policies": sum(1 for p in policies if p.status == PolicyStatus.ACTIVE.value),
        "total_archives": sum(v["count"] for v in archives_by_data_type.values()),
        "total_archived_records": sum(v["records"] for v in archives_by_data_type.values()),
        "total_archive_size": sum(v["size"] for v in archives_by_data_type.values()),
        "archives_by_data_type": archives_by_data_type,
        "policies_by_data_type": policies_by_data_type,
        "recent_executions": [
            {
                "policy_id": str(p.id),
                "policy_name": p.policy_name,
                "data_type": p.data_type,
                "last_executed": p.last_executed.isoformat(),
                "last_processed_count": p.last_processed_count,
                "status": "failed" if p.last_error else "success",
            }
            for p in executed
        ],
        "estimated_retention_days": {
            str(p.id): period_in_days(p.retention_period) for p in policies
        },
    }
