# archivist/services/retention/__init__.py
"""
Retention management services for tenant data lifecycle.

Per (tenant, dataType) policy:
- Archive window: older than archive_after, younger than the retention period
- Deletion: older than the retention period (soft, then optionally hard)

Services:
- policy_service: Retention policy CRUD, history and deletion approvals
- archive_service: Archive pipeline and archive management
- restore_service: Reinsertion of archived records
- purge_service: Deletion engine
- scheduler: Due-policy execution and the asyncio driver
- audit_chain: Tamper-evident audit log
"""

from archivist.services.retention.archive_service import (
    ArchiveResult,
    archive_records,
    delete_expired_archives,
    get_archive,
    list_archives,
    reconcile_incomplete_archives,
    release_legal_hold,
    schedule_archive_deletion,
    set_legal_hold,
    verify_archive,
)
from archivist.services.retention.audit_chain import (
    ChainCategory,
    ChainVerificationReport,
    ImmutableAuditChain,
)
from archivist.services.retention.context import RetentionContext
from archivist.services.retention.cutoff import calculate_cutoff, period_in_days
from archivist.services.retention.errors import (
    ApprovalError,
    ConfigurationError,
    ExecutionError,
    IntegrityError,
    NotFoundError,
    RestoreError,
    RetentionError,
)
from archivist.services.retention.policy_service import (
    approve_deletion,
    create_policy,
    get_policy,
    list_policies,
    reject_deletion,
    set_policy_status,
    update_policy,
)
from archivist.services.retention.purge_service import (
    PurgeResult,
    delete_expired_records,
    is_due_for_deletion,
)
from archivist.services.retention.registry import CollectionRegistry, SqlAlchemyEntityStore
from archivist.services.retention.restore_service import RestoreResult, restore_archive
from archivist.services.retention.schedule import calculate_next_execution, is_due_for_execution
from archivist.services.retention.scheduler import (
    RetentionScheduler,
    execute_retention_policies,
    execute_single_policy,
)
from archivist.services.retention.statistics import get_retention_statistics, update_statistics

__all__ = [
    # Context
    "RetentionContext",
    "CollectionRegistry",
    "SqlAlchemyEntityStore",
    # Errors
    "RetentionError",
    "ConfigurationError",
    "NotFoundError",
    "IntegrityError",
    "RestoreError",
    "ApprovalError",
    "ExecutionError",
    # Cutoffs and schedule
    "calculate_cutoff",
    "period_in_days",
    "calculate_next_execution",
    "is_due_for_execution",
    # Policy
    "create_policy",
    "update_policy",
    "get_policy",
    "list_policies",
    "set_policy_status",
    "approve_deletion",
    "reject_deletion",
    # Archive
    "ArchiveResult",
    "archive_records",
    "get_archive",
    "list_archives",
    "verify_archive",
    "set_legal_hold",
    "release_legal_hold",
    "schedule_archive_deletion",
    "delete_expired_archives",
    "reconcile_incomplete_archives",
    # Restore
    "RestoreResult",
    "restore_archive",
    # Purge
    "PurgeResult",
    "delete_expired_records",
    "is_due_for_deletion",
    # Execution
    "execute_single_policy",
    "execute_retention_policies",
    "RetentionScheduler",
    # Statistics
    "update_statistics",
    "get_retention_statistics",
    # Audit chain
    "ChainCategory",
    "ChainVerificationReport",
    "ImmutableAuditChain",
]
