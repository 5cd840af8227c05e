# archivist/services/retention/scheduler.py
"""
Retention policy execution.

execute_retention_policies() runs every active, due policy sequentially and
keeps going past a failing one. RetentionScheduler drives it from asyncio,
offloading the blocking database and blob work to worker threads.

Daily flow per policy:
1. Take the (tenant, dataType) lease
2. Archive the archive window
3. Delete records past the retention cutoff
4. Fold the outcome into the policy statistics and schedule the next run
"""

import asyncio
import functools
import logging
import os
import socket
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from archivist.database import utcnow
from archivist.logging_config import log_stage
from archivist.models import PolicyStatus, RetentionPolicy
from archivist.services.retention.archive_service import (
    archive_records,
    delete_expired_archives,
    reconcile_incomplete_archives,
)
from archivist.services.retention.errors import ExecutionError
from archivist.services.retention.leases import acquire_lease, release_lease
from archivist.services.retention.purge_service import delete_expired_records
from archivist.services.retention.schedule import calculate_next_execution, is_due_for_execution
from archivist.services.retention.statistics import RunOutcome, update_statistics

logger = logging.getLogger(__name__)


def default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


@dataclass
class PolicyRunResult:
    """Outcome of one policy run."""

    policy_id: str
    tenant_id: str
    data_type: str
    success: bool
    processed: int = 0
    archived: int = 0
    deleted: int = 0
    archive_id: str | None = None
    awaiting_approval: bool = False
    duration_ms: float = 0.0
    error: str | None = None


@dataclass
class RetentionRunSummary:
    policies_due: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[PolicyRunResult] = field(default_factory=list)


def execute_single_policy(
    ctx,
    db: Session,
    policy: RetentionPolicy,
    now: datetime | None = None,
    holder: str | None = None,
) -> PolicyRunResult:
    """
    Run one policy and record its statistics.

    Raises:
        ExecutionError: the run failed (statistics already record the failure)
    """
    now = now or utcnow()
    holder = holder or default_holder()
    policy_id, tenant_id, data_type = str(policy.id), policy.tenant_id, policy.data_type
    result = PolicyRunResult(policy_id=policy_id, tenant_id=tenant_id, data_type=data_type, success=False)
    start = time.perf_counter()

    try:
        with log_stage(
            "retention_policy_run",
            trace_id=uuid.uuid4().hex,
            tenant_id=tenant_id,
            policy_id=policy_id,
            data_type=data_type,
        ) as metrics:
            if not acquire_lease(db, tenant_id, data_type, holder, ctx.settings.RETENTION_LEASE_SECONDS, now):
                raise ExecutionError(f"Lease for {tenant_id}/{data_type} is held by another run", policy_id)
            try:
                # The archive commits on its own; keep its counts even if deletion fails
                archived = archive_records(ctx, db, policy, now=now)
                result.archived = archived.records_archived
                result.archive_id = archived.archive_id
                result.processed = result.archived

                purged = delete_expired_records(ctx, db, policy, now=now)
                result.deleted = purged.deleted
                result.awaiting_approval = purged.awaiting_approval
                result.processed = result.archived + result.deleted
            except Exception:
                db.rollback()
                raise
            finally:
                release_lease(db, tenant_id, data_type, holder)

            metrics.update({
                "records_processed": result.processed,
                "records_archived": result.archived,
                "records_deleted": result.deleted,
            })
    except Exception as e:
        db.rollback()
        result.duration_ms = (time.perf_counter() - start) * 1000
        result.error = str(e)
        update_statistics(policy, RunOutcome(
            processed=result.processed,
            archived=result.archived,
            deleted=result.deleted,
            processing_time_ms=result.duration_ms,
            error=result.error,
        ))
        policy.last_executed = now
        # Retry at the next scheduled slot rather than on every scheduler pass
        policy.next_execution = calculate_next_execution(policy.execution_schedule, now)
        db.commit()
        if isinstance(e, ExecutionError):
            raise
        raise ExecutionError(f"Retention policy {policy_id} failed: {e}", policy_id, cause=e) from e

    result.success = True
    result.duration_ms = (time.perf_counter() - start) * 1000
    update_statistics(policy, RunOutcome(
        processed=result.processed,
        archived=result.archived,
        deleted=result.deleted,
        processing_time_ms=result.duration_ms,
    ))
    policy.last_executed = now
    policy.next_execution = calculate_next_execution(policy.execution_schedule, now)
    db.commit()
    return result


def find_due_policies(db: Session, tenant_id: str | None = None, now: datetime | None = None) -> list[RetentionPolicy]:
    """Active policies whose next execution has arrived."""
    now = now or utcnow()
    query = db.query(RetentionPolicy).filter(RetentionPolicy.status == PolicyStatus.ACTIVE.value)
    if tenant_id:
        query = query.filter(RetentionPolicy.tenant_id == tenant_id)
    policies = query.order_by(RetentionPolicy.next_execution, RetentionPolicy.created_at).all()
    return [p for p in policies if is_due_for_execution(p, now)]


def execute_retention_policies(
    ctx,
    tenant_id: str | None = None,
    now: datetime | None = None,
    holder: str | None = None,
) -> RetentionRunSummary:
    """
    Run all due policies one after another.

    A failing policy is recorded in its statistics and the summary; the rest
    still run.
    """
    now = now or utcnow()
    holder = holder or default_holder()
    summary = RetentionRunSummary()

    db = ctx.session_factory()
    try:
        due = find_due_policies(db, tenant_id, now)
        summary.policies_due = len(due)
        logger.info(f"Retention run: {len(due)} due policies", extra={"event": "retention_run_start"})

        for policy in due:
            try:
                result = execute_single_policy(ctx, db, policy, now=now, holder=holder)
                summary.succeeded += 1
            except ExecutionError as e:
                result = PolicyRunResult(
                    policy_id=str(policy.id),
                    tenant_id=policy.tenant_id,
                    data_type=policy.data_type,
                    success=False,
                    error=str(e),
                )
                summary.failed += 1
            summary.results.append(result)
    finally:
        db.close()

    logger.info(
        f"Retention run finished: {summary.succeeded} succeeded, {summary.failed} failed",
        extra={
            "event": "retention_run_complete",
            "records_processed": sum(r.processed for r in summary.results),
        },
    )
    return summary


class RetentionScheduler:
    """
    Background driver for retention runs and chain verification.

    Usage:
        scheduler = RetentionScheduler(ctx)
        task = asyncio.create_task(scheduler.run_forever())
        ...
        scheduler.stop()
        await task
    """

    def __init__(
        self,
        ctx,
        interval_seconds: int | None = None,
        verify_interval_hours: int | None = None,
    ):
        self.ctx = ctx
        self.interval_seconds = interval_seconds or ctx.settings.RETENTION_SCHEDULER_INTERVAL_SECONDS
        self.verify_interval = timedelta(hours=verify_interval_hours or ctx.settings.CHAIN_VERIFY_INTERVAL_HOURS)
        self.holder = default_holder()
        self.last_chain_verification: datetime | None = None
        self._stop_event = asyncio.Event()

    async def _offload(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    def _with_session(self, func, *args, **kwargs):
        db = self.ctx.session_factory()
        try:
            return func(self.ctx, db, *args, **kwargs)
        finally:
            db.close()

    async def start(self):
        """Reconcile archives left half-created by a previous process."""
        return await self._offload(self._with_session, reconcile_incomplete_archives)

    async def run_once(self, tenant_id: str | None = None) -> dict:
        """One pass: due policies, expired archives, then chain verification if due."""
        summary = await self._offload(execute_retention_policies, self.ctx, tenant_id, None, self.holder)
        expired = await self._offload(self._with_session, delete_expired_archives, tenant_id)

        chains = None
        now = utcnow()
        if self.last_chain_verification is None or now - self.last_chain_verification >= self.verify_interval:
            chains = await self.verify_chains()

        return {"policies": summary, "expired_archives": expired, "chains": chains}

    async def verify_chains(self) -> dict:
        """Verify every immutable chain; compromised categories are logged at ERROR."""
        reports = await self._offload(self.ctx.audit_chain.verify_all)
        self.last_chain_verification = utcnow()

        for name, report in reports.items():
            if not report.valid:
                logger.error(
                    f"Immutable chain {report.category} compromised: "
                    f"{report.invalid_entries} invalid of {report.total_entries}",
                    extra={
                        "event": "chain_compromised",
                        "category": report.category,
                        "integrity_score": report.integrity_score,
                    },
                )
        return reports

    async def run_forever(self):
        await self.start()
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Retention scheduler pass failed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Retention scheduler stopped")

    def stop(self):
        self._stop_event.set()
