# tests/unit/test_retention/test_scheduler.py
"""Unit tests for schedule arithmetic and retention policy execution."""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from tests.conftest import NOW


class TestCalculateNextExecution:
    """Tests for calculate_next_execution()."""

    def test_later_today(self):
        from archivist.services.retention.schedule import calculate_next_execution

        now = datetime(2026, 6, 15, 1, 0)

        assert calculate_next_execution({"frequency": "daily", "time": "02:00"}, now) == datetime(2026, 6, 15, 2, 0)

    def test_daily_after_time_passed(self):
        from archivist.services.retention.schedule import calculate_next_execution

        now = datetime(2026, 6, 15, 2, 0)

        assert calculate_next_execution({"frequency": "daily", "time": "02:00"}, now) == datetime(2026, 6, 16, 2, 0)

    def test_weekly(self):
        from archivist.services.retention.schedule import calculate_next_execution

        now = datetime(2026, 6, 15, 12, 0)

        assert calculate_next_execution({"frequency": "weekly", "time": "02:00"}, now) == datetime(2026, 6, 22, 2, 0)

    def test_monthly_uses_calendar(self):
        from archivist.services.retention.schedule import calculate_next_execution

        now = datetime(2026, 1, 31, 12, 0)

        assert calculate_next_execution({"frequency": "monthly", "time": "02:00"}, now) == datetime(2026, 2, 28, 2, 0)

    def test_defaults_to_daily_at_two(self):
        from archivist.services.retention.schedule import calculate_next_execution

        now = datetime(2026, 6, 15, 12, 0)

        assert calculate_next_execution(None, now) == datetime(2026, 6, 16, 2, 0)


class TestIsDueForExecution:
    def test_due_rules(self):
        from unittest.mock import MagicMock

        from archivist.models import RetentionPolicy
        from archivist.services.retention.schedule import is_due_for_execution

        policy = MagicMock(spec=RetentionPolicy)
        policy.next_execution = None
        assert is_due_for_execution(policy, NOW) is True

        policy.next_execution = NOW
        assert is_due_for_execution(policy, NOW) is True

        policy.next_execution = NOW + timedelta(minutes=1)
        assert is_due_for_execution(policy, NOW) is False


class TestExecuteSinglePolicy:
    """Tests for execute_single_policy()."""

    def test_archives_then_deletes_and_records_statistics(self, ctx, db, make_policy, add_records):
        from archivist.models import AuditLogRecord
        from archivist.services.retention.scheduler import execute_single_policy

        policy = make_policy(retention=(365, "days"), archive_after=(30, "days"))
        add_records(AuditLogRecord, "tenant-a", [10, 40, 50, 400])

        result = execute_single_policy(ctx, db, policy, now=NOW, holder="worker-1")

        assert result.success is True
        assert result.archived == 2
        assert result.deleted == 1
        assert result.processed == 3
        assert result.archive_id is not None
        assert policy.total_processed == 3
        assert policy.total_archived == 2
        assert policy.total_deleted == 1
        assert policy.success_count == 1
        assert policy.last_executed == NOW
        assert policy.next_execution == datetime(2026, 6, 16, 2, 0)

    def test_releases_lease(self, ctx, db, make_policy):
        from archivist.models import RetentionLease
        from archivist.services.retention.scheduler import execute_single_policy

        policy = make_policy()

        execute_single_policy(ctx, db, policy, now=NOW, holder="worker-1")

        assert db.query(RetentionLease).count() == 0

    def test_busy_lease_fails_run(self, ctx, db, make_policy, add_records):
        """A live lease held elsewhere stops the run before any record is touched."""
        from archivist.models import AuditLogRecord
        from archivist.services.retention.errors import ExecutionError
        from archivist.services.retention.leases import acquire_lease
        from archivist.services.retention.scheduler import execute_single_policy

        policy = make_policy(retention=(30, "days"))
        record = add_records(AuditLogRecord, "tenant-a", [45])[0]
        assert acquire_lease(db, "tenant-a", "audit_logs", "worker-2", 600, now=NOW)

        with pytest.raises(ExecutionError, match="held by another run"):
            execute_single_policy(ctx, db, policy, now=NOW, holder="worker-1")

        db.refresh(record)
        assert record.deleted_at is None
        assert policy.failure_count == 1

    def test_expired_lease_can_be_taken_over(self, ctx, db, make_policy):
        from archivist.services.retention.leases import acquire_lease
        from archivist.services.retention.scheduler import execute_single_policy

        policy = make_policy()
        acquire_lease(db, "tenant-a", "audit_logs", "crashed-worker", 60, now=NOW - timedelta(hours=1))

        result = execute_single_policy(ctx, db, policy, now=NOW, holder="worker-1")

        assert result.success is True

    def test_failure_recorded_in_statistics(self, ctx, db, make_policy):
        from archivist.models import RetentionLease
        from archivist.services.retention.errors import ExecutionError
        from archivist.services.retention.scheduler import execute_single_policy

        policy = make_policy()

        with patch(
            "archivist.services.retention.scheduler.delete_expired_records",
            side_effect=RuntimeError("store unavailable"),
        ):
            with pytest.raises(ExecutionError) as exc_info:
                execute_single_policy(ctx, db, policy, now=NOW, holder="worker-1")

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert policy.failure_count == 1
        assert policy.success_count == 0
        assert policy.last_error == "store unavailable"
        assert policy.last_executed == NOW
        assert db.query(RetentionLease).count() == 0

    def test_failure_after_archive_keeps_archive_counts(self, ctx, db, make_policy, add_records):
        """Archives committed before a deletion failure still count in the statistics."""
        from archivist.models import Archive, AuditLogRecord
        from archivist.services.retention.errors import ExecutionError
        from archivist.services.retention.scheduler import execute_single_policy

        policy = make_policy(retention=(30, "days"), archive_after=(7, "days"))
        add_records(AuditLogRecord, "tenant-a", [10, 12])

        with patch(
            "archivist.services.retention.scheduler.delete_expired_records",
            side_effect=RuntimeError("store unavailable"),
        ):
            with pytest.raises(ExecutionError):
                execute_single_policy(ctx, db, policy, now=NOW, holder="worker-1")

        assert db.query(Archive).one().record_count == 2
        assert policy.total_archived == 2
        assert policy.total_processed == 2
        assert policy.total_deleted == 0
        assert policy.failure_count == 1

    def test_failure_schedules_next_slot(self, ctx, db, make_policy):
        """A failing policy waits for its next scheduled time instead of rerunning every pass."""
        from archivist.services.retention.errors import ExecutionError
        from archivist.services.retention.schedule import is_due_for_execution
        from archivist.services.retention.scheduler import execute_single_policy

        policy = make_policy()

        with patch(
            "archivist.services.retention.scheduler.delete_expired_records",
            side_effect=RuntimeError("store unavailable"),
        ):
            with pytest.raises(ExecutionError):
                execute_single_policy(ctx, db, policy, now=NOW, holder="worker-1")

        assert policy.next_execution == datetime(2026, 6, 16, 2, 0)
        assert is_due_for_execution(policy, NOW) is False


class TestExecuteRetentionPolicies:
    """Tests for execute_retention_policies()."""

    def test_runs_only_due_active_policies(self, ctx, db, make_policy):
        from archivist.services.retention.policy_service import set_policy_status
        from archivist.services.retention.scheduler import execute_retention_policies

        due = make_policy(data_type="audit_logs")
        later = make_policy(data_type="reports")
        paused = make_policy(data_type="system_logs")
        set_policy_status(ctx, db, "tenant-a", paused.id, "inactive")
        due.next_execution = NOW - timedelta(minutes=1)
        later.next_execution = NOW + timedelta(hours=1)
        paused.next_execution = None
        db.commit()

        summary = execute_retention_policies(ctx, now=NOW)

        assert summary.policies_due == 1
        assert [r.data_type for r in summary.results] == ["audit_logs"]

    def test_failing_policy_does_not_stop_others(self, ctx, db, make_policy, add_records):
        from archivist.models import RetentionPolicy, SystemLogRecord
        from archivist.services.retention.scheduler import execute_retention_policies

        broken = make_policy(data_type="audit_logs")
        healthy = make_policy(data_type="system_logs")
        add_records(SystemLogRecord, "tenant-a", [45])
        for policy in (broken, healthy):
            policy.next_execution = None
        db.commit()

        original = ctx.registry.resolve

        def resolve(data_type):
            if str(getattr(data_type, "value", data_type)) == "audit_logs":
                raise RuntimeError("collection offline")
            return original(data_type)

        with patch.object(ctx.registry, "resolve", side_effect=resolve):
            summary = execute_retention_policies(ctx, now=NOW)

        assert summary.succeeded == 1
        assert summary.failed == 1
        db.expire_all()
        assert db.get(RetentionPolicy, broken.id).failure_count == 1
        assert db.get(RetentionPolicy, healthy.id).total_deleted == 1

    def test_tenant_filter(self, ctx, db, make_policy):
        from archivist.services.retention.scheduler import execute_retention_policies

        a = make_policy(tenant_id="tenant-a")
        b = make_policy(tenant_id="tenant-b")
        a.next_execution = b.next_execution = None
        db.commit()

        summary = execute_retention_policies(ctx, tenant_id="tenant-b", now=NOW)

        assert [r.tenant_id for r in summary.results] == ["tenant-b"]


class TestRetentionScheduler:
    """Tests for the asyncio driver."""

    def test_run_once_runs_policies_archives_and_chains(self, ctx, db, make_policy):
        from archivist.services.retention.scheduler import RetentionScheduler

        policy = make_policy()
        policy.next_execution = None
        db.commit()
        scheduler = RetentionScheduler(ctx, interval_seconds=1)

        outcome = asyncio.run(scheduler.run_once())

        assert outcome["policies"].succeeded == 1
        assert outcome["expired_archives"].deleted == []
        assert outcome["chains"]["COMPLIANCE_EVENTS"].valid is True
        assert scheduler.last_chain_verification is not None

    def test_chain_verification_respects_interval(self, ctx):
        from archivist.services.retention.scheduler import RetentionScheduler

        scheduler = RetentionScheduler(ctx, interval_seconds=1, verify_interval_hours=24)

        first = asyncio.run(scheduler.run_once())
        second = asyncio.run(scheduler.run_once())

        assert first["chains"] is not None
        assert second["chains"] is None

    def test_compromised_chain_logged_at_error(self, ctx, caplog):
        import json
        import logging

        from archivist.services.retention.scheduler import RetentionScheduler

        ctx.audit("retention_policy_created", {"policyId": "p1"})
        path = ctx.audit_chain.log_path("compliance-events")
        entry = json.loads(path.read_text())
        entry["data"]["policyId"] = "p2"
        path.write_text(json.dumps(entry) + "\n")

        scheduler = RetentionScheduler(ctx, interval_seconds=1)
        with caplog.at_level(logging.ERROR, logger="archivist.services.retention.scheduler"):
            reports = asyncio.run(scheduler.verify_chains())

        assert reports["COMPLIANCE_EVENTS"].valid is False
        assert any("compromised" in r.getMessage() for r in caplog.records)

    def test_run_forever_stops(self, ctx):
        from archivist.services.retention.scheduler import RetentionScheduler

        scheduler = RetentionScheduler(ctx, interval_seconds=60)

        async def run():
            task = asyncio.create_task(scheduler.run_forever())
            await asyncio.sleep(0.2)
            scheduler.stop()
            await asyncio.wait_for(task, timeout=5)

        asyncio.run(run())

        assert scheduler.last_chain_verification is not None
