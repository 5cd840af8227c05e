# tests/unit/test_retention/test_statistics.py
"""Unit tests for policy statistics and the tenant retention report."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from tests.conftest import NOW


def _fresh_policy():
    from archivist.models import RetentionPolicy

    policy = MagicMock(spec=RetentionPolicy)
    policy.total_processed = 0
    policy.total_archived = 0
    policy.total_deleted = 0
    policy.success_count = 0
    policy.failure_count = 0
    policy.avg_processing_time_ms = 0.0
    policy.last_processed_count = 0
    policy.last_error = None
    return policy


class TestUpdateStatistics:
    """Tests for update_statistics()."""

    def test_counters_accumulate(self):
        from archivist.services.retention.statistics import RunOutcome, update_statistics

        policy = _fresh_policy()

        update_statistics(policy, RunOutcome(processed=5, archived=3, deleted=2, processing_time_ms=100))
        update_statistics(policy, RunOutcome(processed=4, archived=0, deleted=4, processing_time_ms=300))

        assert policy.total_processed == 9
        assert policy.total_archived == 3
        assert policy.total_deleted == 6
        assert policy.last_processed_count == 4
        assert policy.success_count == 2

    def test_average_is_running_mean_of_successes(self):
        from archivist.services.retention.statistics import RunOutcome, update_statistics

        policy = _fresh_policy()

        for ms in (100, 200, 600):
            update_statistics(policy, RunOutcome(processing_time_ms=ms))

        assert policy.avg_processing_time_ms == pytest.approx(300)

    def test_failure_does_not_move_average(self):
        """Failures count and set last_error; the average ignores them."""
        from archivist.services.retention.statistics import RunOutcome, update_statistics

        policy = _fresh_policy()
        update_statistics(policy, RunOutcome(processing_time_ms=100))

        update_statistics(policy, RunOutcome(processing_time_ms=9000, error="store unavailable"))

        assert policy.avg_processing_time_ms == pytest.approx(100)
        assert policy.failure_count == 1
        assert policy.success_count == 1
        assert policy.last_error == "store unavailable"

    def test_success_clears_last_error(self):
        from archivist.services.retention.statistics import RunOutcome, update_statistics

        policy = _fresh_policy()
        policy.last_error = "previous failure"

        update_statistics(policy, RunOutcome(processing_time_ms=10))

        assert policy.last_error is None


class TestGetRetentionStatistics:
    """Tests for get_retention_statistics()."""

    def test_empty_tenant(self, ctx, db):
        from archivist.services.retention.statistics import get_retention_statistics

        stats = get_retention_statistics(db, "tenant-a")

        assert stats["total_policies"] == 0
        assert stats["total_archives"] == 0
        assert stats["archives_by_data_type"] == {}
        assert stats["recent_executions"] == []

    def test_aggregates_policies_and_archives(self, ctx, db, make_policy, add_records):
        from archivist.models import AuditLogRecord
        from archivist.services.retention.archive_service import archive_records
        from archivist.services.retention.policy_service import set_policy_status
        from archivist.services.retention.statistics import get_retention_statistics

        audit = make_policy(retention=(365, "days"), archive_after=(30, "days"))
        reports = make_policy(data_type="reports", retention=(6, "months"))
        make_policy(tenant_id="tenant-b", data_type="reports")
        set_policy_status(ctx, db, "tenant-a", reports.id, "inactive")
        add_records(AuditLogRecord, "tenant-a", [40, 50, 60])
        archive = archive_records(ctx, db, audit, now=NOW)

        stats = get_retention_statistics(db, "tenant-a")

        assert stats["total_policies"] == 2
        assert stats["active_policies"] == 1
        assert stats["policies_by_data_type"] == {"audit_logs": 1, "reports": 1}
        assert stats["total_archives"] == 1
        assert stats["total_archived_records"] == 3
        assert stats["total_archive_size"] == archive.compressed_size
        assert stats["archives_by_data_type"]["audit_logs"]["count"] == 1
        assert stats["estimated_retention_days"] == {str(audit.id): 365, str(reports.id): 180}

    def test_excludes_creating_archives(self, ctx, db):
        from archivist.models import Archive
        from archivist.services.retention.statistics import get_retention_statistics

        db.add(Archive(
            archive_id="ARC-HALF-00000000",
            tenant_id="tenant-a",
            source_collection="audit_log_records",
            data_type="audit_logs",
            record_count=10,
            storage_path="tenant-a/audit_logs/ARC-HALF-00000000.json",
            original_size=100,
            compressed_size=50,
            checksum="0" * 64,
            status="creating",
        ))
        db.commit()

        assert get_retention_statistics(db, "tenant-a")["total_archives"] == 0

    def test_recent_executions_newest_first_and_capped(self, ctx, db, make_policy):
        from archivist.models import DataType
        from archivist.services.retention.statistics import get_retention_statistics

        data_types = [dt.value for dt in DataType][:12]
        for offset, data_type in enumerate(data_types):
            policy = make_policy(data_type=data_type)
            policy.last_executed = NOW - timedelta(hours=offset)
        db.commit()

        recent = get_retention_statistics(db, "tenant-a")["recent_executions"]

        assert len(recent) == 10
        assert recent[0]["data_type"] == data_types[0]
        assert recent[0]["status"] == "success"
        assert [r["last_executed"] for r in recent] == sorted((r["last_executed"] for r in recent), reverse=True)
