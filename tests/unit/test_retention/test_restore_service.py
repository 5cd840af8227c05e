# tests/unit/test_retention/test_restore_service.py
"""Unit tests for restore service."""

import uuid

import pytest

from tests.conftest import NOW, days_ago


@pytest.fixture
def archival_policy(make_policy):
    return make_policy(retention=(365, "days"), archive_after=(30, "days"))


def _write_archive(ctx, db, records, tenant_id="tenant-a", archive_id="ARC-MANUAL-00000000"):
    """Store a hand-built archive blob and row for restore edge cases."""
    from archivist.models import Archive
    from archivist.services.retention.codec import encode_archive

    encoded = encode_archive({"archiveId": archive_id}, records)
    key = f"{tenant_id}/audit_logs/{archive_id}.json"
    ctx.storage.put(key, encoded.content)
    db.add(Archive(
        archive_id=archive_id,
        tenant_id=tenant_id,
        source_collection="audit_log_records",
        data_type="audit_logs",
        record_count=len(records),
        storage_path=key,
        original_size=encoded.original_size,
        compressed_size=encoded.compressed_size,
        checksum=encoded.checksum,
        compression_enabled=True,
        status="completed",
    ))
    db.commit()
    return archive_id


def _record(tenant_id="tenant-a", **fields):
    data = {
        "id": str(uuid.uuid4()),
        "tenant_id": tenant_id,
        "payload": {"n": 1},
        "legal_hold": False,
        "timestamp": days_ago(40).isoformat(),
        "archived_at": NOW.isoformat(),
        "archive_reference": "ARC-MANUAL-00000000",
    }
    data.update(fields)
    return data


class TestRestoreArchive:
    """Tests for restore_archive()."""

    def test_restores_archived_records(self, ctx, db, archival_policy, add_records):
        """Restored records match the archive minus id and lifecycle fields."""
        from archivist.models import AuditLogRecord
        from archivist.services.retention.archive_service import archive_records
        from archivist.services.retention.restore_service import restore_archive

        originals = add_records(AuditLogRecord, "tenant-a", [40, 50], action="login")
        original_ids = {r.id for r in originals}
        archive_id = archive_records(ctx, db, archival_policy, now=NOW).archive_id

        result = restore_archive(ctx, db, "tenant-a", archive_id, restored_by="admin")

        assert result.status == "success"
        assert result.records_restored == 2
        assert result.total_records == 2
        assert result.failed == []

        restored = db.query(AuditLogRecord).filter(AuditLogRecord.id.notin_(original_ids)).all()
        assert len(restored) == 2
        for record in restored:
            assert record.tenant_id == "tenant-a"
            assert record.action == "login"
            assert record.archived_at is None
            assert record.archive_reference is None
            assert record.deleted_at is None
        assert sorted(r.timestamp for r in restored) == [days_ago(50), days_ago(40)]

    def test_records_history_audit_and_access(self, ctx, db, archival_policy, add_records):
        from archivist.models import AuditLogRecord
        from archivist.services.retention.archive_service import archive_records, get_archive
        from archivist.services.retention.restore_service import restore_archive

        add_records(AuditLogRecord, "tenant-a", [40])
        archive_id = archive_records(ctx, db, archival_policy, now=NOW).archive_id

        restore_archive(
            ctx, db, "tenant-a", archive_id, restored_by="admin", ip_address="10.0.0.1", user_agent="cli"
        )
        archive = get_archive(db, "tenant-a", archive_id)

        history = archive.restoration_history
        assert len(history) == 1
        assert history[0].notes == "Restored 1 of 1 records"
        assert history[0].target_location == "original_collection"
        assert archive.audit_trail[-1].action == "restored"
        assert (archive.access_log[-1].access_type, archive.access_log[-1].ip_address) == ("restore", "10.0.0.1")
        events = list(ctx.audit_chain.read_entries("compliance-events"))
        assert events[-1]["eventType"] == "archive_restored"

    def test_encrypted_archive_restores(self, ctx, db, make_policy, add_records):
        from archivist.models import AuditLogRecord
        from archivist.services.retention.archive_service import archive_records
        from archivist.services.retention.restore_service import restore_archive

        policy = make_policy(
            retention=(365, "days"),
            archive_after=(30, "days"),
            archival_settings={"encryption": {"enabled": True}},
        )
        add_records(AuditLogRecord, "tenant-a", [40])
        archive_id = archive_records(ctx, db, policy, now=NOW).archive_id

        result = restore_archive(ctx, db, "tenant-a", archive_id)

        assert result.records_restored == 1

    def test_partial_restore(self, ctx, db):
        """One bad record is reported; the others are restored."""
        from archivist.models import AuditLogRecord
        from archivist.services.retention.restore_service import restore_archive

        archive_id = _write_archive(ctx, db, [
            _record(action="ok-1"),
            _record(action="bad", unexpected_column="x"),
            _record(action="ok-2"),
        ])

        result = restore_archive(ctx, db, "tenant-a", archive_id)

        assert result.status == "partial"
        assert result.records_restored == 2
        assert result.total_records == 3
        assert len(result.failed) == 1
        assert "Unknown field" in result.failed[0]["error"]
        assert sorted(r.action for r in db.query(AuditLogRecord).all()) == ["ok-1", "ok-2"]

    def test_flush_failure_isolated_by_savepoint(self, ctx, db):
        """A record the database refuses fails alone without aborting the rest."""
        from archivist.models import AuditLogRecord
        from archivist.services.retention.restore_service import restore_archive

        archive_id = _write_archive(ctx, db, [
            _record(action="ok"),
            _record(action="bad-flag", legal_hold="maybe"),
        ])

        result = restore_archive(ctx, db, "tenant-a", archive_id)

        assert result.records_restored == 1
        assert result.failed[0]["record"]["action"] == "bad-flag"
        assert [r.action for r in db.query(AuditLogRecord).all()] == ["ok"]

    def test_foreign_tenant_record_rejected(self, ctx, db):
        from archivist.services.retention.restore_service import restore_archive

        archive_id = _write_archive(ctx, db, [_record(), _record(tenant_id="tenant-b")])

        result = restore_archive(ctx, db, "tenant-a", archive_id)

        assert result.records_restored == 1
        assert result.failed[0]["error"] == "record belongs to another tenant"

    def test_total_failure_raises_and_records_nothing(self, ctx, db):
        from archivist.models import ArchiveRestoration
        from archivist.services.retention.errors import RestoreError
        from archivist.services.retention.restore_service import restore_archive

        archive_id = _write_archive(ctx, db, [_record(bogus=1), _record(bogus=2)])

        with pytest.raises(RestoreError, match="No records restored"):
            restore_archive(ctx, db, "tenant-a", archive_id)

        assert db.query(ArchiveRestoration).count() == 0

    def test_not_restorable(self, ctx, db):
        from archivist.models import Archive
        from archivist.services.retention.errors import RestoreError
        from archivist.services.retention.restore_service import restore_archive

        archive_id = _write_archive(ctx, db, [_record()])
        db.query(Archive).filter(Archive.archive_id == archive_id).update({"can_restore": False})
        db.commit()

        with pytest.raises(RestoreError, match="cannot be restored"):
            restore_archive(ctx, db, "tenant-a", archive_id)

    def test_other_tenant_cannot_restore(self, ctx, db):
        from archivist.services.retention.errors import NotFoundError
        from archivist.services.retention.restore_service import restore_archive

        archive_id = _write_archive(ctx, db, [_record()])

        with pytest.raises(NotFoundError):
            restore_archive(ctx, db, "tenant-b", archive_id)

    def test_tampered_blob_refused(self, ctx, db):
        from archivist.models import AuditLogRecord
        from archivist.services.retention.errors import IntegrityError
        from archivist.services.retention.restore_service import restore_archive

        archive_id = _write_archive(ctx, db, [_record()])
        (ctx.storage.base_path / f"tenant-a/audit_logs/{archive_id}.json").write_bytes(b"tampered")

        with pytest.raises(IntegrityError, match="checksum mismatch"):
            restore_archive(ctx, db, "tenant-a", archive_id)

        assert db.query(AuditLogRecord).count() == 0

    def test_falls_back_to_cloud_replica(self, ctx, db):
        """A missing primary blob is read from the cloud replica."""
        from unittest.mock import MagicMock

        from archivist.models import Archive
        from archivist.services.retention.restore_service import restore_archive

        archive_id = _write_archive(ctx, db, [_record()])
        archive = db.query(Archive).filter(Archive.archive_id == archive_id).one()
        content = ctx.storage.get(archive.storage_path)
        ctx.storage.delete(archive.storage_path)
        archive.cloud_key = archive.storage_path
        db.commit()

        ctx.cloud_storage = MagicMock()
        ctx.cloud_storage.get.return_value = content

        result = restore_archive(ctx, db, "tenant-a", archive_id)

        assert result.records_restored == 1
        ctx.cloud_storage.get.assert_called_once_with(archive.storage_path)
