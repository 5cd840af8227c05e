# tests/unit/test_retention/test_leases.py
"""Tests for per-(tenant, dataType) execution leases."""

from datetime import timedelta

from tests.conftest import NOW


class TestAcquireLease:
    def test_first_holder_wins(self, db):
        from archivist.services.retention.leases import acquire_lease

        assert acquire_lease(db, "tenant-a", "audit_logs", "worker-1", 600, now=NOW) is True
        assert acquire_lease(db, "tenant-a", "audit_logs", "worker-2", 600, now=NOW) is False

    def test_holder_can_renew(self, db):
        from archivist.models import RetentionLease
        from archivist.services.retention.leases import acquire_lease

        acquire_lease(db, "tenant-a", "audit_logs", "worker-1", 600, now=NOW)
        assert acquire_lease(db, "tenant-a", "audit_logs", "worker-1", 600, now=NOW + timedelta(minutes=5))

        lease = db.get(RetentionLease, ("tenant-a", "audit_logs"))
        assert lease.expires_at == NOW + timedelta(minutes=15)

    def test_expired_lease_taken_over(self, db):
        from archivist.models import RetentionLease
        from archivist.services.retention.leases import acquire_lease

        acquire_lease(db, "tenant-a", "audit_logs", "worker-1", 60, now=NOW)

        assert acquire_lease(db, "tenant-a", "audit_logs", "worker-2", 60, now=NOW + timedelta(minutes=2))
        assert db.get(RetentionLease, ("tenant-a", "audit_logs")).holder == "worker-2"

    def test_pairs_are_independent(self, db):
        from archivist.services.retention.leases import acquire_lease

        assert acquire_lease(db, "tenant-a", "audit_logs", "worker-1", 600, now=NOW)
        assert acquire_lease(db, "tenant-a", "system_logs", "worker-2", 600, now=NOW)
        assert acquire_lease(db, "tenant-b", "audit_logs", "worker-3", 600, now=NOW)


class TestReleaseLease:
    def test_only_holder_releases(self, db):
        from archivist.models import RetentionLease
        from archivist.services.retention.leases import acquire_lease, release_lease

        acquire_lease(db, "tenant-a", "audit_logs", "worker-1", 600, now=NOW)

        assert release_lease(db, "tenant-a", "audit_logs", "worker-2") is False
        assert release_lease(db, "tenant-a", "audit_logs", "worker-1") is True
        assert db.query(RetentionLease).count() == 0

    def test_release_missing_lease(self, db):
        from archivist.services.retention.leases import release_lease

        assert release_lease(db, "tenant-a", "audit_logs", "worker-1") is False


class TestCompetingWorkers:
    """Two sessions whose identity maps hold an out-of-date lease row."""

    def test_stale_read_cannot_take_over_fresh_lease(self, ctx):
        """A worker that saw the lease expired loses once another worker has taken it."""
        from archivist.models import RetentionLease
        from archivist.services.retention.leases import acquire_lease

        seed, worker_a, worker_b = ctx.session_factory(), ctx.session_factory(), ctx.session_factory()
        try:
            acquire_lease(seed, "tenant-a", "audit_logs", "crashed-worker", 60, now=NOW - timedelta(hours=1))
            assert worker_b.get(RetentionLease, ("tenant-a", "audit_logs")).holder == "crashed-worker"
            worker_b.commit()

            assert acquire_lease(worker_a, "tenant-a", "audit_logs", "worker-a", 600, now=NOW) is True
            assert acquire_lease(worker_b, "tenant-a", "audit_logs", "worker-b", 600, now=NOW) is False

            check = ctx.session_factory()
            assert check.get(RetentionLease, ("tenant-a", "audit_logs")).holder == "worker-a"
            check.close()
        finally:
            for session in (seed, worker_a, worker_b):
                session.close()

    def test_stale_holder_cannot_release_new_owner(self, ctx):
        """Release after losing the lease leaves the new owner's row alone."""
        from archivist.models import RetentionLease
        from archivist.services.retention.leases import acquire_lease, release_lease

        worker_a, worker_b = ctx.session_factory(), ctx.session_factory()
        try:
            acquire_lease(worker_b, "tenant-a", "audit_logs", "worker-b", 60, now=NOW - timedelta(hours=1))
            assert acquire_lease(worker_a, "tenant-a", "audit_logs", "worker-a", 600, now=NOW) is True

            assert release_lease(worker_b, "tenant-a", "audit_logs", "worker-b") is False

            check = ctx.session_factory()
            assert check.get(RetentionLease, ("tenant-a", "audit_logs")).holder == "worker-a"
            check.close()
        finally:
            worker_a.close()
            worker_b.close()
