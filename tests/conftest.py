# tests/conftest.py
"""
Pytest configuration and fixtures.

Database fixtures use in-memory SQLite (StaticPool, one shared connection).
Commit the test session before calling anything that opens its own session
(execute_retention_policies, RetentionScheduler).
"""

import os
from datetime import datetime, timedelta

import pytest
from cryptography.fernet import Fernet

# Set test environment
os.environ.setdefault("TESTING", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

# Fixed reference instant for age arithmetic
NOW = datetime(2026, 6, 15, 12, 0, 0)

TEST_SECRET = "test-immutable-secret"


def days_ago(days: int, now: datetime = NOW) -> datetime:
    return now - timedelta(days=days)


@pytest.fixture
def settings(tmp_path):
    from archivist.config import Settings

    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite:///:memory:",
        ARCHIVE_BASE_PATH=str(tmp_path / "archives"),
        IMMUTABLE_LOG_PATH=str(tmp_path / "immutable"),
        PLATFORM_IMMUTABLE_SECRET=TEST_SECRET,
        ARCHIVE_MASTER_KEY=Fernet.generate_key().decode(),
        LOG_JSON=False,
    )


@pytest.fixture
def ctx(settings):
    """RetentionContext over a fresh in-memory database and tmp storage."""
    from archivist.database import create_db_engine, create_session_factory, init_db
    from archivist.services.retention.audit_chain import ImmutableAuditChain
    from archivist.services.retention.context import RetentionContext
    from archivist.services.retention.keys import ArchiveKeyVault
    from archivist.services.retention.registry import CollectionRegistry
    from archivist.storage.local_provider import LocalStorageProvider

    engine = create_db_engine(settings.DATABASE_URL)
    init_db(engine)

    context = RetentionContext(
        session_factory=create_session_factory(engine),
        registry=CollectionRegistry.default(),
        storage=LocalStorageProvider(base_path=settings.ARCHIVE_BASE_PATH),
        key_vault=ArchiveKeyVault(settings.ARCHIVE_MASTER_KEY),
        audit_chain=ImmutableAuditChain(settings.IMMUTABLE_LOG_PATH, settings.PLATFORM_IMMUTABLE_SECRET),
        settings=settings,
    )
    yield context
    engine.dispose()


@pytest.fixture
def db(ctx):
    session = ctx.session_factory()
    yield session
    session.close()


@pytest.fixture
def make_policy(ctx, db):
    """Create a policy through the policy service."""
    from archivist.services.retention.policy_service import create_policy

    def _make(
        tenant_id="tenant-a",
        data_type="audit_logs",
        retention=(30, "days"),
        archive_after=None,
        soft_delete=True,
        **overrides,
    ):
        data = {
            "policy_name": overrides.pop("policy_name", f"{data_type} retention"),
            "data_type": data_type,
            "retention_period": {"value": retention[0], "unit": retention[1]},
            "deletion_settings": {"soft_delete": soft_delete},
        }
        if archive_after is not None:
            data["archival_settings"] = {
                "enabled": True,
                "archive_after": {"value": archive_after[0], "unit": archive_after[1]},
            }
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        return create_policy(ctx, db, tenant_id, data, created_by="admin")

    return _make


@pytest.fixture
def add_records(db):
    """Insert records of a model aged the given number of days before NOW."""

    def _add(model, tenant_id, ages, date_field="timestamp", **fields):
        records = []
        for age in ages:
            record = model(tenant_id=tenant_id, payload={"age_days": age}, **{date_field: days_ago(age)}, **fields)
            db.add(record)
            records.append(record)
        db.commit()
        return records

    return _add
