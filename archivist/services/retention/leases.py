# archivist/services/retention/leases.py
"""
Execution leases per (tenant, dataType).

A policy run holds the lease for its pair so a second process cannot
archive or delete the same records at the same time. Expired leases can be
taken over.

Takeover and release are single conditional statements, so the database
decides the winner; a row read earlier in the session is never trusted.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError as SAIntegrityError
from sqlalchemy.orm import Session

from archivist.database import utcnow
from archivist.models import RetentionLease

logger = logging.getLogger(__name__)


def _lease_key(tenant_id: str, data_type: str):
    return (RetentionLease.tenant_id == tenant_id, RetentionLease.data_type == data_type)


def _cached_lease(db: Session, tenant_id: str, data_type: str) -> RetentionLease | None:
    """The lease row this session already holds in memory, if any."""
    return db.identity_map.get(Session.identity_key(RetentionLease, (tenant_id, data_type)))


def acquire_lease(
    db: Session,
    tenant_id: str,
    data_type: str,
    holder: str,
    ttl_seconds: int,
    now: datetime | None = None,
) -> bool:
    """
    Try to claim the lease. Commits on success.

    Renewal by the same holder and takeover of an expired lease go through
    one UPDATE guarded on holder/expiry; only rowcount == 1 wins.

    Returns:
        True if holder now owns the lease
    """
    now = now or utcnow()
    expires_at = now + timedelta(seconds=ttl_seconds)

    claimed = db.execute(
        update(RetentionLease)
        .where(
            *_lease_key(tenant_id, data_type),
            or_(RetentionLease.holder == holder, RetentionLease.expires_at <= now),
        )
        .values(holder=holder, acquired_at=now, expires_at=expires_at)
        .execution_options(synchronize_session=False)
    ).rowcount
    if claimed == 1:
        db.commit()
        cached = _cached_lease(db, tenant_id, data_type)
        if cached is not None:
            db.expire(cached)
        return True

    current = db.execute(
        select(RetentionLease.holder, RetentionLease.expires_at).where(*_lease_key(tenant_id, data_type))
    ).first()
    if current is not None:
        db.rollback()
        logger.info(
            f"Lease for {tenant_id}/{data_type} held by {current.holder} until {current.expires_at}",
            extra={"event": "lease_busy", "data_type": data_type},
        )
        return False

    db.add(RetentionLease(
        tenant_id=tenant_id,
        data_type=data_type,
        holder=holder,
        acquired_at=now,
        expires_at=expires_at,
    ))
    try:
        db.commit()
    except SAIntegrityError:
        # Another process inserted the row first
        db.rollback()
        return False
    return True


def release_lease(db: Session, tenant_id: str, data_type: str, holder: str) -> bool:
    """Drop the lease if holder still owns it. Commits."""
    released = db.execute(
        delete(RetentionLease)
        .where(*_lease_key(tenant_id, data_type), RetentionLease.holder == holder)
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    cached = _cached_lease(db, tenant_id, data_type)
    if cached is not None:
        db.expunge(cached)
    return released == 1
