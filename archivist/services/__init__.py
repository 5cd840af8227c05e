# archivist/services/__init__.py
"""
Business logic services.
"""

from archivist.services.retention.audit_chain import (
    ChainCategory,
    ChainVerificationReport,
    ImmutableAuditChain,
)

__all__ = [
    "ChainCategory",
    "ChainVerificationReport",
    "ImmutableAuditChain",
]
