from archivist.schemas.retention import (
    ArchivalSettings,
    CompressionSettings,
    DeletionSettings,
    EncryptionSettings,
    ExecutionSchedule,
    LegalRequirements,
    RetentionPeriod,
    RetentionPolicyCreate,
    RetentionPolicyUpdate,
)

__all__ = [
    "ArchivalSettings",
    "CompressionSettings",
    "DeletionSettings",
    "EncryptionSettings",
    "ExecutionSchedule",
    "LegalRequirements",
    "RetentionPeriod",
    "RetentionPolicyCreate",
    "RetentionPolicyUpdate",
]
