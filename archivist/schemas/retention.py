# archivist/schemas/retention.py
"""
Schemas for retention policy configuration.

Policies store each settings block as a JSON document; these models are the
single place that shape is validated.
"""

import re

from pydantic import BaseModel, Field, field_validator

from archivist.models import (
    ArchiveLocation,
    DataType,
    ExecutionFrequency,
    PolicyStatus,
    TimeUnit,
)

SCHEDULE_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


# -----------------------------------------------------------------------------
# Settings blocks
# -----------------------------------------------------------------------------


class RetentionPeriod(BaseModel):
    """A {value, unit} duration."""

    value: int = Field(..., gt=0, description="Number of units; must be positive")
    unit: TimeUnit = Field(TimeUnit.DAYS, description="days, months or years")


class CompressionSettings(BaseModel):
    enabled: bool = True
    algorithm: str = Field("gzip", description="Only gzip is supported")
    level: int = Field(6, ge=1, le=9)

    @field_validator("algorithm")
    @classmethod
    def only_gzip(cls, v: str) -> str:
        if v != "gzip":
            raise ValueError(f"Unsupported compression algorithm: {v}")
        return v


class EncryptionSettings(BaseModel):
    enabled: bool = False
    algorithm: str = Field("fernet", description="Fernet (AES-128-CBC + HMAC-SHA256)")


class ArchivalSettings(BaseModel):
    enabled: bool = False
    archive_after: RetentionPeriod | None = Field(
        None, description="Records older than this (but younger than the retention period) are archived"
    )
    location: ArchiveLocation = ArchiveLocation.LOCAL
    compression: CompressionSettings = Field(default_factory=CompressionSettings)
    encryption: EncryptionSettings = Field(default_factory=EncryptionSettings)
    delete_archives_after: RetentionPeriod | None = Field(
        None, description="Schedules deletion of produced archives this long after creation"
    )


class DeletionSettings(BaseModel):
    soft_delete: bool = True
    hard_delete_after: RetentionPeriod | None = Field(
        None, description="Soft-deleted records older than this are removed permanently"
    )
    require_approval: bool = False
    approvers: list[str] = Field(default_factory=list)


class LegalRequirements(BaseModel):
    min_retention: RetentionPeriod | None = None
    max_retention: RetentionPeriod | None = None
    jurisdiction: str | None = None
    framework: str | None = Field(None, description="e.g. GDPR, HIPAA, SOX")


class ExecutionSchedule(BaseModel):
    frequency: ExecutionFrequency = ExecutionFrequency.DAILY
    time: str = Field("02:00", description="HH:MM (UTC)")

    @field_validator("time")
    @classmethod
    def valid_time(cls, v: str) -> str:
        if not SCHEDULE_TIME_RE.match(v):
            raise ValueError(f"Invalid schedule time '{v}', expected HH:MM")
        return v

    @property
    def hour(self) -> int:
        return int(self.time.split(":")[0])

    @property
    def minute(self) -> int:
        return int(self.time.split(":")[1])


# -----------------------------------------------------------------------------
# Policy payloads
# -----------------------------------------------------------------------------


class RetentionPolicyCreate(BaseModel):
    """Payload for creating a retention policy."""

    policy_name: str = Field(..., min_length=3, max_length=255)
    description: str | None = None
    data_type: DataType
    retention_period: RetentionPeriod
    archival_settings: ArchivalSettings = Field(default_factory=ArchivalSettings)
    deletion_settings: DeletionSettings = Field(default_factory=DeletionSettings)
    legal_requirements: LegalRequirements = Field(default_factory=LegalRequirements)
    execution_schedule: ExecutionSchedule = Field(default_factory=ExecutionSchedule)
    status: PolicyStatus = PolicyStatus.ACTIVE


class RetentionPolicyUpdate(BaseModel):
    """Partial update; only explicitly set fields are applied."""

    policy_name: str | None = Field(None, min_length=3, max_length=255)
    description: str | None = None
    retention_period: RetentionPeriod | None = None
    archival_settings: ArchivalSettings | None = None
    deletion_settings: DeletionSettings | None = None
    legal_requirements: LegalRequirements | None = None
    execution_schedule: ExecutionSchedule | None = None
    status: PolicyStatus | None = None
    reason: str | None = Field(None, description="Recorded in the configuration history")
