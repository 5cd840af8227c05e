# archivist/services/retention/errors.py
"""Exceptions raised by the retention services."""


class RetentionError(Exception):
    """Base class for retention, archival and audit chain failures."""


class ConfigurationError(RetentionError):
    """Unsupported unit, data type or category, or an invalid policy."""


class NotFoundError(RetentionError):
    """Missing policy or archive (or one owned by another tenant)."""


class IntegrityError(RetentionError):
    """Checksum or hash mismatch when loading stored data."""


class RestoreError(RetentionError):
    """Archive is not restorable, or no record could be restored."""


class ApprovalError(RetentionError):
    """Approval request cannot be decided by this user or in its state."""


class ExecutionError(RetentionError):
    """A single policy run failed."""

    def __init__(self, message: str, policy_id=None, cause: Exception | None = None):
        super().__init__(message)
        self.policy_id = policy_id
        self.cause = cause
