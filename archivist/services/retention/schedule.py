# archivist/services/retention/schedule.py
"""Execution schedule arithmetic."""

from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from archivist.database import utcnow
from archivist.models import ExecutionFrequency, RetentionPolicy
from archivist.schemas.retention import ExecutionSchedule


def calculate_next_execution(schedule, now: datetime | None = None) -> datetime:
    """
    Next run time for a schedule.

    Today's HH:MM if still ahead of now, otherwise advanced by one period
    (daily +1 day, weekly +7 days, monthly +1 calendar month).
    """
    if not isinstance(schedule, ExecutionSchedule):
        schedule = ExecutionSchedule.model_validate(schedule or {})
    now = now or utcnow()

    candidate = now.replace(hour=schedule.hour, minute=schedule.minute, second=0, microsecond=0)
    if candidate > now:
        return candidate

    if schedule.frequency == ExecutionFrequency.DAILY:
        return candidate + timedelta(days=1)
    if schedule.frequency == ExecutionFrequency.WEEKLY:
        return candidate + timedelta(days=7)
    return candidate + relativedelta(months=1)


def is_due_for_execution(policy: RetentionPolicy, now: datetime | None = None) -> bool:
    """Due when next_execution is unset or has passed."""
    if policy.next_execution is None:
        return True
    return (now or utcnow()) >= policy.next_execution
