# archivist/services/retention/cutoff.py
"""
Cutoff arithmetic for retention periods.

calculate_cutoff() is the only function used to select records. Months and
years are subtracted on the calendar (Mar 31 - 1 month = Feb 28/29).
period_in_days() is a fixed-ratio estimate for reports and never drives
selection.
"""

from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from archivist.constants import RetentionDefaults
from archivist.database import utcnow
from archivist.models import TimeUnit
from archivist.services.retention.errors import ConfigurationError


def _parse_period(period) -> tuple[int, TimeUnit]:
    """Accept a RetentionPeriod model or a {"value", "unit"} dict."""
    if period is None:
        raise ConfigurationError("Retention period is required")

    if isinstance(period, dict):
        value, unit = period.get("value"), period.get("unit", TimeUnit.DAYS.value)
    else:
        value, unit = getattr(period, "value", None), getattr(period, "unit", None)

    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ConfigurationError(f"Retention period value must be a positive integer, got {value!r}")

    try:
        return value, TimeUnit(unit)
    except ValueError:
        raise ConfigurationError(f"Unsupported time unit: {unit}")


def calculate_cutoff(period, now: datetime | None = None) -> datetime:
    """
    Instant before which records are past the period.

    Args:
        period: {"value": int, "unit": "days"|"months"|"years"} or RetentionPeriod
        now: Reference instant (naive UTC); defaults to the current time
    """
    value, unit = _parse_period(period)
    now = now or utcnow()

    if unit == TimeUnit.DAYS:
        return now - timedelta(days=value)
    if unit == TimeUnit.MONTHS:
        return now - relativedelta(months=value)
    return now - relativedelta(years=value)


def add_period(period, start: datetime) -> datetime:
    """start + period on the calendar; used for archive expiry dates."""
    value, unit = _parse_period(period)

    if unit == TimeUnit.DAYS:
        return start + timedelta(days=value)
    if unit == TimeUnit.MONTHS:
        return start + relativedelta(months=value)
    return start + relativedelta(years=value)


def period_in_days(period) -> int:
    """Approximate length in days (months x30, years x365). Reporting only."""
    value, unit = _parse_period(period)

    if unit == TimeUnit.DAYS:
        return value
    if unit == TimeUnit.MONTHS:
        return value * RetentionDefaults.DAYS_PER_MONTH_ESTIMATE
    return value * RetentionDefaults.DAYS_PER_YEAR_ESTIMATE
