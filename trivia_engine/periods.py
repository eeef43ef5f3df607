"""Competition period boundaries and activity windows. All times are UTC."""

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from .clock import as_utc, resolve_now
from .errors import ConfigurationError, ContractViolation
from .models import PeriodStatus, PeriodType

_ONE_TICK = timedelta(microseconds=1)


def _period_type(value) -> PeriodType:
    try:
        return PeriodType(value.upper() if isinstance(value, str) else value)
    except ValueError:
        raise ConfigurationError(f"unknown period type: {value!r}") from None


def _check_window(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    start = as_utc(start, "start_date")
    end = as_utc(end, "end_date")
    if start >= end:
        raise ContractViolation(f"period start {start.isoformat()} is not before end {end.isoformat()}")
    return start, end


def is_active(start: datetime, end: datetime, now: Optional[datetime] = None) -> bool:
    """True iff start <= now <= end (both bounds inclusive)."""
    start, end = _check_window(start, end)
    current = resolve_now(now)
    return start <= current <= end


def _midnight(ts: datetime) -> datetime:
    return datetime(ts.year, ts.month, ts.day, tzinfo=timezone.utc)


def _first_of_next_month(ts: datetime) -> datetime:
    if ts.month == 12:
        return datetime(ts.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(ts.year, ts.month + 1, 1, tzinfo=timezone.utc)


def next_period_start(period_type, now: Optional[datetime] = None) -> datetime:
    """Start of the next period, always strictly after now.

    WEEKLY periods start Monday 00:00 UTC. At exactly Monday 00:00 the next
    start is a full week away. MONTHLY periods start on the 1st at 00:00 UTC.
    """
    ptype = _period_type(period_type)
    current = resolve_now(now)
    if ptype is PeriodType.WEEKLY:
        # weekday(): Monday == 0
        days_until_monday = (7 - current.weekday()) % 7 or 7
        return _midnight(current) + timedelta(days=days_until_monday)
    return _first_of_next_month(current)


def current_period_bounds(period_type, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Return (start, end) of the period containing now.

    end is one microsecond before the following period's start so adjacent
    windows never overlap under the inclusive activity check.
    """
    ptype = _period_type(period_type)
    current = resolve_now(now)
    if ptype is PeriodType.WEEKLY:
        start = _midnight(current) - timedelta(days=current.weekday())
        nxt = start + timedelta(days=7)
    else:
        start = datetime(current.year, current.month, 1, tzinfo=timezone.utc)
        nxt = _first_of_next_month(current)
    return start, nxt - _ONE_TICK


def period_status(start: datetime, end: datetime, now: Optional[datetime] = None, cancelled: bool = False) -> PeriodStatus:
    start, end = _check_window(start, end)
    if cancelled:
        return PeriodStatus.CANCELLED
    current = resolve_now(now)
    if current < start:
        return PeriodStatus.UPCOMING
    if current > end:
        return PeriodStatus.COMPLETED
    return PeriodStatus.ACTIVE
