from datetime import timedelta
import pytest

from conftest import utc
from trivia_engine import periods
from trivia_engine.errors import ConfigurationError, ContractViolation
from trivia_engine.models import PeriodStatus, PeriodType


def test_is_active_inclusive_bounds():
    start = utc(2024, 1, 1)
    end = utc(2024, 1, 7, 23, 59, 59)
    assert periods.is_active(start, end, now=start)
    assert periods.is_active(start, end, now=end)
    assert periods.is_active(start, end, now=utc(2024, 1, 3, 12))
    assert not periods.is_active(start, end, now=start - timedelta(seconds=1))
    assert not periods.is_active(start, end, now=end + timedelta(seconds=1))


def test_is_active_rejects_inverted_window():
    with pytest.raises(ContractViolation):
        periods.is_active(utc(2024, 1, 2), utc(2024, 1, 1), now=utc(2024, 1, 1))
    with pytest.raises(ContractViolation):
        periods.is_active(utc(2024, 1, 1), utc(2024, 1, 1))


def test_next_weekly_start_midweek():
    # Wednesday
    assert periods.next_period_start("WEEKLY", now=utc(2024, 1, 3, 15, 30)) == utc(2024, 1, 8)
    # Sunday late evening
    assert periods.next_period_start(PeriodType.WEEKLY, now=utc(2024, 1, 7, 23, 59)) == utc(2024, 1, 8)


def test_next_weekly_start_is_strictly_future_on_monday():
    assert periods.next_period_start("WEEKLY", now=utc(2024, 1, 8)) == utc(2024, 1, 15)
    assert periods.next_period_start("WEEKLY", now=utc(2024, 1, 8, 9)) == utc(2024, 1, 15)


def test_next_monthly_start_rolls_year():
    assert periods.next_period_start("MONTHLY", now=utc(2024, 1, 31, 23)) == utc(2024, 2, 1)
    assert periods.next_period_start("monthly", now=utc(2024, 12, 15)) == utc(2025, 1, 1)
    assert periods.next_period_start("MONTHLY", now=utc(2024, 3, 1)) == utc(2024, 4, 1)


def test_unknown_period_type_is_configuration_error():
    with pytest.raises(ConfigurationError):
        periods.next_period_start("DAILY", now=utc(2024, 1, 1))


def test_current_bounds_are_adjacent_and_active():
    now = utc(2024, 2, 14, 10)
    start, end = periods.current_period_bounds("WEEKLY", now)
    assert start == utc(2024, 2, 12)
    assert end + timedelta(microseconds=1) == periods.next_period_start("WEEKLY", now)
    assert periods.is_active(start, end, now)

    mstart, mend = periods.current_period_bounds("MONTHLY", now)
    assert mstart == utc(2024, 2, 1)
    assert mend + timedelta(microseconds=1) == utc(2024, 3, 1)


def test_period_status_derivation():
    start, end = utc(2024, 1, 1), utc(2024, 1, 31)
    assert periods.period_status(start, end, utc(2023, 12, 31)) is PeriodStatus.UPCOMING
    assert periods.period_status(start, end, utc(2024, 1, 15)) is PeriodStatus.ACTIVE
    assert periods.period_status(start, end, utc(2024, 2, 1)) is PeriodStatus.COMPLETED
    assert periods.period_status(start, end, utc(2024, 1, 15), cancelled=True) is PeriodStatus.CANCELLED


def test_naive_datetimes_are_read_as_utc():
    start = utc(2024, 1, 1).replace(tzinfo=None)
    end = utc(2024, 1, 2).replace(tzinfo=None)
    assert periods.is_active(start, end, now=utc(2024, 1, 1, 12))
