from datetime import datetime, timedelta, timezone
from typing import Optional

from .clock import DEFAULT_CLOCK_SKEW_SECONDS, as_utc, ensure_not_future, resolve_now
from .errors import ContractViolation

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_day_index(ts: datetime) -> int:
    """Whole UTC days since the epoch."""
    return (as_utc(ts) - _EPOCH) // timedelta(days=1)


def next_utc_midnight(now: Optional[datetime] = None) -> datetime:
    current = resolve_now(now)
    return datetime(current.year, current.month, current.day, tzinfo=timezone.utc) + timedelta(days=1)


def can_claim_daily_credits(
    last_claim_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
    clock_skew_seconds: float = DEFAULT_CLOCK_SKEW_SECONDS,
) -> bool:
    """True once per UTC calendar day; the day flips at 00:00 UTC."""
    if last_claim_date is None:
        return True
    current = resolve_now(now)
    last = as_utc(last_claim_date, "last_daily_claim_at")
    ensure_not_future(last, current, clock_skew_seconds, "last_daily_claim_at")
    return utc_day_index(current) > utc_day_index(last)


def can_receive_ad_reward(
    ad_rewards_today: int,
    ad_rewards_reset_at: datetime,
    daily_limit: int,
    now: Optional[datetime] = None,
) -> bool:
    """Allowed when the daily counter is due for reset or still under the limit."""
    if ad_rewards_today is None or ad_rewards_today < 0:
        raise ContractViolation(f"ad_rewards_today must be >= 0, got {ad_rewards_today!r}")
    if ad_rewards_reset_at is None:
        raise ContractViolation("ad_rewards_reset_at is required")
    current = resolve_now(now)
    if current >= as_utc(ad_rewards_reset_at, "ad_rewards_reset_at"):
        return True
    return ad_rewards_today < daily_limit
