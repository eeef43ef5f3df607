from datetime import datetime, timedelta, timezone
from typing import Optional

from .errors import ContractViolation, DataIntegrityError

DEFAULT_CLOCK_SKEW_SECONDS = 300


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: datetime, field: str = "timestamp") -> datetime:
    """Return ts as an aware UTC datetime.

    Naive values are taken to be UTC already (SQLite hands back naive
    datetimes for columns we always write in UTC).
    """
    if not isinstance(ts, datetime):
        raise ContractViolation(f"{field} must be a datetime, got {type(ts).__name__}")
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def resolve_now(now: Optional[datetime]) -> datetime:
    return utcnow() if now is None else as_utc(now, "now")


def ensure_not_future(ts: datetime, now: datetime, skew_seconds: float, field: str) -> None:
    """Raise DataIntegrityError when ts lies further ahead of now than the allowed skew."""
    if ts - now > timedelta(seconds=skew_seconds):
        raise DataIntegrityError(
            f"{field} {ts.isoformat()} is in the future (now {now.isoformat()}, skew {skew_seconds}s)"
        )
