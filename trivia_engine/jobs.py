"""
Period rollover jobs, meant to be driven by an external scheduler.

run_rollover settles every period of a mode whose window has closed and
makes sure the period covering "now" exists.
"""

from datetime import datetime
from typing import Dict, List, Optional

from sqlmodel import select, col

from . import crud, models
from .cache import cleanup_cache_periodically
from .clock import resolve_now
from .deps import get_session
from .errors import SettlementError
from .logging_utils import get_logger
from .models import ModeType, PeriodStatus
from .periods import current_period_bounds

logger = get_logger("trivia_engine.jobs")


def ensure_current_period(session, mode_type, config, now: Optional[datetime] = None) -> models.Period:
    """Return the period of mode_type covering now, creating it if needed."""
    mt = ModeType.parse(mode_type)
    mode = config.mode(mt)
    current = resolve_now(now)
    start, end = current_period_bounds(mode.period_type, current)
    existing = session.exec(
        select(models.Period)
        .where(models.Period.mode_type == mt)
        .where(models.Period.start_date == start)
    ).first()
    if existing:
        return crud.refresh_period_status(session, existing, current)
    period = crud.create_period(session, mt, start, end, now=current)
    logger.info("period_opened", extra={"event": "period_opened", "period_id": period.id, "mode": mt.value})
    return period


def due_periods(session, mode_type, now: Optional[datetime] = None) -> List[models.Period]:
    mt = ModeType.parse(mode_type)
    current = resolve_now(now)
    return list(session.exec(
        select(models.Period)
        .where(models.Period.mode_type == mt)
        .where(col(models.Period.settled_at).is_(None))
        .where(models.Period.status != PeriodStatus.CANCELLED)
        .where(col(models.Period.end_date) < current)
        .order_by(models.Period.end_date)
    ).all())


def run_rollover(config, now: Optional[datetime] = None) -> Dict[str, List[int]]:
    """Settle closed periods and open current ones for every configured mode.

    Returns {mode: [settled period ids]}. A failure on one period is logged
    and does not stop the others.
    """
    current = resolve_now(now)
    settled: Dict[str, List[int]] = {}
    with get_session() as session:
        crud.expire_stale_sessions(session, config, current)
        for mt in config.modes:
            settled[mt.value] = []
            for period in due_periods(session, mt, current):
                try:
                    crud.settle_period(session, period.id, config, current)
                    settled[mt.value].append(period.id)
                except SettlementError as exc:
                    logger.error("settlement_failed", extra={"event": "settlement_failed", "period_id": period.id, "error": str(exc)})
            ensure_current_period(session, mt, config, current)
    cleanup_cache_periodically()
    return settled
