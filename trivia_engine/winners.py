"""
Winner display gating.

Viewers whose lifetime earnings are below the mode's threshold are shown a
synthetic winner list instead of the real one. Synthetic winners are their
own frozen type with is_synthetic=True; crud refuses to persist or pay them.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Mapping, Optional, Sequence, Union

from .clock import resolve_now
from .config import gating_threshold
from .errors import ContractViolation
from .models import ModeType, WinnerStatus
from .ranking import RankedWinner

SYNTHETIC_PAID_WINDOW_DAYS = 30
SYNTHETIC_SCORE_RANGE = (900, 999)

_DISPLAY_NAMES = [
    "winner1",
    "champion",
    "topplayer",
    "quizmaster",
    "smartuser",
    "triviaking",
    "brainiac",
    "genius",
    "scholar",
    "expert",
]


@dataclass(frozen=True)
class SyntheticWinner:
    """Display-only placeholder. Never persisted, never paid."""
    display_id: str
    display_name: str
    mode_type: ModeType
    rank: int
    score: int
    payout_amount: float
    payout_currency: str
    paid_at: datetime
    status: WinnerStatus = WinnerStatus.PAID
    is_synthetic = True


DisplayedWinner = Union[RankedWinner, SyntheticWinner]


def should_show_actual_winners(user_lifetime_earnings: float, mode_type, thresholds: Mapping[ModeType, float]) -> bool:
    if user_lifetime_earnings is None:
        raise ContractViolation("user_lifetime_earnings is required")
    return user_lifetime_earnings >= gating_threshold(thresholds, mode_type)


def generate_synthetic_winners(
    mode_type,
    max_winners: int,
    payout: float,
    payout_currency: str = "USD",
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> List[SyntheticWinner]:
    """Build k placeholder winners.

    Rank, status and payout are fixed; score and paid_at are random on
    purpose (obfuscation only, never used for accounting).
    """
    mt = ModeType.parse(mode_type)
    if max_winners is None or max_winners < 0:
        raise ContractViolation(f"max_winners must be >= 0, got {max_winners!r}")
    rng = rng or random.Random()
    current = resolve_now(now)
    window = timedelta(days=SYNTHETIC_PAID_WINDOW_DAYS).total_seconds()
    out = []
    for i in range(max_winners):
        name = _DISPLAY_NAMES[i] if i < len(_DISPLAY_NAMES) else f"aiwinner{i + 1}"
        out.append(SyntheticWinner(
            display_id=f"synthetic-{mt.value}-{i + 1}",
            display_name=name,
            mode_type=mt,
            rank=i + 1,
            score=rng.randint(*SYNTHETIC_SCORE_RANGE),
            payout_amount=payout,
            payout_currency=payout_currency,
            paid_at=current - timedelta(seconds=rng.random() * window),
        ))
    return out


def winners_for_viewer(
    real_winners: Sequence[RankedWinner],
    user_lifetime_earnings: float,
    mode_type,
    config,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> List[DisplayedWinner]:
    mode = config.mode(mode_type)
    if should_show_actual_winners(user_lifetime_earnings, mode_type, config.winner_gating_thresholds):
        return list(real_winners)
    return generate_synthetic_winners(mode_type, mode.max_winners, mode.payout, mode.payout_currency, now=now, rng=rng)
