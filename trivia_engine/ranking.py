"""
Period ranking and winner selection.

Ordering, best first: higher score, then lower average response time, then
earlier completion. The ordering is expressed as a sort key so Python's
stable sort keeps entries that tie on all three in input order.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .clock import as_utc
from .errors import ContractViolation
from .models import SessionStatus, WinnerStatus


@dataclass(frozen=True)
class LeaderboardEntry:
    user_id: str
    session_id: str
    score: int
    average_response_time: float
    completed_at: datetime
    answered_questions: int
    is_qualified: bool

    def __post_init__(self):
        for name in ("user_id", "session_id", "score", "average_response_time",
                     "completed_at", "answered_questions", "is_qualified"):
            if getattr(self, name) is None:
                raise ContractViolation(f"leaderboard entry is missing required field {name!r}")
        object.__setattr__(self, "completed_at", as_utc(self.completed_at, "completed_at"))

    @classmethod
    def from_session(cls, session, min_answers_to_qualify: int = 0) -> "LeaderboardEntry":
        """Snapshot a completed session. Sessions flagged for review never qualify."""
        if session.completed_at is None:
            raise ContractViolation(f"session {session.id} has no completed_at")
        qualified = (
            SessionStatus(session.status) is SessionStatus.COMPLETED
            and not getattr(session, "flagged_for_review", False)
            and session.answered_questions >= min_answers_to_qualify
        )
        return cls(
            user_id=session.user_id,
            session_id=session.id,
            score=session.score,
            average_response_time=session.average_response_time,
            completed_at=session.completed_at,
            answered_questions=session.answered_questions,
            is_qualified=qualified,
        )


@dataclass(frozen=True)
class RankedWinner:
    """A real winner produced by settlement. Eligible for persistence and payout."""
    user_id: str
    period_id: Optional[int]
    session_id: str
    rank: int
    score: int
    payout_amount: float
    payout_currency: str = "USD"
    status: WinnerStatus = WinnerStatus.PENDING
    is_synthetic = False


def tie_break_key(entry: LeaderboardEntry) -> Tuple[int, float, datetime]:
    return (-entry.score, entry.average_response_time, entry.completed_at)


def compare_entries(a: LeaderboardEntry, b: LeaderboardEntry) -> int:
    """-1 when a ranks ahead of b, 1 when behind, 0 when tied on every rule."""
    ka, kb = tie_break_key(a), tie_break_key(b)
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0


def is_eligible(entry: LeaderboardEntry, min_answers_to_qualify: int) -> bool:
    return entry.is_qualified and entry.answered_questions >= min_answers_to_qualify


def sort_entries(entries: Iterable[LeaderboardEntry]) -> List[LeaderboardEntry]:
    return sorted(entries, key=tie_break_key)


def determine_winners(
    entries: Iterable[LeaderboardEntry],
    max_winners: int,
    min_answers_to_qualify: int,
    period_id: Optional[int] = None,
    payout_amount: float = 0.0,
    payout_currency: str = "USD",
) -> List[RankedWinner]:
    if max_winners is None or max_winners < 0:
        raise ContractViolation(f"max_winners must be >= 0, got {max_winners!r}")
    if min_answers_to_qualify is None or min_answers_to_qualify < 0:
        raise ContractViolation(f"min_answers_to_qualify must be >= 0, got {min_answers_to_qualify!r}")
    qualified = [e for e in entries if is_eligible(e, min_answers_to_qualify)]
    top = sort_entries(qualified)[:max_winners]
    return [
        RankedWinner(
            user_id=e.user_id,
            period_id=period_id,
            session_id=e.session_id,
            rank=rank,
            score=e.score,
            payout_amount=payout_amount,
            payout_currency=payout_currency,
        )
        for rank, e in enumerate(top, start=1)
    ]


def best_entry_per_user(entries: Iterable[LeaderboardEntry]) -> List[LeaderboardEntry]:
    """Keep each user's best entry. Qualified entries beat unqualified ones."""
    best: Dict[str, LeaderboardEntry] = {}
    for e in entries:
        cur = best.get(e.user_id)
        if cur is None or _better(e, cur):
            best[e.user_id] = e
    return list(best.values())


def _better(a: LeaderboardEntry, b: LeaderboardEntry) -> bool:
    if a.is_qualified != b.is_qualified:
        return a.is_qualified
    return tie_break_key(a) < tie_break_key(b)


def leaderboard(entries: Iterable[LeaderboardEntry], min_answers_to_qualify: int) -> List[dict]:
    """Informational placement for every entry, qualified entries first.

    Unqualified entries are listed after all qualified ones with
    qualified=False; their position carries no payout meaning.
    """
    items = list(entries)
    qualified = sort_entries(e for e in items if is_eligible(e, min_answers_to_qualify))
    others = sort_entries(e for e in items if not is_eligible(e, min_answers_to_qualify))
    rows = []
    for position, e in enumerate(qualified + others, start=1):
        rows.append({
            'position': position,
            'user_id': e.user_id,
            'session_id': e.session_id,
            'score': e.score,
            'average_response_time': e.average_response_time,
            'completed_at': e.completed_at.isoformat(),
            'answered_questions': e.answered_questions,
            'qualified': is_eligible(e, min_answers_to_qualify),
        })
    return rows
