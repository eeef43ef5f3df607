import random
from datetime import timedelta
import pytest

from conftest import utc
from trivia_engine.errors import ContractViolation
from trivia_engine.models import GameSession, SessionStatus, WinnerStatus
from trivia_engine.ranking import (
    LeaderboardEntry,
    best_entry_per_user,
    compare_entries,
    determine_winners,
    leaderboard,
    sort_entries,
)

T0 = utc(2024, 3, 1)


def entry(user, score, art, minutes=0, answered=100, qualified=True, session=None):
    return LeaderboardEntry(
        user_id=user,
        session_id=session or f"s-{user}",
        score=score,
        average_response_time=art,
        completed_at=T0 + timedelta(minutes=minutes),
        answered_questions=answered,
        is_qualified=qualified,
    )


def random_entries(rng, n):
    return [
        entry(f"u{i}", rng.randint(0, 5), rng.choice([1.0, 2.0, 3.0]), rng.randint(0, 3),
              answered=rng.randint(0, 10), qualified=rng.random() > 0.2)
        for i in range(n)
    ]


def test_lower_response_time_breaks_score_tie():
    a = entry("a", 10, 3.0, minutes=0)
    b = entry("b", 10, 2.0, minutes=5)
    winners = determine_winners([a, b], max_winners=1, min_answers_to_qualify=0)
    assert len(winners) == 1
    assert winners[0].user_id == "b" and winners[0].rank == 1


def test_tie_break_priority():
    high = entry("high", 11, 9.0, minutes=9)
    fast = entry("fast", 10, 1.0, minutes=9)
    early = entry("early", 10, 2.0, minutes=1)
    late = entry("late", 10, 2.0, minutes=2)
    assert [e.user_id for e in sort_entries([late, early, fast, high])] == ["high", "fast", "early", "late"]
    assert compare_entries(early, late) == -1
    assert compare_entries(late, early) == 1
    assert compare_entries(early, entry("x", 10, 2.0, minutes=1)) == 0


def test_full_ties_keep_input_order():
    a = entry("a", 5, 2.0)
    b = entry("b", 5, 2.0)
    assert [w.user_id for w in determine_winners([a, b], 2, 0)] == ["a", "b"]
    assert [w.user_id for w in determine_winners([b, a], 2, 0)] == ["b", "a"]


def test_sorting_is_consistent_under_shuffling():
    rng = random.Random(99)
    for _ in range(30):
        # distinct sessions, so the comparator alone decides the order
        items = [entry(f"u{i}", rng.randint(0, 3), rng.choice([1.0, 2.0]), i) for i in range(20)]
        expected = sort_entries(items)
        shuffled = items[:]
        rng.shuffle(shuffled)
        assert sort_entries(shuffled) == expected
        assert sort_entries(sort_entries(shuffled)) == expected


def test_qualification_filter_and_rank_contiguity():
    rng = random.Random(7)
    for _ in range(100):
        entries = random_entries(rng, rng.randint(0, 15))
        max_winners = rng.randint(0, 6)
        min_answers = rng.randint(0, 10)
        winners = determine_winners(entries, max_winners, min_answers, period_id=3, payout_amount=50)
        by_session = {e.session_id: e for e in entries}
        qualified = [e for e in entries if e.is_qualified and e.answered_questions >= min_answers]
        assert len(winners) == min(max_winners, len(qualified))
        assert [w.rank for w in winners] == list(range(1, len(winners) + 1))
        for w in winners:
            src = by_session[w.session_id]
            assert src.is_qualified and src.answered_questions >= min_answers
            assert w.status is WinnerStatus.PENDING and w.period_id == 3 and w.payout_amount == 50
            assert not w.is_synthetic


def test_disqualified_high_score_never_wins():
    cheat = entry("cheat", 999, 0.5, qualified=False)
    short = entry("short", 500, 1.0, answered=5)
    honest = entry("honest", 3, 9.0)
    winners = determine_winners([cheat, short, honest], 10, 10)
    assert [w.user_id for w in winners] == ["honest"]


def test_invalid_arguments():
    with pytest.raises(ContractViolation):
        determine_winners([], -1, 0)
    with pytest.raises(ContractViolation):
        determine_winners([], 1, -5)


def test_missing_completed_at_is_contract_violation():
    with pytest.raises(ContractViolation):
        LeaderboardEntry("u", "s", 1, 2.0, None, 10, True)


def test_from_session_respects_flags():
    gs = GameSession(id="s9", user_id="u9", period_id=1, status=SessionStatus.COMPLETED,
                     score=7, answered_questions=10, average_response_time=4.2, completed_at=T0)
    e = LeaderboardEntry.from_session(gs, 10)
    assert e.is_qualified and e.score == 7 and e.completed_at == T0
    assert not LeaderboardEntry.from_session(gs, 11).is_qualified
    gs.flagged_for_review = True
    assert not LeaderboardEntry.from_session(gs, 0).is_qualified
    gs.completed_at = None
    with pytest.raises(ContractViolation):
        LeaderboardEntry.from_session(gs, 0)


def test_best_entry_per_user_and_leaderboard():
    entries = [
        entry("a", 3, 2.0, session="a1"),
        entry("a", 5, 2.0, session="a2"),
        entry("b", 9, 2.0, session="b1", qualified=False),
        entry("b", 1, 2.0, session="b2"),
    ]
    best = {e.user_id: e.session_id for e in best_entry_per_user(entries)}
    assert best == {"a": "a2", "b": "b2"}

    rows = leaderboard(entries, min_answers_to_qualify=0)
    assert [r['session_id'] for r in rows] == ["a2", "a1", "b2", "b1"]
    assert [r['position'] for r in rows] == [1, 2, 3, 4]
    assert rows[-1]['qualified'] is False
