import random
from datetime import timedelta
import pytest

from conftest import utc
from trivia_engine.config import load_config
from trivia_engine.errors import UnknownModeError
from trivia_engine.models import ModeType, WinnerStatus
from trivia_engine.ranking import RankedWinner
from trivia_engine.winners import (
    SyntheticWinner,
    generate_synthetic_winners,
    should_show_actual_winners,
    winners_for_viewer,
)

NOW = utc(2024, 6, 1)
THRESHOLDS = {ModeType.FREE: 1500, ModeType.CHALLENGE: 15000}


def test_low_earner_is_gated():
    assert should_show_actual_winners(1000, "FREE", THRESHOLDS) is False


def test_threshold_is_inclusive_and_case_insensitive():
    assert should_show_actual_winners(1500, "free", THRESHOLDS) is True
    assert should_show_actual_winners(1500, ModeType.CHALLENGE, THRESHOLDS) is False


def test_unknown_mode_surfaces_distinctly():
    with pytest.raises(UnknownModeError):
        should_show_actual_winners(10**9, "tournament", THRESHOLDS)
    with pytest.raises(UnknownModeError):
        should_show_actual_winners(10**9, "galactic", THRESHOLDS)


def test_synthetic_winner_shape():
    ws = generate_synthetic_winners("free", 12, 100, now=NOW, rng=random.Random(3))
    assert [w.rank for w in ws] == list(range(1, 13))
    for w in ws:
        assert isinstance(w, SyntheticWinner) and w.is_synthetic
        assert w.status is WinnerStatus.PAID
        assert w.payout_amount == 100
        assert 900 <= w.score <= 999
        assert NOW - timedelta(days=30) <= w.paid_at <= NOW
        assert w.mode_type is ModeType.FREE
    assert ws[0].display_name == "winner1"
    assert ws[11].display_name == "aiwinner12"
    assert len({w.display_id for w in ws}) == 12


def test_zero_synthetic_winners():
    assert generate_synthetic_winners("free", 0, 100) == []


def test_winners_for_viewer_switches_on_earnings():
    cfg = load_config(environ={})
    real = [RankedWinner("u1", 1, "s1", 1, 10, 100.0)]
    shown = winners_for_viewer(real, 1_000_000, "free", cfg)
    assert shown == real and not shown[0].is_synthetic

    gated = winners_for_viewer(real, 0, "free", cfg, now=NOW, rng=random.Random(1))
    assert len(gated) == cfg.mode("free").max_winners
    assert all(w.is_synthetic for w in gated)
    assert all(w.payout_amount == cfg.mode("free").payout for w in gated)
