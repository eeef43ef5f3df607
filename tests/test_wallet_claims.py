import threading
from sqlmodel import Session

from conftest import utc
from trivia_engine import crud, models
from trivia_engine.config import load_config


def test_daily_claim_once_per_utc_day(engine, config):
    with Session(engine) as s:
        w = crud.claim_daily_credits(s, "u1", config, now=utc(2024, 5, 1, 8))
        assert w is not None
        assert w.credits_balance == 10
        assert crud.claim_daily_credits(s, "u1", config, now=utc(2024, 5, 1, 23, 59)) is None
        w = crud.claim_daily_credits(s, "u1", config, now=utc(2024, 5, 2, 0, 0, 1))
        assert w is not None
        assert w.credits_balance == 20


def test_daily_claim_late_night_then_just_after_midnight(engine, config):
    with Session(engine) as s:
        assert crud.claim_daily_credits(s, "u1", config, now=utc(2024, 5, 1, 23, 59, 59)) is not None
        # a new UTC day, even one second later
        w = crud.claim_daily_credits(s, "u1", config, now=utc(2024, 5, 2, 0, 0, 0))
        assert w is not None
        assert w.credits_balance == 20


def test_ad_rewards_stop_at_limit_and_reset_at_midnight(engine):
    cfg = load_config({"credits": {"ad_reward_daily_limit": 3, "ad_reward_amount": 2}}, environ={})
    with Session(engine) as s:
        for i in range(3):
            w = crud.claim_ad_reward(s, "u1", cfg, now=utc(2024, 5, 1, 9, i))
            assert w is not None
        assert w.ad_rewards_today == 3
        assert w.credits_balance == 6
        assert crud.claim_ad_reward(s, "u1", cfg, now=utc(2024, 5, 1, 22)) is None

        w = crud.claim_ad_reward(s, "u1", cfg, now=utc(2024, 5, 2, 0, 5))
        assert w is not None
        assert w.ad_rewards_today == 1
        assert w.credits_balance == 8
        assert w.ad_rewards_reset_at.replace(tzinfo=None) == utc(2024, 5, 3).replace(tzinfo=None)


def test_zero_ad_limit_never_grants(engine):
    cfg = load_config({"credits": {"ad_reward_daily_limit": 0}}, environ={})
    with Session(engine) as s:
        assert crud.claim_ad_reward(s, "u1", cfg, now=utc(2024, 5, 1, 9)) is None
        # past the reset time the counter would restart, but a zero limit still grants nothing
        assert crud.claim_ad_reward(s, "u1", cfg, now=utc(2024, 5, 3, 9)) is None
        assert crud.wallet_summary(s, "u1", cfg, now=utc(2024, 5, 3, 9))["can_receive_ad_reward"] is False
        assert s.get(models.Wallet, "u1").credits_balance == 0


def test_wallet_summary(engine, config):
    with Session(engine) as s:
        summary = crud.wallet_summary(s, "u1", config, now=utc(2024, 5, 1, 9))
        assert summary["credits_balance"] == 0
        assert summary["can_claim_daily"] is True
        assert summary["can_receive_ad_reward"] is True
        assert summary["ad_reward_limit"] == 20

        crud.claim_daily_credits(s, "u1", config, now=utc(2024, 5, 1, 9))
        summary = crud.wallet_summary(s, "u1", config, now=utc(2024, 5, 1, 10))
        assert summary["credits_balance"] == 10
        assert summary["can_claim_daily"] is False


def test_concurrent_daily_claims_grant_once(engine, config):
    now = utc(2024, 5, 1, 12)
    with Session(engine) as s:
        crud.get_or_create_wallet(s, "racer", now)

    results = []

    def claim():
        with Session(engine) as own:
            results.append(crud.claim_daily_credits(own, "racer", config, now=now) is not None)

    threads = [threading.Thread(target=claim) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    with Session(engine) as s:
        assert s.get(models.Wallet, "racer").credits_balance == 10


def test_concurrent_ad_claims_respect_limit(engine):
    cfg = load_config({"credits": {"ad_reward_daily_limit": 5}}, environ={})
    now = utc(2024, 5, 1, 12)
    with Session(engine) as s:
        crud.get_or_create_wallet(s, "racer", now)

    results = []

    def claim():
        with Session(engine) as own:
            results.append(crud.claim_ad_reward(own, "racer", cfg, now=now) is not None)

    threads = [threading.Thread(target=claim) for _ in range(12)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 5
    with Session(engine) as s:
        w = s.get(models.Wallet, "racer")
        assert w.ad_rewards_today == 5
        assert w.credits_balance == 5
