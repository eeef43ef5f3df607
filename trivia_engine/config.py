"""
Engine configuration.

A configuration is an immutable value built once by ``load_config`` and
passed explicitly to every function that needs thresholds. Defaults mirror
the platform's production settings; overrides are deep-merged on top and
environment variables win over both.
"""

import copy
import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError, UnknownModeError
from .models import ModeType, PeriodType


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ModeConfig(_Frozen):
    name: str
    questions: int = Field(..., gt=0)
    entry_fee: float = Field(0, ge=0)
    entry_fee_currency: str = "USD"
    payout: float = Field(..., ge=0)
    payout_currency: str = "USD"
    min_answers_to_qualify: int = Field(..., ge=0)
    period_type: PeriodType
    max_winners: int = Field(..., ge=0)


class GameSettings(_Frozen):
    default_question_timer: int = Field(25, gt=0)  # seconds
    questions_per_batch: int = Field(10, gt=0)
    max_offline_questions: int = Field(50, ge=0)
    max_resume_time_minutes: float = Field(30, gt=0)


class AntiCheatSettings(_Frozen):
    max_submissions_per_minute: float = Field(10, gt=0)
    suspicious_score_threshold: float = Field(0.95, ge=0, le=1)
    max_concurrent_sessions: int = Field(1, ge=1)
    device_tracking_enabled: bool = True
    ip_tracking_enabled: bool = True


class CreditSettings(_Frozen):
    daily_claim_amount: int = Field(10, ge=0)
    ad_reward_amount: int = Field(1, ge=0)
    ad_reward_daily_limit: int = Field(20, ge=0)


class EngineConfig(_Frozen):
    modes: Dict[ModeType, ModeConfig]
    winner_gating_thresholds: Dict[ModeType, float]
    winner_gating_currency: str = "NGN"
    game: GameSettings = GameSettings()
    anti_cheat: AntiCheatSettings = AntiCheatSettings()
    credits: CreditSettings = CreditSettings()
    clock_skew_seconds: float = Field(300, ge=0)

    @field_validator("winner_gating_thresholds")
    @classmethod
    def thresholds_not_negative(cls, v):
        for mode, threshold in v.items():
            if threshold < 0:
                raise ValueError(f"gating threshold for {mode.value} must not be negative")
        return v

    def mode(self, mode_type) -> ModeConfig:
        mt = ModeType.parse(mode_type)
        try:
            return self.modes[mt]
        except KeyError:
            raise UnknownModeError(mode_type) from None

    def gating_threshold(self, mode_type) -> float:
        return gating_threshold(self.winner_gating_thresholds, mode_type)


def gating_threshold(thresholds: Mapping[ModeType, float], mode_type) -> float:
    """Typed threshold lookup that refuses modes the deployment does not know."""
    mt = ModeType.parse(mode_type)
    if mt not in thresholds:
        raise UnknownModeError(mode_type)
    return thresholds[mt]


DEFAULTS: Dict[str, Any] = {
    "modes": {
        "free": {
            "name": "Free Weekly",
            "questions": 1000,
            "entry_fee": 0,
            "entry_fee_currency": "USD",
            "payout": 100,
            "payout_currency": "USD",
            "min_answers_to_qualify": 1000,
            "period_type": "WEEKLY",
            "max_winners": 10,
        },
        "challenge": {
            "name": "Challenge Monthly",
            "questions": 100,
            "entry_fee": 10,
            "entry_fee_currency": "USD",
            "payout": 1000,
            "payout_currency": "USD",
            "min_answers_to_qualify": 100,
            "period_type": "MONTHLY",
            "max_winners": 10,
        },
        "tournament": {
            "name": "Tournament Monthly",
            "questions": 1000,
            "entry_fee": 1000,
            "entry_fee_currency": "CREDITS",
            "payout": 10000,
            "payout_currency": "USD",
            "min_answers_to_qualify": 1000,
            "period_type": "MONTHLY",
            "max_winners": 10,
        },
        "super_tournament": {
            "name": "Super Tournament Monthly",
            "questions": 1000,
            "entry_fee": 10000,
            "entry_fee_currency": "CREDITS",
            "payout": 100000,
            "payout_currency": "USD",
            "min_answers_to_qualify": 1000,
            "period_type": "MONTHLY",
            "max_winners": 10,
        },
    },
    # lifetime earnings cutoffs, denominated in winner_gating_currency
    "winner_gating_thresholds": {
        "free": 1500,
        "challenge": 15000,
        "tournament": 150000,
        "super_tournament": 1500000,
    },
    "winner_gating_currency": "NGN",
    "game": {
        "default_question_timer": 25,
        "questions_per_batch": 10,
        "max_offline_questions": 50,
        "max_resume_time_minutes": 30,
    },
    "anti_cheat": {
        "max_submissions_per_minute": 10,
        "suspicious_score_threshold": 0.95,
        "max_concurrent_sessions": 1,
        "device_tracking_enabled": True,
        "ip_tracking_enabled": True,
    },
    "credits": {
        "daily_claim_amount": 10,
        "ad_reward_amount": 1,
        "ad_reward_daily_limit": 20,
    },
    "clock_skew_seconds": 300,
}

# env var -> (section, key); section None means top level
_ENV_OVERRIDES = {
    "MAX_RESUME_TIME_MINUTES": ("game", "max_resume_time_minutes"),
    "MAX_SUBMISSIONS_PER_MINUTE": ("anti_cheat", "max_submissions_per_minute"),
    "SUSPICIOUS_SCORE_THRESHOLD": ("anti_cheat", "suspicious_score_threshold"),
    "AD_REWARD_DAILY_LIMIT": ("credits", "ad_reward_daily_limit"),
    "CLOCK_SKEW_SECONDS": (None, "clock_skew_seconds"),
}


def _normalise_mode_keys(mapping: Mapping) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in mapping.items():
        out[ModeType.parse(key).value] = value
    return out


def _deep_merge(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if key in ("modes", "winner_gating_thresholds") and isinstance(value, Mapping):
            value = _normalise_mode_keys(value)
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for var, (section, key) in _ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw.strip() == "":
            continue
        if section is None:
            out[key] = raw
        else:
            out.setdefault(section, {})[key] = raw
    return out


def load_config(overrides: Optional[Mapping[str, Any]] = None, environ: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """Build a validated, immutable EngineConfig.

    Precedence: environment > overrides > DEFAULTS. Any validation failure is
    reported as ConfigurationError so a misconfigured deployment is never
    mistaken for a business-rule rejection.
    """
    merged = _deep_merge(DEFAULTS, overrides or {})
    merged = _deep_merge(merged, _env_overrides(os.environ if environ is None else environ))
    try:
        return EngineConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid engine configuration: {exc}") from exc
