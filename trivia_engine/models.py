from enum import Enum
from typing import Optional
from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

from .errors import UnknownModeError


class ModeType(str, Enum):
    FREE = "free"
    CHALLENGE = "challenge"
    TOURNAMENT = "tournament"
    SUPER_TOURNAMENT = "super_tournament"

    @classmethod
    def _missing_(cls, value):
        # accept "FREE", "superTournament", "SUPER_TOURNAMENT" and friends
        if isinstance(value, str):
            key = value.replace("_", "").replace("-", "").lower()
            for member in cls:
                if member.value.replace("_", "") == key:
                    return member
        return None

    @classmethod
    def parse(cls, value) -> "ModeType":
        try:
            return cls(value)
        except ValueError:
            raise UnknownModeError(value) from None


class PeriodType(str, Enum):
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class PeriodStatus(str, Enum):
    UPCOMING = "UPCOMING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class SessionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


TERMINAL_SESSION_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.EXPIRED, SessionStatus.CANCELLED})


class WinnerStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PAID = "PAID"
    REJECTED = "REJECTED"


class Period(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    mode_type: ModeType
    start_date: datetime
    end_date: datetime
    status: PeriodStatus = PeriodStatus.UPCOMING
    total_participants: int = 0
    settled_at: Optional[datetime] = None


class GameSession(SQLModel, table=True):
    id: Optional[str] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    period_id: int = Field(index=True)
    status: SessionStatus = SessionStatus.ACTIVE
    current_question_index: int = 0
    total_questions: int = 0
    score: int = 0
    answered_questions: int = 0
    correct_answers: int = 0
    incorrect_answers: int = 0
    skipped_answers: int = 0
    total_time_spent: float = 0.0  # seconds
    average_response_time: float = 0.0  # seconds
    started_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    question_order_json: str = "[]"
    device_id: Optional[str] = None
    ip_address: Optional[str] = None
    risk_level: Optional[str] = None
    flagged_for_review: bool = False


class Answer(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(index=True)
    question_id: str
    selected_answer: Optional[str] = None
    is_correct: bool = False
    is_skipped: bool = False
    response_time: float = 0.0
    answered_at: Optional[datetime] = None


class Winner(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("period_id", "rank", name="uq_winner_period_rank"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str
    period_id: int = Field(index=True)
    rank: int
    score: int
    payout_amount: float
    payout_currency: str = "USD"
    status: WinnerStatus = WinnerStatus.PENDING
    created_at: Optional[datetime] = None


class Wallet(SQLModel, table=True):
    user_id: str = Field(primary_key=True)
    credits_balance: int = 0
    last_daily_claim_at: Optional[datetime] = None
    ad_rewards_today: int = 0
    ad_rewards_reset_at: Optional[datetime] = None
    lifetime_earnings: float = 0.0  # in EngineConfig.winner_gating_currency
