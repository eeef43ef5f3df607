"""
Session classification and per-answer session bookkeeping.

validate_session never mutates the session it is given; apply_answer is the
only function that changes session counters and is meant to be called once
per accepted submission, serialised per session by the caller.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .clock import DEFAULT_CLOCK_SKEW_SECONDS, as_utc, ensure_not_future, resolve_now
from .errors import ContractViolation
from .models import SessionStatus, TERMINAL_SESSION_STATUSES

REASON_INACTIVE = "expired due to inactivity"
REASON_COMPLETED = "already completed"


@dataclass(frozen=True)
class Submission:
    session_id: str
    question_id: str
    selected_answer: Optional[str]
    is_skipped: bool
    response_time: float  # seconds
    is_correct: bool = False


@dataclass(frozen=True)
class SessionValidation:
    is_valid: bool
    can_resume: bool
    reason: Optional[str] = None


def calculate_score(correct_answers: int) -> int:
    # one point per correct answer, nothing for wrong or skipped
    return correct_answers


def _required(session, name: str):
    value = getattr(session, name, None)
    if value is None:
        raise ContractViolation(f"session is missing required field {name!r}")
    return value


def _status(session) -> SessionStatus:
    raw = _required(session, "status")
    try:
        return SessionStatus(raw)
    except ValueError:
        raise ContractViolation(f"unknown session status {raw!r}") from None


def validate_session(
    session,
    max_resume_time_minutes: float,
    now: Optional[datetime] = None,
    clock_skew_seconds: float = DEFAULT_CLOCK_SKEW_SECONDS,
) -> SessionValidation:
    """Classify a session snapshot for a resume / submit attempt.

    Inactivity beyond max_resume_time_minutes wins over whatever status the
    session records.
    """
    current = resolve_now(now)
    last_activity = as_utc(_required(session, "last_activity_at"), "last_activity_at")
    ensure_not_future(last_activity, current, clock_skew_seconds, "last_activity_at")
    status = _status(session)

    idle_minutes = (current - last_activity).total_seconds() / 60
    if idle_minutes > max_resume_time_minutes:
        return SessionValidation(False, False, REASON_INACTIVE)
    if status is SessionStatus.COMPLETED:
        return SessionValidation(True, False, REASON_COMPLETED)
    if status in (SessionStatus.CANCELLED, SessionStatus.EXPIRED):
        return SessionValidation(False, False, f"session {status.value.lower()}")

    index = _required(session, "current_question_index")
    total = _required(session, "total_questions")
    return SessionValidation(True, index < total)


def apply_answer(session, is_correct: bool, is_skipped: bool, response_time: float, now: Optional[datetime] = None):
    """Fold one answer into the session counters and return the session.

    The session is marked COMPLETED (with completed_at) once the question
    index reaches total_questions.
    """
    status = _status(session)
    if status in TERMINAL_SESSION_STATUSES:
        raise ContractViolation(f"session {getattr(session, 'id', None)} is {status.value} and cannot take answers")
    if response_time is None or response_time < 0:
        raise ContractViolation(f"response_time must be a non-negative number, got {response_time!r}")
    if session.current_question_index >= session.total_questions:
        raise ContractViolation("session has no questions left to answer")
    correct = bool(is_correct) and not is_skipped
    current = resolve_now(now)

    session.answered_questions += 1
    if is_skipped:
        session.skipped_answers += 1
    elif correct:
        session.correct_answers += 1
    else:
        session.incorrect_answers += 1
    session.score = calculate_score(session.correct_answers)
    session.current_question_index += 1
    session.total_time_spent += response_time
    session.average_response_time = session.total_time_spent / session.answered_questions
    session.last_activity_at = current
    if status is SessionStatus.PAUSED:
        session.status = SessionStatus.ACTIVE
    if session.current_question_index >= session.total_questions:
        session.status = SessionStatus.COMPLETED
        session.completed_at = current
    return session
