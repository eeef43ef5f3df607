from sqlmodel import Session, select, col
from sqlalchemy import update, or_
from sqlalchemy.exc import IntegrityError
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence
import json
import random
import uuid

from . import models
from .anticheat import AntiCheatCheck, AntiCheatResult, RiskLevel, SubmissionBuffer, detect_anti_cheat
from .cache import (
    cache_synthetic_winners,
    cache_winners,
    get_cached_synthetic_winners,
    get_cached_winners,
    invalidate_winners_cache,
)
from .clock import as_utc, resolve_now
from .credits import can_claim_daily_credits, can_receive_ad_reward, next_utc_midnight
from .errors import ContractViolation, SettlementError
from .locks import KeyedLock
from .logging_utils import get_logger, run_id_ctx
from .models import PeriodStatus, SessionStatus, WinnerStatus
from .periods import period_status
from .questions import shuffle
from .ranking import LeaderboardEntry, RankedWinner, best_entry_per_user, determine_winners
from .sessions import REASON_INACTIVE, SessionValidation, Submission, apply_answer, validate_session
from .winners import generate_synthetic_winners, should_show_actual_winners

logger = get_logger("trivia_engine.crud")

engine = None

_settlement_locks = KeyedLock()
_claim_locks = KeyedLock()
_session_locks = KeyedLock()
submission_buffer = SubmissionBuffer()

_OPEN_STATUSES = (SessionStatus.ACTIVE, SessionStatus.PAUSED)

_WINNER_TRANSITIONS = {
    WinnerStatus.PENDING: {WinnerStatus.APPROVED, WinnerStatus.REJECTED},
    WinnerStatus.APPROVED: {WinnerStatus.PAID, WinnerStatus.REJECTED},
    WinnerStatus.PAID: set(),
    WinnerStatus.REJECTED: set(),
}


@dataclass(frozen=True)
class SubmissionOutcome:
    accepted: bool
    validation: SessionValidation
    reason: Optional[str] = None
    is_correct: bool = False
    score: int = 0
    completed: bool = False
    anti_cheat: Optional[AntiCheatResult] = None


# -- periods ---------------------------------------------------------------

def create_period(session: Session, mode_type, start_date: datetime, end_date: datetime, now: Optional[datetime] = None):
    mt = models.ModeType.parse(mode_type)
    status = period_status(start_date, end_date, now)
    p = models.Period(mode_type=mt, start_date=as_utc(start_date), end_date=as_utc(end_date), status=status)
    session.add(p)
    session.commit()
    session.refresh(p)
    return p


def get_period(session: Session, period_id: int):
    return session.get(models.Period, period_id)


def refresh_period_status(session: Session, period: models.Period, now: Optional[datetime] = None):
    """Re-derive UPCOMING / ACTIVE / COMPLETED from the clock. Cancelled periods stay cancelled."""
    if period.status == PeriodStatus.CANCELLED or period.settled_at is not None:
        return period
    status = period_status(period.start_date, period.end_date, now)
    if status != period.status:
        period.status = status
        session.add(period)
        session.commit()
        session.refresh(period)
    return period


def cancel_period(session: Session, period_id: int):
    p = session.get(models.Period, period_id)
    if not p:
        return None
    if p.settled_at is not None:
        raise SettlementError(f"period {period_id} is already settled and cannot be cancelled")
    p.status = PeriodStatus.CANCELLED
    session.add(p)
    session.commit()
    session.refresh(p)
    logger.info("period_cancelled", extra={"event": "period_cancelled", "period_id": period_id})
    return p


# -- game sessions ---------------------------------------------------------

def count_open_sessions(session: Session, user_id: str, period_id: int) -> int:
    rows = session.exec(
        select(models.GameSession.id)
        .where(models.GameSession.user_id == user_id)
        .where(models.GameSession.period_id == period_id)
        .where(col(models.GameSession.status).in_(_OPEN_STATUSES))
    ).all()
    return len(rows)


def create_game_session(
    session: Session,
    user_id: str,
    period_id: int,
    question_ids: Sequence[str],
    config,
    seed=None,
    now: Optional[datetime] = None,
    device_id: Optional[str] = None,
    ip_address: Optional[str] = None,
):
    """Start a session with a shuffled question order.

    Returns None when the period is not accepting play or the user already
    holds the maximum number of open sessions for it.
    """
    if not question_ids:
        raise ContractViolation("a session needs at least one question")
    current = resolve_now(now)
    period = session.get(models.Period, period_id)
    if period is None:
        return None
    refresh_period_status(session, period, current)
    if period.status != PeriodStatus.ACTIVE:
        return None
    if count_open_sessions(session, user_id, period_id) >= config.anti_cheat.max_concurrent_sessions:
        logger.info("session_refused_concurrent", extra={"event": "session_refused", "user_id": user_id, "period_id": period_id})
        return None
    order = shuffle(question_ids, seed)
    gs = models.GameSession(
        id=str(uuid.uuid4()),
        user_id=user_id,
        period_id=period_id,
        status=SessionStatus.ACTIVE,
        total_questions=len(order),
        started_at=current,
        last_activity_at=current,
        question_order_json=json.dumps(order),
        device_id=device_id if config.anti_cheat.device_tracking_enabled else None,
        ip_address=ip_address if config.anti_cheat.ip_tracking_enabled else None,
    )
    session.add(gs)
    session.commit()
    session.refresh(gs)
    return gs


def get_session_by_id(session: Session, sid: str):
    return session.get(models.GameSession, sid)


def question_order(gs: models.GameSession) -> List[str]:
    return json.loads(gs.question_order_json or "[]")


def _mark_expired(session: Session, gs: models.GameSession) -> None:
    if gs.status in _OPEN_STATUSES:
        gs.status = SessionStatus.EXPIRED
        session.add(gs)
        session.commit()
        session.refresh(gs)
        submission_buffer.discard(gs.id)
        logger.info("session_expired", extra={"event": "session_expired", "session_id": gs.id, "user_id": gs.user_id})


def resume_session(session: Session, sid: str, config, now: Optional[datetime] = None):
    """Validate a reconnect attempt and apply the verdict.

    Returns (validation, session) or None when the session does not exist.
    """
    with _session_locks.hold(sid):
        gs = session.get(models.GameSession, sid)
        if not gs:
            return None
        current = resolve_now(now)
        verdict = validate_session(gs, config.game.max_resume_time_minutes, current, config.clock_skew_seconds)
        if verdict.reason == REASON_INACTIVE:
            _mark_expired(session, gs)
        elif verdict.can_resume:
            gs.status = SessionStatus.ACTIVE
            gs.last_activity_at = current
            session.add(gs)
            session.commit()
            session.refresh(gs)
        return verdict, gs


def pause_session(session: Session, sid: str, now: Optional[datetime] = None):
    with _session_locks.hold(sid):
        gs = session.get(models.GameSession, sid)
        if not gs or gs.status != SessionStatus.ACTIVE:
            return None
        gs.status = SessionStatus.PAUSED
        gs.last_activity_at = resolve_now(now)
        session.add(gs)
        session.commit()
        session.refresh(gs)
        return gs


def expire_stale_sessions(session: Session, config, now: Optional[datetime] = None) -> int:
    """Mark every open session idle past the resume window as EXPIRED."""
    current = resolve_now(now)
    rows = session.exec(
        select(models.GameSession).where(col(models.GameSession.status).in_(_OPEN_STATUSES))
    ).all()
    expired = 0
    for gs in rows:
        verdict = validate_session(gs, config.game.max_resume_time_minutes, current, config.clock_skew_seconds)
        if verdict.reason == REASON_INACTIVE:
            gs.status = SessionStatus.EXPIRED
            session.add(gs)
            expired += 1
            submission_buffer.discard(gs.id)
    session.commit()
    if expired:
        logger.info("stale_sessions_expired", extra={"event": "stale_sessions_expired", "amount": expired})
    return expired


def _answered(session: Session, sid: str, question_id: str) -> bool:
    row = session.exec(
        select(models.Answer.id)
        .where(models.Answer.session_id == sid)
        .where(models.Answer.question_id == question_id)
        .limit(1)
    ).first()
    return row is not None


def record_submission(
    session: Session,
    submission: Submission,
    config,
    now: Optional[datetime] = None,
) -> Optional[SubmissionOutcome]:
    """Apply one answer to its session.

    Submissions for one session are serialised. Returns None for an unknown
    session; a rejected submission comes back with accepted=False.
    """
    sid = submission.session_id
    with _session_locks.hold(sid):
        gs = session.get(models.GameSession, sid)
        if not gs:
            return None
        current = resolve_now(now)
        verdict = validate_session(gs, config.game.max_resume_time_minutes, current, config.clock_skew_seconds)
        if not verdict.is_valid:
            if verdict.reason == REASON_INACTIVE:
                _mark_expired(session, gs)
            return SubmissionOutcome(False, verdict, reason=verdict.reason, score=gs.score)
        if gs.status not in _OPEN_STATUSES:
            return SubmissionOutcome(False, verdict, reason=verdict.reason or "session closed", score=gs.score)
        if submission.question_id not in question_order(gs):
            raise ContractViolation(f"question {submission.question_id} does not belong to session {sid}")
        if _answered(session, sid, submission.question_id):
            return SubmissionOutcome(False, verdict, reason="question already answered", score=gs.score)

        is_correct = bool(submission.is_correct) and not submission.is_skipped
        apply_answer(gs, is_correct, submission.is_skipped, submission.response_time, current)
        session.add(models.Answer(
            session_id=sid,
            question_id=submission.question_id,
            selected_answer=None if submission.is_skipped else submission.selected_answer,
            is_correct=is_correct,
            is_skipped=submission.is_skipped,
            response_time=submission.response_time,
            answered_at=current,
        ))
        submission_buffer.record(sid)

        result = None
        completed = gs.status == SessionStatus.COMPLETED
        if completed:
            session.flush()
            result = run_anti_cheat(session, gs, config)
        session.add(gs)
        session.commit()
        session.refresh(gs)
        if completed:
            submission_buffer.discard(sid)
        logger.debug("answer_recorded", extra={"event": "answer_recorded", "session_id": sid, "user_id": gs.user_id})
        return SubmissionOutcome(True, verdict, is_correct=is_correct, score=gs.score, completed=completed, anti_cheat=result)


def run_anti_cheat(session: Session, gs: models.GameSession, config) -> AntiCheatResult:
    """Score a session's full answer history and record the verdict on it.

    HIGH risk flags the session for review, which keeps it out of ranking.
    The caller commits.
    """
    answers = session.exec(
        select(models.Answer).where(models.Answer.session_id == gs.id).order_by(models.Answer.id)
    ).all()
    pattern = tuple(1 if a.is_correct else 0 for a in answers)
    avg = sum(a.response_time for a in answers) / len(answers) if answers else gs.average_response_time
    check = AntiCheatCheck(
        submission_rate=submission_buffer.submission_rate(gs.id),
        score_pattern=pattern,
        average_response_time=avg,
        device_id=gs.device_id,
        ip_address=gs.ip_address,
    )
    result = detect_anti_cheat(check, config.anti_cheat)
    gs.risk_level = result.risk_level.name
    gs.flagged_for_review = result.risk_level >= RiskLevel.HIGH
    if result.is_suspicious:
        logger.warning(
            "suspicious_activity",
            extra={
                "event": "anti_cheat_flag",
                "session_id": gs.id,
                "user_id": gs.user_id,
                "risk_level": result.risk_level.name,
                "reasons": list(result.reasons),
            },
        )
    return result


# -- settlement ------------------------------------------------------------

def build_leaderboard_entries(session: Session, period_id: int, min_answers_to_qualify: int) -> List[LeaderboardEntry]:
    rows = session.exec(
        select(models.GameSession)
        .where(models.GameSession.period_id == period_id)
        .where(models.GameSession.status == SessionStatus.COMPLETED)
        .order_by(models.GameSession.completed_at)
    ).all()
    entries = [LeaderboardEntry.from_session(gs, min_answers_to_qualify) for gs in rows]
    return best_entry_per_user(entries)


def get_period_winners(session: Session, period_id: int) -> List[models.Winner]:
    return list(session.exec(
        select(models.Winner).where(models.Winner.period_id == period_id).order_by(models.Winner.rank)
    ).all())


def _detached(rows: Sequence[models.Winner]) -> List[models.Winner]:
    # cache copies, not session-bound rows that expire on the next commit
    return [models.Winner.model_validate(r.model_dump()) for r in rows]


def persist_winners(session: Session, winners: Sequence[RankedWinner], commit: bool = True, now: Optional[datetime] = None) -> List[models.Winner]:
    """Insert Winner rows for real ranked winners.

    Anything else, synthetic display winners in particular, is refused.
    """
    current = resolve_now(now)
    rows = []
    for w in winners:
        if getattr(w, "is_synthetic", False) or not isinstance(w, RankedWinner):
            logger.error("synthetic_winner_refused", extra={"event": "synthetic_winner_refused", "error": repr(w)})
            raise ContractViolation("only real ranked winners can be persisted")
        if w.period_id is None:
            raise ContractViolation("ranked winner has no period_id")
        row = models.Winner(
            user_id=w.user_id,
            period_id=w.period_id,
            rank=w.rank,
            score=w.score,
            payout_amount=w.payout_amount,
            payout_currency=w.payout_currency,
            status=w.status,
            created_at=current,
        )
        session.add(row)
        rows.append(row)
    if commit:
        session.commit()
        for row in rows:
            session.refresh(row)
    return rows


def settle_period(session: Session, period_id: int, config, now: Optional[datetime] = None) -> List[models.Winner]:
    """Rank a finished period and store its winners exactly once.

    Runs are serialised per period in-process; across processes the
    settled_at compare-and-swap and the (period_id, rank) unique constraint
    keep a second run from writing anything. Every run returns the stored
    winner list.
    """
    with _settlement_locks.hold(period_id):
        token = run_id_ctx.set(uuid.uuid4().hex[:12])
        try:
            period = session.get(models.Period, period_id)
            if period is None:
                raise SettlementError(f"unknown period {period_id}")
            session.refresh(period)
            if period.settled_at is not None:
                logger.info("settlement_already_done", extra={"event": "settlement_skipped", "period_id": period_id})
                return get_period_winners(session, period_id)
            if period.status == PeriodStatus.CANCELLED:
                raise SettlementError(f"period {period_id} was cancelled")
            current = resolve_now(now)
            if current <= as_utc(period.end_date):
                raise SettlementError(f"period {period_id} has not ended yet")

            mode = config.mode(period.mode_type)
            entries = build_leaderboard_entries(session, period_id, mode.min_answers_to_qualify)
            ranked = determine_winners(
                entries,
                mode.max_winners,
                mode.min_answers_to_qualify,
                period_id=period_id,
                payout_amount=mode.payout,
                payout_currency=mode.payout_currency,
            )

            claimed = session.execute(
                update(models.Period)
                .where(col(models.Period.id) == period_id)
                .where(col(models.Period.settled_at).is_(None))
                .values(settled_at=current, status=PeriodStatus.COMPLETED, total_participants=len(entries))
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                session.rollback()
                logger.info("settlement_lost_race", extra={"event": "settlement_skipped", "period_id": period_id})
                return get_period_winners(session, period_id)
            try:
                rows = persist_winners(session, ranked, commit=False, now=current)
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.warning("settlement_conflict", extra={"event": "settlement_conflict", "period_id": period_id})
                return get_period_winners(session, period_id)

            rows = get_period_winners(session, period_id)
            invalidate_winners_cache(period_id)
            cache_winners(period_id, _detached(rows))
            logger.info(
                "period_settled",
                extra={
                    "event": "period_settled",
                    "period_id": period_id,
                    "mode": models.ModeType(period.mode_type).value,
                    "winners": [r.user_id for r in rows],
                },
            )
            return rows
        finally:
            run_id_ctx.reset(token)


def update_winner_status(session: Session, winner_id: int, new_status) -> Optional[models.Winner]:
    """Move a winner along PENDING -> APPROVED -> PAID, or to REJECTED."""
    w = session.get(models.Winner, winner_id)
    if not w:
        return None
    target = WinnerStatus(new_status)
    current = WinnerStatus(w.status)
    if target not in _WINNER_TRANSITIONS[current]:
        raise ContractViolation(f"winner {winner_id} cannot move from {current.value} to {target.value}")
    w.status = target
    session.add(w)
    session.commit()
    session.refresh(w)
    invalidate_winners_cache(w.period_id)
    logger.info("winner_status_changed", extra={"event": f"winner_{target.value.lower()}", "period_id": w.period_id, "user_id": w.user_id})
    return w


def get_winners_for_viewer(
    session: Session,
    period_id: int,
    viewer_id: str,
    config,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
):
    """Winner list as the given viewer may see it.

    Returns None for an unknown period. Gated viewers get a synthetic list
    (cached per period so refreshes look stable).
    """
    period = session.get(models.Period, period_id)
    if period is None:
        return None
    mode = config.mode(period.mode_type)
    wallet = session.get(models.Wallet, viewer_id)
    earnings = wallet.lifetime_earnings if wallet else 0.0
    if should_show_actual_winners(earnings, period.mode_type, config.winner_gating_thresholds):
        real = get_cached_winners(period_id)
        if real is None:
            real = get_period_winners(session, period_id)
            if period.settled_at is not None:
                cache_winners(period_id, _detached(real))
        return real
    synthetic = get_cached_synthetic_winners(period_id)
    if synthetic is None:
        synthetic = generate_synthetic_winners(
            period.mode_type, mode.max_winners, mode.payout, mode.payout_currency, now=now, rng=rng
        )
        cache_synthetic_winners(period_id, synthetic)
    return synthetic


# -- wallets ---------------------------------------------------------------

def get_or_create_wallet(session: Session, user_id: str, now: Optional[datetime] = None):
    w = session.get(models.Wallet, user_id)
    if w:
        return w
    w = models.Wallet(user_id=user_id, ad_rewards_reset_at=next_utc_midnight(now))
    session.add(w)
    try:
        session.commit()
    except IntegrityError:
        # created concurrently by another request
        session.rollback()
        return session.get(models.Wallet, user_id)
    session.refresh(w)
    return w


def claim_daily_credits(session: Session, user_id: str, config, now: Optional[datetime] = None):
    """Grant the daily credits once per UTC day. Returns the wallet, or None when ineligible."""
    current = resolve_now(now)
    with _claim_locks.hold(user_id):
        wallet = get_or_create_wallet(session, user_id, current)
        if not can_claim_daily_credits(wallet.last_daily_claim_at, current, config.clock_skew_seconds):
            return None
        day_start = datetime(current.year, current.month, current.day, tzinfo=timezone.utc)
        amount = config.credits.daily_claim_amount
        res = session.execute(
            update(models.Wallet)
            .where(col(models.Wallet.user_id) == user_id)
            .where(or_(col(models.Wallet.last_daily_claim_at).is_(None), col(models.Wallet.last_daily_claim_at) < day_start))
            .values(credits_balance=col(models.Wallet.credits_balance) + amount, last_daily_claim_at=current)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            session.rollback()
            return None
        session.commit()
        session.refresh(wallet)
        logger.info("daily_credits_claimed", extra={"event": "daily_claim", "user_id": user_id, "amount": amount})
        return wallet


def claim_ad_reward(session: Session, user_id: str, config, now: Optional[datetime] = None):
    """Credit one ad view, resetting the daily counter when it is due. None when over the limit."""
    current = resolve_now(now)
    with _claim_locks.hold(user_id):
        wallet = get_or_create_wallet(session, user_id, current)
        if wallet.ad_rewards_reset_at is None:
            raise ContractViolation(f"wallet {user_id} has no ad_rewards_reset_at")
        limit = config.credits.ad_reward_daily_limit
        if limit <= 0 or not can_receive_ad_reward(wallet.ad_rewards_today, wallet.ad_rewards_reset_at, limit, current):
            return None
        amount = config.credits.ad_reward_amount
        stmt = update(models.Wallet).where(col(models.Wallet.user_id) == user_id)
        if current >= as_utc(wallet.ad_rewards_reset_at):
            stmt = stmt.where(col(models.Wallet.ad_rewards_reset_at) <= current).values(
                ad_rewards_today=1,
                ad_rewards_reset_at=next_utc_midnight(current),
                credits_balance=col(models.Wallet.credits_balance) + amount,
            )
        else:
            stmt = stmt.where(col(models.Wallet.ad_rewards_today) == wallet.ad_rewards_today).values(
                ad_rewards_today=col(models.Wallet.ad_rewards_today) + 1,
                credits_balance=col(models.Wallet.credits_balance) + amount,
            )
        res = session.execute(stmt.execution_options(synchronize_session=False))
        if res.rowcount != 1:
            session.rollback()
            return None
        session.commit()
        session.refresh(wallet)
        logger.info("ad_reward_granted", extra={"event": "ad_reward", "user_id": user_id, "amount": amount})
        return wallet


def wallet_summary(session: Session, user_id: str, config, now: Optional[datetime] = None) -> dict:
    current = resolve_now(now)
    wallet = get_or_create_wallet(session, user_id, current)
    limit = config.credits.ad_reward_daily_limit
    return {
        'user_id': user_id,
        'credits_balance': wallet.credits_balance,
        'can_claim_daily': can_claim_daily_credits(wallet.last_daily_claim_at, current, config.clock_skew_seconds),
        'can_receive_ad_reward': limit > 0 and can_receive_ad_reward(wallet.ad_rewards_today, wallet.ad_rewards_reset_at, limit, current),
        'ad_rewards_today': wallet.ad_rewards_today,
        'ad_reward_limit': limit,
    }
