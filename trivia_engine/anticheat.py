"""
Heuristic anti-cheat scoring.

The detector is advisory: it returns a risk classification with
human-readable reasons and leaves enforcement to the caller. Device and IP
metadata travel with the check and the result but are not scored yet.
"""

import time
from collections import deque
from dataclasses import dataclass
from enum import IntEnum
from typing import Deque, Dict, List, Optional, Sequence, Tuple

from .errors import ContractViolation
from .locks import KeyedLock

REASON_RATE = "excessive submission rate"
REASON_ACCURACY = "suspiciously high accuracy"
REASON_RESPONSE_TIME = "unrealistic response times"
REASON_NO_VARIATION = "lack of natural variation"

MIN_HUMAN_RESPONSE_SECONDS = 2.0
MIN_PATTERN_FOR_VARIATION = 10
RATE_WINDOW_SECONDS = 60.0


class RiskLevel(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2


@dataclass(frozen=True)
class AntiCheatCheck:
    submission_rate: float  # submissions per minute, trailing window
    score_pattern: Tuple[int, ...]
    average_response_time: float  # seconds
    device_id: Optional[str] = None
    ip_address: Optional[str] = None

    def __post_init__(self):
        if self.submission_rate is None or self.average_response_time is None:
            raise ContractViolation("submission_rate and average_response_time are required")
        pattern = tuple(self.score_pattern)
        for v in pattern:
            if v not in (0, 1):
                raise ContractViolation(f"score_pattern may only contain 0 and 1, got {v!r}")
        object.__setattr__(self, "score_pattern", pattern)


@dataclass(frozen=True)
class AntiCheatResult:
    is_suspicious: bool
    reasons: Tuple[str, ...]
    risk_level: RiskLevel
    device_id: Optional[str] = None
    ip_address: Optional[str] = None


def _has_variation(pattern: Sequence[int]) -> bool:
    return any(pattern[i] != pattern[i - 1] for i in range(1, len(pattern)))


def detect_anti_cheat(check: AntiCheatCheck, settings) -> AntiCheatResult:
    """Score a check against AntiCheatSettings.

    Each rule may add a reason and raise the risk level; no rule lowers it.
    """
    reasons: List[str] = []
    risk = RiskLevel.LOW
    pattern = check.score_pattern

    if check.submission_rate > settings.max_submissions_per_minute:
        reasons.append(REASON_RATE)
        risk = RiskLevel.HIGH

    if pattern:
        accuracy = sum(pattern) / len(pattern)
        if accuracy > settings.suspicious_score_threshold:
            reasons.append(REASON_ACCURACY)
            risk = max(risk, RiskLevel.MEDIUM)

    if check.average_response_time < MIN_HUMAN_RESPONSE_SECONDS:
        reasons.append(REASON_RESPONSE_TIME)
        risk = max(risk, RiskLevel.MEDIUM)

    if len(pattern) > MIN_PATTERN_FOR_VARIATION and not _has_variation(pattern):
        reasons.append(REASON_NO_VARIATION)
        risk = RiskLevel.HIGH

    return AntiCheatResult(
        is_suspicious=bool(reasons),
        reasons=tuple(reasons),
        risk_level=risk,
        device_id=check.device_id,
        ip_address=check.ip_address,
    )


class SubmissionBuffer:
    """Per-session trailing window of submission times, safe for concurrent writers.

    Only timestamps are kept; the score pattern and response times come
    from stored answers. Each session has its own lock so replayed
    submissions from one client are folded in one at a time.
    """

    def __init__(self, window_seconds: float = RATE_WINDOW_SECONDS, clock=time.monotonic):
        self._window = window_seconds
        self._clock = clock
        self._sessions: Dict[str, Deque[float]] = {}
        self._locks = KeyedLock()

    def _trim(self, timestamps: Deque[float], now: float) -> None:
        cutoff = now - self._window
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

    def record(self, session_id: str) -> None:
        with self._locks.hold(session_id):
            timestamps = self._sessions.get(session_id)
            if timestamps is None:
                timestamps = self._sessions[session_id] = deque()
            now = self._clock()
            timestamps.append(now)
            self._trim(timestamps, now)

    def submission_rate(self, session_id: str) -> float:
        """Submissions per minute over the trailing window. 0.0 for unknown sessions."""
        with self._locks.hold(session_id):
            timestamps = self._sessions.get(session_id)
            if not timestamps:
                return 0.0
            self._trim(timestamps, self._clock())
            return len(timestamps) * 60.0 / self._window

    def discard(self, session_id: str) -> None:
        with self._locks.hold(session_id):
            self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)
