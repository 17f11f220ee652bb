"""Adaptive re-exposure intervals and review priority for drilled clues."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from engines.scoring import wilson_lower_bound
from engines.windows import Attempt
from schemas import ClueRecord

MINUTE_MS = 60 * 1000

# Priority bands: unseen clues sort below everything, resting clues above
# every eligible one.
UNSEEN_PRIORITY = -1000.0
RESTING_PRIORITY_BASE = 1000.0


@dataclass
class ScoredClue:
    """A clue plus everything derived from its attempt log at one instant."""

    clue: ClueRecord
    puzzle_date: str
    wilson_lower: float
    total_attempts: int
    correct_attempts: int
    last_attempt_time: int
    min_interval: float
    priority: float
    time_since_last_attempt: Optional[int] = None

    def __post_init__(self) -> None:
        if not 0 <= self.correct_attempts <= self.total_attempts:
            raise ValueError(
                f"expected 0 <= correct <= total, got {self.correct_attempts}/{self.total_attempts}"
            )

    @property
    def clue_id(self) -> str:
        return self.clue.clue_id


class IntervalScheduler:
    def __init__(
        self,
        *,
        base_minutes: float = 1.0,
        max_minutes: float = 240.0,
        attempt_saturation: int = 10,
        overdue_cap: float = 5.0,
        overdue_weight: float = 0.1,
    ) -> None:
        # Wilson 0.0 rests ~1 minute, 0.5 ~10 minutes, 0.8 ~1 hour, 0.95+ ~4 hours
        # before the attempt-volume stretch is applied.
        self.base_minutes = base_minutes
        self.max_minutes = max_minutes
        self.attempt_saturation = attempt_saturation
        self.overdue_cap = overdue_cap
        self.overdue_weight = overdue_weight

    def min_interval_ms(self, wilson_lower: float, total: int) -> float:
        """Shortest rest in milliseconds before a clue should be shown again."""

        if total == 0:
            return 0.0

        scale_factor = wilson_lower ** 2 * self.max_minutes + self.base_minutes
        attempt_bonus = min(total / self.attempt_saturation, 1.0)
        minutes = scale_factor * (1 + attempt_bonus * wilson_lower)
        return minutes * MINUTE_MS

    def priority(self, wilson_lower: float, total: int, last_attempt_ms: int, now_ms: int) -> float:
        """Review priority; lower values are shown sooner."""

        if total == 0:
            return UNSEEN_PRIORITY

        interval = self.min_interval_ms(wilson_lower, total)
        elapsed = now_ms - last_attempt_ms

        if elapsed < interval:
            remaining = (interval - elapsed) / interval
            return RESTING_PRIORITY_BASE + remaining * 1000

        overdue_ratio = elapsed / interval
        penalty = min(overdue_ratio - 1, self.overdue_cap) * self.overdue_weight
        return wilson_lower - penalty

    def score_clue(
        self,
        clue: ClueRecord,
        puzzle_date: str,
        attempts: Sequence[Attempt],
        now_ms: int,
    ) -> ScoredClue:
        total = len(attempts)
        correct = sum(1 for attempt in attempts if attempt.correct)
        wilson = wilson_lower_bound(correct, total)
        last_attempt = max((attempt.timestamp for attempt in attempts), default=0)

        return ScoredClue(
            clue=clue,
            puzzle_date=puzzle_date,
            wilson_lower=wilson,
            total_attempts=total,
            correct_attempts=correct,
            last_attempt_time=last_attempt,
            min_interval=self.min_interval_ms(wilson, total),
            priority=self.priority(wilson, total, last_attempt, now_ms),
            time_since_last_attempt=now_ms - last_attempt if total else None,
        )


DEFAULT_SCHEDULER = IntervalScheduler()


def min_interval_ms(wilson_lower: float, total: int) -> float:
    return DEFAULT_SCHEDULER.min_interval_ms(wilson_lower, total)


def priority(wilson_lower: float, total: int, last_attempt_ms: int, now_ms: int) -> float:
    return DEFAULT_SCHEDULER.priority(wilson_lower, total, last_attempt_ms, now_ms)


def score_clue(clue: ClueRecord, puzzle_date: str, attempts: Sequence[Attempt], now_ms: int) -> ScoredClue:
    return DEFAULT_SCHEDULER.score_clue(clue, puzzle_date, attempts, now_ms)
