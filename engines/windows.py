"""Windowed accuracy rollups over raw attempt logs."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Optional, Protocol, Sequence

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS
WEEK_MS = 7 * DAY_MS

# ``None`` means the window is unbounded.
WINDOWS: Dict[str, Optional[int]] = {
    "lifetime": None,
    "last_hour": HOUR_MS,
    "last_day": DAY_MS,
    "last_week": WEEK_MS,
}


class Attempt(Protocol):
    timestamp: int
    correct: bool


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def accuracy_percent(correct: int, total: int) -> Optional[int]:
    """Whole-number accuracy, or ``None`` when nothing was attempted."""

    if total <= 0:
        return None
    return round_half_up(100 * correct / total)


@dataclass(frozen=True)
class WindowStats:
    total: int
    correct: int
    percent: Optional[int]

    @classmethod
    def empty(cls) -> "WindowStats":
        return cls(total=0, correct=0, percent=None)

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ClueWindowStats:
    lifetime: WindowStats
    last_hour: WindowStats
    last_day: WindowStats
    last_week: WindowStats

    def to_payload(self) -> Dict[str, Any]:
        return {
            "lifetime": self.lifetime.to_payload(),
            "lastHour": self.last_hour.to_payload(),
            "lastDay": self.last_day.to_payload(),
            "lastWeek": self.last_week.to_payload(),
        }


def window_stats(attempts: Iterable[Attempt], now_ms: int, window: str = "lifetime") -> WindowStats:
    """Count and accuracy for attempts made inside ``window`` ending at ``now_ms``."""

    try:
        duration = WINDOWS[window]
    except KeyError:
        raise ValueError(f"unknown window {window!r}; expected one of {sorted(WINDOWS)}") from None

    cutoff = None if duration is None else now_ms - duration
    total = 0
    correct = 0
    for attempt in attempts:
        if cutoff is not None and attempt.timestamp < cutoff:
            continue
        total += 1
        if attempt.correct:
            correct += 1
    return WindowStats(total=total, correct=correct, percent=accuracy_percent(correct, total))


def windowed_stats(attempts: Sequence[Attempt], now_ms: int) -> ClueWindowStats:
    return ClueWindowStats(
        lifetime=window_stats(attempts, now_ms, "lifetime"),
        last_hour=window_stats(attempts, now_ms, "last_hour"),
        last_day=window_stats(attempts, now_ms, "last_day"),
        last_week=window_stats(attempts, now_ms, "last_week"),
    )


def puzzle_weekly_accuracy(per_clue_attempts: Sequence[Sequence[Attempt]], now_ms: int) -> WindowStats:
    """Weekly accuracy for a whole puzzle.

    Every clue contributes its own weekly accuracy and clues without weekly
    attempts contribute 0, so untested clues pull the average down. ``total``
    and ``correct`` are plain sums across clues; ``percent`` is the mean of
    the per-clue accuracies.
    """

    if not per_clue_attempts:
        return WindowStats.empty()

    accuracy_sum = 0.0
    weekly_total = 0
    weekly_correct = 0
    for attempts in per_clue_attempts:
        stats = window_stats(attempts, now_ms, "last_week")
        weekly_total += stats.total
        weekly_correct += stats.correct
        if stats.total:
            accuracy_sum += stats.correct / stats.total

    return WindowStats(
        total=weekly_total,
        correct=weekly_correct,
        percent=round_half_up(100 * accuracy_sum / len(per_clue_attempts)),
    )
