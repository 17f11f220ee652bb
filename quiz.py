"""Clue drilling service: next-clue selection, attempt logging and analytics.

Every function here re-derives its answer from the full attempt history in
the store. Per-clue attempt logs are fetched concurrently; a store failure in
any single fetch aborts the whole call so aggregates are never computed from
partial data.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

from pydantic import ValidationError

import db
from db import PuzzleNotFound, StoreFailure
from engines.selector import NoEligibleClues, RandomSource, Selector, rank_by_wilson
from engines.spaced_repetition import score_clue
from engines.windows import ClueWindowStats, puzzle_weekly_accuracy, round_half_up, windowed_stats
from env_validation import get_env_bool, get_env_int
from schemas import (
    AttemptBody,
    AttemptRecord,
    ClueRecord,
    ClueUpdateBody,
    PuzzleRecord,
    PuzzleUpdateBody,
    SavePuzzleBody,
)

__all__ = [
    "NoPuzzles",
    "NoEligibleClues",
    "InvalidInput",
    "ClueNotFound",
    "PuzzleNotFound",
    "StoreFailure",
    "get_next_clue",
    "get_performance_report",
    "get_clue_stats",
    "record_attempt",
    "get_puzzle_stats",
    "list_incomplete_clues",
    "list_puzzles",
    "get_puzzle_detail",
    "save_puzzle",
    "update_clue",
    "delete_clue",
    "set_marked_complete",
]

logger = logging.getLogger("clue_trainer.quiz")

_T = TypeVar("_T")
_R = TypeVar("_R")

MINUTE_MS = 60 * 1000


class NoPuzzles(LookupError):
    """The store holds no puzzles at all."""


class InvalidInput(ValueError):
    """A request payload is malformed."""


class ClueNotFound(LookupError):
    """The puzzle exists but has no clue with the requested id."""


def now_ms() -> int:
    return int(time.time() * 1000)


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts)


def _fan_out(fn: Callable[[_T], _R], items: Sequence[_T]) -> List[_R]:
    """Run ``fn`` over ``items`` on a bounded thread pool, preserving order."""

    if not items:
        return []
    workers = min(get_env_int("FETCH_CONCURRENCY", 8), len(items))
    if workers <= 1:
        return [fn(item) for item in items]
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="clue-fetch") as pool:
        return list(pool.map(fn, items))


def _fetch_attempt_logs(keys: Sequence[Tuple[str, str]]) -> List[List[AttemptRecord]]:
    return _fan_out(lambda key: db.get_attempts(key[0], key[1]), keys)


def _load_puzzles(dates: Sequence[str]) -> List[Tuple[str, Optional[PuzzleRecord]]]:
    return list(zip(dates, _fan_out(db.get_puzzle, dates)))


def _eligible_clues(
    puzzles: Sequence[Tuple[str, Optional[PuzzleRecord]]],
    include_marked_complete: bool,
) -> List[Tuple[str, ClueRecord]]:
    eligible: List[Tuple[str, ClueRecord]] = []
    for date, record in puzzles:
        if record is None:
            continue
        if record.marked_complete and not include_marked_complete:
            continue
        eligible.extend((date, clue) for clue in record.clues if clue.is_eligible)
    return eligible


def _clue_summary(clue: ClueRecord, puzzle_date: str) -> Dict[str, Any]:
    return {
        "clueId": clue.clue_id,
        "text": clue.text,
        "pattern": clue.pattern,
        "answer": clue.answer,
        "number": clue.number,
        "direction": clue.direction,
        "puzzleDate": puzzle_date,
    }


def _minutes(value: Optional[float]) -> Optional[int]:
    if value is None:
        return None
    return round_half_up(value / MINUTE_MS)


# ---------- Selection ----------
def get_next_clue(
    now: Optional[int] = None,
    *,
    include_marked_complete: Optional[bool] = None,
    rng: Optional[RandomSource] = None,
) -> Dict[str, Any]:
    """Pick the next clue to drill.

    Raises :class:`NoPuzzles` when nothing was ever saved and
    :class:`NoEligibleClues` when no completed, non-ignored clue is left after
    the completion filter.
    """

    now = now_ms() if now is None else now
    if include_marked_complete is None:
        include_marked_complete = get_env_bool("INCLUDE_MARKED_COMPLETE", False)

    dates = sorted(db.list_puzzle_dates())
    if not dates:
        raise NoPuzzles("No puzzles found")

    eligible = _eligible_clues(_load_puzzles(dates), include_marked_complete)
    if not eligible:
        raise NoEligibleClues("No completed clues found")

    logs = _fetch_attempt_logs([(date, clue.clue_id) for date, clue in eligible])
    scored = [score_clue(clue, date, attempts, now) for (date, clue), attempts in zip(eligible, logs)]

    selection = Selector(rng).select_next(scored)
    chosen = selection.clue
    logger.info(
        "Next clue %s/%s: priority=%.3f wilson=%.3f attempts=%d (%d eligible)",
        chosen.puzzle_date,
        chosen.clue_id,
        selection.priority,
        selection.wilson_lower,
        selection.total_attempts,
        selection.eligible_count,
    )

    return {
        "clue": _clue_summary(chosen.clue, chosen.puzzle_date),
        "totalCompleted": len(eligible),
        "wilsonLower": selection.wilson_lower,
        "attempts": selection.total_attempts,
        "correct": selection.correct_attempts,
        "spacedRepetition": {
            "priority": selection.priority,
            "minIntervalMs": selection.min_interval,
            "minIntervalMinutes": _minutes(selection.min_interval),
            "timeSinceLastMs": selection.time_since_last_attempt,
            "timeSinceLastMinutes": _minutes(selection.time_since_last_attempt),
        },
    }


# ---------- Attempts ----------
def parse_attempt(payload: Any) -> AttemptBody:
    if not isinstance(payload, Mapping):
        raise InvalidInput("Missing clueId, puzzleDate, or correct (body must be a JSON object)")
    try:
        return AttemptBody.model_validate(payload)
    except ValidationError as exc:
        raise InvalidInput(f"Missing clueId, puzzleDate, or correct ({_validation_message(exc)})") from exc


def _require_ids(clue_id: Optional[str], puzzle_date: Optional[str]) -> None:
    if not clue_id or not puzzle_date:
        raise InvalidInput("Missing clueId or puzzleDate")


def get_clue_stats(clue_id: str, puzzle_date: str, now: Optional[int] = None) -> ClueWindowStats:
    _require_ids(clue_id, puzzle_date)
    now = now_ms() if now is None else now
    return windowed_stats(db.get_attempts(puzzle_date, clue_id), now)


def record_attempt(clue_id: str, puzzle_date: str, correct: Any, now: Optional[int] = None) -> ClueWindowStats:
    """Append one attempt and return the clue's refreshed window stats."""

    body = parse_attempt({"clueId": clue_id, "puzzleDate": puzzle_date, "correct": correct})
    now = now_ms() if now is None else now
    db.append_attempt(body.puzzle_date, body.clue_id, AttemptRecord(timestamp=now, correct=body.correct))
    logger.info("Recorded %s attempt for %s/%s", "correct" if body.correct else "wrong", body.puzzle_date, body.clue_id)
    return get_clue_stats(body.clue_id, body.puzzle_date, now)


# ---------- Analytics ----------
def get_performance_report(now: Optional[int] = None, *, rng: Optional[RandomSource] = None) -> List[Dict[str, Any]]:
    """Every eligible clue with windowed stats, weakest first.

    Clues that were never attempted lead, followed by the rest in ascending
    order of their (rounded) Wilson bound.
    """

    now = now_ms() if now is None else now
    dates = sorted(db.list_puzzle_dates())
    if not dates:
        return []

    eligible = _eligible_clues(_load_puzzles(dates), include_marked_complete=True)
    logs = _fetch_attempt_logs([(date, clue.clue_id) for date, clue in eligible])

    entries = []
    for (date, clue), attempts in zip(eligible, logs):
        scored = score_clue(clue, date, attempts, now)
        windows = windowed_stats(attempts, now)
        entry = _clue_summary(clue, date)
        entry["stats"] = {
            "total": windows.lifetime.total,
            "correct": windows.lifetime.correct,
            "percent": windows.lifetime.percent,
            "wilsonLower": round(scored.wilson_lower, 3),
            "lastHour": windows.last_hour.to_payload(),
            "lastDay": windows.last_day.to_payload(),
            "lastWeek": windows.last_week.to_payload(),
        }
        entries.append(entry)

    return rank_by_wilson(
        entries,
        wilson=lambda entry: entry["stats"]["wilsonLower"],
        attempts=lambda entry: entry["stats"]["total"],
        rng=rng,
    )


def get_puzzle_stats(now: Optional[int] = None) -> List[Dict[str, Any]]:
    """Completion counts and weekly drill accuracy per puzzle, newest first."""

    now = now_ms() if now is None else now
    dates = sorted(db.list_puzzle_dates())
    puzzles = _load_puzzles(dates)

    keys = [(date, clue.clue_id) for date, record in puzzles if record for clue in record.clues]
    logs = iter(_fetch_attempt_logs(keys))

    results = []
    for date, record in puzzles:
        clues = record.clues if record else []
        clue_logs = [next(logs) for _ in clues]
        complete = sum(1 for clue in clues if clue.is_completed)
        weekly = puzzle_weekly_accuracy(clue_logs, now)
        results.append(
            {
                "date": date,
                "total": len(clues),
                "complete": complete,
                "incomplete": len(clues) - complete,
                "markedComplete": bool(record and record.marked_complete),
                "weeklyQuizStats": weekly.to_payload(),
            }
        )

    results.sort(key=lambda item: item["date"], reverse=True)
    return results


# ---------- Puzzles ----------
def list_incomplete_clues() -> List[Dict[str, Any]]:
    """Non-ignored clues still lacking a full-length answer."""

    dates = sorted(db.list_puzzle_dates())
    items = []
    for date, record in _load_puzzles(dates):
        if record is None:
            continue
        for clue in record.clues:
            if clue.ignored or clue.is_completed:
                continue
            items.append({**clue.to_payload(), "puzzleDate": date})

    items.sort(key=lambda item: (item["direction"], item["number"]))
    items.sort(key=lambda item: item["puzzleDate"], reverse=True)
    return items


def list_puzzles() -> Dict[str, Any]:
    dates = sorted(db.list_puzzle_dates(), reverse=True)
    puzzles = []
    for date, record in _load_puzzles(dates):
        if record is None:
            puzzles.append({"date": date, "total": 0, "incomplete": 0})
            continue
        incomplete = sum(1 for clue in record.clues if not clue.is_completed)
        puzzles.append({"date": date, "total": len(record.clues), "incomplete": incomplete})
    return {"dates": dates, "puzzles": puzzles}


def get_puzzle_detail(puzzle_date: str) -> Dict[str, Any]:
    """A stored puzzle with lifetime drill counts for each completed clue."""

    record = db.get_puzzle(puzzle_date)
    if record is None:
        raise PuzzleNotFound(puzzle_date)

    completed = [clue for clue in record.clues if clue.is_completed]
    fetched = _fetch_attempt_logs([(puzzle_date, clue.clue_id) for clue in completed])
    logs = {clue.clue_id: attempts for clue, attempts in zip(completed, fetched)}

    clues = []
    for clue in record.clues:
        attempts = logs.get(clue.clue_id) if clue.is_completed else None
        quiz_stats = None
        if attempts:
            quiz_stats = {"correct": sum(1 for a in attempts if a.correct), "total": len(attempts)}
        clues.append({**clue.to_payload(), "quizStats": quiz_stats})

    payload = record.to_payload()
    payload["clues"] = clues
    return payload


def save_puzzle(payload: Mapping[str, Any]) -> PuzzleRecord:
    try:
        body = SavePuzzleBody.model_validate(payload)
    except ValidationError as exc:
        raise InvalidInput(f"Missing puzzleDate or clues array ({_validation_message(exc)})") from exc
    return db.save_puzzle(body.puzzle_date, body.clues)


def update_clue(clue_id: str, payload: Mapping[str, Any]) -> ClueRecord:
    """Merge ``updates`` into one clue; a new answer must fit the pattern."""

    try:
        body = ClueUpdateBody.model_validate(payload)
    except ValidationError as exc:
        raise InvalidInput(f"Missing puzzleDate or updates ({_validation_message(exc)})") from exc

    def _apply(record: PuzzleRecord) -> ClueRecord:
        index = record.find_clue(clue_id)
        if index == -1:
            raise ClueNotFound(clue_id)
        clue = record.clues[index]

        try:
            updated = ClueRecord.model_validate({**clue.to_payload(), **body.updates})
        except ValidationError as exc:
            raise InvalidInput(_validation_message(exc)) from exc
        answer_changed = "answer" in body.updates
        if answer_changed and updated.answer and clue.pattern and len(updated.answer) != len(clue.pattern):
            raise InvalidInput(f"Answer must be {len(clue.pattern)} characters")
        record.clues[index] = updated
        return updated

    updated = db.modify_puzzle(body.puzzle_date, _apply)
    logger.info("Updated clue %s/%s", body.puzzle_date, clue_id)
    return updated


def delete_clue(clue_id: str, puzzle_date: Optional[str]) -> None:
    if not puzzle_date:
        raise InvalidInput("Missing puzzleDate")

    def _remove(record: PuzzleRecord) -> None:
        record.clues = [clue for clue in record.clues if clue.clue_id != clue_id]

    db.modify_puzzle(puzzle_date, _remove)
    logger.info("Deleted clue %s/%s", puzzle_date, clue_id)


def set_marked_complete(puzzle_date: str, payload: Mapping[str, Any]) -> bool:
    try:
        body = PuzzleUpdateBody.model_validate(payload)
    except ValidationError as exc:
        raise InvalidInput("markedComplete must be a boolean") from exc

    def _mark(record: PuzzleRecord) -> bool:
        record.marked_complete = body.marked_complete
        return record.marked_complete

    return db.modify_puzzle(puzzle_date, _mark)
