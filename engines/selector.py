"""Priority-ranked, weighted-random selection of the next clue to drill."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, TypeVar

from engines.spaced_repetition import ScoredClue

logger = logging.getLogger(__name__)

PRIORITY_TIE_TOLERANCE = 0.1
# The performance view ranks on the raw Wilson bound with a narrower band.
WILSON_TIE_TOLERANCE = 0.05
TOP_CANDIDATES = 5

_T = TypeVar("_T")


class NoEligibleClues(LookupError):
    """Raised when there is nothing to select from."""


class RandomSource(Protocol):
    def random(self) -> float: ...

    def shuffle(self, x: list) -> None: ...


_DEFAULT_RNG = random.Random()


def shuffle_near_ties(
    items: Sequence[_T],
    key: Callable[[_T], float],
    tolerance: float,
    rng: RandomSource,
) -> List[_T]:
    """Stable-sort ``items`` by ``key`` and shuffle runs of near-equal keys.

    A run (bucket) grows while each element is within ``tolerance`` of its
    predecessor; only the order inside a bucket is randomised.
    """

    ordered = sorted(items, key=key)
    ranked: List[_T] = []
    bucket: List[_T] = []
    previous: Optional[float] = None
    for item in ordered:
        value = key(item)
        if bucket and previous is not None and abs(value - previous) >= tolerance:
            rng.shuffle(bucket)
            ranked.extend(bucket)
            bucket = []
        bucket.append(item)
        previous = value
    if bucket:
        rng.shuffle(bucket)
        ranked.extend(bucket)
    return ranked


def weighted_index(count: int, rng: RandomSource) -> int:
    """Draw an index in ``range(count)`` with linear weights ``count, ..., 1``."""

    if count <= 0:
        raise ValueError("count must be positive")
    weights = [count - i for i in range(count)]
    total_weight = sum(weights)
    draw = rng.random() * total_weight
    cumulative = 0
    for idx, weight in enumerate(weights):
        cumulative += weight
        if draw < cumulative:
            return idx
    return count - 1


@dataclass
class Selection:
    clue: ScoredClue
    rank: int
    candidate_count: int
    eligible_count: int

    @property
    def wilson_lower(self) -> float:
        return self.clue.wilson_lower

    @property
    def total_attempts(self) -> int:
        return self.clue.total_attempts

    @property
    def correct_attempts(self) -> int:
        return self.clue.correct_attempts

    @property
    def priority(self) -> float:
        return self.clue.priority

    @property
    def min_interval(self) -> float:
        return self.clue.min_interval

    @property
    def time_since_last_attempt(self) -> Optional[int]:
        return self.clue.time_since_last_attempt


class Selector:
    def __init__(
        self,
        rng: Optional[RandomSource] = None,
        *,
        tie_tolerance: float = PRIORITY_TIE_TOLERANCE,
        top_count: int = TOP_CANDIDATES,
    ) -> None:
        self.rng = rng if rng is not None else _DEFAULT_RNG
        self.tie_tolerance = tie_tolerance
        self.top_count = top_count

    def rank(self, scored: Sequence[ScoredClue]) -> List[ScoredClue]:
        return shuffle_near_ties(scored, lambda item: item.priority, self.tie_tolerance, self.rng)

    def select_next(self, scored: Sequence[ScoredClue]) -> Selection:
        if not scored:
            raise NoEligibleClues("no eligible clues to select from")

        ranked = self.rank(scored)
        candidates = ranked[: min(self.top_count, len(ranked))]
        index = weighted_index(len(candidates), self.rng)
        chosen = candidates[index]
        logger.debug(
            "Selected %s/%s (rank %d of %d, priority %.3f, eligible %d)",
            chosen.puzzle_date,
            chosen.clue_id,
            index,
            len(candidates),
            chosen.priority,
            len(scored),
        )
        return Selection(
            clue=chosen,
            rank=index,
            candidate_count=len(candidates),
            eligible_count=len(scored),
        )


def rank_by_wilson(
    entries: Sequence[_T],
    *,
    wilson: Callable[[_T], float],
    attempts: Callable[[_T], int],
    rng: Optional[RandomSource] = None,
    tolerance: float = WILSON_TIE_TOLERANCE,
) -> List[_T]:
    """Order entries for the performance view: unattempted first, then weakest."""

    source = rng if rng is not None else _DEFAULT_RNG
    unattempted = [entry for entry in entries if attempts(entry) == 0]
    attempted = [entry for entry in entries if attempts(entry) > 0]
    return unattempted + shuffle_near_ties(attempted, wilson, tolerance, source)
