"""Conservative mastery estimation for clue attempt histories."""

from __future__ import annotations

import math
from functools import lru_cache
from statistics import NormalDist

DEFAULT_CONFIDENCE = 0.95


@lru_cache(maxsize=16)
def z_score(confidence: float = DEFAULT_CONFIDENCE) -> float:
    """Return the two-sided standard-normal quantile for ``confidence``."""

    if not 0.0 < confidence < 1.0:
        raise ValueError(f"confidence must be between 0 and 1, got {confidence}")
    if confidence == DEFAULT_CONFIDENCE:
        return 1.96
    return NormalDist().inv_cdf(1.0 - (1.0 - confidence) / 2.0)


def wilson_lower_bound(successes: int, total: int, confidence: float = DEFAULT_CONFIDENCE) -> float:
    """Lower bound of the Wilson score interval for ``successes`` out of ``total``.

    A clue that has never been attempted scores ``0.0`` so it sorts ahead of
    everything with evidence. With few attempts the bound stays well below the
    raw proportion: 1 out of 1 scores lower than 50 out of 50.
    """

    if total < 0 or successes < 0 or successes > total:
        raise ValueError(f"expected 0 <= successes <= total, got {successes}/{total}")
    if total == 0:
        return 0.0

    z = z_score(confidence)
    n = float(total)
    p = successes / n
    z2 = z * z

    numerator = p + z2 / (2 * n) - z * math.sqrt((p * (1 - p) + z2 / (4 * n)) / n)
    denominator = 1 + z2 / n
    return max(0.0, min(1.0, numerator / denominator))
