from __future__ import annotations

import math
from collections.abc import Sequence


def mean(values: Sequence[float]) -> float | None:
    if not values:
        return None
    return float(sum(values)) / float(len(values))


def median(values: Sequence[float]) -> float | None:
    if not values:
        return None
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 1:
        return float(ordered[mid])
    return float(ordered[mid - 1] + ordered[mid]) / 2.0


def population_std_dev(values: Sequence[float]) -> float | None:
    """Population standard deviation (divides by n). None below two samples."""

    if len(values) < 2:
        return None
    mu = float(sum(values)) / float(len(values))
    sq = sum((float(v) - mu) ** 2 for v in values)
    return math.sqrt(sq / float(len(values)))


def coefficient_of_variation(values: Sequence[float]) -> float | None:
    """Std-dev as a percentage of the mean; None when either is undefined or mean is zero."""

    mu = mean(values)
    sd = population_std_dev(values)
    if mu is None or sd is None or mu == 0.0:
        return None
    return sd / mu * 100.0


def accuracy_percent(correct: int, completed: int) -> float:
    if completed <= 0:
        return 0.0
    return float(correct) / float(completed) * 100.0
