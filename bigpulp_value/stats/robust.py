"""
Robust weighted statistics used throughout the value model.

Quantile convention
-------------------
``weighted_quantile`` sorts ``(value, weight)`` pairs by value and walks the
cumulative weight until it reaches ``q * total_weight``; the value at that
boundary is returned as-is.  There is no interpolation between neighbours,
so every result is one of the input values.  ``weighted_median`` is the
``q = 0.5`` case.

Scale
-----
``robust_mad`` multiplies the median absolute deviation by ``MAD_SCALE``
(1.4826) so it estimates a standard deviation for normally distributed data.
``robust_z_score`` divides by that scale with a tiny ``Z_EPSILON`` guard.

Every function accepts empty and single-element inputs without raising.
Missing weights (a shorter ``weights`` list) count as zero.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

MAD_SCALE = 1.4826
Z_EPSILON = 1e-10


def _pairs(values: Sequence[float], weights: Sequence[float]) -> list[tuple[float, float]]:
    pairs = [
        (float(v), float(weights[i]) if i < len(weights) and weights[i] else 0.0)
        for i, v in enumerate(values)
    ]
    pairs.sort(key=lambda p: p[0])
    return pairs


def weighted_quantile(
    values: Sequence[float],
    weights: Sequence[float],
    q: float,
) -> Optional[float]:
    """Return the weighted ``q``-quantile of ``values``.

    Args:
        values:  Observations.
        weights: Non-negative weight per observation (parallel to ``values``).
        q:       Quantile in ``[0, 1]``.

    Returns:
        The first sorted value whose cumulative weight reaches
        ``q * total_weight``, or ``None`` for empty input.

    Raises:
        ValueError: If ``q`` is outside ``[0, 1]``.
    """
    if not 0.0 <= q <= 1.0:
        raise ValueError(f"q must be in [0.0, 1.0], got {q}.")
    if not values:
        return None

    pairs = _pairs(values, weights)
    target = q * sum(w for _, w in pairs)

    cumulative = 0.0
    for value, weight in pairs:
        cumulative += weight
        if cumulative >= target:
            return value
    # Float rounding can leave cumulative a hair below target
    return pairs[-1][0]


def weighted_median(values: Sequence[float], weights: Sequence[float]) -> Optional[float]:
    """Weighted median (``weighted_quantile`` at ``q = 0.5``)."""
    return weighted_quantile(values, weights, 0.5)


def weighted_mean(values: Sequence[float], weights: Sequence[float]) -> Optional[float]:
    """Weighted arithmetic mean; ``None`` when empty or total weight is zero."""
    if not values:
        return None

    total = 0.0
    total_weight = 0.0
    for value, weight in _pairs(values, weights):
        total += value * weight
        total_weight += weight
    return total / total_weight if total_weight > 0 else None


def robust_mad(values: Sequence[float], median: Optional[float]) -> float:
    """Scaled median absolute deviation of ``values`` around ``median``.

    Returns ``0.0`` for empty input or a ``None`` median.
    """
    if not values or median is None:
        return 0.0
    deviations = [abs(v - median) for v in values]
    mad = weighted_median(deviations, [1.0] * len(deviations))
    return 0.0 if mad is None else MAD_SCALE * mad


def robust_z_score(value: float, median: Optional[float], mad: Optional[float]) -> float:
    """Absolute robust z-score; ``0.0`` when ``mad`` is zero or missing."""
    if not mad or median is None:
        return 0.0
    return abs(value - median) / (mad + Z_EPSILON)


def unweighted_median(values: Sequence[float]) -> Optional[float]:
    """Median with unit weights (same boundary-element convention)."""
    return weighted_median(values, [1.0] * len(values))


def population_stddev(values: Sequence[float]) -> Optional[float]:
    """Population standard deviation (divide by n); ``None`` for empty input."""
    if not values:
        return None
    mean = sum(values) / len(values)
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


def safe_log(price: float, floor: float = 1e-10) -> float:
    """Natural log of ``price`` clamped below at ``floor``."""
    return math.log(max(price, floor))
