"""
Observation weighting engine.

Each observation's weight is the product of four multiplicative factors, each
in ``(0, 1]``:

Time decay
  ``exp(-ln2 × age_days / half_life)``.  Asks use a short half-life (they
  go stale quickly), sales a long one.  A missing timestamp gets a fixed
  factor instead: ``1.0`` for asks, ``0.5`` for sales.  Future-dated
  observations are treated as age zero.

Outlier
  ``1 / (1 + (z / outlier_z_scale)²)`` where ``z`` is the robust z-score of
  the log-price against the median/MAD of the observation's own set.  The
  tail is smooth and never reaches zero, so extreme-but-real prices still
  count a little.

Flags (sales only)
  ``same_owner`` (likely wash trade) and ``extreme`` multiply in their
  configured factors; both set compounds.

Delusion (asks only, floor known)
  ``1 / (1 + max(0, price/floor − delusion_threshold_mult)²)``.  Listings
  under the threshold are undamped.  This acts on the already-capped price.

The product is clamped to ``[weight_floor, 1.0]`` so that underflow on very
old observations cannot produce a zero weight.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from bigpulp_value.config import ValuationParams
from bigpulp_value.models.inputs import SaleFlags
from bigpulp_value.models.observation import AskObservation, Observation, SaleObservation
from bigpulp_value.stats.robust import robust_mad, robust_z_score, unweighted_median
from bigpulp_value.utils.time_utils import age_days

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispersionStats:
    """Global log-price centre and scale of one observation set."""

    median: Optional[float]
    mad: float


# ── Individual factors ────────────────────────────────────────────────────────


def time_decay_weight(
    observed_at: Optional[datetime],
    as_of: datetime,
    half_life_days: float,
    missing_weight: float,
) -> float:
    """Half-life decay factor; ``missing_weight`` when there is no timestamp."""
    if observed_at is None:
        return missing_weight
    age = max(0.0, age_days(observed_at, as_of))
    return math.exp(-math.log(2) * age / half_life_days)


def outlier_weight(z: float, z_scale: float) -> float:
    """Cauchy-style downweight ``1 / (1 + (z / z_scale)²)``."""
    return 1.0 / (1.0 + (z / z_scale) ** 2)


def flag_weight(flags: SaleFlags, params: ValuationParams) -> float:
    """Compound downweight for upstream sale flags."""
    weight = 1.0
    if flags.same_owner:
        weight *= params.same_owner_weight
    if flags.extreme:
        weight *= params.extreme_weight
    return weight


def delusion_weight(floor_multiple: Optional[float], threshold_mult: float) -> float:
    """Quadratic damping of listings priced above ``threshold_mult × floor``."""
    if floor_multiple is None:
        return 1.0
    excess = max(0.0, floor_multiple - threshold_mult)
    return 1.0 / (1.0 + excess ** 2)


def dispersion_stats(observations: Sequence[Observation]) -> DispersionStats:
    """Unweighted median and scaled MAD of the set's log-prices."""
    log_prices = [o.log_price for o in observations]
    median = unweighted_median(log_prices)
    return DispersionStats(median=median, mad=robust_mad(log_prices, median))


def _clamp(weight: float, params: ValuationParams) -> float:
    return min(1.0, max(weight, params.weight_floor))


# ── Set-level weighting ───────────────────────────────────────────────────────


def compute_ask_weights(
    asks: Sequence[AskObservation],
    params: ValuationParams,
    as_of: datetime,
) -> list[float]:
    """Weights for ask observations (time × outlier × delusion).

    Returns:
        One weight per ask, in input order.
    """
    if not asks:
        return []

    stats = dispersion_stats(asks)
    weights: list[float] = []
    for ask in asks:
        w_time = time_decay_weight(
            ask.observed_at, as_of,
            params.half_life_days_asks, params.missing_timestamp_weight_asks,
        )
        z = robust_z_score(ask.log_price, stats.median, stats.mad)
        w_outlier = outlier_weight(z, params.outlier_z_scale)
        w_delusion = delusion_weight(ask.floor_multiple, params.delusion_threshold_mult)
        weights.append(_clamp(w_time * w_outlier * w_delusion, params))

    logger.debug(
        "Ask weights: n=%d median_log=%s mad=%.4f sum=%.3f",
        len(weights), stats.median, stats.mad, sum(weights),
    )
    return weights


def compute_sale_weights(
    sales: Sequence[SaleObservation],
    params: ValuationParams,
    as_of: datetime,
) -> list[float]:
    """Weights for sale observations (time × outlier × flags).

    Returns:
        One weight per sale, in input order.
    """
    if not sales:
        return []

    stats = dispersion_stats(sales)
    weights: list[float] = []
    for sale in sales:
        w_time = time_decay_weight(
            sale.observed_at, as_of,
            params.half_life_days_sales, params.missing_timestamp_weight_sales,
        )
        z = robust_z_score(sale.log_price, stats.median, stats.mad)
        w_outlier = outlier_weight(z, params.outlier_z_scale)
        w_flags = flag_weight(sale.flags, params)
        weights.append(_clamp(w_time * w_outlier * w_flags, params))

    logger.debug(
        "Sale weights: n=%d median_log=%s mad=%.4f sum=%.3f",
        len(weights), stats.median, stats.mad, sum(weights),
    )
    return weights
