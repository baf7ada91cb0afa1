"""
Empirical-Bayes trait model fitter.

For one observation set (asks or sales) the model is::

    log(price) ≈ baseline_log + Σ trait_delta[t]   for t in the NFT's traits

Fitting steps per trait key ``t`` observed in the set:
  1. Gather ``(log_price, weight)`` of every observation whose NFT has ``t``.
  2. Winsorize the log-prices to the trait's own weighted
     ``[winsor_lower_q, winsor_upper_q]`` range (clip, never discard).
  3. ``naive = weighted_mean(winsorized) − baseline_log``.
  4. ``n_eff = Σ weights`` (effective support).
  5. ``delta = naive × n_eff / (n_eff + K[category])``.

Traits never observed in the set are absent from the output rather than
zero; the rarity prior relies on that distinction.

``sigma`` is the robust scale (1.4826 × MAD) of ``actual − predicted``
log-price residuals over the first ``residual_sample_size`` observations
that map to known traits.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from bigpulp_value.config import ValuationParams
from bigpulp_value.models.observation import Observation
from bigpulp_value.stats.robust import (
    robust_mad,
    unweighted_median,
    weighted_mean,
    weighted_median,
    weighted_quantile,
)
from bigpulp_value.taxonomy.trait_taxonomy import trait_category, trait_keys

logger = logging.getLogger(__name__)

TraitLookup = Mapping[str, Mapping[str, str]]


@dataclass(frozen=True)
class TraitFit:
    """Per-trait output of one fitting pass."""

    trait_deltas: dict[str, float] = field(default_factory=dict)
    trait_support: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class TraitModel:
    """A fitted model for one observation set.

    Attributes:
        name:          ``"ask"`` or ``"sales"``.
        baseline_log:  Weighted median log-price; ``None`` only for an empty set.
        trait_deltas:  Trait key → shrunk log-price delta.
        trait_support: Trait key → effective sample size (sum of weights).
        sigma:         Robust residual scale, ``None`` when nothing could be scored.
        n_obs:         Number of observations the model was fitted on.
    """

    name: str
    baseline_log: Optional[float]
    trait_deltas: dict[str, float]
    trait_support: dict[str, float]
    sigma: Optional[float]
    n_obs: int

    @property
    def baseline_xch(self) -> Optional[float]:
        return math.exp(self.baseline_log) if self.baseline_log is not None else None

    def support(self, key: str) -> float:
        return self.trait_support.get(key, 0.0)

    def predict_log(self, traits: Mapping[str, str]) -> Optional[float]:
        """Baseline plus summed deltas; ``None`` if the model has no baseline."""
        if self.baseline_log is None:
            return None
        return predict_log_price(traits, self.baseline_log, self.trait_deltas)


# ── Building blocks ───────────────────────────────────────────────────────────


def compute_baseline_log(
    observations: Sequence[Observation],
    weights: Sequence[float],
) -> Optional[float]:
    """Weighted median log-price of the set (``None`` when empty)."""
    return weighted_median([o.log_price for o in observations], weights)


def winsorize(values: Sequence[float], lower: float, upper: float) -> list[float]:
    """Clip every value into ``[lower, upper]``."""
    return [min(max(v, lower), upper) for v in values]


def shrink(naive_delta: float, n_eff: float, k: float) -> float:
    """Empirical-Bayes shrinkage ``naive_delta × n_eff / (n_eff + k)``."""
    if n_eff + k <= 0:
        return 0.0
    return naive_delta * n_eff / (n_eff + k)


def predict_log_price(
    traits: Mapping[str, str],
    baseline_log: float,
    trait_deltas: Mapping[str, float],
) -> float:
    """Reconstruct a log-price from the baseline and the NFT's trait deltas."""
    return baseline_log + sum(trait_deltas.get(key, 0.0) for key in trait_keys(traits))


# ── Fitting ───────────────────────────────────────────────────────────────────


def fit_trait_deltas(
    observations: Sequence[Observation],
    weights: Sequence[float],
    traits_by_id: TraitLookup,
    baseline_log: float,
    params: ValuationParams,
) -> TraitFit:
    """Compute shrunk per-trait deltas and support for one observation set.

    Observations whose NFT id has no metadata are ignored.

    Args:
        observations: The set being modelled.
        weights:      Parallel weights from the weighting engine.
        traits_by_id: NFT id → ``{category: value}``.
        baseline_log: The set's zero-point.
        params:       Supplies ``k_by_category`` and the winsor quantiles.

    Returns:
        ``TraitFit`` with one entry per trait key that has observations.
    """
    grouped: dict[str, tuple[list[float], list[float]]] = defaultdict(lambda: ([], []))
    for obs, weight in zip(observations, weights):
        traits = traits_by_id.get(obs.id)
        if traits is None:
            continue
        log_price = obs.log_price
        for key in trait_keys(traits):
            prices, trait_weights = grouped[key]
            prices.append(log_price)
            trait_weights.append(weight)

    deltas: dict[str, float] = {}
    support: dict[str, float] = {}
    for key, (log_prices, trait_weights) in grouped.items():
        lower = weighted_quantile(log_prices, trait_weights, params.winsor_lower_q)
        upper = weighted_quantile(log_prices, trait_weights, params.winsor_upper_q)
        mean_trait = weighted_mean(winsorize(log_prices, lower, upper), trait_weights)
        if mean_trait is None:
            continue

        n_eff = sum(trait_weights)
        deltas[key] = shrink(mean_trait - baseline_log, n_eff, params.k_for(trait_category(key)))
        support[key] = n_eff

    return TraitFit(trait_deltas=deltas, trait_support=support)


def residual_sigma(
    observations: Sequence[Observation],
    traits_by_id: TraitLookup,
    baseline_log: Optional[float],
    trait_deltas: Mapping[str, float],
    sample_size: int,
) -> Optional[float]:
    """Robust scale of log-price residuals over a bounded leading sample.

    Returns ``None`` when there is no baseline or no observation in the
    sample maps to known traits.
    """
    if baseline_log is None:
        return None

    residuals: list[float] = []
    for obs in observations[:sample_size]:
        traits = traits_by_id.get(obs.id)
        if traits is None:
            continue
        residuals.append(obs.log_price - predict_log_price(traits, baseline_log, trait_deltas))

    if not residuals:
        return None
    return robust_mad(residuals, unweighted_median(residuals))


def fit_trait_model(
    name: str,
    observations: Sequence[Observation],
    weights: Sequence[float],
    traits_by_id: TraitLookup,
    params: ValuationParams,
) -> TraitModel:
    """Fit baseline, trait deltas and sigma for one observation set.

    An empty set yields a model with ``baseline_log=None``, no traits and
    ``sigma=None``.
    """
    baseline_log = compute_baseline_log(observations, weights)
    if baseline_log is None:
        logger.info("Model [%s]: no observations, empty model.", name)
        return TraitModel(
            name=name, baseline_log=None, trait_deltas={}, trait_support={},
            sigma=None, n_obs=0,
        )

    fit = fit_trait_deltas(observations, weights, traits_by_id, baseline_log, params)
    sigma = residual_sigma(
        observations, traits_by_id, baseline_log, fit.trait_deltas, params.residual_sample_size,
    )
    logger.info(
        "Model [%s]: baseline=%.4f XCH (log %.4f) | traits=%d | sigma=%s",
        name, math.exp(baseline_log), baseline_log, len(fit.trait_deltas),
        f"{sigma:.4f}" if sigma is not None else "N/A",
    )
    return TraitModel(
        name=name,
        baseline_log=baseline_log,
        trait_deltas=fit.trait_deltas,
        trait_support=fit.trait_support,
        sigma=sigma,
        n_obs=len(observations),
    )
