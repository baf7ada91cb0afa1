"""
Model integrity gate: hard checks a fitted model must pass before anything is written.

Checks performed
----------------
1. ``sales_mapping_rate``  — Fraction of sale observations whose NFT id is in
                             the metadata is ≥ ``min_sales_mapping_rate``
                             (only evaluated when sales exist).
2. ``unique_sales_ids``    — More than ``min_unique_sales_ids`` distinct NFTs sold.
3. ``sales_trait_support`` — The sales model priced at least one trait.
4. ``sales_baseline``      — The sales baseline exists and is finite.
5. ``ask_baseline``        — The ask baseline exists and is finite (asks
                             may not be empty).
6. ``prediction_variance`` — Price-space predictions for a seeded random sample
                             of NFTs have population stddev > ``min_prediction_stddev``.
7. ``sales_sigma`` / ``ask_sigma`` — Each sigma exists and lies strictly in
                             ``(sigma_min, sigma_max)``.

Every check is evaluated; ALL failures are reported together.  One soft
check (ask median vs. the offers index's reported median) only produces a
warning.

Raising vs returning
--------------------
``run_integrity_checks()`` returns an ``IntegrityGateResult`` and never
raises.  ``enforce_integrity()`` logs each failure and raises
``ModelIntegrityError`` carrying the full list.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from bigpulp_value.config import GateConfig
from bigpulp_value.errors import ModelIntegrityError
from bigpulp_value.models.observation import AskObservation, SaleObservation
from bigpulp_value.stats.robust import population_stddev, unweighted_median
from bigpulp_value.utils.ordering import sorted_ids
from bigpulp_value.valuation.fitter import TraitModel

logger = logging.getLogger(__name__)

TraitLookup = Mapping[str, Mapping[str, str]]


# ── Result type ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class IntegrityGateResult:
    """Outcome of the integrity gate.

    Attributes:
        passed:              True only if every hard check passed.
        checks:              check_name -> bool (True = passed).
        errors:              One message per failing hard check.
        warnings:            Soft-check messages.
        sales_mapping_rate:  ``None`` when there are no sales.
        unique_sales_ids:    Distinct NFT ids among sale observations.
        prediction_stddev:   ``None`` when no prediction could be made.
        n_sampled:           Number of predictions behind ``prediction_stddev``.
        ask_median_divergence: Relative gap between the ask median and the
                             offers index median, ``None`` if either is missing.
        divergence_flagged:  True when that gap exceeded the threshold.
    """

    passed: bool
    checks: dict[str, bool]
    errors: list[str]
    warnings: list[str]
    sales_mapping_rate: Optional[float]
    unique_sales_ids: int
    prediction_stddev: Optional[float]
    n_sampled: int
    ask_median_divergence: Optional[float]
    divergence_flagged: bool


# ── Helpers ───────────────────────────────────────────────────────────────────


def mapping_rate(observations: Sequence[object], traits_by_id: TraitLookup) -> Optional[float]:
    """Fraction of observations whose ``id`` is a known NFT; ``None`` when empty."""
    if not observations:
        return None
    mapped = sum(1 for obs in observations if obs.id in traits_by_id)  # type: ignore[attr-defined]
    return mapped / len(observations)


def sample_prediction_prices(
    model: TraitModel,
    traits_by_id: TraitLookup,
    sample_size: int,
    rng: random.Random,
) -> list[float]:
    """Price-space predictions for up to ``sample_size`` randomly chosen NFTs.

    Ids are drawn from the naturally sorted id list so the same seed always
    picks the same NFTs.  Empty when the model has no baseline.
    """
    if model.baseline_log is None or not traits_by_id:
        return []
    ids = sorted_ids(traits_by_id)
    chosen = rng.sample(ids, min(sample_size, len(ids)))
    return [math.exp(model.predict_log(traits_by_id[nft_id])) for nft_id in chosen]


def ask_median_divergence(
    asks: Sequence[AskObservation],
    offers_median_xch: Optional[float],
) -> Optional[float]:
    """``|ask_median − offers_median| / offers_median`` over capped ask prices."""
    if not offers_median_xch or offers_median_xch <= 0:
        return None
    ask_median = unweighted_median([a.price for a in asks])
    if not ask_median:
        return None
    return abs(ask_median - offers_median_xch) / offers_median_xch


def _sigma_ok(sigma: Optional[float], config: GateConfig) -> bool:
    return sigma is not None and config.sigma_min < sigma < config.sigma_max


# ── Public functions ──────────────────────────────────────────────────────────


def run_integrity_checks(
    sales_model: TraitModel,
    ask_model: TraitModel,
    asks: Sequence[AskObservation],
    sales: Sequence[SaleObservation],
    traits_by_id: TraitLookup,
    offers_median_xch: Optional[float],
    config: GateConfig,
    rng: random.Random,
) -> IntegrityGateResult:
    """Evaluate every integrity check against the fitted models.

    Args:
        sales_model:       Fitted sales model (may be empty).
        ask_model:         Fitted ask model.
        asks:              Ask observations the ask model was fitted on.
        sales:             Sale observations the sales model was fitted on.
        traits_by_id:      Full metadata trait lookup.
        offers_median_xch: ``market_stats.median_xch`` from the offers index.
        config:            Gate thresholds.
        rng:               Seeded generator for the prediction sample.

    Returns:
        IntegrityGateResult.  Check ``result.passed`` or call ``enforce_integrity``.
    """
    checks: dict[str, bool] = {}
    errors: list[str] = []
    warnings: list[str] = []

    # ── Check 1: sales_mapping_rate ───────────────────────────────────────
    rate = mapping_rate(sales, traits_by_id)
    checks["sales_mapping_rate"] = rate is None or rate >= config.min_sales_mapping_rate
    if not checks["sales_mapping_rate"]:
        errors.append(
            f"Sales mapping rate too low: {rate * 100:.1f}% "
            f"(required: >= {config.min_sales_mapping_rate * 100:.0f}%)"
        )

    # ── Check 2: unique_sales_ids ─────────────────────────────────────────
    unique_ids = len({s.id for s in sales})
    checks["unique_sales_ids"] = unique_ids > config.min_unique_sales_ids
    if not checks["unique_sales_ids"]:
        errors.append(
            f"Too few unique IDs in sales: {unique_ids} "
            f"(required: > {config.min_unique_sales_ids})"
        )

    # ── Check 3: sales_trait_support ──────────────────────────────────────
    checks["sales_trait_support"] = bool(sales_model.trait_support)
    if not checks["sales_trait_support"]:
        errors.append("Sales trait_support is empty")

    # ── Check 4: sales_baseline ───────────────────────────────────────────
    baseline = sales_model.baseline_log
    checks["sales_baseline"] = baseline is not None and math.isfinite(baseline)
    if not checks["sales_baseline"]:
        errors.append("Sales baseline_log is null or not finite")

    # ── Check 5: ask_baseline ─────────────────────────────────────────────
    ask_baseline = ask_model.baseline_log
    checks["ask_baseline"] = ask_baseline is not None and math.isfinite(ask_baseline)
    if not checks["ask_baseline"]:
        errors.append(f"Ask baseline_log is null or not finite ({len(asks)} asks)")

    # ── Check 6: prediction_variance ──────────────────────────────────────
    predictions = sample_prediction_prices(
        sales_model, traits_by_id, config.variance_sample_size, rng,
    )
    stddev = population_stddev(predictions)
    checks["prediction_variance"] = stddev is None or stddev > config.min_prediction_stddev
    if not checks["prediction_variance"]:
        errors.append(
            f"Prediction variation too low: stddev={stddev:.4f} XCH "
            f"(required: > {config.min_prediction_stddev})"
        )

    # ── Check 7: sigma bounds ─────────────────────────────────────────────
    for name, model in (("sales", sales_model), ("ask", ask_model)):
        check_name = f"{name}_sigma"
        checks[check_name] = _sigma_ok(model.sigma, config)
        if model.sigma is None:
            errors.append(f"{name.capitalize()} sigma is null")
        elif not checks[check_name]:
            errors.append(
                f"{name.capitalize()} sigma out of range: {model.sigma:.4f} "
                f"(required: {config.sigma_min} < sigma < {config.sigma_max})"
            )

    # ── Soft check: ask median vs. offers median ──────────────────────────
    divergence = ask_median_divergence(asks, offers_median_xch)
    flagged = divergence is not None and divergence > config.max_ask_median_divergence
    if flagged:
        warnings.append(
            f"Ask median differs from offers median by {divergence * 100:.1f}%"
        )

    return IntegrityGateResult(
        passed=all(checks.values()),
        checks=checks,
        errors=errors,
        warnings=warnings,
        sales_mapping_rate=rate,
        unique_sales_ids=unique_ids,
        prediction_stddev=stddev,
        n_sampled=len(predictions),
        ask_median_divergence=divergence,
        divergence_flagged=flagged,
    )


def enforce_integrity(result: IntegrityGateResult) -> None:
    """Log the gate outcome and raise if any hard check failed.

    Raises:
        ModelIntegrityError: Carrying every failing check's message.
    """
    for message in result.warnings:
        logger.warning("Integrity gate warning: %s", message)

    if not result.passed:
        for message in result.errors:
            logger.error("Integrity gate failed: %s", message)
        raise ModelIntegrityError(result.errors)

    logger.info(
        "Integrity gate passed (%d checks, prediction stddev=%s over %d NFTs)",
        len(result.checks),
        f"{result.prediction_stddev:.4f}" if result.prediction_stddev is not None else "N/A",
        result.n_sampled,
    )
