"""
Non-fatal model diagnostics.

Everything here is for monitoring: nothing in this module can stop a build.
The fatal checks live in ``bigpulp_value.valuation.gate``.

Warning codes
-------------
``sales_too_sparse``        fewer than ``sparse_sales_threshold`` sales.
``mad_zero_fallback_used``  the price-space MAD of asks or sales is exactly 0.
``low_coverage_traits``     some ask trait has support below ``low_coverage_support``.
``ask_median_divergence``   the gate's soft median check fired.

``is_healthy`` = enough sales AND enough asks AND fewer warnings than
``healthy_max_warnings``.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from bigpulp_value.config import DiagnosticsConfig, GateConfig
from bigpulp_value.models.observation import Observation, SaleObservation
from bigpulp_value.stats.robust import robust_mad, unweighted_median, weighted_median
from bigpulp_value.utils.ordering import natural_key
from bigpulp_value.valuation.fitter import TraitModel
from bigpulp_value.valuation.gate import IntegrityGateResult

TraitLookup = Mapping[str, Mapping[str, str]]


@dataclass(frozen=True)
class GlobalPriceStats:
    """Price-space summary of one observation set."""

    n_obs: int
    median_xch: Optional[float]
    mad_xch: Optional[float]


@dataclass(frozen=True)
class ValidationMetrics:
    """In-sample error of the sales model on a random sale sample."""

    mae: Optional[float]
    median_ape: Optional[float]
    n_validated: int


def global_price_stats(
    observations: Sequence[Observation],
    weights: Sequence[float],
) -> GlobalPriceStats:
    """Weighted median price and robust MAD around it."""
    prices = [o.price for o in observations]
    median = weighted_median(prices, weights)
    mad = robust_mad(prices, median) if median is not None else None
    return GlobalPriceStats(n_obs=len(prices), median_xch=median, mad_xch=mad)


def top_trait_deltas(deltas: Mapping[str, float], n: int) -> list[dict[str, Any]]:
    """The ``n`` largest-magnitude deltas, ties broken by trait key."""
    ranked = sorted(deltas.items(), key=lambda kv: (-abs(kv[1]), natural_key(kv[0])))
    return [{"trait": key, "delta": delta} for key, delta in ranked[:n]]


def validate_on_sales(
    model: TraitModel,
    sales: Sequence[SaleObservation],
    traits_by_id: TraitLookup,
    sample_size: int,
    rng: random.Random,
) -> ValidationMetrics:
    """MAE and median absolute-percentage error over a seeded sale sample."""
    if model.baseline_log is None or not sales:
        return ValidationMetrics(mae=None, median_ape=None, n_validated=0)

    chosen = rng.sample(range(len(sales)), min(sample_size, len(sales)))
    abs_errors: list[float] = []
    apes: list[float] = []
    for idx in chosen:
        sale = sales[idx]
        traits = traits_by_id.get(sale.id)
        if traits is None:
            continue
        predicted = math.exp(model.predict_log(traits))
        error = abs(predicted - sale.price)
        abs_errors.append(error)
        apes.append(error / sale.price)

    if not abs_errors:
        return ValidationMetrics(mae=None, median_ape=None, n_validated=0)
    return ValidationMetrics(
        mae=sum(abs_errors) / len(abs_errors),
        median_ape=unweighted_median(apes),
        n_validated=len(abs_errors),
    )


def collect_warnings(
    ask_model: TraitModel,
    n_sales: int,
    ask_stats: GlobalPriceStats,
    sales_stats: GlobalPriceStats,
    gate_result: IntegrityGateResult,
    config: DiagnosticsConfig,
) -> list[str]:
    """Soft warning codes, in a fixed order."""
    warnings: list[str] = []
    if n_sales < config.sparse_sales_threshold:
        warnings.append("sales_too_sparse")
    if ask_stats.mad_xch == 0 or sales_stats.mad_xch == 0:
        warnings.append("mad_zero_fallback_used")
    if any(s < config.low_coverage_support for s in ask_model.trait_support.values()):
        warnings.append("low_coverage_traits")
    if gate_result.divergence_flagged:
        warnings.append("ask_median_divergence")
    return warnings


def is_healthy(n_sales: int, n_asks: int, warnings: Sequence[str], config: DiagnosticsConfig) -> bool:
    return (
        n_sales >= config.healthy_min_sales
        and n_asks >= config.healthy_min_asks
        and len(warnings) < config.healthy_max_warnings
    )


def build_diagnostics(
    *,
    schema_version: str,
    generated_at: str,
    sales_model: TraitModel,
    ask_model: TraitModel,
    prior: Mapping[str, float],
    n_asks: int,
    n_asks_mapped: int,
    sales: Sequence[SaleObservation],
    ask_stats: GlobalPriceStats,
    sales_stats: GlobalPriceStats,
    traits_by_id: TraitLookup,
    gate_result: IntegrityGateResult,
    drop_counts: Mapping[str, Mapping[str, int]],
    config: DiagnosticsConfig,
    gate_config: GateConfig,
    rng: random.Random,
) -> dict[str, Any]:
    """Assemble the diagnostics document (unsorted; the exporter sorts keys).

    Args:
        drop_counts: ``{"metadata"|"asks"|"sales": {"skipped": n, "quarantined": n}}``.
        rng:         Seeded generator for the validation sample.
    """
    n_sales = len(sales)
    n_sales_mapped = sum(1 for s in sales if s.id in traits_by_id)
    validation = validate_on_sales(
        sales_model, sales, traits_by_id, config.validation_sample_size, rng,
    )
    warnings = collect_warnings(ask_model, n_sales, ask_stats, sales_stats, gate_result, config)

    def _sigma_valid(sigma: Optional[float]) -> bool:
        return sigma is not None and gate_config.sigma_min < sigma < gate_config.sigma_max

    return {
        "schema_version": schema_version,
        "generated_at": generated_at,
        "mapping_rates": {
            "sales": {
                "mapped": n_sales_mapped,
                "total": n_sales,
                "unique_ids": gate_result.unique_sales_ids,
                "rate": n_sales_mapped / n_sales if n_sales else None,
            },
            "asks": {
                "mapped": n_asks_mapped,
                "total": n_asks,
                "rate": n_asks_mapped / n_asks if n_asks else None,
            },
        },
        "trait_counts": {
            "sales": len(sales_model.trait_deltas),
            "ask": len(ask_model.trait_deltas),
            "prior": len(prior),
        },
        "top_20_trait_deltas": {
            "sales": top_trait_deltas(sales_model.trait_deltas, config.top_n_deltas),
            "ask": top_trait_deltas(ask_model.trait_deltas, config.top_n_deltas),
        },
        "validation": {
            "mae": validation.mae,
            "median_ape": validation.median_ape,
            "n_validated": validation.n_validated,
        },
        "variation_check": {
            "stddev": gate_result.prediction_stddev,
            "n_sampled": gate_result.n_sampled,
        },
        "sigma_validation": {
            "sales": sales_model.sigma,
            "ask": ask_model.sigma,
            "sales_valid": _sigma_valid(sales_model.sigma),
            "ask_valid": _sigma_valid(ask_model.sigma),
        },
        "quarantined": {source: dict(counts) for source, counts in drop_counts.items()},
        "warnings": warnings,
        "is_healthy": is_healthy(n_sales, n_asks, warnings, config),
    }
