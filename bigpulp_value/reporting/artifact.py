"""
Value model artifact assembly.

Builds the plain-dict form of the ``value_model_v2`` document from the
fitted models.  Key ordering is left to ``reporting.export``.

Artifact layout (``schema_version`` 2.0)::

    schema_version, generated_at, collection_id
    params          half-lives, cap multiple, delusion threshold, K by category, prior beta
    floor           {xch, id, as_of}
    models.sales / models.ask
                    baseline_log, baseline_xch, trait_delta_log, trait_support,
                    sigma, global_stats {n_obs, median_xch, mad_xch}
    priors          {trait_prior_delta_log}
    market          {listings_quantiles {p10..p90}, xch_usd_at_build}
    input_hashes    {metadata, offers, sales}
    build_metadata  {git_sha, python_version, build_timestamp, run_slug}
"""

from __future__ import annotations

import logging
import math
import platform
import subprocess
from typing import Any, Mapping, Optional, Sequence

from bigpulp_value.config import ValuationParams
from bigpulp_value.models.inputs import OffersIndexDocument
from bigpulp_value.valuation.diagnostics import GlobalPriceStats
from bigpulp_value.valuation.fitter import TraitModel

logger = logging.getLogger(__name__)

LISTING_QUANTILES = (("p10", 0.10), ("p25", 0.25), ("p50", 0.50), ("p75", 0.75), ("p90", 0.90))


def git_sha() -> Optional[str]:
    """Current ``HEAD`` revision, or ``None`` outside a git checkout."""
    try:
        proc = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True, text=True, check=True, timeout=5,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("git rev-parse unavailable: %s", exc)
        return None
    return proc.stdout.strip() or None


def listings_quantiles(ask_prices: Sequence[float]) -> dict[str, float]:
    """Index quantiles ``sorted[floor(n × q)]`` over capped ask prices."""
    ordered = sorted(ask_prices)
    if not ordered:
        return {}
    n = len(ordered)
    return {name: ordered[min(n - 1, math.floor(n * q))] for name, q in LISTING_QUANTILES}


def model_section(model: TraitModel, stats: GlobalPriceStats) -> dict[str, Any]:
    return {
        "baseline_log": model.baseline_log,
        "baseline_xch": model.baseline_xch,
        "trait_delta_log": dict(model.trait_deltas),
        "trait_support": dict(model.trait_support),
        "sigma": model.sigma,
        "global_stats": {
            "n_obs": stats.n_obs,
            "median_xch": stats.median_xch,
            "mad_xch": stats.mad_xch,
        },
    }


def params_section(params: ValuationParams) -> dict[str, Any]:
    return {
        "half_life_days_sales": params.half_life_days_sales,
        "half_life_days_asks": params.half_life_days_asks,
        "cap_mult_ask": params.cap_mult_ask,
        "delusion_threshold_mult": params.delusion_threshold_mult,
        "k_by_category": dict(params.k_by_category),
        "prior_beta": params.prior_beta,
    }


def build_model_artifact(
    *,
    schema_version: str,
    generated_at: str,
    default_collection_id: str,
    params: ValuationParams,
    offers: OffersIndexDocument,
    sales_model: TraitModel,
    ask_model: TraitModel,
    sales_stats: GlobalPriceStats,
    ask_stats: GlobalPriceStats,
    prior: Mapping[str, float],
    ask_prices: Sequence[float],
    xch_usd: Optional[float],
    input_hashes: Mapping[str, Optional[str]],
    run_slug: Optional[str],
) -> dict[str, Any]:
    """Assemble the value model document (unsorted; the exporter sorts keys)."""
    return {
        "schema_version": schema_version,
        "generated_at": generated_at,
        "collection_id": offers.collection_id or default_collection_id,
        "params": params_section(params),
        "floor": {
            "xch": offers.effective_floor_xch,
            "id": offers.floor_id,
            "as_of": offers.generated_at,
        },
        "models": {
            "sales": model_section(sales_model, sales_stats),
            "ask": model_section(ask_model, ask_stats),
        },
        "priors": {"trait_prior_delta_log": dict(prior)},
        "market": {
            "listings_quantiles": listings_quantiles(ask_prices),
            "xch_usd_at_build": xch_usd,
        },
        "input_hashes": dict(input_hashes),
        "build_metadata": {
            "git_sha": git_sha(),
            "python_version": platform.python_version(),
            "build_timestamp": generated_at,
            "run_slug": run_slug,
        },
    }
