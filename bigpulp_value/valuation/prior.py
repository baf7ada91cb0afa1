"""
Rarity prior: a frequency-only fallback delta for traits the market never priced.

Only trait keys whose support is below ``prior_min_support`` in BOTH fitted
models receive a prior; anything with market evidence in either model is
excluded so that evidence is never counted twice.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Mapping

from bigpulp_value.config import ValuationParams
from bigpulp_value.taxonomy.trait_taxonomy import trait_keys

logger = logging.getLogger(__name__)

_MIN_RATIO = 1e-10


def trait_frequency_table(traits_by_id: Mapping[str, Mapping[str, str]]) -> Counter[str]:
    """Count how many NFTs carry each trait key, across ALL known metadata."""
    counts: Counter[str] = Counter()
    for traits in traits_by_id.values():
        counts.update(trait_keys(traits))
    return counts


def build_rarity_prior(
    traits_by_id: Mapping[str, Mapping[str, str]],
    ask_support: Mapping[str, float],
    sales_support: Mapping[str, float],
    params: ValuationParams,
) -> dict[str, float]:
    """Compute ``trait key → prior delta`` for traits unpriced in both models.

    ``freq = count / total_nfts`` and ``mean_freq = total_nfts / distinct_traits``;
    the prior is ``prior_beta × clamp(ln(mean_freq / freq), ±prior_log_ratio_clamp)``.

    Args:
        traits_by_id:  Full metadata trait lookup (priced or not).
        ask_support:   ``trait_support`` of the fitted ask model.
        sales_support: ``trait_support`` of the fitted sales model.
        params:        Supplies ``prior_beta``, the clamp and the support threshold.

    Returns:
        Prior deltas; empty when there is no metadata.
    """
    total_nfts = len(traits_by_id)
    counts = trait_frequency_table(traits_by_id)
    if total_nfts == 0 or not counts:
        return {}

    mean_freq = total_nfts / len(counts)
    clamp = params.prior_log_ratio_clamp

    priors: dict[str, float] = {}
    for key, count in counts.items():
        has_ask = ask_support.get(key, 0.0) >= params.prior_min_support
        has_sales = sales_support.get(key, 0.0) >= params.prior_min_support
        if has_ask or has_sales:
            continue

        freq = count / total_nfts
        log_ratio = math.log(max(mean_freq / freq, _MIN_RATIO))
        priors[key] = params.prior_beta * max(-clamp, min(clamp, log_ratio))

    logger.info(
        "Rarity prior: %d of %d trait keys lack market support in both models",
        len(priors), len(counts),
    )
    return priors
