"""
Value estimation from an emitted model artifact.

Reconstructs each model's log-price for one NFT exactly as the build does
(baseline + summed trait deltas), substituting the rarity prior for traits
that neither model priced, and attaches an 80% range
``exp(pred ± 1.2816 × sigma)`` when the model has a sigma.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from bigpulp_value.taxonomy.trait_taxonomy import trait_keys

Z_80 = 1.2816
MODEL_NAMES = ("sales", "ask")


@dataclass(frozen=True)
class ModelEstimate:
    """One model's valuation of one NFT.

    Attributes:
        model:        ``"sales"`` or ``"ask"``.
        log_price:    Reconstructed log-price.
        point_xch:    ``exp(log_price)``.
        low_xch:      Lower bound of the 80% range, ``None`` without sigma.
        high_xch:     Upper bound of the 80% range, ``None`` without sigma.
        prior_traits: Trait keys valued from the rarity prior.
    """

    model: str
    log_price: float
    point_xch: float
    low_xch: Optional[float] = None
    high_xch: Optional[float] = None
    prior_traits: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ValueEstimate:
    """Per-model estimates plus the trait keys no model or prior knows."""

    traits: dict[str, str]
    estimates: dict[str, ModelEstimate]
    unknown_traits: list[str]

    @property
    def preferred(self) -> Optional[ModelEstimate]:
        """Sales estimate when available, the ask estimate otherwise."""
        for name in MODEL_NAMES:
            if name in self.estimates:
                return self.estimates[name]
        return None


def estimate_value(artifact: Mapping[str, Any], traits: Mapping[str, str]) -> ValueEstimate:
    """Value one NFT's trait set against a model artifact.

    Args:
        artifact: Parsed value model document.
        traits:   ``{category: value}`` for the NFT.

    Returns:
        ValueEstimate with an entry for every model that has a baseline.
    """
    models: Mapping[str, Any] = artifact.get("models") or {}
    priors: Mapping[str, float] = (artifact.get("priors") or {}).get("trait_prior_delta_log") or {}
    deltas_by_model = {
        name: (models.get(name) or {}).get("trait_delta_log") or {} for name in MODEL_NAMES
    }

    keys = trait_keys(traits)
    priced_anywhere = {k for k in keys if any(k in d for d in deltas_by_model.values())}
    unknown = [k for k in keys if k not in priced_anywhere and k not in priors]

    estimates: dict[str, ModelEstimate] = {}
    for name in MODEL_NAMES:
        model = models.get(name) or {}
        baseline = model.get("baseline_log")
        if baseline is None:
            continue

        deltas = deltas_by_model[name]
        log_price = float(baseline)
        used_prior: list[str] = []
        for key in keys:
            if key in deltas:
                log_price += deltas[key]
            elif key not in priced_anywhere and key in priors:
                log_price += priors[key]
                used_prior.append(key)

        sigma = model.get("sigma")
        low = high = None
        if sigma is not None:
            low = math.exp(log_price - Z_80 * sigma)
            high = math.exp(log_price + Z_80 * sigma)

        estimates[name] = ModelEstimate(
            model=name,
            log_price=log_price,
            point_xch=math.exp(log_price),
            low_xch=low,
            high_xch=high,
            prior_traits=used_prior,
        )

    return ValueEstimate(traits=dict(traits), estimates=estimates, unknown_traits=unknown)
