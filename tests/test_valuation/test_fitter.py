"""
Tests for bigpulp_value.valuation.fitter — empirical-Bayes trait model.

Covers:
  - shrink(): monotone in support, approaches the naive delta
  - winsorize(): clipping without discarding
  - fit_trait_deltas(): worked two-sale example, absent traits, unmapped ids
  - residual_sigma(): MAD scaling, bounded sample, nothing to score
  - fit_trait_model(): empty set, prediction from baseline + deltas
"""

from __future__ import annotations

import math

import pytest

from bigpulp_value.config import ValuationParams
from bigpulp_value.models.observation import SaleObservation
from bigpulp_value.stats.robust import MAD_SCALE
from bigpulp_value.valuation.fitter import (
    TraitModel,
    fit_trait_deltas,
    fit_trait_model,
    predict_log_price,
    residual_sigma,
    shrink,
    winsorize,
)

PARAMS = ValuationParams()


def _sales(*prices: float, start: int = 1) -> list[SaleObservation]:
    return [SaleObservation(id=str(i), price=p) for i, p in enumerate(prices, start=start)]


# ── Building blocks ───────────────────────────────────────────────────────────

class TestShrink:
    def test_zero_support_gives_zero(self):
        assert shrink(0.5, 0.0, 20.0) == 0.0

    def test_monotone_in_support(self):
        values = [shrink(0.4, n, 20.0) for n in (1, 2, 5, 20, 100, 1000)]
        assert values == sorted(values)

    def test_approaches_naive_delta(self):
        assert shrink(0.4, 1e6, 20.0) == pytest.approx(0.4, rel=1e-4)

    def test_half_way_at_n_equals_k(self):
        assert shrink(0.4, 20.0, 20.0) == pytest.approx(0.2)

    def test_degenerate_denominator(self):
        assert shrink(0.4, 0.0, 0.0) == 0.0


def test_winsorize_clips_both_ends():
    assert winsorize([0.0, 1.0, 5.0], 0.5, 2.0) == [0.5, 1.0, 2.0]


def test_predict_log_price_sums_known_deltas():
    deltas = {"head::Crown": 0.3, "base::Alien": 0.1}
    traits = {"head": "Crown", "base": "Alien", "mouth": "Smile"}
    assert predict_log_price(traits, 1.0, deltas) == pytest.approx(1.4)


# ── fit_trait_deltas ──────────────────────────────────────────────────────────

class TestFitTraitDeltas:
    def test_two_sale_bandana_example(self):
        sales = _sales(10.0, 12.0)
        traits = {"1": {"head": "Bandana"}, "2": {"head": "Bandana"}}
        fit = fit_trait_deltas(sales, [1.0, 1.0], traits, 2.0, PARAMS)

        naive = (math.log(10.0) + math.log(12.0)) / 2 - 2.0
        assert fit.trait_deltas["head::Bandana"] == pytest.approx(naive * 2 / 22)
        assert 0.03 <= fit.trait_deltas["head::Bandana"] <= 0.04
        assert fit.trait_support["head::Bandana"] == pytest.approx(2.0)

    def test_category_k_applied(self):
        # background K=10 shrinks less than head K=20 on identical evidence
        sales = _sales(10.0, 10.0)
        traits = {"1": {"head": "Cap", "background": "Red"}, "2": {"head": "Cap", "background": "Red"}}
        fit = fit_trait_deltas(sales, [1.0, 1.0], traits, 2.0, PARAMS)
        assert fit.trait_deltas["background::Red"] > fit.trait_deltas["head::Cap"]

    def test_winsorizing_limits_single_outlier(self):
        prices = [1.0] * 9 + [1000.0]
        sales = _sales(*prices)
        traits = {str(i): {"head": "Cap"} for i in range(1, 11)}
        fit = fit_trait_deltas(sales, [1.0] * 10, traits, 0.0, PARAMS)
        # q90 boundary is 1.0, so the outlier is clipped to it
        assert fit.trait_deltas["head::Cap"] == pytest.approx(0.0)

    def test_traits_without_observations_absent(self):
        sales = _sales(2.0)
        traits = {"1": {"head": "Cap"}, "2": {"head": "Crown"}}
        fit = fit_trait_deltas(sales, [1.0], traits, 0.0, PARAMS)
        assert "head::Crown" not in fit.trait_deltas
        assert "head::Crown" not in fit.trait_support

    def test_unmapped_ids_ignored(self):
        sales = _sales(2.0, 50.0)
        traits = {"1": {"head": "Cap"}}
        fit = fit_trait_deltas(sales, [1.0, 1.0], traits, 0.0, PARAMS)
        assert fit.trait_support == {"head::Cap": pytest.approx(1.0)}

    def test_support_is_weight_sum(self):
        sales = _sales(2.0, 2.0, 2.0)
        traits = {str(i): {"base": "Ape"} for i in (1, 2, 3)}
        fit = fit_trait_deltas(sales, [0.5, 0.25, 0.25], traits, 0.0, PARAMS)
        assert fit.trait_support["base::Ape"] == pytest.approx(1.0)


# ── residual_sigma ────────────────────────────────────────────────────────────

class TestResidualSigma:
    TRAITS = {"1": {}, "2": {}, "3": {}}

    def test_scaled_mad_of_residuals(self):
        sales = _sales(math.exp(0.0), math.exp(1.0), math.exp(2.0))
        sigma = residual_sigma(sales, self.TRAITS, 1.0, {}, 1000)
        assert sigma == pytest.approx(MAD_SCALE)

    def test_bounded_sample(self):
        sales = _sales(math.exp(0.0), math.exp(1.0), math.exp(2.0))
        assert residual_sigma(sales, self.TRAITS, 1.0, {}, 1) == pytest.approx(0.0)

    def test_none_without_baseline(self):
        assert residual_sigma(_sales(1.0), self.TRAITS, None, {}, 1000) is None

    def test_none_when_nothing_maps(self):
        assert residual_sigma(_sales(1.0, start=50), self.TRAITS, 0.0, {}, 1000) is None


# ── fit_trait_model ───────────────────────────────────────────────────────────

class TestFitTraitModel:
    def test_empty_set_gives_empty_model(self):
        model = fit_trait_model("sales", [], [], {}, PARAMS)
        assert model.baseline_log is None
        assert model.baseline_xch is None
        assert model.trait_deltas == {}
        assert model.sigma is None
        assert model.n_obs == 0
        assert model.predict_log({"head": "Cap"}) is None

    def test_baseline_is_weighted_median(self):
        sales = _sales(1.0, 2.0, 4.0)
        traits = {"1": {"head": "Cap"}, "2": {"head": "Cap"}, "3": {"head": "Cap"}}
        model = fit_trait_model("sales", sales, [1.0, 1.0, 1.0], traits, PARAMS)
        assert model.baseline_log == pytest.approx(math.log(2.0))
        assert model.baseline_xch == pytest.approx(2.0)
        assert model.n_obs == 3

    def test_support_lookup_defaults_to_zero(self):
        model = TraitModel("ask", 0.0, {"head::Cap": 0.1}, {"head::Cap": 3.0}, 0.2, 3)
        assert model.support("head::Cap") == 3.0
        assert model.support("head::Crown") == 0.0
        assert model.predict_log({"head": "Cap"}) == pytest.approx(0.1)
