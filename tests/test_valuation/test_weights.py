"""
Tests for bigpulp_value.valuation.weights — observation weighting.

Covers:
  - time_decay_weight(): half-life, missing timestamp, future dates
  - outlier_weight(), flag_weight(), delusion_weight()
  - compute_ask_weights() / compute_sale_weights(): range, order, floor clamp
"""

from __future__ import annotations

import math
from datetime import timedelta

import pytest

from bigpulp_value.config import ValuationParams
from bigpulp_value.models.inputs import SaleFlags
from bigpulp_value.models.observation import AskObservation, SaleObservation
from bigpulp_value.valuation.weights import (
    compute_ask_weights,
    compute_sale_weights,
    delusion_weight,
    flag_weight,
    outlier_weight,
    time_decay_weight,
)
from conftest import AS_OF

PARAMS = ValuationParams()


# ── Individual factors ────────────────────────────────────────────────────────

class TestTimeDecay:
    def test_age_zero_is_one(self):
        assert time_decay_weight(AS_OF, AS_OF, 14.0, 1.0) == pytest.approx(1.0)

    def test_halves_at_half_life(self):
        observed = AS_OF - timedelta(days=90)
        assert time_decay_weight(observed, AS_OF, 90.0, 0.5) == pytest.approx(0.5)

    def test_quarter_at_two_half_lives(self):
        observed = AS_OF - timedelta(days=28)
        assert time_decay_weight(observed, AS_OF, 14.0, 1.0) == pytest.approx(0.25)

    def test_missing_timestamp_uses_fixed_factor(self):
        assert time_decay_weight(None, AS_OF, 90.0, 0.5) == 0.5
        assert time_decay_weight(None, AS_OF, 14.0, 1.0) == 1.0

    def test_future_timestamp_counts_as_now(self):
        observed = AS_OF + timedelta(days=3)
        assert time_decay_weight(observed, AS_OF, 14.0, 1.0) == pytest.approx(1.0)


def test_outlier_weight_at_zero_and_scale():
    assert outlier_weight(0.0, 3.0) == 1.0
    assert outlier_weight(3.0, 3.0) == pytest.approx(0.5)


def test_flag_weight_compounds():
    assert flag_weight(SaleFlags(), PARAMS) == 1.0
    assert flag_weight(SaleFlags(same_owner=True), PARAMS) == pytest.approx(0.2)
    assert flag_weight(SaleFlags(same_owner=True, extreme=True), PARAMS) == pytest.approx(0.06)


class TestDelusion:
    def test_below_threshold_undamped(self):
        assert delusion_weight(2.9, 3.0) == 1.0
        assert delusion_weight(3.0, 3.0) == 1.0

    def test_above_threshold_damped(self):
        assert delusion_weight(4.0, 3.0) == pytest.approx(0.5)
        assert delusion_weight(5.0, 3.0) == pytest.approx(0.2)

    def test_unknown_floor_undamped(self):
        assert delusion_weight(None, 3.0) == 1.0


# ── Set-level weighting ───────────────────────────────────────────────────────

def _asks(prices, floor=1.0, age_days=0):
    return [
        AskObservation(
            id=str(i), price=p, observed_at=AS_OF - timedelta(days=age_days), floor_at_time=floor,
        )
        for i, p in enumerate(prices, start=1)
    ]


class TestComputeWeights:
    def test_empty_sets(self):
        assert compute_ask_weights([], PARAMS, AS_OF) == []
        assert compute_sale_weights([], PARAMS, AS_OF) == []

    def test_one_weight_per_observation_in_range(self):
        asks = _asks([1.0, 1.1, 1.2, 1.3, 4.5, 1.05])
        weights = compute_ask_weights(asks, PARAMS, AS_OF)
        assert len(weights) == len(asks)
        assert all(0.0 < w <= 1.0 for w in weights)

    def test_expensive_listing_downweighted(self):
        weights = compute_ask_weights(_asks([1.0, 1.0, 1.0, 1.0, 4.5]), PARAMS, AS_OF)
        assert weights[-1] < weights[0]
        assert weights[0] == pytest.approx(1.0)

    def test_identical_prices_have_full_weight(self):
        # Zero MAD disables the outlier factor
        weights = compute_ask_weights(_asks([2.0, 2.0, 2.0]), PARAMS, AS_OF)
        assert weights == pytest.approx([1.0, 1.0, 1.0])

    def test_sale_weights_apply_flags_and_missing_timestamp(self):
        sales = [
            SaleObservation(id="1", price=1.0, observed_at=AS_OF),
            SaleObservation(id="2", price=1.0, observed_at=None),
            SaleObservation(id="3", price=1.0, observed_at=AS_OF,
                            flags=SaleFlags(same_owner=True, extreme=True)),
        ]
        weights = compute_sale_weights(sales, PARAMS, AS_OF)
        assert weights == pytest.approx([1.0, 0.5, 0.06])

    def test_ancient_observation_clamped_to_floor(self):
        sales = [SaleObservation(id="1", price=1.0, observed_at=AS_OF - timedelta(days=365_000))]
        (weight,) = compute_sale_weights(sales, PARAMS, AS_OF)
        assert weight == PARAMS.weight_floor
        assert not math.isnan(weight)
