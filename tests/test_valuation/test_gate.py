"""
Tests for bigpulp_value.valuation.gate — model integrity gate.

Covers:
  - run_integrity_checks(): passing case, each hard check failing, all
    failures aggregated in evaluation order
  - Sigma bounds are exclusive; a null sigma or ask baseline fails closed
  - Ask median divergence is a warning, never a failure
  - sample_prediction_prices(): seeded determinism
  - enforce_integrity(): raises ModelIntegrityError with every message
"""

from __future__ import annotations

import random

import pytest

from bigpulp_value.config import GateConfig
from bigpulp_value.errors import ModelIntegrityError
from bigpulp_value.models.observation import AskObservation, SaleObservation
from bigpulp_value.valuation.fitter import TraitModel
from bigpulp_value.valuation.gate import (
    ask_median_divergence,
    enforce_integrity,
    mapping_rate,
    run_integrity_checks,
    sample_prediction_prices,
)

CONFIG = GateConfig()

TRAITS = {str(i): {"head": "Crown" if i % 2 else "Cap"} for i in range(1, 101)}


def _model(name="sales", baseline=0.0, sigma=0.2, deltas=None, support=None) -> TraitModel:
    deltas = {"head::Crown": 1.0, "head::Cap": 0.0} if deltas is None else deltas
    support = {k: 5.0 for k in deltas} if support is None else support
    return TraitModel(name, baseline, deltas, support, sigma, 60)


EMPTY_SALES_MODEL = TraitModel("sales", None, {}, {}, None, 0)


def _sales(ids) -> list[SaleObservation]:
    return [SaleObservation(id=str(i), price=1.0) for i in ids]


def _asks(prices) -> list[AskObservation]:
    return [AskObservation(id=str(i), price=p) for i, p in enumerate(prices, start=1)]


def _run(sales_model=None, ask_model=None, sales=None, asks=None, offers_median=None, config=CONFIG):
    return run_integrity_checks(
        sales_model=sales_model or _model(),
        ask_model=ask_model or _model("ask", sigma=0.3),
        asks=asks if asks is not None else _asks([1.0, 2.0, 3.0]),
        sales=sales if sales is not None else _sales(range(1, 61)),
        traits_by_id=TRAITS,
        offers_median_xch=offers_median,
        config=config,
        rng=random.Random(7),
    )


# ── Passing ────────────────────────────────────────────────────────────────────

class TestPassingGate:
    def test_all_checks_pass(self):
        result = _run()
        assert result.passed
        assert result.errors == []
        assert set(result.checks) == {
            "sales_mapping_rate", "unique_sales_ids", "sales_trait_support",
            "sales_baseline", "ask_baseline", "prediction_variance", "sales_sigma", "ask_sigma",
        }
        assert all(result.checks.values())

    def test_reports_measurements(self):
        result = _run()
        assert result.sales_mapping_rate == 1.0
        assert result.unique_sales_ids == 60
        assert result.n_sampled == CONFIG.variance_sample_size
        assert result.prediction_stddev > CONFIG.min_prediction_stddev

    def test_enforce_does_not_raise(self):
        enforce_integrity(_run())


# ── Failing ────────────────────────────────────────────────────────────────────

class TestFailingGate:
    def test_ten_unique_sales_fails(self):
        result = _run(sales=_sales(list(range(1, 11)) * 6))
        assert not result.passed
        assert result.checks["unique_sales_ids"] is False
        assert result.errors == ["Too few unique IDs in sales: 10 (required: > 50)"]

    def test_exactly_threshold_fails(self):
        result = _run(sales=_sales(range(1, 51)))
        assert result.checks["unique_sales_ids"] is False

    def test_low_mapping_rate(self):
        result = _run(sales=_sales(list(range(1, 61)) + list(range(500, 510))))
        assert result.checks["sales_mapping_rate"] is False
        assert result.sales_mapping_rate == pytest.approx(60 / 70)
        assert result.errors[0].startswith("Sales mapping rate too low: 85.7%")

    def test_flat_predictions_fail(self):
        flat = _model(deltas={"head::Crown": 0.0, "head::Cap": 0.0})
        result = _run(sales_model=flat)
        assert result.checks["prediction_variance"] is False
        assert result.prediction_stddev == pytest.approx(0.0)

    def test_no_sales_aggregates_every_failure(self):
        result = _run(sales_model=EMPTY_SALES_MODEL, sales=[])
        assert result.checks["sales_mapping_rate"] is True
        assert result.checks["prediction_variance"] is True
        assert result.checks["sales_sigma"] is False
        assert result.sales_mapping_rate is None
        assert result.errors == [
            "Too few unique IDs in sales: 0 (required: > 50)",
            "Sales trait_support is empty",
            "Sales baseline_log is null or not finite",
            "Sales sigma is null",
        ]

    def test_empty_ask_model_fails_closed(self):
        empty_asks = TraitModel("ask", None, {}, {}, None, 0)
        result = _run(ask_model=empty_asks, asks=[])
        assert not result.passed
        assert result.checks["ask_baseline"] is False
        assert result.checks["ask_sigma"] is False
        assert result.errors == [
            "Ask baseline_log is null or not finite (0 asks)",
            "Ask sigma is null",
        ]

    def test_enforce_raises_with_all_failures(self):
        result = _run(sales_model=EMPTY_SALES_MODEL, sales=[])
        with pytest.raises(ModelIntegrityError) as exc_info:
            enforce_integrity(result)
        assert exc_info.value.failures == result.errors
        assert str(exc_info.value) == "Model validation failed: " + "; ".join(result.errors)


class TestSigmaBounds:
    @pytest.mark.parametrize("sigma", [0.05, 0.01, 2.0, 3.5])
    def test_out_of_range_fails(self, sigma):
        result = _run(ask_model=_model("ask", sigma=sigma))
        assert result.checks["ask_sigma"] is False
        assert any(e.startswith("Ask sigma out of range") for e in result.errors)

    @pytest.mark.parametrize("sigma", [0.0501, 1.0, 1.999])
    def test_in_range_passes(self, sigma):
        assert _run(sales_model=_model(sigma=sigma)).checks["sales_sigma"] is True

    def test_null_sigma_fails(self):
        result = _run(ask_model=_model("ask", sigma=None))
        assert result.checks["ask_sigma"] is False
        assert result.errors == ["Ask sigma is null"]


# ── Soft check ─────────────────────────────────────────────────────────────────

class TestAskMedianDivergence:
    def test_large_gap_is_warning_only(self):
        result = _run(asks=_asks([1.0, 2.0, 3.0]), offers_median=1.0)
        assert result.passed
        assert result.divergence_flagged
        assert result.ask_median_divergence == pytest.approx(1.0)
        assert result.warnings == ["Ask median differs from offers median by 100.0%"]

    def test_small_gap_not_flagged(self):
        result = _run(asks=_asks([1.0, 2.0, 3.0]), offers_median=1.8)
        assert not result.divergence_flagged
        assert result.warnings == []

    def test_missing_offers_median(self):
        assert ask_median_divergence(_asks([1.0]), None) is None
        assert ask_median_divergence(_asks([1.0]), 0.0) is None


# ── Helpers ────────────────────────────────────────────────────────────────────

def test_mapping_rate_empty_is_none():
    assert mapping_rate([], TRAITS) is None


def test_prediction_sample_is_seeded():
    model = _model()
    first = sample_prediction_prices(model, TRAITS, 20, random.Random(3))
    second = sample_prediction_prices(model, TRAITS, 20, random.Random(3))
    assert first == second
    assert len(first) == 20


def test_prediction_sample_capped_at_population():
    assert len(sample_prediction_prices(_model(), {"1": {}}, 50, random.Random(0))) == 1


def test_prediction_sample_empty_without_baseline():
    assert sample_prediction_prices(EMPTY_SALES_MODEL, TRAITS, 50, random.Random(0)) == []
