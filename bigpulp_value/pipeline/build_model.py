"""
BuildValueModelStage — fit, gate and emit the value model v2 artifacts.

Build flow
----------
  0. Resolve the XCH/USD rate (CLI override, live lookup, or ``None``).
  1. Load metadata → ``id → {category: value}`` trait lookup.
  2. Load the offers index (required) → capped ask observations.
  3. Load the sales index (optional) → sale observations.
     Neither asks nor sales → ``InputDataError``.
  4. Weight both observation sets.
  5. Fit the ask model and the sales model independently.
  6. Build the rarity prior for traits unpriced in both models.
  7. Integrity gate: any hard failure → ``ModelIntegrityError``, nothing written.
  8. Assemble the model artifact and the diagnostics document.
  9. Write both artifacts atomically (skipped on ``dry_run``).

``build_value_model()`` runs steps 1–8 as a pure function of the parsed
documents and is what tests exercise; the stage adds file I/O, the rate
lookup and the run record.

Returns the number of observations fitted (asks + sales).
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from bigpulp_value.config import AppConfig, DataConfig
from bigpulp_value.errors import InputDataError
from bigpulp_value.ingestion.exchange_rate import fetch_xch_usd
from bigpulp_value.ingestion.loader import (
    load_asks,
    load_metadata,
    load_sales,
    parse_offers_index,
    parse_sales_index,
    read_json_document,
)
from bigpulp_value.models.meta import RunMetadata
from bigpulp_value.pipeline.base import PipelineStage
from bigpulp_value.reporting.artifact import build_model_artifact
from bigpulp_value.reporting.export import document_sha256, write_artifacts_atomically
from bigpulp_value.utils.time_utils import isoformat_z, utcnow
from bigpulp_value.valuation.diagnostics import build_diagnostics, global_price_stats
from bigpulp_value.valuation.fitter import fit_trait_model
from bigpulp_value.valuation.gate import IntegrityGateResult, enforce_integrity, run_integrity_checks
from bigpulp_value.valuation.prior import build_rarity_prior
from bigpulp_value.valuation.weights import compute_ask_weights, compute_sale_weights

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildInputs:
    """The three parsed input documents, kept untouched for hashing."""

    metadata: Any
    offers_index: Any
    sales_index: Optional[Any] = None

    @classmethod
    def from_files(cls, data: DataConfig) -> "BuildInputs":
        """Read the documents named in ``data``.

        Raises:
            InputDataError: Missing metadata or offers index, or unreadable JSON.
        """
        return cls(
            metadata=read_json_document(Path(data.metadata_file), "metadata"),
            offers_index=read_json_document(Path(data.offers_index_file), "offers_index"),
            sales_index=read_json_document(
                Path(data.sales_index_file), "sales_index", required=False,
            ),
        )


@dataclass(frozen=True)
class BuildOutcome:
    """Everything one successful build produced.

    Attributes:
        model:       Value model document (unsorted dict).
        diagnostics: Diagnostics document (unsorted dict).
        gate:        Integrity gate result (always ``passed`` here).
        n_asks:      Ask observations fitted.
        n_sales:     Sale observations fitted.
        written:     Paths written; empty for a dry run or a pure build.
    """

    model: dict[str, Any]
    diagnostics: dict[str, Any]
    gate: IntegrityGateResult
    n_asks: int
    n_sales: int
    written: list[Path] = field(default_factory=list)

    @property
    def is_healthy(self) -> bool:
        return bool(self.diagnostics.get("is_healthy"))

    @property
    def warnings(self) -> list[str]:
        return list(self.diagnostics.get("warnings", []))

    def summary(self) -> dict[str, Any]:
        """Flat operator-facing summary of the build."""
        models = self.model["models"]
        return {
            "asks": self.n_asks,
            "sales": self.n_sales,
            "ask_traits": len(models["ask"]["trait_delta_log"]),
            "sales_traits": len(models["sales"]["trait_delta_log"]),
            "prior_traits": len(self.model["priors"]["trait_prior_delta_log"]),
            "ask_sigma": models["ask"]["sigma"],
            "sales_sigma": models["sales"]["sigma"],
            "is_healthy": self.is_healthy,
            "warnings": self.warnings,
            "written": [str(p) for p in self.written],
        }


def build_value_model(
    inputs: BuildInputs,
    config: AppConfig,
    *,
    as_of: datetime,
    generated_at: str,
    xch_usd: Optional[float] = None,
    run_slug: Optional[str] = None,
) -> BuildOutcome:
    """Fit and validate the value model from parsed input documents.

    Args:
        inputs:       Parsed metadata, offers index and (optional) sales index.
        config:       Application configuration.
        as_of:        Reference time for time-decay weights.
        generated_at: Timestamp string stamped into both documents.
        xch_usd:      Exchange rate to record, or ``None``.
        run_slug:     Run identifier recorded in ``build_metadata``.

    Returns:
        BuildOutcome with both documents; nothing is written.

    Raises:
        InputDataError:      Malformed documents, or no observations at all.
        ModelIntegrityError: The fitted model failed the integrity gate.
    """
    params = config.valuation

    # ── Load ──────────────────────────────────────────────────────────────────
    metadata = load_metadata(inputs.metadata, params)
    offers = parse_offers_index(inputs.offers_index)
    ask_load = load_asks(offers, params)
    sales_load = load_sales(parse_sales_index(inputs.sales_index))
    asks, sales = ask_load.observations, sales_load.observations
    traits_by_id = metadata.traits_by_id

    if not asks and not sales:
        raise InputDataError("observations", "No asks or clears available; cannot build a model.")

    # ── Weight + fit ──────────────────────────────────────────────────────────
    ask_weights = compute_ask_weights(asks, params, as_of)
    sale_weights = compute_sale_weights(sales, params, as_of)

    ask_model = fit_trait_model("ask", asks, ask_weights, traits_by_id, params)
    sales_model = fit_trait_model("sales", sales, sale_weights, traits_by_id, params)
    prior = build_rarity_prior(
        traits_by_id, ask_model.trait_support, sales_model.trait_support, params,
    )

    # ── Gate ──────────────────────────────────────────────────────────────────
    gate = run_integrity_checks(
        sales_model=sales_model,
        ask_model=ask_model,
        asks=asks,
        sales=sales,
        traits_by_id=traits_by_id,
        offers_median_xch=offers.market_stats.median_xch,
        config=config.gate,
        rng=random.Random(config.random_seed),
    )
    enforce_integrity(gate)

    # ── Assemble ──────────────────────────────────────────────────────────────
    ask_stats = global_price_stats(asks, ask_weights)
    sales_stats = global_price_stats(sales, sale_weights)
    input_hashes = {
        "metadata": document_sha256(inputs.metadata),
        "offers": document_sha256(inputs.offers_index),
        "sales": document_sha256(inputs.sales_index) if inputs.sales_index is not None else None,
    }

    model = build_model_artifact(
        schema_version=config.schema_version,
        generated_at=generated_at,
        default_collection_id=config.collection_id,
        params=params,
        offers=offers,
        sales_model=sales_model,
        ask_model=ask_model,
        sales_stats=sales_stats,
        ask_stats=ask_stats,
        prior=prior,
        ask_prices=[a.price for a in asks],
        xch_usd=xch_usd,
        input_hashes=input_hashes,
        run_slug=run_slug,
    )
    diagnostics = build_diagnostics(
        schema_version=config.schema_version,
        generated_at=generated_at,
        sales_model=sales_model,
        ask_model=ask_model,
        prior=prior,
        n_asks=len(asks),
        n_asks_mapped=sum(1 for a in asks if a.id in traits_by_id),
        sales=sales,
        ask_stats=ask_stats,
        sales_stats=sales_stats,
        traits_by_id=traits_by_id,
        gate_result=gate,
        drop_counts={
            "metadata": {"skipped": metadata.skipped, "quarantined": metadata.quarantined},
            "asks": {"skipped": ask_load.skipped, "quarantined": ask_load.quarantined},
            "sales": {"skipped": sales_load.skipped, "quarantined": sales_load.quarantined},
        },
        config=config.diagnostics,
        gate_config=config.gate,
        rng=random.Random(config.random_seed),
    )

    return BuildOutcome(
        model=model,
        diagnostics=diagnostics,
        gate=gate,
        n_asks=len(asks),
        n_sales=len(sales),
    )


class BuildValueModelStage(PipelineStage):
    """Build the value model artifacts from the configured input files."""

    stage_name = "build_value_model"

    outcome: Optional[BuildOutcome] = None

    def _execute(
        self,
        run: RunMetadata,
        as_of: Optional[datetime] = None,
        xch_usd: Optional[float] = None,
        fetch_rate: Optional[bool] = None,
        dry_run: bool = False,
        **kwargs,
    ) -> int:
        """Run the full build.

        Args:
            run:        In-progress RunMetadata (mutable).
            as_of:      Time-decay reference; defaults to now.
            xch_usd:    Explicit exchange rate; skips the live lookup.
            fetch_rate: Override ``exchange_rate.enabled``.
            dry_run:    Fit and gate, but write nothing.

        Returns:
            Observations fitted (asks + sales).
        """
        started = utcnow()
        generated_at = isoformat_z(started)
        as_of = as_of or started

        if xch_usd is None:
            rate_config = self.config.exchange_rate
            if fetch_rate is not None:
                rate_config = rate_config.model_copy(update={"enabled": fetch_rate})
            xch_usd = fetch_xch_usd(rate_config)

        data = self.config.data
        inputs = BuildInputs.from_files(data)
        outcome = build_value_model(
            inputs,
            self.config,
            as_of=as_of,
            generated_at=generated_at,
            xch_usd=xch_usd,
            run_slug=run.run_slug,
        )

        if dry_run:
            logger.info("Dry run: skipping artifact writes.")
        else:
            written = write_artifacts_atomically([
                (outcome.model, Path(data.output_model_file)),
                (outcome.diagnostics, Path(data.output_diagnostics_file)),
            ])
            outcome = replace(outcome, written=written)

        self.outcome = outcome
        run.summary = outcome.summary()
        if outcome.warnings:
            logger.warning("Model health warnings: %s", ", ".join(outcome.warnings))
        logger.info(
            "Model health: %s", "HEALTHY" if outcome.is_healthy else "WARNINGS",
        )
        return outcome.n_asks + outcome.n_sales
