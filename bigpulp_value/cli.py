"""
Command line for the BigPulp value model.

Each command loads ``AppConfig`` (``--config`` plus option overrides), sets up
logging from it, does its work and prints a short report. Fatal problems
print ``[ERROR] ...`` to stderr and exit with code 1.

Install and run::

    pip install -e .
    bigpulp-value --help
    bigpulp-value validate-config
    bigpulp-value build
    bigpulp-value build --as-of 2025-01-31T00:00:00Z --no-fetch-rate --dry-run
    bigpulp-value estimate --id 1234
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="bigpulp-value",
    help="BigPulp NFT trait value model builder.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from bigpulp_value.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from bigpulp_value.utils.logging import configure_logging
    configure_logging(config.logging)


def _fmt(value: Optional[float], digits: int = 4) -> str:
    return "N/A" if value is None else f"{value:.{digits}f}"


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)
    params = config.valuation

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Metadata file:     {config.data.metadata_file}")
    typer.echo(f"  Offers index:      {config.data.offers_index_file}")
    typer.echo(f"  Sales index:       {config.data.sales_index_file}")
    typer.echo(f"  Model output:      {config.data.output_model_file}")
    typer.echo(f"  Half-lives (d):    sales={params.half_life_days_sales} asks={params.half_life_days_asks}")
    typer.echo(f"  Ask cap:           {params.cap_mult_ask}x floor")
    typer.echo(f"  Random seed:       {config.random_seed}")
    typer.echo(f"  XCH/USD lookup:    {'on' if config.exchange_rate.enabled else 'off'}")
    typer.echo(f"  Log level:         {config.logging.level}")
    typer.echo(f"  Debug mode:        {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config is valid.")


@app.command("build")
def build(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
    data_dir: Optional[str] = typer.Option(
        None,
        "--data-dir",
        help="Resolve relative input/output paths against this directory.",
    ),
    as_of: Optional[str] = typer.Option(
        None,
        "--as-of",
        help="Reference time for time decay (ISO-8601). Defaults to now.",
    ),
    seed: Optional[int] = typer.Option(
        None,
        "--seed",
        help="Override random_seed for the gate and validation samples.",
    ),
    xch_usd: Optional[float] = typer.Option(
        None,
        "--xch-usd",
        help="Record this XCH/USD rate instead of looking it up.",
    ),
    no_fetch_rate: bool = typer.Option(
        False,
        "--no-fetch-rate",
        help="Skip the XCH/USD lookup (xch_usd_at_build = null).",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Fit and validate the model but write no files.",
    ),
) -> None:
    """Build the value model and diagnostics artifacts.

    Exits with code 1, writing nothing, if inputs are missing or the model
    fails the integrity gate.
    """
    from bigpulp_value.errors import ModelIntegrityError, ValueModelError
    from bigpulp_value.pipeline.build_model import BuildValueModelStage
    from bigpulp_value.utils.time_utils import parse_timestamp

    config = _load_config_or_exit(config_path)

    if xch_usd is not None and no_fetch_rate:
        typer.echo("[ERROR] --xch-usd and --no-fetch-rate are mutually exclusive.", err=True)
        raise typer.Exit(code=1)

    as_of_dt = None
    if as_of is not None:
        as_of_dt = parse_timestamp(as_of)
        if as_of_dt is None:
            typer.echo(f"[ERROR] Cannot parse --as-of '{as_of}' as a timestamp.", err=True)
            raise typer.Exit(code=1)

    updates: dict = {}
    if data_dir:
        updates["data"] = config.data.resolved_against(Path(data_dir))
    if seed is not None:
        updates["random_seed"] = seed
    if updates:
        config = config.model_copy(update=updates)

    _configure_logging(config)

    stage = BuildValueModelStage(config=config)
    try:
        run = stage.run(
            as_of=as_of_dt,
            xch_usd=xch_usd,
            fetch_rate=False if no_fetch_rate else None,
            dry_run=dry_run,
        )
    except ModelIntegrityError as exc:
        typer.echo("[ERROR] Model integrity gate failed:", err=True)
        for failure in exc.failures:
            typer.echo(f"  - {failure}", err=True)
        raise typer.Exit(code=1)
    except ValueModelError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    summary = run.summary
    typer.echo(f"Value model build complete | run_slug={run.run_slug}")
    typer.echo(f"  Asks:          {summary['asks']}  ({summary['ask_traits']} traits, sigma={_fmt(summary['ask_sigma'])})")
    typer.echo(f"  Sales:         {summary['sales']}  ({summary['sales_traits']} traits, sigma={_fmt(summary['sales_sigma'])})")
    typer.echo(f"  Prior traits:  {summary['prior_traits']}")
    typer.echo(f"  Health:        {'HEALTHY' if summary['is_healthy'] else 'WARNINGS'}")
    if summary["warnings"]:
        typer.echo(f"  Warnings:      {', '.join(summary['warnings'])}")
    if dry_run:
        typer.echo("[OK] Dry run, no files written.")
    else:
        for path in summary["written"]:
            typer.echo(f"  Wrote:         {path}")
        typer.echo("[OK] Artifacts written.")


@app.command("estimate")
def estimate(
    nft_id: int = typer.Option(
        ...,
        "--id",
        help="NFT number to value (the #<digits> suffix of its name).",
    ),
    model_path: Optional[str] = typer.Option(
        None,
        "--model",
        help="Value model artifact (default: data.output_model_file).",
    ),
    metadata_path: Optional[str] = typer.Option(
        None,
        "--metadata",
        help="Collection metadata file (default: data.metadata_file).",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Print one NFT's valuation from an emitted value model."""
    from bigpulp_value.errors import ValueModelError
    from bigpulp_value.ingestion.loader import load_metadata, read_json_document
    from bigpulp_value.valuation.estimate import estimate_value

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        artifact = read_json_document(
            Path(model_path or config.data.output_model_file), "value_model",
        )
        metadata = load_metadata(
            read_json_document(Path(metadata_path or config.data.metadata_file), "metadata"),
            config.valuation,
        )
    except ValueModelError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    traits = metadata.traits_by_id.get(str(nft_id))
    if traits is None:
        typer.echo(f"[ERROR] NFT #{nft_id} not found in metadata.", err=True)
        raise typer.Exit(code=1)

    result = estimate_value(artifact, traits)
    if not result.estimates:
        typer.echo("[ERROR] Model artifact has no usable baseline.", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"NFT #{nft_id}")
    for category, value in sorted(traits.items()):
        typer.echo(f"  {category:<12} {value}")
    typer.echo("")
    for name, est in result.estimates.items():
        typer.echo(
            f"  {name:<6} {est.point_xch:.4f} XCH  "
            f"(80% range {_fmt(est.low_xch)} to {_fmt(est.high_xch)})"
        )
        if est.prior_traits:
            typer.echo(f"         rarity prior used for: {', '.join(est.prior_traits)}")
    if result.unknown_traits:
        typer.echo(f"  Unpriced traits: {', '.join(result.unknown_traits)}")


if __name__ == "__main__":
    app()
