"""
Shared pytest fixtures for the BigPulp value model test suite.

Provides a small synthetic collection that passes the integrity gate:
  - 120 NFTs with base/head/clothes/background/mouth traits whose prices
    follow known per-trait log effects plus deterministic noise.
  - Sales for NFTs #1-#80 (80 unique ids), plus one invalid-price event.
  - Asks for NFTs #30-#110 near the as-of date, floor 1.0 XCH.
  - NFTs #119 and #120 carry the only ``Gold Tooth`` mouth and are never
    listed or sold, so that trait can only get a rarity prior.

Document builders are plain functions so tests can derive variants
(e.g. a sales index with only 10 unique NFTs).
"""

from __future__ import annotations

import json
import math
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from bigpulp_value.config import AppConfig, ExchangeRateConfig, LoggingConfig
from bigpulp_value.pipeline.build_model import BuildInputs

AS_OF = datetime(2025, 1, 31, tzinfo=timezone.utc)
GENERATED_AT = "2025-01-31T00:00:00.000Z"
N_NFTS = 120
FLOOR_XCH = 1.0

BASES = {"Alien": 0.4, "Ape": 0.2, "Human": 0.0}
HEADS = {"Bandana": 0.1, "Cap": 0.0, "Crown": 0.8, "None": -0.1}
CLOTHES = {"Hoodie": 0.0, "Suit": 0.3, "Tee": -0.05}
BACKGROUNDS = {"Blue": 0.0, "Green": 0.05, "Red": 0.1}


def nft_traits(i: int) -> dict[str, str]:
    """Raw ``trait_type → value`` for NFT ``#i``."""
    return {
        "Base": list(BASES)[i % 3],
        "Head": list(HEADS)[(i // 3) % 4],
        "Clothes": list(CLOTHES)[(i * 7 // 5) % 3],
        "Background": list(BACKGROUNDS)[(i // 2) % 3],
        "Mouth": "Gold Tooth" if i >= N_NFTS - 1 else "Smile",
    }


def true_log_price(i: int) -> float:
    t = nft_traits(i)
    noise = ((i * 37) % 13 - 6) * 0.02
    return (
        0.5 + BASES[t["Base"]] + HEADS[t["Head"]]
        + CLOTHES[t["Clothes"]] + BACKGROUNDS[t["Background"]] + noise
    )


def iso(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def make_metadata(n: int = N_NFTS) -> list[Any]:
    records: list[Any] = [
        {
            "name": f"Wojak Farmer #{i}",
            "attributes": [
                {"trait_type": k, "value": v} for k, v in nft_traits(i).items()
            ],
        }
        for i in range(1, n + 1)
    ]
    records.append({"name": "Promo card", "attributes": []})
    records.append(42)
    return records


def make_offers(
    ids: range = range(30, 111),
    floor: float | None = FLOOR_XCH,
    median_xch: float | None = None,
) -> dict[str, Any]:
    listings: dict[str, Any] = {
        str(i): {
            "best_listing": {
                "price_xch": round(math.exp(true_log_price(i)) * 1.2, 6),
                "updated_at": iso(AS_OF - timedelta(days=i % 5)),
            }
        }
        for i in ids
    }
    listings["999"] = {"best_listing": None}
    return {
        "generated_at": iso(AS_OF),
        "floor_id": str(ids[0]) if ids else None,
        "listings_by_id": listings,
        "market_stats": {"floor_xch": floor, "median_xch": median_xch},
    }


def make_sales(ids: range = range(1, 81), repeats: int = 1) -> dict[str, Any]:
    events: list[Any] = []
    for r in range(repeats):
        for i in ids:
            events.append({
                "internal_id": i,
                "price_xch": round(math.exp(true_log_price(i)), 6),
                "is_valid_price": True,
                "timestamp": iso(AS_OF - timedelta(days=(i + r * 7) % 60)),
                "flags": {"same_owner": i == 5, "extreme": False},
            })
    events.append({
        "internal_id": 3,
        "price_xch": 0.0001,
        "is_valid_price": False,
        "timestamp": iso(AS_OF),
    })
    return {"events": events}


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def app_config() -> AppConfig:
    """Built-in defaults with the network lookup and log file switched off."""
    return AppConfig(
        exchange_rate=ExchangeRateConfig(enabled=False),
        logging=LoggingConfig(log_file=""),
    )


@pytest.fixture
def metadata_doc() -> list[Any]:
    return make_metadata()


@pytest.fixture
def offers_doc() -> dict[str, Any]:
    return make_offers()


@pytest.fixture
def sales_doc() -> dict[str, Any]:
    return make_sales()


@pytest.fixture
def build_inputs(metadata_doc, offers_doc, sales_doc) -> BuildInputs:
    return BuildInputs(metadata=metadata_doc, offers_index=offers_doc, sales_index=sales_doc)


def write_inputs(directory: Path, metadata: Any, offers: Any, sales: Any | None) -> dict[str, Path]:
    """Write input documents under ``directory`` and return their paths."""
    directory.mkdir(parents=True, exist_ok=True)
    paths = {
        "metadata": directory / "metadata.json",
        "offers": directory / "offers.json",
        "sales": directory / "sales.json",
    }
    paths["metadata"].write_text(json.dumps(metadata), encoding="utf-8")
    paths["offers"].write_text(json.dumps(offers), encoding="utf-8")
    if sales is not None:
        paths["sales"].write_text(json.dumps(sales), encoding="utf-8")
    return paths


def write_config(tmp_path: Path, paths: dict[str, Path], out_dir: Path) -> Path:
    """Write a TOML config pointing at ``paths`` with outputs under ``out_dir``."""
    config_path = tmp_path / "config" / "test.toml"
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(
        "random_seed = 7\n"
        "\n[data]\n"
        f'metadata_file = "{paths["metadata"].as_posix()}"\n'
        f'offers_index_file = "{paths["offers"].as_posix()}"\n'
        f'sales_index_file = "{paths["sales"].as_posix()}"\n'
        f'output_model_file = "{(out_dir / "value_model_v2.json").as_posix()}"\n'
        f'output_diagnostics_file = "{(out_dir / "diagnostics_v2.json").as_posix()}"\n'
        "\n[exchange_rate]\nenabled = false\n"
        '\n[logging]\nlevel = "WARNING"\nlog_file = ""\n',
        encoding="utf-8",
    )
    return config_path


@pytest.fixture
def input_files(tmp_path, metadata_doc, offers_doc, sales_doc) -> dict[str, Path]:
    return write_inputs(tmp_path / "input", metadata_doc, offers_doc, sales_doc)


@pytest.fixture
def config_file(tmp_path, input_files) -> Path:
    return write_config(tmp_path, input_files, tmp_path / "output")
