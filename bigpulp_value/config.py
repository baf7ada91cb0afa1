"""
Settings for the value-model build.

Sources are layered, later ones winning:
  1. ``config/default.toml``, committed defaults
  2. ``config/local.toml`` next to it, if present
  3. ``.env`` at the project root, if present
  4. ``BIGPULP_*`` variables in the process environment

Call ``load_config(config_path=None)`` to get a validated ``AppConfig``.

Every pipeline component receives its tunables from an ``AppConfig`` section
(``ValuationParams``, ``GateConfig``, ...) passed in explicitly.  Nothing in
the valuation code reads module-level constants, so each component can be
exercised in tests with arbitrary parameter sets.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DataConfig(BaseModel):
    """Filesystem paths for the three input documents and two output artifacts."""

    model_config = ConfigDict(frozen=True)

    metadata_file: str = "data/input/Wojak_Farmers_Plot_metadata.json"
    offers_index_file: str = "data/input/mintgarden_offers_index_v1.json"
    sales_index_file: str = "data/input/mintgarden_sales_index_v1.json"
    output_model_file: str = "data/output/value_model_v2.json"
    output_diagnostics_file: str = "data/output/value_model_diagnostics_v2.json"

    def resolved_against(self, base_dir: Path) -> "DataConfig":
        """Return a copy with every relative path joined onto ``base_dir``."""
        updates: dict[str, str] = {}
        for name, value in self.model_dump().items():
            path = Path(value)
            updates[name] = str(path if path.is_absolute() else base_dir / path)
        return self.model_copy(update=updates)


class ValuationParams(BaseModel):
    """Statistical tunables shared by the weighting engine, fitter and prior.

    ``k_by_category`` holds the empirical-Bayes smoothing constant per trait
    category: larger K means more evidence is needed before a trait's
    estimated effect moves away from zero.
    """

    model_config = ConfigDict(frozen=True)

    category_map: dict[str, str] = {
        "Base": "base",
        "Clothes": "clothes",
        "Head": "head",
        "Face": "face",
        "Mouth": "mouth",
        "Face Wear": "facewear",
        "Background": "background",
    }
    k_by_category: dict[str, float] = {
        "base": 15.0,
        "head": 20.0,
        "facewear": 20.0,
        "face": 20.0,
        "mouth": 20.0,
        "clothes": 20.0,
        "background": 10.0,
    }
    default_k: float = 20.0

    half_life_days_sales: float = 90.0
    half_life_days_asks: float = 14.0
    missing_timestamp_weight_sales: float = 0.5
    missing_timestamp_weight_asks: float = 1.0

    cap_mult_ask: float = 5.0
    delusion_threshold_mult: float = 3.0
    outlier_z_scale: float = 3.0
    same_owner_weight: float = 0.2
    extreme_weight: float = 0.3
    weight_floor: float = 1e-12

    winsor_lower_q: float = 0.1
    winsor_upper_q: float = 0.9

    prior_beta: float = 0.06
    prior_log_ratio_clamp: float = 2.0
    prior_min_support: float = 1.0

    residual_sample_size: int = 1000

    @field_validator("half_life_days_sales", "half_life_days_asks", "cap_mult_ask")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Value must be positive, got {v}.")
        return v

    @field_validator(
        "missing_timestamp_weight_sales",
        "missing_timestamp_weight_asks",
        "same_owner_weight",
        "extreme_weight",
    )
    @classmethod
    def validate_weight_factor(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError(f"Weight factors must be in (0.0, 1.0], got {v}.")
        return v

    @field_validator("winsor_lower_q", "winsor_upper_q")
    @classmethod
    def validate_quantile(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"Quantiles must be in [0.0, 1.0], got {v}.")
        return v

    @model_validator(mode="after")
    def validate_winsor_order(self) -> "ValuationParams":
        if self.winsor_lower_q > self.winsor_upper_q:
            raise ValueError(
                f"winsor_lower_q ({self.winsor_lower_q}) must not exceed "
                f"winsor_upper_q ({self.winsor_upper_q})."
            )
        return self

    def k_for(self, category: str) -> float:
        """Smoothing constant for ``category`` (``default_k`` when unknown)."""
        return self.k_by_category.get(category, self.default_k)


class GateConfig(BaseModel):
    """Thresholds for the fatal model integrity gate."""

    model_config = ConfigDict(frozen=True)

    min_sales_mapping_rate: float = 0.95
    min_unique_sales_ids: int = 50       # strictly more than this many required
    variance_sample_size: int = 50
    min_prediction_stddev: float = 0.03  # price-space (XCH)
    sigma_min: float = 0.05              # exclusive
    sigma_max: float = 2.0               # exclusive
    max_ask_median_divergence: float = 0.5

    @model_validator(mode="after")
    def validate_sigma_bounds(self) -> "GateConfig":
        if self.sigma_min >= self.sigma_max:
            raise ValueError(
                f"sigma_min ({self.sigma_min}) must be below sigma_max ({self.sigma_max})."
            )
        return self


class DiagnosticsConfig(BaseModel):
    """Settings for the non-fatal diagnostics artifact."""

    model_config = ConfigDict(frozen=True)

    top_n_deltas: int = 20
    validation_sample_size: int = 30
    sparse_sales_threshold: int = 10
    low_coverage_support: float = 1.0
    healthy_min_sales: int = 3
    healthy_min_asks: int = 10
    healthy_max_warnings: int = 3        # healthy only when fewer warnings than this


class ExchangeRateConfig(BaseModel):
    """Optional XCH/USD lookup performed once at build start."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    api_url: str = "https://api.coingecko.com/api/v3/simple/price"
    coin_id: str = "chia"
    vs_currency: str = "usd"
    timeout_seconds: float = 10.0
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    max_backoff_seconds: float = 2.0      # cap on any single delay, Retry-After included
    deadline_seconds: float = 15.0        # whole lookup, requests and delays together
    retry_statuses: list[int] = [429, 502, 503, 504]

    @field_validator("max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"max_retries must be >= 0, got {v}.")
        return v

    @field_validator("timeout_seconds", "max_backoff_seconds", "deadline_seconds")
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Durations must be > 0, got {v}.")
        return v


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/bigpulp_value.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


DEFAULT_COLLECTION_ID = "col10hfq4hml2z0z0wutu3a9hvt60qy9fcq4k4dznsfncey4lu6kpt3su7u9ah"


class AppConfig(BaseModel):
    """Every tunable of a build, grouped by concern.

    Constructed by ``load_config()`` which merges TOML + .env, or directly
    (``AppConfig()``) for the built-in defaults.
    """

    model_config = ConfigDict(frozen=True)

    data: DataConfig = DataConfig()
    valuation: ValuationParams = ValuationParams()
    gate: GateConfig = GateConfig()
    diagnostics: DiagnosticsConfig = DiagnosticsConfig()
    exchange_rate: ExchangeRateConfig = ExchangeRateConfig()
    logging: LoggingConfig = LoggingConfig()
    schema_version: str = "2.0"
    collection_id: str = DEFAULT_COLLECTION_ID
    random_seed: int = 1337
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Return the nearest ancestor directory holding ``pyproject.toml``."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Read, layer and validate the build settings.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    # .env is optional
    load_dotenv(dotenv_path=root / ".env", override=False)

    # Base TOML, then local.toml
    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Pass --config or create config/default.toml first."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    # BIGPULP_* environment variables
    raw = _apply_env_overrides(raw)

    # Validate into AppConfig
    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply BIGPULP_* env vars to the raw config dict.

    Supported overrides:
      BIGPULP_LOG_LEVEL            → raw["logging"]["level"]
      BIGPULP_FETCH_EXCHANGE_RATE  → raw["exchange_rate"]["enabled"]
      BIGPULP_RANDOM_SEED          → raw["random_seed"]
      BIGPULP_DEBUG                → raw["debug"]
    """
    if log_level := os.environ.get("BIGPULP_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if fetch_rate := os.environ.get("BIGPULP_FETCH_EXCHANGE_RATE"):
        raw.setdefault("exchange_rate", {})["enabled"] = _truthy(fetch_rate)

    if seed := os.environ.get("BIGPULP_RANDOM_SEED"):
        raw["random_seed"] = int(seed)

    if debug := os.environ.get("BIGPULP_DEBUG"):
        raw["debug"] = _truthy(debug)

    return raw


def _truthy(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})
    debug = raw.get("debug", project.get("debug", False))

    # debug forces verbose logs whatever the level setting says
    logging_raw = dict(raw.get("logging", {}))
    if debug:
        logging_raw["level"] = "DEBUG"

    return AppConfig(
        data=DataConfig(**raw.get("data", {})),
        valuation=ValuationParams(**raw.get("valuation", {})),
        gate=GateConfig(**raw.get("gate", {})),
        diagnostics=DiagnosticsConfig(**raw.get("diagnostics", {})),
        exchange_rate=ExchangeRateConfig(**raw.get("exchange_rate", {})),
        logging=LoggingConfig(**logging_raw),
        schema_version=project.get("schema_version", "2.0"),
        collection_id=project.get("collection_id", DEFAULT_COLLECTION_ID),
        random_seed=raw.get("random_seed", project.get("random_seed", 1337)),
        debug=debug,
    )
