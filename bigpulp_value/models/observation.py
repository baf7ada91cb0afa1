"""
Priced observations — the uniform shape every downstream component consumes.

Two observation kinds share one base:
  1. ``AskObservation``  — an active listing, price already capped at
                           ``cap_mult_ask × floor`` by the loader.
  2. ``SaleObservation`` — a completed sale, price passed through unmodified.

Both are frozen after construction.  Weights are never stored on an
observation; the weighting engine returns them as a parallel list.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from bigpulp_value.models.inputs import SaleFlags
from bigpulp_value.stats.robust import safe_log


class Observation(BaseModel):
    """One priced event for one NFT.

    Attributes:
        id: NFT identifier (string form of the collection number).
        price: Price in XCH; always strictly positive.
        observed_at: Temporal anchor (listing ``updated_at`` or sale
            ``timestamp``), or ``None`` if absent/unparseable.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    price: float
    observed_at: Optional[datetime] = None

    @field_validator("price")
    @classmethod
    def validate_price_positive(cls, v: float) -> float:
        if not v > 0 or math.isinf(v):
            raise ValueError(f"Observation price must be a positive finite number, got {v}.")
        return v

    @property
    def log_price(self) -> float:
        return safe_log(self.price)


class AskObservation(Observation):
    """Active listing.

    Attributes:
        floor_at_time: Collection floor when the index was built; ``None``
            when the offers index reported no usable floor.
    """

    floor_at_time: Optional[float] = None

    @property
    def floor_multiple(self) -> Optional[float]:
        if not self.floor_at_time:
            return None
        return self.price / self.floor_at_time


class SaleObservation(Observation):
    """Completed sale with its upstream cleaning flags."""

    flags: SaleFlags = SaleFlags()
