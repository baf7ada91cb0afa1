"""
Input document schemas — validated at the ingestion boundary.

Three documents feed a build:
  1. NFT metadata        — ``[{name, attributes: [{trait_type, value}]}]``
  2. Offers index        — ``{listings_by_id: {id: {best_listing: {...}}}, market_stats: {...}}``
  3. Sales index         — ``{events: [{internal_id, price_xch, is_valid_price, timestamp, flags}]}``

Validation happens at two levels:
  - Document level (``OffersIndexDocument``, ``SalesIndexDocument``): a shape
    mismatch here is fatal, there is nothing sensible to fit against.
  - Record level (``MetadataItem``, ``ListingEntry``, ``SaleEvent``): each
    record is validated on its own; a failure quarantines just that record.

All models ignore unknown keys; marketplace exports grow fields over time.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


def _none_to_empty(v: Any, empty: Any) -> Any:
    return empty if v is None else v


class MetadataAttribute(BaseModel):
    """One ``{trait_type, value}`` pair from the collection metadata."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    trait_type: Optional[str] = None
    value: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        raise ValueError(f"Attribute value must be a string or number, got {type(v).__name__}.")


class MetadataItem(BaseModel):
    """One NFT's metadata record; the numeric ID is parsed from ``name``."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = ""
    attributes: list[MetadataAttribute] = []

    @field_validator("name", mode="before")
    @classmethod
    def coerce_name(cls, v: Any) -> Any:
        return _none_to_empty(v, "")

    @field_validator("attributes", mode="before")
    @classmethod
    def coerce_attributes(cls, v: Any) -> Any:
        return _none_to_empty(v, [])


class BestListing(BaseModel):
    """Cheapest active listing for one NFT."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    price_xch: Optional[float] = None
    updated_at: Optional[Any] = None
    timestamp: Optional[Any] = None


class ListingEntry(BaseModel):
    """``listings_by_id`` value: wraps the best listing (may be absent)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    best_listing: Optional[BestListing] = None


class MarketStats(BaseModel):
    """Collection-level market summary reported by the offers index."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    floor_xch: Optional[float] = None
    median_xch: Optional[float] = None


class OffersIndexDocument(BaseModel):
    """Top-level offers index.

    ``listings_by_id`` values are kept raw here and validated one by one as
    ``ListingEntry`` records so a single bad listing cannot reject the index.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    listings_by_id: dict[str, Any]
    market_stats: MarketStats = MarketStats()
    floor_xch: Optional[float] = None
    floor_id: Optional[str] = None
    generated_at: Optional[str] = None
    collection_id: Optional[str] = None

    @field_validator("market_stats", mode="before")
    @classmethod
    def coerce_market_stats(cls, v: Any) -> Any:
        return _none_to_empty(v, {})

    @field_validator("floor_id", mode="before")
    @classmethod
    def coerce_floor_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v

    @property
    def effective_floor_xch(self) -> Optional[float]:
        """Floor from ``market_stats`` with the legacy top-level field as fallback.

        Non-positive floors are treated as unknown.
        """
        for candidate in (self.market_stats.floor_xch, self.floor_xch):
            if candidate is not None and candidate > 0:
                return candidate
        return None


class SaleFlags(BaseModel):
    """Upstream cleaning flags attached to a sale event."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    same_owner: bool = False
    extreme: bool = False

    @field_validator("same_owner", "extreme", mode="before")
    @classmethod
    def coerce_flag(cls, v: Any) -> Any:
        return _none_to_empty(v, False)


class SaleEvent(BaseModel):
    """One completed sale from the sales index."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    internal_id: str
    price_xch: Optional[float] = None
    is_valid_price: bool = False
    timestamp: Optional[Any] = None
    flags: SaleFlags = SaleFlags()

    @field_validator("internal_id", mode="before")
    @classmethod
    def coerce_internal_id(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("is_valid_price", mode="before")
    @classmethod
    def coerce_validity(cls, v: Any) -> Any:
        return _none_to_empty(v, False)

    @field_validator("flags", mode="before")
    @classmethod
    def coerce_flags(cls, v: Any) -> Any:
        return _none_to_empty(v, {})


class SalesIndexDocument(BaseModel):
    """Top-level sales index; ``events`` are validated individually."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    events: list[Any]
