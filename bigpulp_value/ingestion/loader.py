"""
Observation loader: raw JSON documents → validated observations.

Responsibilities
----------------
1. Read the three input documents (``read_json_document``).
2. Validate each document's top-level shape; a mismatch raises
   ``InputDataError``.
3. Validate every record individually.  Records that fail schema
   validation are *quarantined* (dropped and counted); records that are
   well-formed but unpriced (no price, ``is_valid_price`` false, unparseable
   NFT name) are *skipped* (dropped and counted).  Neither aborts the build.
4. Emit immutable observations:
   - asks:  price capped at ``floor × cap_mult_ask`` when the floor is known.
   - sales: price passed through unmodified; the upstream cleaning that set
            ``is_valid_price`` is authoritative.

All loaders are pure: they never mutate the parsed documents, which must
stay pristine for input hashing.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generic, Optional, TypeVar

from pydantic import ValidationError

from bigpulp_value.config import ValuationParams
from bigpulp_value.errors import InputDataError
from bigpulp_value.models.inputs import (
    ListingEntry,
    MetadataItem,
    OffersIndexDocument,
    SaleEvent,
    SalesIndexDocument,
)
from bigpulp_value.models.observation import AskObservation, SaleObservation
from bigpulp_value.taxonomy.trait_taxonomy import normalize_category
from bigpulp_value.utils.time_utils import parse_timestamp

logger = logging.getLogger(__name__)

_NFT_ID_PATTERN = re.compile(r"#(\d+)$")

T = TypeVar("T")


@dataclass(frozen=True)
class LoadResult(Generic[T]):
    """Observations from one source plus drop accounting.

    Attributes:
        observations: Surviving observations, in document order.
        skipped:      Well-formed records with nothing to price.
        quarantined:  Records that failed schema validation.
    """

    observations: tuple[T, ...]
    skipped: int = 0
    quarantined: int = 0


@dataclass(frozen=True)
class MetadataLoadResult:
    """Trait lookup built from the collection metadata.

    Attributes:
        traits_by_id: NFT id → ``{category: value}``.
        skipped:      Records whose ``name`` has no ``#<digits>`` suffix.
        quarantined:  Records that failed schema validation.
    """

    traits_by_id: dict[str, dict[str, str]]
    skipped: int = 0
    quarantined: int = 0


# ── Document readers ──────────────────────────────────────────────────────────


def read_json_document(path: Path, source: str, required: bool = True) -> Optional[Any]:
    """Read and parse one JSON input document.

    Args:
        path:     File to read.
        source:   Input name used in error messages.
        required: When False, a missing file returns ``None`` instead of raising.

    Returns:
        The parsed JSON value, or ``None`` for a missing optional document.

    Raises:
        InputDataError: If a required file is missing, or any file is
            unreadable or not valid JSON.
    """
    if not path.exists():
        if required:
            raise InputDataError(source, f"Input file not found: {path}")
        logger.warning("Optional input %s not found at %s; continuing without it.", source, path)
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise InputDataError(source, f"Failed to read {path}: {exc}") from exc


def parse_offers_index(raw: Any) -> OffersIndexDocument:
    """Validate the offers index top-level shape.

    Raises:
        InputDataError: If ``raw`` is missing or lacks a ``listings_by_id`` mapping.
    """
    if raw is None:
        raise InputDataError("offers_index", "Offers index not found; cannot build a model.")
    try:
        return OffersIndexDocument.model_validate(raw)
    except ValidationError as exc:
        raise InputDataError("offers_index", f"Malformed offers index: {exc}") from exc


def parse_sales_index(raw: Any) -> Optional[SalesIndexDocument]:
    """Validate the sales index top-level shape (``None`` passes through).

    Raises:
        InputDataError: If ``raw`` is present but lacks an ``events`` list.
    """
    if raw is None:
        return None
    try:
        return SalesIndexDocument.model_validate(raw)
    except ValidationError as exc:
        raise InputDataError("sales_index", f"Malformed sales index: {exc}") from exc


# ── Loaders ───────────────────────────────────────────────────────────────────


def load_metadata(raw: Any, params: ValuationParams) -> MetadataLoadResult:
    """Build the ``id → {category: value}`` trait lookup.

    The NFT id is the trailing ``#<digits>`` of ``name``.  Attributes with an
    empty ``trait_type`` or value are ignored; a later attribute in the same
    category overwrites an earlier one.

    Raises:
        InputDataError: If ``raw`` is not a JSON array.
    """
    if not isinstance(raw, list):
        raise InputDataError("metadata", "Metadata must be a JSON array of NFT records.")

    traits_by_id: dict[str, dict[str, str]] = {}
    skipped = 0
    quarantined = 0

    for record in raw:
        try:
            item = MetadataItem.model_validate(record)
        except ValidationError as exc:
            quarantined += 1
            logger.debug("Quarantined metadata record: %s", exc)
            continue

        match = _NFT_ID_PATTERN.search(item.name)
        if match is None:
            skipped += 1
            continue

        traits: dict[str, str] = {}
        for attr in item.attributes:
            category = normalize_category(attr.trait_type, params.category_map)
            if category and attr.value:
                traits[category] = attr.value
        traits_by_id[match.group(1)] = traits

    logger.info(
        "Loaded %d NFTs with traits (skipped=%d, quarantined=%d)",
        len(traits_by_id), skipped, quarantined,
    )
    return MetadataLoadResult(traits_by_id=traits_by_id, skipped=skipped, quarantined=quarantined)


def load_asks(offers: OffersIndexDocument, params: ValuationParams) -> LoadResult[AskObservation]:
    """Extract capped ask observations from the offers index.

    For every listing with a positive ``price_xch``, the emitted price is
    ``min(price_xch, floor × params.cap_mult_ask)`` when the index reports a
    positive floor, and ``price_xch`` unchanged otherwise.
    """
    floor = offers.effective_floor_xch
    cap = floor * params.cap_mult_ask if floor is not None else None

    observations: list[AskObservation] = []
    skipped = 0
    quarantined = 0

    for nft_id, raw_entry in offers.listings_by_id.items():
        try:
            entry = ListingEntry.model_validate(raw_entry)
        except ValidationError as exc:
            quarantined += 1
            logger.debug("Quarantined listing %s: %s", nft_id, exc)
            continue

        listing = entry.best_listing
        if listing is None or listing.price_xch is None or not listing.price_xch > 0:
            skipped += 1
            continue

        price = listing.price_xch if cap is None else min(listing.price_xch, cap)
        anchor = listing.updated_at if listing.updated_at is not None else listing.timestamp
        try:
            observations.append(
                AskObservation(
                    id=str(nft_id),
                    price=price,
                    observed_at=parse_timestamp(anchor),
                    floor_at_time=floor,
                )
            )
        except ValidationError as exc:
            quarantined += 1
            logger.debug("Quarantined listing %s: %s", nft_id, exc)

    logger.info(
        "Loaded %d asks (floor=%s, skipped=%d, quarantined=%d)",
        len(observations), floor, skipped, quarantined,
    )
    return LoadResult(observations=tuple(observations), skipped=skipped, quarantined=quarantined)


def load_sales(sales: Optional[SalesIndexDocument]) -> LoadResult[SaleObservation]:
    """Extract sale observations from the sales index.

    Only events flagged ``is_valid_price`` with a positive ``price_xch`` are
    kept.  Sale prices are never capped.
    """
    if sales is None:
        return LoadResult(observations=())

    observations: list[SaleObservation] = []
    skipped = 0
    quarantined = 0

    for raw_event in sales.events:
        try:
            event = SaleEvent.model_validate(raw_event)
        except ValidationError as exc:
            quarantined += 1
            logger.debug("Quarantined sale event: %s", exc)
            continue

        if not event.is_valid_price or event.price_xch is None or not event.price_xch > 0:
            skipped += 1
            continue

        try:
            observations.append(
                SaleObservation(
                    id=event.internal_id,
                    price=event.price_xch,
                    observed_at=parse_timestamp(event.timestamp),
                    flags=event.flags,
                )
            )
        except ValidationError as exc:
            quarantined += 1
            logger.debug("Quarantined sale event %s: %s", event.internal_id, exc)

    logger.info(
        "Loaded %d clears (skipped=%d, quarantined=%d)",
        len(observations), skipped, quarantined,
    )
    return LoadResult(observations=tuple(observations), skipped=skipped, quarantined=quarantined)
