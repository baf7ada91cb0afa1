"""
Trait taxonomy for the Wojak Farmers Plot collection.

A trait is a ``(category, value)`` pair, keyed as ``"category::value"``
(e.g. ``"head::Bandana"``).  Categories come from a closed set; raw metadata
``trait_type`` names are mapped onto it through
``ValuationParams.category_map``.  A ``trait_type`` the map does not know is
passed through lower-cased so it still gets its own (default-K) trait keys.

This module has NO imports from any other ``bigpulp_value`` package.
"""

from enum import StrEnum
from typing import Mapping, Optional

TRAIT_KEY_SEPARATOR = "::"


class TraitCategory(StrEnum):
    """Closed set of normalized trait categories."""

    BASE = "base"
    HEAD = "head"
    FACEWEAR = "facewear"
    FACE = "face"
    MOUTH = "mouth"
    CLOTHES = "clothes"
    BACKGROUND = "background"


def normalize_category(trait_type: Optional[str], category_map: Mapping[str, str]) -> Optional[str]:
    """Map a raw ``trait_type`` to its normalized category.

    Returns ``None`` for an empty or missing ``trait_type``.
    """
    if not trait_type:
        return None
    mapped = category_map.get(trait_type)
    if mapped:
        return mapped
    return trait_type.lower()


def trait_key(category: str, value: str) -> str:
    """Build the composite ``category::value`` key."""
    return f"{category}{TRAIT_KEY_SEPARATOR}{value}"


def trait_category(key: str) -> str:
    """Category part of a trait key (everything before the first separator)."""
    return key.split(TRAIT_KEY_SEPARATOR, 1)[0]


def trait_keys(traits: Mapping[str, str]) -> list[str]:
    """Trait keys for one NFT's ``{category: value}`` mapping."""
    return [trait_key(category, value) for category, value in traits.items()]
