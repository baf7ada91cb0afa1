"""Deterministic key ordering shared by sampling and serialization."""

from __future__ import annotations

from typing import Iterable


def natural_key(key: str) -> tuple[int, int, str]:
    """Sort key placing integer-like strings first (by value), then the rest lexically.

    ``sorted(["10", "9", "head::cap", "2"], key=natural_key)``
    gives ``["2", "9", "10", "head::cap"]``.
    """
    if key.isascii() and key.isdigit():
        return (0, int(key), key)
    return (1, 0, key)


def sorted_ids(ids: Iterable[str]) -> list[str]:
    """NFT ids in natural order; the fixed starting point for seeded sampling."""
    return sorted(ids, key=natural_key)
