"""
Time utilities for observation ageing.

Marketplace exports carry timestamps in several shapes: ISO-8601 strings with
a ``Z`` or offset suffix, naive ISO strings (treated as UTC), and numeric
epoch values in milliseconds.  ``parse_timestamp`` accepts all of them and
returns ``None`` for anything it cannot read, so a bad timestamp degrades to
"missing timestamp" rather than failing the build.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

_SECONDS_PER_DAY = 86_400.0

# Epoch numbers above this are milliseconds (year 2001 in ms ≈ 1e12).
_EPOCH_MS_THRESHOLD = 1e11


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a marketplace timestamp into an aware UTC datetime.

    Args:
        value: ISO-8601 string, epoch number (seconds or milliseconds),
            ``datetime``, or ``None``.

    Returns:
        Aware UTC ``datetime``, or ``None`` if ``value`` is empty or unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000.0 if abs(value) > _EPOCH_MS_THRESHOLD else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def age_days(observed_at: datetime, as_of: datetime) -> float:
    """Days elapsed from ``observed_at`` to ``as_of`` (negative if in the future)."""
    return (as_of - observed_at).total_seconds() / _SECONDS_PER_DAY


def isoformat_z(dt: datetime) -> str:
    """Render ``dt`` as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"
