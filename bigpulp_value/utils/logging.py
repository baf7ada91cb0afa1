"""
Logging setup for the BigPulp value model builder.

Call ``configure_logging(config)`` once at CLI entry, before the build starts.
Library modules only ever use ``logging.getLogger(__name__)``.

Every record carries a ``run_slug`` attribute (``"-"`` outside a build).
``BuildValueModelStage`` binds the current run via ``bind_run_slug()`` so a
single build's lines can be grepped out of a shared log file.

JSON format (``json_format = true`` under ``[logging]``) emits one object per
line::

    {"ts": "2026-10-17T09:00:00Z", "level": "INFO", "logger": "...",
     "run_slug": "...", "msg": "..."}
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bigpulp_value.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(run_slug)s): %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Attributes every LogRecord has; anything else came in through ``extra=``.
_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "run_slug"}

_current_run_slug = "-"


def bind_run_slug(run_slug: str | None) -> None:
    """Tag subsequent log records with ``run_slug`` (``None`` resets to ``"-"``)."""
    global _current_run_slug
    _current_run_slug = run_slug or "-"


class _RunSlugFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "run_slug"):
            record.run_slug = _current_run_slug
        return True


class _JsonFormatter(logging.Formatter):
    """One JSON object per log line; ``extra=`` fields are merged at top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                LOG_DATE_FORMAT
            ),
            "level": record.levelname,
            "logger": record.name,
            "run_slug": getattr(record, "run_slug", "-"),
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        for key, val in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                payload[key] = val
        return json.dumps(payload, default=str)


def configure_logging(config: "LoggingConfig") -> None:
    """Configure the root logger from a ``LoggingConfig`` instance.

    Sets up a stdout handler, an optional file handler (parent directories
    are created) and the JSON formatter when ``config.json_format`` is set.
    Safe to call more than once; earlier handlers are replaced.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)

    formatter: logging.Formatter
    if config.json_format:
        formatter = _JsonFormatter()
    else:
        formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    run_filter = _RunSlugFilter()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(run_filter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    # The exchange-rate client logs its own retries; drop per-request lines
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
