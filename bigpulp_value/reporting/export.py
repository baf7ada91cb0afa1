"""
Deterministic JSON export for the model and diagnostics artifacts.

``sort_keys_deep()`` builds a NEW structure with every mapping's keys in
natural order (integer-like keys by value, then the rest lexically).  Lists
keep their order.  The input is never mutated, so parsed input documents
stay pristine for ``document_sha256()``.

``write_artifacts_atomically()`` serialises every artifact to a temp file in
its destination directory first and only then renames them into place, so a
serialisation failure leaves no partial output behind.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Sequence

from bigpulp_value.utils.ordering import natural_key

logger = logging.getLogger(__name__)


def sort_keys_deep(data: Any) -> Any:
    """Return a copy of ``data`` with every dict's keys naturally ordered."""
    if isinstance(data, dict):
        ordered = sorted(data, key=lambda k: natural_key(str(k)))
        return {key: sort_keys_deep(data[key]) for key in ordered}
    if isinstance(data, (list, tuple)):
        return [sort_keys_deep(item) for item in data]
    return data


def serialize_document(data: Any) -> str:
    """Pretty-printed, key-sorted JSON text with a trailing newline."""
    return json.dumps(sort_keys_deep(data), indent=2, ensure_ascii=False) + "\n"


def document_sha256(document: Any) -> str:
    """SHA-256 hex digest of a parsed JSON document's compact serialisation.

    Key order is taken as parsed, so the hash tracks the input bytes'
    structure rather than a normalised form.
    """
    compact = json.dumps(document, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(compact.encode("utf-8")).hexdigest()


def export_to_json(data: Any, path: Path) -> Path:
    """Write ``data`` as deterministic JSON (parent dirs created if missing).

    Returns:
        ``path`` as written.
    """
    return write_artifacts_atomically([(data, path)])[0]


def write_artifacts_atomically(artifacts: Sequence[tuple[Any, Path]]) -> list[Path]:
    """Write several JSON artifacts all-or-nothing.

    Every artifact is serialised and flushed to a sibling temp file before any
    destination is touched; then each temp file is renamed over its target.

    Args:
        artifacts: ``(data, destination)`` pairs.

    Returns:
        Destination paths, in input order.
    """
    staged: list[tuple[Path, Path]] = []
    try:
        for data, path in artifacts:
            path.parent.mkdir(parents=True, exist_ok=True)
            text = serialize_document(data)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            tmp_path = Path(tmp_name)
            staged.append((tmp_path, path))
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
    except BaseException:
        for tmp_path, _ in staged:
            tmp_path.unlink(missing_ok=True)
        raise

    for tmp_path, path in staged:
        os.replace(tmp_path, path)
        logger.info("Wrote %s", path)
    return [path for _, path in staged]
