"""
Exception hierarchy for the value model build.

``ValueModelError`` is the only type the CLI converts into a clean
``[ERROR]`` line and exit code 1; anything else is a bug and propagates with
its traceback.
"""

from __future__ import annotations


class ValueModelError(RuntimeError):
    """Base class for fatal, operator-facing build failures."""


class InputDataError(ValueModelError):
    """An input document is missing or malformed, or there is nothing to fit.

    Attributes:
        source: Which input the problem concerns (``"metadata"``,
            ``"offers_index"``, ``"sales_index"`` or ``"observations"``).
    """

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(f"[{source}] {message}")


class ModelIntegrityError(ValueModelError):
    """The fitted model failed one or more hard integrity checks.

    Attributes:
        failures: Every failing check's message, in evaluation order.
    """

    def __init__(self, failures: list[str]) -> None:
        self.failures = list(failures)
        super().__init__(f"Model validation failed: {'; '.join(self.failures)}")
