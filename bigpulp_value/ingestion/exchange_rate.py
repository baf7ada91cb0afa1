"""
XCH/USD exchange-rate lookup (CoinGecko ``/simple/price``).

The rate is informational only: it ends up in ``market.xch_usd_at_build``
and nothing in the model depends on it.  Every failure mode therefore
degrades to ``None`` instead of raising into the pipeline.

Retry policy
------------
- Retried: HTTP statuses in ``retry_statuses`` (default 429/502/503/504)
  and transport errors (connection reset, DNS failure).
- Not retried: timeouts, any other non-2xx status, malformed JSON.
- Delay: ``backoff_base_seconds × 2**attempt``, or the server's
  ``Retry-After`` seconds when it sends one, never more than
  ``max_backoff_seconds``.
- Deadline: the lookup as a whole stops at ``deadline_seconds``.  Request
  timeouts shrink to the time left, and a retry whose delay would overrun
  the deadline is abandoned, so the build waits at most that long.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

import httpx

from bigpulp_value.config import ExchangeRateConfig

logger = logging.getLogger(__name__)


class CoinGeckoRateClient:
    """Synchronous CoinGecko client for a single ``coin → currency`` rate.

    Usage::

        client = CoinGeckoRateClient(config.exchange_rate)
        rate = client.fetch_rate()    # float or None

    Attributes:
        config: Endpoint, timeout, retry and deadline settings.
    """

    def __init__(
        self,
        config: ExchangeRateConfig,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialise the client.

        Args:
            config:    Exchange-rate settings.
            transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
            sleep:     Delay function used between retries.
            clock:     Monotonic seconds, measured against ``deadline_seconds``.
        """
        self.config = config
        self._transport = transport
        self._sleep = sleep
        self._clock = clock

    def fetch_rate(self) -> Optional[float]:
        """Return the current rate, or ``None`` if it could not be obtained."""
        params = {"ids": self.config.coin_id, "vs_currencies": self.config.vs_currency}
        deadline = self._clock() + self.config.deadline_seconds
        try:
            with httpx.Client(timeout=self.config.timeout_seconds, transport=self._transport) as client:
                response = self._get_with_retry(client, params, deadline)
        except httpx.HTTPError as exc:
            logger.warning("XCH/USD lookup failed: %s", exc)
            return None

        if response is None:
            return None
        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning("XCH/USD lookup returned invalid JSON: %s", exc)
            return None
        return self._parse_rate(payload)

    # ── Internals ──────────────────────────────────────────────────────────────

    def _get_with_retry(
        self, client: httpx.Client, params: dict[str, str], deadline: float,
    ) -> Optional[httpx.Response]:
        """GET with retries; ``None`` on a final non-2xx status or a spent deadline.

        Raises:
            httpx.TimeoutException: Immediately, timeouts are not retried.
            httpx.TransportError:   When the last attempt fails at transport level.
        """
        max_retries = self.config.max_retries
        for attempt in range(max_retries + 1):
            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.warning("XCH/USD lookup gave up: %.1fs deadline spent", self.config.deadline_seconds)
                return None
            try:
                response = client.get(
                    self.config.api_url,
                    params=params,
                    timeout=min(self.config.timeout_seconds, remaining),
                )
            except httpx.TimeoutException:
                raise
            except httpx.TransportError as exc:
                if attempt >= max_retries:
                    raise
                delay = self._backoff(attempt)
                logger.debug("Transport error (%s); retrying in %.1fs", exc, delay)
                if not self._wait(delay, deadline):
                    return None
                continue

            if response.status_code in self.config.retry_statuses and attempt < max_retries:
                delay = self._retry_after(response)
                if delay is None:
                    delay = self._backoff(attempt)
                delay = min(delay, self.config.max_backoff_seconds)
                logger.debug(
                    "HTTP %d from rate endpoint; retry %d/%d in %.1fs",
                    response.status_code, attempt + 1, max_retries, delay,
                )
                if not self._wait(delay, deadline):
                    return None
                continue

            if response.is_success:
                return response
            logger.warning("XCH/USD lookup failed: HTTP %d", response.status_code)
            return None
        return None

    def _wait(self, delay: float, deadline: float) -> bool:
        """Sleep ``delay`` seconds unless that would run past ``deadline``."""
        if self._clock() + delay >= deadline:
            logger.warning(
                "XCH/USD lookup gave up: a %.1fs retry delay would pass the %.1fs deadline",
                delay, self.config.deadline_seconds,
            )
            return False
        self._sleep(delay)
        return True

    def _backoff(self, attempt: int) -> float:
        return min(self.config.backoff_base_seconds * (2 ** attempt), self.config.max_backoff_seconds)

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        value = response.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return max(0.0, float(value))
        except ValueError:
            return None

    def _parse_rate(self, payload: Any) -> Optional[float]:
        row = payload.get(self.config.coin_id) if isinstance(payload, dict) else None
        price = row.get(self.config.vs_currency) if isinstance(row, dict) else None
        if not isinstance(price, (int, float)) or isinstance(price, bool) or price <= 0:
            logger.warning("XCH/USD lookup returned no usable price: %r", payload)
            return None
        logger.info("XCH/USD rate: $%.2f", price)
        return float(price)


def fetch_xch_usd(
    config: ExchangeRateConfig,
    transport: Optional[httpx.BaseTransport] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[float]:
    """Fetch the XCH/USD rate unless disabled in config."""
    if not config.enabled:
        logger.info("XCH/USD lookup disabled; xch_usd_at_build will be null.")
        return None
    return CoinGeckoRateClient(config, transport=transport, sleep=sleep).fetch_rate()
