"""HTTP endpoint probe used by implementation checks."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from stagegate.pipeline.recovery import RetryStrategy, retry_recoverable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass(slots=True)
class ProbeResult:
    """Result of probing one endpoint."""

    url: str
    status_code: int
    is_success: bool
    error: str | None = None


class EndpointProbe:
    """GET endpoints with timeout; connection errors retry with the network strategy."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        strategy: RetryStrategy | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=5.0),
            transport=transport,
            follow_redirects=True,
        )
        self._strategy = strategy or RetryStrategy(
            name="network",
            retries=0,
            delay_seconds=0.0,
            multiplier=1.0,
        )
        self._sleep = sleep

    def probe(self, url: str) -> ProbeResult:
        try:
            response = retry_recoverable(
                lambda: self._client.get(url),
                strategy=self._strategy,
                is_transient=_is_transient_http_error,
                label=f"GET {url}",
                sleep=self._sleep,
            )
        except httpx.TimeoutException:
            logger.warning("Timeout probing %s", url)
            return ProbeResult(url=url, status_code=0, is_success=False, error="timeout")
        except httpx.HTTPError as exc:
            logger.warning("HTTP error probing %s: %s", url, exc)
            return ProbeResult(url=url, status_code=0, is_success=False, error=str(exc))
        return ProbeResult(
            url=url,
            status_code=response.status_code,
            is_success=response.is_success,
            error=None if response.is_success else f"HTTP {response.status_code}",
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> EndpointProbe:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _is_transient_http_error(error: Exception) -> bool:
    return isinstance(error, httpx.TransportError)
