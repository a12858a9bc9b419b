"""Retry with backoff for transient file, network and dependency operations.

The pipeline loop never uses this module; it waits a fixed delay between step
attempts. Only low-level collaborators wrap single operations here.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from stagegate.config import RecoverySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryStrategy:
    """Retry budget: `retries` extra tries after the first failure."""

    name: str
    retries: int
    delay_seconds: float
    multiplier: float

    def delay_for(self, retry_number: int) -> float:
        return self.delay_seconds * (self.multiplier ** max(0, retry_number - 1))


def file_strategy(settings: RecoverySettings) -> RetryStrategy:
    return RetryStrategy(
        name="file",
        retries=settings.file_retries,
        delay_seconds=settings.file_delay_seconds,
        multiplier=1.5,
    )


def network_strategy(settings: RecoverySettings) -> RetryStrategy:
    return RetryStrategy(
        name="network",
        retries=settings.network_retries,
        delay_seconds=settings.network_delay_seconds,
        multiplier=2.0,
    )


def dependency_strategy(settings: RecoverySettings) -> RetryStrategy:
    return RetryStrategy(
        name="dependency",
        retries=settings.dependency_retries,
        delay_seconds=settings.dependency_delay_seconds,
        multiplier=2.0,
    )


def retry_recoverable(  # noqa: PLR0913
    operation: Callable[[], T],
    *,
    strategy: RetryStrategy,
    is_transient: Callable[[Exception], bool],
    label: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run `operation`, retrying transient failures with exponential backoff.

    Non-transient errors and the last transient error propagate unchanged.
    """

    retry_number = 0
    while True:
        try:
            return operation()
        except Exception as error:
            if not is_transient(error) or retry_number >= strategy.retries:
                raise
            retry_number += 1
            delay = strategy.delay_for(retry_number)
            logger.warning(
                "Transient %s error during %s (retry %d/%d in %.1fs): %s",
                strategy.name,
                label,
                retry_number,
                strategy.retries,
                delay,
                error,
            )
            sleep(delay)


def is_transient_os_error(error: Exception) -> bool:
    """Busy or interrupted I/O is worth retrying; missing paths and denials are not."""

    if isinstance(error, FileNotFoundError | PermissionError | IsADirectoryError):
        return False
    return isinstance(error, OSError)
