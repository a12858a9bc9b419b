"""Local workspace file store."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from stagegate.pipeline.backend.base import FileStoreError
from stagegate.pipeline.recovery import RetryStrategy, is_transient_os_error, retry_recoverable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LocalFileStore:
    """Read and write files relative to a workspace root.

    Transient OS errors are retried with the given strategy; everything else is
    raised as FileStoreError carrying the original OS message.
    """

    def __init__(
        self,
        root: Path,
        *,
        strategy: RetryStrategy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.root = root
        self.strategy = strategy or RetryStrategy(
            name="file",
            retries=0,
            delay_seconds=0.0,
            multiplier=1.0,
        )
        self._sleep = sleep

    def resolve(self, path: str) -> Path:
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self.root / candidate

    def exists(self, path: str) -> bool:
        return self.resolve(path).exists()

    def read(self, path: str) -> bytes:
        target = self.resolve(path)
        return self._guarded(f"read {path}", target.read_bytes)

    def write(self, path: str, data: bytes) -> None:
        target = self.resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        self._guarded(f"write {path}", _write)
        logger.debug("Wrote %d bytes to %s", len(data), target)

    def ensure_dir(self, path: str) -> None:
        target = self.resolve(path)
        self._guarded(
            f"mkdir {path}",
            lambda: target.mkdir(parents=True, exist_ok=True),
        )

    def _guarded(self, label: str, operation: Callable[[], T]) -> T:
        try:
            return retry_recoverable(
                operation,
                strategy=self.strategy,
                is_transient=is_transient_os_error,
                label=label,
                sleep=self._sleep,
            )
        except FileStoreError:
            raise
        except OSError as error:
            raise FileStoreError(str(error)) from error
