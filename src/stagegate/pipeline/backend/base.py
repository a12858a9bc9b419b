"""Collaborator contracts consumed by the pipeline core."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from stagegate.pipeline.models import CheckRecord, ExecutionRecord, Step, ValidationResult


@dataclass(slots=True)
class CommandResult:
    """Captured output of one finished shell command."""

    command: str
    stdout: str
    stderr: str
    exit_code: int
    duration_seconds: float = 0.0


class CommandFailed(RuntimeError):
    """Command exited non-zero, timed out or could not start."""

    def __init__(  # noqa: PLR0913
        self,
        message: str,
        *,
        command: str,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.timed_out = timed_out


class FileStoreError(OSError):
    """File store operation failed; message keeps the OS error text."""


class ReportSinkError(RuntimeError):
    """Reporting sink could not persist a step report."""


class CommandRunner(Protocol):
    def run(self, command: str, *, timeout_seconds: int) -> CommandResult:
        """Run a shell command, raising CommandFailed on non-zero exit."""


class FileStore(Protocol):
    """Workspace-relative file access."""

    def exists(self, path: str) -> bool: ...

    def read(self, path: str) -> bytes: ...

    def write(self, path: str, data: bytes) -> None: ...

    def ensure_dir(self, path: str) -> None: ...


class ReportSink(Protocol):
    def publish(
        self,
        step: Step,
        record: ExecutionRecord,
        check: CheckRecord,
        *,
        validation: ValidationResult | None = None,
    ) -> Path | None:
        """Persist a step report and return where it went, if anywhere."""
