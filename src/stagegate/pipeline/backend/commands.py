"""Subprocess-based command runner with timeout and cooperative shutdown."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
import time
from collections.abc import Callable
from pathlib import Path
from typing import IO

from stagegate.pipeline.backend.base import CommandFailed, CommandResult

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


class SubprocessCommandRunner:
    """Run workspace commands; stdout and stderr are spooled to temp files."""

    def __init__(
        self,
        *,
        cwd: Path,
        env: dict[str, str] | None = None,
        shutdown_requested: Callable[[], bool] | None = None,
        graceful_shutdown_seconds: int = 5,
    ) -> None:
        self.cwd = cwd
        self.env = env
        self.shutdown_requested = shutdown_requested
        self.graceful_shutdown_seconds = graceful_shutdown_seconds

    def run(self, command: str, *, timeout_seconds: int) -> CommandResult:
        argv = _split_command(command)
        env = os.environ.copy()
        if self.env:
            env.update(self.env)
        logger.info("Running command: %s", command)
        started = time.monotonic()
        with (
            tempfile.TemporaryFile(mode="w+", encoding="utf-8") as stdout_handle,
            tempfile.TemporaryFile(mode="w+", encoding="utf-8") as stderr_handle,
        ):
            try:
                exit_code, timed_out = _run_subprocess_with_shutdown(
                    run_args=argv,
                    cwd=self.cwd,
                    env=env,
                    timeout_seconds=timeout_seconds,
                    stdout_handle=stdout_handle,
                    stderr_handle=stderr_handle,
                    shutdown_requested=self.shutdown_requested,
                    graceful_shutdown_seconds=self.graceful_shutdown_seconds,
                )
            except FileNotFoundError as error:
                raise CommandFailed(
                    f"Command not found: {argv[0]}",
                    command=command,
                ) from error
            except OSError as error:
                raise CommandFailed(
                    f"Command failed to start: {error}",
                    command=command,
                ) from error
            stdout = _read_back(stdout_handle)
            stderr = _read_back(stderr_handle)

        duration = time.monotonic() - started
        if timed_out:
            raise CommandFailed(
                f"Command timed out after {timeout_seconds}s: {command}",
                command=command,
                exit_code=exit_code,
                stdout=stdout,
                stderr=stderr,
                timed_out=True,
            )
        if exit_code != 0:
            detail = stderr.strip() or stdout.strip()
            raise CommandFailed(
                f"Command exited with code {exit_code}: {command}"
                + (f": {detail.splitlines()[-1]}" if detail else ""),
                command=command,
                exit_code=exit_code,
                stdout=stdout,
                stderr=stderr,
            )
        return CommandResult(
            command=command,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            duration_seconds=duration,
        )


def _split_command(command: str) -> list[str]:
    stripped = command.strip()
    if not stripped:
        raise CommandFailed("Command is empty.", command=command)
    try:
        argv = shlex.split(stripped, posix=os.name != "nt")
    except ValueError as error:
        raise CommandFailed(f"Command could not be parsed: {error}", command=command) from error
    if not argv:
        raise CommandFailed("Command is empty.", command=command)
    return argv


def _read_back(handle: IO[str]) -> str:
    handle.flush()
    handle.seek(0)
    return handle.read()


def _run_subprocess_with_shutdown(  # noqa: PLR0913
    *,
    run_args: list[str],
    cwd: Path,
    env: dict[str, str],
    timeout_seconds: int,
    stdout_handle: IO[str],
    stderr_handle: IO[str],
    shutdown_requested: Callable[[], bool] | None,
    graceful_shutdown_seconds: int,
) -> tuple[int, bool]:
    process = subprocess.Popen(  # noqa: S603
        run_args,
        cwd=cwd,
        env=env,
        stdout=stdout_handle,
        stderr=stderr_handle,
        text=True,
    )
    start_monotonic = time.monotonic()
    shutdown_deadline: float | None = None
    graceful_seconds = max(0, graceful_shutdown_seconds)

    while True:
        returncode = process.poll()
        if returncode is not None:
            return returncode, False

        now = time.monotonic()
        if now - start_monotonic >= timeout_seconds:
            _terminate_process(process)
            return TIMEOUT_EXIT_CODE, True

        if shutdown_requested is not None and shutdown_requested():
            if shutdown_deadline is None:
                shutdown_deadline = now + graceful_seconds
            if now >= shutdown_deadline:
                _terminate_process(process)
                return TIMEOUT_EXIT_CODE, True

        time.sleep(0.1)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
