"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import timedelta
from pathlib import Path

import pytest

from stagegate.config import PipelineSettings, Settings
from stagegate.pipeline.backend import CommandFailed, CommandResult, LocalFileStore
from stagegate.pipeline.models import (
    EnvironmentSnapshot,
    ExecutionRecord,
    Priority,
    Step,
    StepKind,
    Task,
    utc_now,
)

Response = CommandResult | CommandFailed | list


class FakeCommandRunner:
    """Scripted command runner; unknown commands succeed with empty output.

    A response keyed by a command prefix is returned for every matching call.
    A list response is consumed one item per call and its last item repeats.
    """

    def __init__(self, responses: dict[str, Response] | None = None) -> None:
        self.responses = dict(responses or {})
        self.calls: list[str] = []

    def run(self, command: str, *, timeout_seconds: int) -> CommandResult:
        self.calls.append(command)
        for prefix, response in self.responses.items():
            if not command.startswith(prefix):
                continue
            if isinstance(response, list):
                response = response.pop(0) if len(response) > 1 else response[0]
            if isinstance(response, CommandFailed):
                raise response
            return response
        return CommandResult(command=command, stdout="", stderr="", exit_code=0)


def failed(command: str, stderr: str = "", exit_code: int = 1) -> CommandFailed:
    last_line = stderr.strip().splitlines()[-1] if stderr.strip() else ""
    message = f"Command exited with code {exit_code}: {command}"
    if last_line:
        message += f": {last_line}"
    return CommandFailed(message, command=command, exit_code=exit_code, stderr=stderr)


def ok(command: str, stdout: str = "") -> CommandResult:
    return CommandResult(command=command, stdout=stdout, stderr="", exit_code=0)


@pytest.fixture()
def settings() -> Settings:
    return replace(
        Settings(),
        pipeline=PipelineSettings(max_retries=3, retry_delay_seconds=0.0),
    )


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture()
def file_store(workspace: Path) -> LocalFileStore:
    return LocalFileStore(workspace)


@pytest.fixture()
def commands() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture()
def environment(workspace: Path) -> EnvironmentSnapshot:
    return EnvironmentSnapshot(
        root=workspace,
        languages=("Python",),
        frameworks=("Python",),
        files=(),
        project_type="python",
    )


@pytest.fixture()
def make_task(environment: EnvironmentSnapshot) -> Callable[..., Task]:
    def _make(description: str, *, auto_fix: bool = True) -> Task:
        return Task(
            description=description,
            priority=Priority.MEDIUM,
            auto_fix=auto_fix,
            environment=environment,
        )

    return _make


@pytest.fixture()
def make_step() -> Callable[..., Step]:
    def _make(kind: StepKind, step_id: int = 1, **overrides) -> Step:
        values = {
            "id": step_id,
            "kind": kind,
            "title": kind.value.capitalize(),
            "description": f"{kind.value} step for the users endpoint",
            "language": "Python",
        }
        values.update(overrides)
        return Step(**values)

    return _make


@pytest.fixture()
def make_record() -> Callable[..., ExecutionRecord]:
    def _make(step: Step, **overrides) -> ExecutionRecord:
        started = utc_now()
        values = {
            "step_id": step.id,
            "kind": step.kind,
            "started_at": started,
            "finished_at": started + timedelta(seconds=1),
        }
        values.update(overrides)
        return ExecutionRecord(**values)

    return _make
