"""Auto-fix policy and application of diagnosed remedies."""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import PurePosixPath

from stagegate.pipeline.backend.base import CommandFailed, CommandRunner, FileStore
from stagegate.pipeline.models import Diagnosis, FixAction, FixKind
from stagegate.pipeline.recovery import RetryStrategy, retry_recoverable

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".bak"

_TOKEN_NORMALIZATIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r";{2,}"), ";"),
    (re.compile(r",{2,}"), ","),
    (re.compile(r"\{\s*,"), "{"),
    (re.compile(r",\s*\}"), "}"),
    (re.compile(r",\s*\]"), "]"),
)

_PLACEHOLDERS: dict[str, str] = {
    ".py": '"""Auto-generated placeholder."""\n',
    ".js": "// Auto-generated file\nexport default {};\n",
    ".jsx": "// Auto-generated file\nexport default {};\n",
    ".ts": "// Auto-generated file\nexport default {};\n",
    ".tsx": "// Auto-generated file\nexport default {};\n",
    ".json": "{}\n",
    ".txt": "Auto-generated file\n",
}

INSTALL_COMMANDS: dict[str, str] = {
    "pip": "python -m pip install {package}",
    "npm": "npm install {package}",
}

_TRANSIENT_INSTALL_MARKERS = (
    "connection",
    "timed out",
    "temporary failure",
    "network is unreachable",
    "econnreset",
    "etimedout",
    "eai_again",
)


class FixFailed(RuntimeError):
    """A remedy could not be applied."""


@dataclass(slots=True)
class RepairDecision:
    """Decision returned by auto-fix policy."""

    should_repair: bool
    reason: str


def decide_repair(*, diagnosis: Diagnosis, auto_fix_allowed: bool) -> RepairDecision:
    """Repair only when the task allows it and every error has a remedy."""

    if not auto_fix_allowed:
        return RepairDecision(should_repair=False, reason="Auto-fix is disabled for this task.")
    if not diagnosis.can_auto_fix:
        return RepairDecision(
            should_repair=False,
            reason="At least one error has no deterministic remedy.",
        )
    if not diagnosis.suggested_fix:
        return RepairDecision(should_repair=False, reason="Diagnosis carries no fix actions.")
    return RepairDecision(should_repair=True, reason="All diagnosed errors have remedies.")


def placeholder_content(path: str) -> str:
    suffix = PurePosixPath(path).suffix.lower()
    if suffix == ".md":
        return f"# {PurePosixPath(path).stem}\n"
    return _PLACEHOLDERS.get(suffix, "")


def normalize_tokens(text: str) -> str:
    for pattern, replacement in _TOKEN_NORMALIZATIONS:
        text = pattern.sub(replacement, text)
    return text


def backup_file(store: FileStore, path: str) -> str:
    """Copy `path` next to itself with a .bak suffix; returns the backup path."""

    backup_path = f"{path}{BACKUP_SUFFIX}"
    store.write(backup_path, store.read(path))
    return backup_path


def install_command(manager: str, package: str) -> str:
    template = INSTALL_COMMANDS.get(manager)
    if template is None:
        raise FixFailed(f"Unsupported package manager: {manager}")
    return template.format(package=package)


def is_transient_install_error(error: Exception) -> bool:
    """Registry timeouts and dropped connections are worth another install attempt."""

    if not isinstance(error, CommandFailed):
        return False
    if error.timed_out:
        return True
    text = f"{error}\n{error.stderr}".lower()
    return any(marker in text for marker in _TRANSIENT_INSTALL_MARKERS)


class FixApplier:
    """Apply FixActions through the workspace collaborators."""

    def __init__(
        self,
        *,
        file_store: FileStore,
        command_runner: CommandRunner,
        timeout_seconds: int = 300,
        install_strategy: RetryStrategy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.file_store = file_store
        self.command_runner = command_runner
        self.timeout_seconds = timeout_seconds
        self.install_strategy = install_strategy or RetryStrategy(
            name="dependency",
            retries=0,
            delay_seconds=0.0,
            multiplier=1.0,
        )
        self._sleep = sleep
        self.backups: list[str] = []

    def apply(self, actions: tuple[FixAction, ...] | list[FixAction]) -> list[str]:
        """Apply every action in order; the first failure raises FixFailed."""

        applied: list[str] = []
        for action in actions:
            try:
                self._apply_one(action)
            except FixFailed:
                raise
            except (CommandFailed, OSError, ValueError, KeyError) as error:
                raise FixFailed(f"{action.description} failed: {error}") from error
            logger.info("Applied fix: %s", action.description)
            applied.append(action.description)
        return applied

    def _apply_one(self, action: FixAction) -> None:
        payload = action.payload
        if action.kind == FixKind.DEPENDENCY_INSTALL:
            command = install_command(str(payload["manager"]), str(payload["package"]))
            retry_recoverable(
                lambda: self.command_runner.run(command, timeout_seconds=self.timeout_seconds),
                strategy=self.install_strategy,
                is_transient=is_transient_install_error,
                label=command,
                sleep=self._sleep,
            )
            return
        if action.kind == FixKind.COMMAND:
            self.command_runner.run(str(payload["command"]), timeout_seconds=self.timeout_seconds)
            return
        if action.kind == FixKind.CONFIG_WRITE:
            content = json.dumps(payload["config"], indent=2, sort_keys=True) + "\n"
            self.file_store.write(str(payload["path"]), content.encode("utf-8"))
            return
        if action.kind == FixKind.FILE_PATCH:
            self._apply_file_patch(payload)
            return
        raise FixFailed(f"Unsupported fix kind: {action.kind}")

    def _apply_file_patch(self, payload: dict) -> None:
        path = str(payload["path"])
        operation = payload.get("operation", "write")
        if operation == "create_placeholder":
            if not self.file_store.exists(path):
                self.file_store.write(path, placeholder_content(path).encode("utf-8"))
            return
        if operation == "normalize_tokens":
            self._normalize_file(path)
            return
        if operation in {"write", "append", "replace"}:
            self._edit_file(path, operation=operation, payload=payload)
            return
        raise FixFailed(f"Unsupported file patch operation: {operation}")

    def _normalize_file(self, path: str) -> None:
        if not self.file_store.exists(path):
            raise FixFailed(f"Cannot normalise missing file: {path}")
        original = self.file_store.read(path)
        text = original.decode("utf-8")
        normalized = normalize_tokens(text)
        if normalized == text:
            raise FixFailed(f"No known malformed tokens found in {path}")
        self._backup(path)
        self.file_store.write(path, normalized.encode("utf-8"))
        problem = syntax_problem(path, normalized)
        if problem is not None:
            self.file_store.write(path, original)
            raise FixFailed(f"Normalised {path} still does not parse: {problem}")

    def _backup(self, path: str) -> None:
        self.backups.append(backup_file(self.file_store, path))

    def _edit_file(self, path: str, *, operation: str, payload: dict) -> None:
        existing = ""
        if self.file_store.exists(path):
            existing = self.file_store.read(path).decode("utf-8")
        if existing:
            self._backup(path)
        if operation == "write":
            updated = str(payload["content"])
        elif operation == "append":
            updated = existing + str(payload["content"])
        else:
            search = str(payload["search"])
            if search not in existing:
                raise FixFailed(f"Text to replace not found in {path}")
            updated = existing.replace(search, str(payload["replacement"]))
        self.file_store.write(path, updated.encode("utf-8"))


def syntax_problem(path: str, text: str) -> str | None:
    """Parse error message for .json and .py content; other files are not parsed."""

    suffix = PurePosixPath(path).suffix.lower()
    if suffix == ".json":
        try:
            json.loads(text)
        except ValueError as error:
            return str(error)
        return None
    if suffix == ".py":
        try:
            compile(text, path, "exec")
        except (SyntaxError, ValueError) as error:
            return str(error)
    return None
