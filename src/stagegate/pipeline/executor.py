"""Step execution: one handler per step kind, each producing an ExecutionRecord."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any

from stagegate.config import Settings
from stagegate.pipeline.backend.base import CommandFailed, CommandResult, CommandRunner, FileStore
from stagegate.pipeline.diagnoser import classify_error, remedy_for
from stagegate.pipeline.models import (
    EnvironmentSnapshot,
    ExecutionRecord,
    FileAction,
    FixAction,
    FixKind,
    LogEntry,
    Step,
    StepKind,
    utc_now,
)
from stagegate.pipeline.repair import (
    FixApplier,
    FixFailed,
    backup_file,
    install_command,
    normalize_tokens,
    placeholder_content,
    syntax_problem,
)
from stagegate.pipeline.recovery import dependency_strategy
from stagegate.pipeline.run_log import RunLog

logger = logging.getLogger(__name__)

NODE_LANGUAGES: frozenset[str] = frozenset({"JavaScript", "TypeScript", "React"})

_ERROR_LINE = re.compile(r"error|exception|traceback|failed|fatal", re.IGNORECASE)
_WARNING_LINE = re.compile(r"warning|deprecated", re.IGNORECASE)
_LOCATION = re.compile(r'File "([^"]+)", line (\d+)|at .*?\(?([\w./-]+\.\w+):(\d+):\d+\)?')
_PYTEST_COVERAGE = re.compile(r"^TOTAL\s+.*?(\d+(?:\.\d+)?)%\s*$", re.MULTILINE)
_JEST_COVERAGE = re.compile(r"^All files\s*\|\s*(\d+(?:\.\d+)?)", re.MULTILINE)

README_MARKER_START = "<!-- stagegate:docs -->"
README_MARKER_END = "<!-- /stagegate:docs -->"

_GENERAL_ACTION_KEYWORDS: tuple[tuple[str, frozenset[str]], ...] = (
    ("create", frozenset({"create", "criar", "new", "generate"})),
    ("modify", frozenset({"modify", "update", "change", "modificar", "alterar"})),
    ("install", frozenset({"install", "instalar", "setup"})),
    ("execute", frozenset({"run", "execute", "executar", "start"})),
)


class ExecutionFailed(RuntimeError):
    """A step handler raised; the original error is chained as the cause."""

    def __init__(self, message: str, *, step_id: int) -> None:
        super().__init__(message)
        self.step_id = step_id


@dataclass(slots=True)
class ExecutionContext:
    """Mutable accumulator handed to one handler for one attempt."""

    step: Step
    environment: EnvironmentSnapshot
    settings: Settings
    file_store: FileStore
    command_runner: CommandRunner
    history: RunLog | None = None
    files_created: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    commands: list[str] = field(default_factory=list)
    output: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    deliverables: dict[str, Any] = field(default_factory=dict)
    log_entries: list[LogEntry] = field(default_factory=list)
    backup_created: bool = False

    def log(self, level: str, message: str) -> None:
        self.log_entries.append(LogEntry(level=level, message=message))
        self.output.append(message)

    def run_command(self, command: str, *, record_error: bool = True) -> CommandResult:
        """Run a command; failures are recorded as errors unless the caller expects them."""

        self.commands.append(command)
        try:
            result = self.command_runner.run(
                command,
                timeout_seconds=self.settings.execution.command_timeout_seconds,
            )
        except CommandFailed as error:
            if record_error:
                self.errors.append(str(error))
                self.log("ERROR", str(error))
            else:
                self.output.append(str(error))
            return CommandResult(
                command=command,
                stdout=error.stdout,
                stderr=error.stderr,
                exit_code=error.exit_code if error.exit_code is not None else -1,
            )
        if result.stdout.strip():
            self.output.append(result.stdout.strip())
        return result

    def write_file(self, path: str, content: str) -> bool:
        """Write content, backing up an existing file first; returns True if anything changed."""

        data = content.encode("utf-8")
        if self.file_store.exists(path):
            if self.file_store.read(path) == data:
                return False
            backup_file(self.file_store, path)
            self.backup_created = True
            self.file_store.write(path, data)
            _append_unique(self.files_modified, path)
            return True
        self.file_store.write(path, data)
        _append_unique(self.files_created, path)
        return True

    def append_file(self, path: str, content: str) -> None:
        existing = ""
        if self.file_store.exists(path):
            existing = self.file_store.read(path).decode("utf-8")
            if existing.endswith(content):
                return
        self.write_file(path, existing + content)

    def freeze(self, *, started_at: datetime) -> ExecutionRecord:
        return ExecutionRecord(
            step_id=self.step.id,
            kind=self.step.kind,
            started_at=started_at,
            finished_at=utc_now(),
            files_created=tuple(self.files_created),
            files_modified=tuple(self.files_modified),
            commands=tuple(self.commands),
            output="\n".join(self.output),
            errors=tuple(self.errors),
            deliverables=dict(self.deliverables),
            success=not self.errors,
            backup_created=self.backup_created,
            log_entries=tuple(self.log_entries),
        )


Handler = Callable[[ExecutionContext], None]


class StageExecutor:
    """Dispatch a step to the handler registered for its kind."""

    def __init__(
        self,
        *,
        settings: Settings,
        file_store: FileStore,
        command_runner: CommandRunner,
        handlers: dict[StepKind, Handler] | None = None,
    ) -> None:
        self.settings = settings
        self.file_store = file_store
        self.command_runner = command_runner
        self.handlers = dict(HANDLERS if handlers is None else handlers)

    def execute(
        self,
        step: Step,
        environment: EnvironmentSnapshot,
        *,
        history: RunLog | None = None,
    ) -> ExecutionRecord:
        handler = self.handlers.get(step.kind, _handle_general)
        context = ExecutionContext(
            step=step,
            environment=environment,
            settings=self.settings,
            file_store=self.file_store,
            command_runner=self.command_runner,
            history=history,
        )
        started_at = utc_now()
        logger.info("Executing step %d (%s): %s", step.id, step.kind.value, step.title)
        try:
            handler(context)
        except Exception as error:
            raise ExecutionFailed(
                f"Step {step.id} ({step.kind.value}) failed: {error}",
                step_id=step.id,
            ) from error
        record = context.freeze(started_at=started_at)
        logger.info(
            "Step %d produced %d created, %d modified, %d error(s)",
            step.id,
            len(record.files_created),
            len(record.files_modified),
            len(record.errors),
        )
        return record


def package_manager_for(language: str) -> str:
    return "npm" if language in NODE_LANGUAGES else "pip"


def default_test_command(language: str) -> str:
    if language in NODE_LANGUAGES:
        return "npm test -- --coverage"
    return "python -m pytest -q --cov --cov-report=term"


def missing_dependency_error(manager: str, package: str) -> str:
    if manager == "npm":
        return f"Dependency install failed: Cannot find module '{package}'"
    return f"Dependency install failed: No module named '{package}'"


def _handle_analysis(context: ExecutionContext) -> None:
    step = context.step
    environment = context.environment
    dependencies = list(step.dependencies())
    manager = package_manager_for(step.language)

    context.deliverables["requirements"] = {
        "description": step.description,
        "language": step.language,
        "target_files": list(step.target_files()),
        "dependencies": dependencies,
        "context": environment.describe(),
    }

    installed: list[str] = []
    missing: list[str] = []
    for dependency in dependencies:
        probe = (
            f"npm ls {dependency}" if manager == "npm" else f"python -m pip show {dependency}"
        )
        if context.run_command(probe, record_error=False).exit_code == 0:
            installed.append(dependency)
            continue
        missing.append(dependency)
    still_missing: list[str] = []
    for dependency in missing:
        if not context.settings.execution.install_missing_dependencies:
            still_missing.append(dependency)
            context.errors.append(missing_dependency_error(manager, dependency))
            continue
        result = context.run_command(install_command(manager, dependency), record_error=False)
        if result.exit_code == 0:
            installed.append(dependency)
            context.log("INFO", f"Installed {dependency} with {manager}")
        else:
            still_missing.append(dependency)
            context.errors.append(missing_dependency_error(manager, dependency))
    context.deliverables["dependency_check"] = {
        "installed": installed,
        "missing": still_missing,
        "total": len(dependencies),
    }

    created: list[str] = []
    verified: list[str] = []
    directories = sorted(
        {str(PurePosixPath(path).parent) for path in step.target_files()} - {"."},
    )
    for directory in directories:
        if context.file_store.exists(directory):
            verified.append(directory)
            continue
        context.file_store.ensure_dir(directory)
        created.append(directory)
    context.deliverables["file_structure"] = {"created": created, "verified": verified}
    context.deliverables["technologies"] = [
        *environment.languages,
        *environment.frameworks,
    ] or [step.language]


def _handle_implementation(context: ExecutionContext) -> None:
    step = context.step
    normalized = _normalized_paths(context)
    file_plan: list[dict[str, str]] = []
    for path in step.target_files():
        if context.file_store.exists(path):
            file_plan.append({"path": path, "action": "keep"})
            continue
        file_plan.append({"path": path, "action": "create"})
        context.write_file(path, _skeleton_for(path, step.description))

    for action in step.file_actions:
        file_plan.append({"path": action.path, "action": action.mode})
        _write_declared(context, action, normalized)

    for command in step.commands:
        context.run_command(command)

    context.deliverables["implementation_plan"] = {
        "file_actions": file_plan,
        "commands": list(step.commands),
    }
    context.deliverables["files_affected"] = [
        *context.files_created,
        *context.files_modified,
    ]


def _write_declared(
    context: ExecutionContext,
    action: FileAction,
    normalized: frozenset[str],
) -> None:
    content = normalize_tokens(action.content) if action.path in normalized else action.content
    if action.mode == "append":
        context.append_file(action.path, content)
    else:
        context.write_file(action.path, content)


def _normalized_paths(context: ExecutionContext) -> frozenset[str]:
    """Paths an earlier attempt of this step repaired by normalising tokens."""

    if context.history is None:
        return frozenset()
    paths: set[str] = set()
    for attempt in context.history.attempts_for(context.step.id):
        if attempt.diagnosis is None or not attempt.fixes_applied:
            continue
        for action in attempt.diagnosis.suggested_fix:
            if (
                action.kind == FixKind.FILE_PATCH
                and action.payload.get("operation") == "normalize_tokens"
                and action.description in attempt.fixes_applied
            ):
                paths.add(str(action.payload["path"]))
    return frozenset(paths)


def _handle_investigation(context: ExecutionContext) -> None:
    step = context.step
    error_lines: list[str] = []
    warning_lines: list[str] = []
    failing: CommandResult | None = None
    outputs: list[str] = []

    for command in step.commands:
        result = context.run_command(command, record_error=False)
        text = "\n".join(part for part in (result.stdout, result.stderr) if part)
        outputs.append(text)
        error_lines.extend(line.strip() for line in text.splitlines() if _ERROR_LINE.search(line))
        warning_lines.extend(
            line.strip() for line in text.splitlines() if _WARNING_LINE.search(line)
        )
        if result.exit_code != 0 and failing is None:
            failing = result

    for path in step.target_files():
        if not context.file_store.exists(path):
            continue
        problem = syntax_problem(path, context.file_store.read(path).decode("utf-8"))
        if problem is not None:
            error_lines.append(f"Syntax error in {path}: {problem}")

    context.deliverables["error_analysis"] = {
        "errors": error_lines,
        "warnings": warning_lines,
        "commands": list(step.commands),
    }
    reproduced = failing is not None or bool(error_lines)
    context.deliverables["reproduction"] = {
        "reproduced": reproduced,
        "commands": list(step.commands),
        "command": failing.command if failing is not None else None,
        "exit_code": failing.exit_code if failing is not None else None,
    }
    if not error_lines:
        context.log("WARNING", "Problem could not be reproduced; no root cause identified.")
        return

    # The last error line of a traceback names the exception that was raised.
    classified = classify_error(error_lines[-1])
    location = _find_location("\n".join([*outputs, *error_lines]))
    context.deliverables["root_cause"] = {
        "category": classified.category.value,
        "severity": classified.severity.value,
        "summary": classified.text,
        "subject": classified.subject,
        "location": location,
    }
    remedy = remedy_for(classified)
    context.deliverables["proposed_solution"] = {
        "automatic": remedy is not None,
        "description": (
            remedy.description
            if remedy is not None
            else f"Inspect {location or 'the failing code'} and correct: {classified.text}"
        ),
    }


def _handle_fix(context: ExecutionContext) -> None:
    step = context.step
    investigation = (
        context.history.latest_approved(StepKind.INVESTIGATION) if context.history else None
    )
    if investigation is None or investigation.execution is None:
        raise RuntimeError("No approved investigation result is available for this fix.")
    findings = investigation.execution.deliverables
    root_cause = findings.get("root_cause") or {}

    actions: list[FixAction] = []
    if root_cause.get("summary"):
        remedy = remedy_for(classify_error(str(root_cause["summary"])))
        if remedy is not None:
            actions.append(remedy)
    actions.extend(
        FixAction(
            kind=FixKind.FILE_PATCH,
            payload={"path": action.path, "operation": action.mode, "content": action.content},
            description=f"{action.mode.capitalize()} {action.path}",
        )
        for action in step.file_actions
    )
    context.deliverables["fix_plan"] = [action.description for action in actions]

    applied: list[str] = []
    if actions:
        applied = _apply_fix_actions(context, actions)
    context.deliverables["applied_fixes"] = applied
    context.deliverables["fix_applied"] = bool(applied) and len(applied) == len(actions)

    reproduction = findings.get("reproduction") or {}
    commands = list(reproduction.get("commands") or step.commands)
    verification: list[dict[str, Any]] = []
    for command in commands:
        result = context.run_command(command, record_error=False)
        verification.append({"command": command, "exit_code": result.exit_code})
    syntax_clean = all(
        syntax_problem(path, context.file_store.read(path).decode("utf-8")) is None
        for path in step.target_files()
        if context.file_store.exists(path)
    )
    context.deliverables["verification"] = verification
    context.deliverables["original_problem_solved"] = (
        bool(context.deliverables["fix_applied"])
        and syntax_clean
        and all(item["exit_code"] == 0 for item in verification)
    )


def _apply_fix_actions(context: ExecutionContext, actions: list[FixAction]) -> list[str]:
    before = {
        path: context.file_store.read(path) if context.file_store.exists(path) else None
        for path in (str(action.payload["path"]) for action in actions if "path" in action.payload)
    }
    for action in actions:
        if action.kind == FixKind.DEPENDENCY_INSTALL:
            context.commands.append(
                install_command(str(action.payload["manager"]), str(action.payload["package"])),
            )
        elif action.kind == FixKind.COMMAND:
            context.commands.append(str(action.payload["command"]))
    applier = FixApplier(
        file_store=context.file_store,
        command_runner=context.command_runner,
        timeout_seconds=context.settings.execution.command_timeout_seconds,
        install_strategy=dependency_strategy(context.settings.recovery),
    )
    applied: list[str] = []
    for action in actions:
        try:
            applied.extend(applier.apply([action]))
        except FixFailed as error:
            context.errors.append(str(error))
            context.log("ERROR", str(error))
    if applier.backups:
        context.backup_created = True
    for path, original in before.items():
        if not context.file_store.exists(path):
            continue
        if original is None:
            _append_unique(context.files_created, path)
        elif context.file_store.read(path) != original:
            _append_unique(context.files_modified, path)
    return applied


def _handle_refactor(context: ExecutionContext) -> None:
    targets = [path for path in context.step.target_files() if context.file_store.exists(path)]
    issues_before = 0
    issues_after = 0
    plan: list[str] = []
    for path in targets:
        text = context.file_store.read(path).decode("utf-8")
        found = _style_issues(text)
        issues_before += found
        if not found:
            continue
        normalized = _normalize_layout(text)
        plan.append(f"Normalise whitespace in {path} ({found} issue(s))")
        context.write_file(path, normalized)
        issues_after += _style_issues(normalized)

    context.deliverables["code_analysis"] = {
        "files": targets,
        "issues_before": issues_before,
        "issues_after": issues_after,
    }
    context.deliverables["refactor_plan"] = plan
    context.deliverables["code_improved"] = issues_after < issues_before


def _handle_testing(context: ExecutionContext) -> None:
    step = context.step
    language = step.language
    targets = [path for path in step.target_files() if not _is_test_path(path)]
    test_files: list[str] = []
    created: list[str] = []
    for path in targets:
        test_path = _test_path_for(path, language)
        test_files.append(test_path)
        if context.file_store.exists(test_path):
            continue
        context.write_file(test_path, _test_skeleton(path, language))
        created.append(test_path)
    test_files.extend(path for path in step.target_files() if _is_test_path(path))

    command = context.settings.execution.test_command or default_test_command(language)
    result = context.run_command(command, record_error=False)
    output = "\n".join(part for part in (result.stdout, result.stderr) if part)
    coverage = _parse_coverage(output)
    summary = next(
        (line.strip() for line in reversed(output.splitlines()) if line.strip()),
        "",
    )

    context.deliverables["test_analysis"] = {
        "targets": targets,
        "framework": "jest" if language in NODE_LANGUAGES else "pytest",
    }
    context.deliverables["tests_created"] = created
    context.deliverables["test_files"] = test_files
    context.deliverables["test_run"] = {
        "command": command,
        "passed": result.exit_code == 0,
        "exit_code": result.exit_code,
        "summary": summary,
    }
    context.deliverables["coverage"] = coverage
    context.deliverables["test_report"] = {
        "command": command,
        "passed": result.exit_code == 0,
        "coverage": coverage,
        "test_files": test_files,
    }


def _handle_documentation(context: ExecutionContext) -> None:
    step = context.step
    doc_path = f"docs/{_slugify(step.description)}.md"
    context.file_store.ensure_dir("docs")
    context.write_file(doc_path, _documentation_content(step))

    readme_required = step.update_readme or context.file_store.exists("README.md")
    readme_updated = False
    if readme_required:
        _update_readme(context, doc_path)
        readme_updated = True

    context.deliverables["documentation_updated"] = context.file_store.exists(doc_path)
    context.deliverables["documents_created"] = [doc_path]
    context.deliverables["readme_required"] = readme_required
    context.deliverables["readme_updated"] = readme_updated
    context.deliverables["has_examples"] = True
    context.deliverables["comment_ratio"] = _comment_ratio(context, step.target_files())


def _handle_validation(context: ExecutionContext) -> None:
    step = context.step
    approved = context.history.approved_attempts() if context.history else ()
    approved_ids = {item.step_id for item in approved}
    summary = [
        {
            "step_id": item.step_id,
            "kind": item.kind.value,
            "score": item.validation.quality_score if item.validation else None,
        }
        for item in approved
    ]
    prior_ids = set(range(1, step.id))

    final_tests: dict[str, Any] | None = None
    if context.settings.execution.test_command:
        result = context.run_command(context.settings.execution.test_command, record_error=False)
        final_tests = {
            "command": context.settings.execution.test_command,
            "passed": result.exit_code == 0,
            "exit_code": result.exit_code,
        }

    quality = {
        "readme_present": context.file_store.exists("README.md"),
        "manifest_present": any(
            context.file_store.exists(name)
            for name in ("pyproject.toml", "requirements.txt", "package.json")
        ),
    }
    criteria_met = prior_ids <= approved_ids and (final_tests is None or final_tests["passed"])
    context.deliverables["validation_performed"] = True
    context.deliverables["criteria_met"] = criteria_met
    context.deliverables["final_tests"] = final_tests
    context.deliverables["validation_report"] = {
        "steps": summary,
        "missing_steps": sorted(prior_ids - approved_ids),
        "quality": quality,
    }


def _handle_general(context: ExecutionContext) -> None:
    step = context.step
    normalized = _normalized_paths(context)
    words = set(re.findall(r"\w+", step.description.lower()))
    actions = [name for name, keywords in _GENERAL_ACTION_KEYWORDS if words & keywords]
    context.deliverables["general_plan"] = {"actions": actions, "commands": list(step.commands)}

    for action in step.file_actions:
        _write_declared(context, action, normalized)
    for command in step.commands:
        context.run_command(command)

    context.deliverables["completed"] = not context.errors
    context.deliverables["objectives_achieved"] = not context.errors and (
        bool(actions) or bool(step.commands) or bool(step.file_actions)
    )


HANDLERS: dict[StepKind, Handler] = {
    StepKind.ANALYSIS: _handle_analysis,
    StepKind.IMPLEMENTATION: _handle_implementation,
    StepKind.INVESTIGATION: _handle_investigation,
    StepKind.FIX: _handle_fix,
    StepKind.REFACTOR: _handle_refactor,
    StepKind.TESTING: _handle_testing,
    StepKind.DOCUMENTATION: _handle_documentation,
    StepKind.VALIDATION: _handle_validation,
    StepKind.GENERAL: _handle_general,
}


def _append_unique(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)


def _skeleton_for(path: str, description: str) -> str:
    suffix = PurePosixPath(path).suffix.lower()
    if suffix == ".py":
        return (
            f'"""{description.strip().rstrip(".")}."""\n\n\n'
            "def main() -> None:\n"
            '    """Entry point."""\n\n\n'
            'if __name__ == "__main__":\n'
            "    main()\n"
        )
    if suffix in {".js", ".jsx", ".ts", ".tsx"}:
        return f"// {description.strip()}\n\nmodule.exports = {{}};\n"
    if suffix == ".md":
        return f"# {PurePosixPath(path).stem}\n\n{description.strip()}\n"
    return placeholder_content(path)


def _find_location(text: str) -> str | None:
    last: str | None = None
    for match in _LOCATION.finditer(text):
        if match.group(1):
            last = f"{match.group(1)}:{match.group(2)}"
        elif match.group(3):
            last = f"{match.group(3)}:{match.group(4)}"
    return last


def _style_issues(text: str) -> int:
    lines = text.split("\n")
    trailing = sum(1 for line in lines if line != line.rstrip())
    missing_newline = 1 if text and not text.endswith("\n") else 0
    return trailing + missing_newline


def _normalize_layout(text: str) -> str:
    body = "\n".join(line.rstrip() for line in text.split("\n")).rstrip("\n")
    return f"{body}\n" if body else ""


def _is_test_path(path: str) -> bool:
    name = PurePosixPath(path).name
    return name.startswith("test_") or ".test." in name or ".spec." in name


def _test_path_for(path: str, language: str) -> str:
    source = PurePosixPath(path)
    if language in NODE_LANGUAGES:
        return str(source.with_name(f"{source.stem}.test{source.suffix or '.js'}"))
    return f"tests/test_{source.stem}.py"


def _test_skeleton(path: str, language: str) -> str:
    source = PurePosixPath(path)
    if language in NODE_LANGUAGES:
        return (
            f"const subject = require('./{source.stem}');\n\n"
            f"describe('{source.stem}', () => {{\n"
            "  test('loads', () => {\n"
            "    expect(subject).toBeDefined();\n"
            "  });\n"
            "});\n"
        )
    module_path = ".".join(source.with_suffix("").parts)
    return (
        "import importlib\n\n\n"
        f"def test_{source.stem}_imports() -> None:\n"
        f'    assert importlib.import_module("{module_path}") is not None\n'
    )


def _parse_coverage(output: str) -> float | None:
    for pattern in (_PYTEST_COVERAGE, _JEST_COVERAGE):
        match = pattern.search(output)
        if match:
            return float(match.group(1))
    return None


def _slugify(text: str) -> str:
    words = re.findall(r"[a-z0-9]+", text.lower())[:6]
    return "-".join(words) or "documentation"


def _documentation_content(step: Step) -> str:
    lines = [
        f"# {step.title}",
        "",
        "## Overview",
        "",
        step.description.strip(),
        "",
    ]
    targets = step.target_files()
    if targets:
        lines.extend(["## Files", "", *(f"- `{path}`" for path in targets), ""])
    example_target = targets[0] if targets else "<module>"
    lines.extend(
        [
            "## Usage",
            "",
            "```bash",
            f"# see {example_target}",
            "```",
            "",
        ],
    )
    return "\n".join(lines)


def _update_readme(context: ExecutionContext, doc_path: str) -> None:
    existing = ""
    if context.file_store.exists("README.md"):
        existing = context.file_store.read("README.md").decode("utf-8")
    section = (
        f"{README_MARKER_START}\n"
        f"## Documentation\n\n"
        f"- [{context.step.title}]({doc_path})\n"
        f"{README_MARKER_END}\n"
    )
    start = existing.find(README_MARKER_START)
    end = existing.find(README_MARKER_END)
    if start != -1 and end != -1:
        tail = existing[end + len(README_MARKER_END) :].lstrip("\n")
        updated = existing[:start] + section + tail
    else:
        separator = "\n" if existing and not existing.endswith("\n") else ""
        updated = f"{existing}{separator}\n{section}" if existing else section
    context.write_file("README.md", updated)


def _comment_ratio(context: ExecutionContext, paths: tuple[str, ...]) -> float | None:
    total = 0
    comments = 0
    for path in paths:
        if PurePosixPath(path).suffix.lower() not in {".py", ".js", ".ts", ".jsx", ".tsx"}:
            continue
        if not context.file_store.exists(path):
            continue
        for line in context.file_store.read(path).decode("utf-8").splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            total += 1
            if stripped.startswith(("#", "//", "/*", "*", '"""', "'''")):
                comments += 1
    if total == 0:
        return None
    return round(comments / total, 3)
