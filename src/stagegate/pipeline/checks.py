"""Named verification checks run against one ExecutionRecord.

Each check returns a list of problems; an empty list means it passed. A critical
check that fails contributes its name to ``failed`` and its problems to
``errors``; a non-critical one only adds warnings. A check that raises is
counted as failed with the exception text as its error, and the rest of the
battery still runs.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from stagegate.config import Settings
from stagegate.pipeline.backend.base import CommandFailed, CommandRunner, FileStore
from stagegate.pipeline.backend.http import EndpointProbe
from stagegate.pipeline.models import CheckRecord, ExecutionRecord, Step, StepKind
from stagegate.pipeline.repair import syntax_problem

logger = logging.getLogger(__name__)

MIN_COMMENT_RATIO = 0.05


@dataclass(slots=True)
class CheckContext:
    step: Step
    record: ExecutionRecord
    settings: Settings
    file_store: FileStore
    command_runner: CommandRunner
    endpoint_probe: EndpointProbe | None

    @property
    def deliverables(self) -> dict[str, Any]:
        return self.record.deliverables

    def run(self, command: str) -> str | None:
        """Run a command; returns the failure message or None on success."""

        try:
            self.command_runner.run(
                command,
                timeout_seconds=self.settings.execution.command_timeout_seconds,
            )
        except CommandFailed as error:
            return str(error)
        return None


CheckFn = Callable[[CheckContext], list[str]]


@dataclass(frozen=True, slots=True)
class Check:
    name: str
    evaluate: CheckFn
    critical: bool = False


def _requires(name: str, key: str) -> CheckFn:
    def _evaluate(context: CheckContext) -> list[str]:
        if context.deliverables.get(key):
            return []
        return [f"Critical check failed: {name}"]

    return _evaluate


def _advisory(message: str, key: str) -> CheckFn:
    def _evaluate(context: CheckContext) -> list[str]:
        return [] if context.deliverables.get(key) else [message]

    return _evaluate


def _files_changed(context: CheckContext) -> list[str]:
    if context.record.files_created or context.record.files_modified:
        return []
    return ["No files were created or modified"]


def _no_syntax_errors(context: CheckContext) -> list[str]:
    problems: list[str] = []
    for path in (*context.record.files_created, *context.record.files_modified):
        if not context.file_store.exists(path):
            problems.append(f"File not found: {path}")
            continue
        problem = syntax_problem(path, context.file_store.read(path).decode("utf-8"))
        if problem is not None:
            problems.append(f"Syntax error in {path}: {problem}")
    return problems


def _functionality_evidenced(context: CheckContext) -> list[str]:
    commands = context.step.verification_commands
    if commands:
        return [
            f"Verification failed: {failure}"
            for failure in (context.run(command) for command in commands)
            if failure is not None
        ]
    if context.deliverables.get("implementation_plan") and context.record.success:
        return []
    return ["No evidence of working functionality"]


def _endpoints_respond(context: CheckContext) -> list[str]:
    if not context.step.api_endpoints or context.endpoint_probe is None:
        return []
    problems: list[str] = []
    for url in context.step.api_endpoints:
        result = context.endpoint_probe.probe(url)
        if not result.is_success:
            problems.append(f"Endpoint {url} failed: {result.error}")
    return problems


def _no_regressions(context: CheckContext) -> list[str]:
    command = context.settings.execution.regression_command
    if not command:
        return []
    failure = context.run(command)
    return [] if failure is None else [f"Regression detected: {failure}"]


def _problem_reproduced(context: CheckContext) -> list[str]:
    reproduction = context.deliverables.get("reproduction") or {}
    if reproduction.get("reproduced"):
        return []
    return ["Critical check failed: problem reproduced"]


def _fix_applied(context: CheckContext) -> list[str]:
    if context.deliverables.get("fix_applied"):
        return []
    return ["Critical check failed: fix applied"]


def _problem_resolved(context: CheckContext) -> list[str]:
    if context.deliverables.get("original_problem_solved"):
        return []
    return ["Critical check failed: original problem resolved"]


def _performance_maintained(context: CheckContext) -> list[str]:
    limit = context.settings.gate.max_refactor_seconds
    duration = context.record.duration_seconds
    if duration <= limit:
        return []
    return [f"Refactor took {duration:.1f}s (limit {limit:.1f}s)"]


def _structure_optimized(context: CheckContext) -> list[str]:
    analysis = context.deliverables.get("code_analysis") or {}
    remaining = analysis.get("issues_after", 0)
    return [] if remaining == 0 else [f"{remaining} layout issue(s) remain"]


def _tests_passed(context: CheckContext) -> list[str]:
    test_run = context.deliverables.get("test_run") or {}
    if test_run.get("passed"):
        return []
    summary = test_run.get("summary") or f"exit code {test_run.get('exit_code')}"
    return [f"Tests failed: {summary}"]


def _coverage_adequate(context: CheckContext) -> list[str]:
    coverage = context.deliverables.get("coverage")
    minimum = context.settings.checks.min_coverage
    if coverage is None:
        return ["Coverage was not reported"]
    if coverage >= minimum:
        return []
    return [f"Coverage {coverage:.1f}% is below {minimum:.1f}%"]


def _test_cases_created(context: CheckContext) -> list[str]:
    return [] if context.deliverables.get("test_files") else ["No test cases were created"]


def _readme_updated(context: CheckContext) -> list[str]:
    if not context.deliverables.get("readme_required"):
        return []
    return [] if context.deliverables.get("readme_updated") else ["README was not updated"]


def _comments_adequate(context: CheckContext) -> list[str]:
    ratio = context.deliverables.get("comment_ratio")
    if ratio is None or ratio >= MIN_COMMENT_RATIO:
        return []
    return [f"Comment ratio {ratio:.0%} is below {MIN_COMMENT_RATIO:.0%}"]


def _criteria_met(context: CheckContext) -> list[str]:
    if context.deliverables.get("criteria_met"):
        return []
    report = context.deliverables.get("validation_report") or {}
    missing = report.get("missing_steps") or []
    detail = f" (steps without approval: {missing})" if missing else ""
    return [f"Critical check failed: criteria met{detail}"]


def _execution_errors_absent(context: CheckContext) -> list[str]:
    return list(context.record.errors)


def _execution_time(context: CheckContext) -> list[str]:
    limit = context.settings.checks.max_execution_seconds
    duration = context.record.duration_seconds
    if duration <= limit:
        return []
    return [f"Execution took {duration:.1f}s (limit {limit:.1f}s)"]


def _memory_usage(context: CheckContext) -> list[str]:
    memory = context.record.memory_mb
    limit = context.settings.checks.max_memory_mb
    if memory is None or memory <= limit:
        return []
    return [f"Memory usage {memory:.0f}MB exceeds {limit:.0f}MB"]


def _no_error_logs(context: CheckContext) -> list[str]:
    return [
        f"Error logged: {entry.message}"
        for entry in context.record.log_entries
        if entry.level.upper() == "ERROR"
    ]


def _backup_taken(context: CheckContext) -> list[str]:
    if not context.record.files_modified or context.record.backup_created:
        return []
    return ["Files were modified without a backup"]


KIND_BATTERIES: dict[StepKind, tuple[Check, ...]] = {
    StepKind.ANALYSIS: (
        Check(
            "requirements analyzed",
            _requires("requirements analyzed", "requirements"),
            critical=True,
        ),
        Check(
            "dependencies checked",
            _requires("dependencies checked", "dependency_check"),
            critical=True,
        ),
        Check(
            "structure prepared",
            _advisory("File structure was not prepared", "file_structure"),
        ),
        Check(
            "technologies identified",
            _advisory("No technologies identified", "technologies"),
        ),
    ),
    StepKind.IMPLEMENTATION: (
        Check("files created or modified", _files_changed),
        Check("no syntax errors", _no_syntax_errors, critical=True),
        Check("basic functionality evidenced", _functionality_evidenced),
        Check("api endpoints respond", _endpoints_respond),
        Check("no regression warnings", _no_regressions),
    ),
    StepKind.INVESTIGATION: (
        Check(
            "error analysis performed",
            _requires("error analysis performed", "error_analysis"),
            critical=True,
        ),
        Check("problem reproduced", _problem_reproduced, critical=True),
        Check(
            "root cause identified",
            _requires("root cause identified", "root_cause"),
            critical=True,
        ),
        Check("solution proposed", _advisory("No solution was proposed", "proposed_solution")),
    ),
    StepKind.FIX: (
        Check("fix applied", _fix_applied, critical=True),
        Check("original problem resolved", _problem_resolved, critical=True),
        Check("no side effects", _no_regressions),
    ),
    StepKind.REFACTOR: (
        Check("functionality preserved", _no_regressions, critical=True),
        Check("code improved", _advisory("Code quality did not improve", "code_improved")),
        Check("performance maintained", _performance_maintained),
        Check("structure optimized", _structure_optimized),
    ),
    StepKind.TESTING: (
        Check("tests passed", _tests_passed, critical=True),
        Check("coverage adequate", _coverage_adequate),
        Check("test cases created", _test_cases_created),
        Check("test report generated", _advisory("No test report was produced", "test_report")),
    ),
    StepKind.DOCUMENTATION: (
        Check(
            "documentation updated",
            _requires("documentation updated", "documentation_updated"),
            critical=True,
        ),
        Check("readme updated", _readme_updated),
        Check("code comments adequate", _comments_adequate),
        Check("usage examples included", _advisory("No usage examples", "has_examples")),
    ),
    StepKind.VALIDATION: (
        Check(
            "validation performed",
            _requires("validation performed", "validation_performed"),
            critical=True,
        ),
        Check("criteria met", _criteria_met, critical=True),
        Check(
            "validation report generated",
            _advisory("No validation report was produced", "validation_report"),
        ),
    ),
    StepKind.GENERAL: (
        Check(
            "execution completed",
            _requires("execution completed", "completed"),
            critical=True,
        ),
        Check("objectives achieved", _advisory("Objectives not achieved", "objectives_achieved")),
        Check("deliverables created", _advisory("No deliverables were produced", "general_plan")),
    ),
}

COMMON_BATTERY: tuple[Check, ...] = (
    Check("execution errors absent", _execution_errors_absent, critical=True),
    Check("execution time within limit", _execution_time),
    Check("memory usage within limit", _memory_usage),
    Check("no error-level log entries", _no_error_logs),
    Check("backup taken before modification", _backup_taken),
)


class CheckRunner:
    """Run the kind battery then the common battery for one record."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        file_store: FileStore,
        command_runner: CommandRunner,
        endpoint_probe: EndpointProbe | None = None,
        batteries: dict[StepKind, tuple[Check, ...]] | None = None,
        common: tuple[Check, ...] = COMMON_BATTERY,
    ) -> None:
        self.settings = settings
        self.file_store = file_store
        self.command_runner = command_runner
        self.endpoint_probe = endpoint_probe
        self.batteries = dict(KIND_BATTERIES if batteries is None else batteries)
        self.common = common

    def check(self, step: Step, record: ExecutionRecord) -> CheckRecord:
        context = CheckContext(
            step=step,
            record=record,
            settings=self.settings,
            file_store=self.file_store,
            command_runner=self.command_runner,
            endpoint_probe=self.endpoint_probe,
        )
        passed: list[str] = []
        failed: list[str] = []
        warnings: list[str] = []
        errors: list[str] = []

        battery = (*self.batteries.get(step.kind, KIND_BATTERIES[StepKind.GENERAL]), *self.common)
        for check in battery:
            try:
                problems = check.evaluate(context)
            except Exception as error:  # noqa: BLE001
                logger.warning("Check %r raised: %s", check.name, error)
                failed.append(check.name)
                errors.append(f"Check '{check.name}' raised: {error}")
                continue
            if not problems:
                passed.append(check.name)
            elif check.critical:
                failed.append(check.name)
                errors.extend(problems)
            else:
                warnings.extend(problems)

        coverage = record.deliverables.get("coverage")
        check_record = CheckRecord(
            step_id=step.id,
            passed=tuple(passed),
            failed=tuple(failed),
            warnings=tuple(warnings),
            errors=tuple(errors),
            coverage=float(coverage) if isinstance(coverage, int | float) else None,
            performance={"execution_seconds": record.duration_seconds},
        )
        logger.info(
            "Checks for step %d: %d passed, %d failed, %d warning(s)",
            step.id,
            len(passed),
            len(failed),
            len(warnings),
        )
        return check_record
