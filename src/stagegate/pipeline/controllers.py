"""Controllers for pipeline CLI commands."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path

from stagegate.config import Settings
from stagegate.pipeline.backend import (
    EndpointProbe,
    JsonReportSink,
    LocalFileStore,
    NullReportSink,
    SubprocessCommandRunner,
)
from stagegate.pipeline.checks import CheckRunner
from stagegate.pipeline.controller import PipelineController
from stagegate.pipeline.diagnoser import Diagnoser
from stagegate.pipeline.environment import scan_workspace
from stagegate.pipeline.executor import StageExecutor
from stagegate.pipeline.gate import ValidationGate
from stagegate.pipeline.models import PipelineOutcome, Priority, RunStatus, StepHints, Task
from stagegate.pipeline.planner import StepCatalog, classify_task
from stagegate.pipeline.recovery import dependency_strategy, file_strategy, network_strategy
from stagegate.pipeline.repair import FixApplier
from stagegate.pipeline.run_log import RunLog


@dataclass(slots=True)
class ScanCommand:
    """CLI input for workspace scanning."""

    workspace: Path


@dataclass(slots=True)
class PlanCommand:
    """CLI input for planning without execution."""

    workspace: Path
    description: str
    hints: StepHints = field(default_factory=StepHints)


@dataclass(slots=True)
class RunCommand:
    """CLI input for a full pipeline run."""

    workspace: Path
    description: str
    priority: Priority = Priority.MEDIUM
    auto_fix: bool = True
    max_retries: int | None = None
    retry_delay_seconds: float | None = None
    report_dir: Path | None = None
    hints: StepHints = field(default_factory=StepHints)


@dataclass(slots=True)
class RunResult:
    lines: list[str]
    success: bool
    outcome: PipelineOutcome


class PipelineCliController:
    """Build pipeline collaborators from settings and render results as lines."""

    def scan(self, command: ScanCommand) -> list[str]:
        settings = _load_settings()
        snapshot = scan_workspace(
            command.workspace,
            default_language=settings.pipeline.default_language,
        )
        lines = [
            f"Workspace: {snapshot.root}",
            f"Project type: {snapshot.project_type} (complexity {snapshot.complexity})",
            f"Files: {len(snapshot.files)}",
            f"Languages: {', '.join(snapshot.languages) or 'none'}",
            f"Frameworks: {', '.join(snapshot.frameworks) or 'none'}",
        ]
        for manager, names in sorted(snapshot.dependencies.items()):
            lines.append(f"Dependencies ({manager}): {', '.join(names)}")
        return lines

    def plan(self, command: PlanCommand) -> list[str]:
        settings = _load_settings()
        task = _build_task(
            settings=settings,
            workspace=command.workspace,
            description=command.description,
            hints=command.hints,
        )
        steps = StepCatalog(
            min_description_chars=settings.pipeline.min_description_chars,
            test_command=settings.execution.test_command or None,
        ).plan(task, task.environment)
        lines = [f"Classification: {classify_task(task.description).value}"]
        for step in steps:
            lines.append(f"{step.id}. [{step.kind.value}] {step.title} ({step.language})")
            for requirement in step.requirements:
                lines.append(f"   requires {requirement.kind.value}: {requirement.value}")
            lines.extend(f"   runs: {item}" for item in step.commands)
            lines.extend(f"   verifies: {item}" for item in step.verification_commands)
            lines.extend(f"   probes: {item}" for item in step.api_endpoints)
        return lines

    def run(self, command: RunCommand) -> RunResult:
        settings = _load_settings()
        pipeline = settings.pipeline
        if command.max_retries is not None:
            pipeline = replace(pipeline, max_retries=command.max_retries)
        if command.retry_delay_seconds is not None:
            pipeline = replace(pipeline, retry_delay_seconds=command.retry_delay_seconds)
        settings = replace(settings, pipeline=pipeline)
        settings.validate()

        task = _build_task(
            settings=settings,
            workspace=command.workspace,
            description=command.description,
            priority=command.priority,
            auto_fix=command.auto_fix,
            hints=command.hints,
        )
        run_log = RunLog()
        controller = build_controller(
            settings=settings,
            workspace=command.workspace,
            report_dir=command.report_dir,
            run_log=run_log,
        )
        try:
            outcome = controller.run(task)
        finally:
            if controller.check_runner.endpoint_probe is not None:
                controller.check_runner.endpoint_probe.close()
        return RunResult(
            lines=render_outcome_lines(outcome, run_log),
            success=outcome.status == RunStatus.COMPLETED,
            outcome=outcome,
        )


def build_controller(
    *,
    settings: Settings,
    workspace: Path,
    report_dir: Path | None = None,
    run_log: RunLog | None = None,
) -> PipelineController:
    """Wire local collaborators for a workspace into a controller."""

    stop_flag: list[PipelineController] = []
    runner = SubprocessCommandRunner(
        cwd=workspace,
        shutdown_requested=lambda: bool(stop_flag) and stop_flag[0].stop_requested,
    )
    file_store = LocalFileStore(workspace, strategy=file_strategy(settings.recovery))
    controller = PipelineController(
        settings=settings,
        executor=StageExecutor(settings=settings, file_store=file_store, command_runner=runner),
        check_runner=CheckRunner(
            settings=settings,
            file_store=file_store,
            command_runner=runner,
            endpoint_probe=EndpointProbe(strategy=network_strategy(settings.recovery)),
        ),
        gate=ValidationGate(settings=settings.gate, limits=settings.checks),
        fix_applier=FixApplier(
            file_store=file_store,
            command_runner=runner,
            timeout_seconds=settings.execution.command_timeout_seconds,
            install_strategy=dependency_strategy(settings.recovery),
        ),
        diagnoser=Diagnoser(),
        report_sink=JsonReportSink(report_dir) if report_dir is not None else NullReportSink(),
        run_log=run_log,
    )
    stop_flag.append(controller)
    return controller


def render_outcome_lines(outcome: PipelineOutcome, run_log: RunLog) -> list[str]:
    lines: list[str] = []
    for attempt in run_log.attempts:
        if attempt.validation is not None:
            verdict = "approved" if attempt.validation.approved else "rejected"
            detail = f"{verdict} score={attempt.validation.quality_score}"
        elif attempt.diagnosis is not None:
            detail = f"check errors={attempt.diagnosis.total_errors}"
            if attempt.fixes_applied:
                detail += f" fixes={len(attempt.fixes_applied)}"
        else:
            detail = f"execution failed: {attempt.error}"
        lines.append(
            f"Step {attempt.step_id} [{attempt.kind.value}] attempt {attempt.attempt}: {detail}",
        )

    stats = run_log.stats()
    lines.append(
        f"Outcome: {outcome.status.value} attempts={outcome.attempts} "
        f"approval_rate={stats.approval_rate}% average_score={stats.average_score}",
    )
    if outcome.failed_step_id is not None:
        lines.append(f"Failed step: {outcome.failed_step_id}")
    lines.extend(f"  {reason}" for reason in outcome.reasons)
    return lines


def _load_settings() -> Settings:
    settings = Settings.from_env()
    settings.validate()
    return settings


def _build_task(
    *,
    settings: Settings,
    workspace: Path,
    description: str,
    priority: Priority = Priority.MEDIUM,
    auto_fix: bool = True,
    hints: StepHints | None = None,
) -> Task:
    snapshot = scan_workspace(workspace, default_language=settings.pipeline.default_language)
    return Task(
        description=description,
        priority=priority,
        auto_fix=auto_fix,
        environment=snapshot,
        hints=hints or StepHints(),
    )
