from __future__ import annotations

from dataclasses import replace

import allure
from conftest import FakeCommandRunner, failed, ok

from stagegate.config import GateSettings, PipelineSettings
from stagegate.pipeline.backend.base import ReportSinkError
from stagegate.pipeline.checks import CheckRunner
from stagegate.pipeline.controller import PipelineController
from stagegate.pipeline.executor import HANDLERS, StageExecutor
from stagegate.pipeline.gate import ValidationGate
from stagegate.pipeline.models import (
    FileAction,
    PipelineState,
    Requirement,
    RequirementKind,
    RunStatus,
    StepKind,
    StepStatus,
)
from stagegate.pipeline.repair import FixApplier
from stagegate.pipeline.run_log import RunLog

pytestmark = [
    allure.epic("Pipeline Runtime"),
    allure.feature("Control Loop"),
]


def _controller(  # noqa: PLR0913
    settings,
    file_store,
    commands,
    *,
    handlers=None,
    gate_settings=None,
    report_sink=None,
    run_log=None,
):
    return PipelineController(
        settings=settings,
        executor=StageExecutor(
            settings=settings,
            file_store=file_store,
            command_runner=commands,
            handlers=handlers,
        ),
        check_runner=CheckRunner(
            settings=settings,
            file_store=file_store,
            command_runner=commands,
        ),
        gate=ValidationGate(settings=gate_settings or settings.gate),
        fix_applier=FixApplier(file_store=file_store, command_runner=commands),
        report_sink=report_sink,
        run_log=run_log,
        install_signal_handlers=False,
    )


def _states(run_log: RunLog) -> list[PipelineState]:
    return [event.state_to for event in run_log.events]


def _analysis_with_dependency(make_step):
    return make_step(
        StepKind.ANALYSIS,
        1,
        requirements=(Requirement(RequirementKind.DEPENDENCY, "pytest"),),
    )


def test_general_task_runs_to_completion(settings, file_store, commands, make_task) -> None:
    run_log = RunLog()
    controller = _controller(settings, file_store, commands, run_log=run_log)

    outcome = controller.run(make_task("rotate the staging credentials"))

    assert outcome.status == RunStatus.COMPLETED
    assert [step.kind for step in outcome.steps] == [
        StepKind.ANALYSIS,
        StepKind.GENERAL,
        StepKind.VALIDATION,
    ]
    assert all(step.status == StepStatus.COMPLETED for step in outcome.steps)
    assert all(step.completed_at is not None for step in outcome.steps)
    assert outcome.attempts == 3
    assert outcome.failed_step_id is None
    assert outcome.last_validation is not None
    assert outcome.last_validation.step_id == 3
    assert run_log.stats().approval_rate == 100.0
    assert run_log.events[0].state_from == PipelineState.PENDING
    assert _states(run_log).count(PipelineState.ADVANCING) == 3


def test_rejections_abort_at_the_retry_ceiling(
    settings,
    file_store,
    commands,
    make_task,
    make_step,
) -> None:
    run_log = RunLog()
    controller = _controller(
        settings,
        file_store,
        commands,
        gate_settings=GateSettings(approval_threshold=90),
        run_log=run_log,
    )
    step = make_step(StepKind.GENERAL, 1, description="rotate the staging credentials")

    outcome = controller.run(make_task("rotate the staging credentials"), [step])

    assert outcome.status == RunStatus.ABORTED
    assert outcome.failed_step_id == 1
    assert outcome.attempts == 3
    assert outcome.reasons[0] == "Validation rejected with quality score 80"
    assert outcome.last_validation is not None
    assert outcome.last_validation.approved is False
    assert step.status == StepStatus.PENDING
    assert len(run_log.attempts_for(1)) == 3
    assert _states(run_log)[-1] == PipelineState.ABORTED
    assert _states(run_log).count(PipelineState.RETRYING) == 2


def test_dependency_errors_without_auto_fix_abort(
    settings,
    file_store,
    make_task,
    make_step,
) -> None:
    commands = FakeCommandRunner(
        {
            "python -m pip show": failed("python -m pip show"),
            "python -m pip install": failed("python -m pip install", "No matching distribution"),
        },
    )
    run_log = RunLog()
    controller = _controller(settings, file_store, commands, run_log=run_log)

    outcome = controller.run(
        make_task("rotate the staging credentials", auto_fix=False),
        [_analysis_with_dependency(make_step)],
    )

    assert outcome.status == RunStatus.ABORTED
    assert outcome.attempts == 3
    assert outcome.last_diagnosis is not None
    assert outcome.last_diagnosis.can_auto_fix is False
    assert outcome.reasons[0].startswith("Auto-fix is disabled")
    assert PipelineState.FIXING not in _states(run_log)
    assert all(item.fixes_applied == () for item in run_log.attempts)


def test_auto_fix_installs_dependency_then_step_is_approved(
    settings,
    file_store,
    make_task,
    make_step,
) -> None:
    commands = FakeCommandRunner(
        {
            "python -m pip show": failed("python -m pip show"),
            "python -m pip install pytest": [
                failed("python -m pip install pytest", "Temporary failure"),
                ok("python -m pip install pytest"),
            ],
        },
    )
    run_log = RunLog()
    controller = _controller(settings, file_store, commands, run_log=run_log)

    outcome = controller.run(
        make_task("rotate the staging credentials"),
        [_analysis_with_dependency(make_step)],
    )

    assert outcome.status == RunStatus.COMPLETED
    assert outcome.attempts == 2
    first, second = run_log.attempts_for(1)
    assert first.diagnosis is not None
    assert first.fixes_applied == ("Install pytest with pip",)
    assert second.approved is True
    assert PipelineState.FIXING in _states(run_log)


def test_normalised_syntax_fix_survives_the_retry(
    settings,
    file_store,
    commands,
    make_task,
    make_step,
) -> None:
    run_log = RunLog()
    controller = _controller(settings, file_store, commands, run_log=run_log)
    step = make_step(
        StepKind.IMPLEMENTATION,
        1,
        file_actions=(FileAction(path="cfg.json", content='{"a": 1,}\n'),),
    )

    outcome = controller.run(make_task("rotate the staging credentials"), [step])

    assert outcome.status == RunStatus.COMPLETED
    assert outcome.attempts == 2
    first, second = run_log.attempts_for(1)
    assert first.fixes_applied == ("Normalise malformed tokens in cfg.json",)
    assert second.approved is True
    assert file_store.read("cfg.json") == b'{"a": 1}\n'
    assert file_store.read("cfg.json.bak") == b'{"a": 1,}\n'


def test_execution_failures_count_toward_the_ceiling(
    settings,
    file_store,
    commands,
    make_task,
    make_step,
) -> None:
    def _broken(_context) -> None:
        raise RuntimeError("workspace locked")

    run_log = RunLog()
    controller = _controller(
        replace(settings, pipeline=PipelineSettings(max_retries=2, retry_delay_seconds=0.0)),
        file_store,
        commands,
        handlers={**HANDLERS, StepKind.GENERAL: _broken},
        run_log=run_log,
    )

    outcome = controller.run(
        make_task("rotate the staging credentials"),
        [make_step(StepKind.GENERAL, 1)],
    )

    assert outcome.status == RunStatus.ABORTED
    assert outcome.attempts == 2
    assert outcome.reasons == ("Step 1 (general) failed: workspace locked (RuntimeError)",)
    assert [item.error for item in run_log.attempts] == [outcome.reasons[0]] * 2


def test_stop_request_cancels_before_next_phase(
    settings,
    file_store,
    commands,
    make_task,
    make_step,
) -> None:
    controller = None

    def _stop_midway(context) -> None:
        context.deliverables["completed"] = True
        controller.request_stop(reason="operator interrupt")

    run_log = RunLog()
    controller = _controller(
        settings,
        file_store,
        commands,
        handlers={**HANDLERS, StepKind.GENERAL: _stop_midway},
        run_log=run_log,
    )
    steps = [make_step(StepKind.GENERAL, 1), make_step(StepKind.VALIDATION, 2)]

    outcome = controller.run(make_task("rotate the staging credentials"), steps)

    assert controller.stop_requested is True
    assert outcome.status == RunStatus.CANCELLED
    assert outcome.failed_step_id == 1
    assert outcome.reasons == ("Cancelled: operator interrupt",)
    assert steps[0].status == StepStatus.PENDING
    assert steps[0].completed_at is None
    assert steps[1].status == StepStatus.PENDING
    assert all(item.validation is None for item in run_log.attempts_for(1))


def test_report_sink_failure_does_not_stop_the_run(
    settings,
    file_store,
    commands,
    make_task,
    make_step,
) -> None:
    class _BrokenSink:
        def __init__(self) -> None:
            self.calls = 0

        def publish(self, step, record, check, *, validation=None):
            self.calls += 1
            raise ReportSinkError("disk full")

    sink = _BrokenSink()
    controller = _controller(settings, file_store, commands, report_sink=sink)

    outcome = controller.run(
        make_task("rotate the staging credentials"),
        [make_step(StepKind.GENERAL, 1, description="run the cleanup job")],
    )

    assert outcome.status == RunStatus.COMPLETED
    assert sink.calls == 1


def test_ceiling_of_one_aborts_on_first_failure(
    file_store,
    commands,
    make_task,
    make_step,
    settings,
) -> None:
    controller = _controller(
        replace(settings, pipeline=PipelineSettings(max_retries=1, retry_delay_seconds=0.0)),
        file_store,
        commands,
        gate_settings=GateSettings(approval_threshold=90),
    )

    outcome = controller.run(
        make_task("rotate the staging credentials"),
        [make_step(StepKind.GENERAL, 1, description="rotate the staging credentials")],
    )

    assert outcome.status == RunStatus.ABORTED
    assert outcome.attempts == 1
