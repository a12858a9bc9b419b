"""Sequential control loop: execute, check, diagnose and fix, validate, advance."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from stagegate.config import Settings
from stagegate.pipeline.backend.base import ReportSink, ReportSinkError
from stagegate.pipeline.checks import CheckRunner
from stagegate.pipeline.diagnoser import Diagnoser
from stagegate.pipeline.executor import ExecutionFailed, StageExecutor
from stagegate.pipeline.gate import ValidationGate
from stagegate.pipeline.models import (
    CheckRecord,
    Diagnosis,
    ExecutionRecord,
    PipelineOutcome,
    PipelineState,
    RunStatus,
    Step,
    Task,
    ValidationResult,
)
from stagegate.pipeline.planner import StepCatalog
from stagegate.pipeline.repair import FixApplier, FixFailed, decide_repair
from stagegate.pipeline.run_log import AttemptRecord, PipelineEvent, RunLog

logger = logging.getLogger(__name__)


class _StepAborted(Exception):  # noqa: N818
    def __init__(self, outcome: PipelineOutcome) -> None:
        super().__init__(outcome.reasons[0] if outcome.reasons else "aborted")
        self.outcome = outcome


class PipelineController:
    """Drive every step of one task to approval, or stop.

    One instance serves one task. The retry counter is per step and resets when
    the cursor advances; reaching ``settings.pipeline.max_retries`` aborts the run.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        executor: StageExecutor,
        check_runner: CheckRunner,
        gate: ValidationGate,
        fix_applier: FixApplier,
        diagnoser: Diagnoser | None = None,
        report_sink: ReportSink | None = None,
        run_log: RunLog | None = None,
        install_signal_handlers: bool = True,
    ) -> None:
        self.settings = settings
        self.executor = executor
        self.check_runner = check_runner
        self.gate = gate
        self.fix_applier = fix_applier
        self.diagnoser = diagnoser or Diagnoser()
        self.report_sink = report_sink
        self.run_log = run_log if run_log is not None else RunLog()
        self.install_signal_handlers = install_signal_handlers
        self._stop_requested = False
        self._stop_reason: str | None = None

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def request_stop(self, *, reason: str = "stop requested") -> None:
        """Ask the loop to stop before the next attempt or phase."""

        if not self._stop_requested:
            logger.warning("Stopping pipeline: %s", reason)
        self._stop_requested = True
        self._stop_reason = reason

    def plan(self, task: Task) -> list[Step]:
        catalog = StepCatalog(
            min_description_chars=self.settings.pipeline.min_description_chars,
            test_command=self.settings.execution.test_command or None,
        )
        return catalog.plan(task, task.environment)

    def run(self, task: Task, steps: list[Step] | None = None) -> PipelineOutcome:
        """Run all steps in id order and return the task-level outcome."""

        planned = steps if steps is not None else self.plan(task)
        logger.info(
            "Running task %s with %d step(s): %s",
            task.task_id,
            len(planned),
            ", ".join(step.kind.value for step in planned),
        )
        total_attempts = 0
        with self._signal_handlers():
            for step in planned:
                try:
                    attempts = self._run_step(task, step, planned)
                except _StepAborted as aborted:
                    return aborted.outcome
                total_attempts += attempts
        logger.info("Task %s completed after %d attempt(s)", task.task_id, total_attempts)
        return PipelineOutcome(
            status=RunStatus.COMPLETED,
            steps=tuple(planned),
            attempts=total_attempts,
            last_validation=self._last_validation(),
        )

    def _run_step(self, task: Task, step: Step, planned: list[Step]) -> int:  # noqa: C901
        ceiling = self.settings.pipeline.max_retries
        retries = 0
        attempt = 0
        last_diagnosis: Diagnosis | None = None
        last_validation: ValidationResult | None = None
        state = PipelineState.PENDING

        while True:
            if self._stop_requested:
                raise _StepAborted(self._cancelled(step, planned, attempt))
            attempt += 1
            state = self._transition(step, attempt, state, PipelineState.EXECUTING)
            try:
                record = self.executor.execute(step, task.environment, history=self.run_log)
            except ExecutionFailed as error:
                logger.warning("Attempt %d of step %d failed: %s", attempt, step.id, error)
                self.run_log.append_attempt(
                    AttemptRecord(
                        step_id=step.id,
                        kind=step.kind,
                        attempt=attempt,
                        error=_describe_failure(error),
                    ),
                )
                retries += 1
                if retries >= ceiling:
                    raise _StepAborted(
                        self._aborted(
                            step,
                            planned,
                            attempt=attempt,
                            state=state,
                            reasons=(_describe_failure(error),),
                            diagnosis=last_diagnosis,
                            validation=last_validation,
                        ),
                    ) from error
                state = self._transition(step, attempt, state, PipelineState.RETRYING)
                self._sleep_with_stop(self.settings.pipeline.retry_delay_seconds)
                continue

            if self._stop_requested:
                raise _StepAborted(self._cancelled(step, planned, attempt))
            state = self._transition(step, attempt, state, PipelineState.CHECKING)
            check = self.check_runner.check(step, record)

            if check.has_errors:
                state = self._transition(
                    step,
                    attempt,
                    state,
                    PipelineState.DIAGNOSING,
                    errors=list(check.errors),
                    failed=list(check.failed),
                )
                diagnosis = self.diagnoser.diagnose(check.errors, auto_fix_allowed=task.auto_fix)
                last_diagnosis = diagnosis
                state, reasons, fixes = self._handle_diagnosis(
                    step=step,
                    attempt=attempt,
                    state=state,
                    task=task,
                    check=check,
                    diagnosis=diagnosis,
                )
                self.run_log.append_attempt(
                    AttemptRecord(
                        step_id=step.id,
                        kind=step.kind,
                        attempt=attempt,
                        execution=record,
                        check=check,
                        diagnosis=diagnosis,
                        fixes_applied=fixes,
                    ),
                )
                retries += 1
                if retries >= ceiling:
                    raise _StepAborted(
                        self._aborted(
                            step,
                            planned,
                            attempt=attempt,
                            state=state,
                            reasons=reasons,
                            diagnosis=diagnosis,
                            validation=last_validation,
                        ),
                    )
                if state != PipelineState.FIXING:
                    state = self._transition(step, attempt, state, PipelineState.RETRYING)
                self._sleep_with_stop(self.settings.pipeline.retry_delay_seconds)
                continue

            if self._stop_requested:
                raise _StepAborted(self._cancelled(step, planned, attempt))
            state = self._transition(step, attempt, state, PipelineState.VALIDATING)
            validation = self.gate.validate(step, record, check)
            last_validation = validation
            self.run_log.append_attempt(
                AttemptRecord(
                    step_id=step.id,
                    kind=step.kind,
                    attempt=attempt,
                    execution=record,
                    check=check,
                    validation=validation,
                ),
            )
            self._publish(step, record, check, validation)

            if validation.approved:
                if not validation.next_step_approved:
                    logger.warning(
                        "Step %d approved without meeting its next-step conditions",
                        step.id,
                    )
                step.mark_completed()
                self._transition(
                    step,
                    attempt,
                    state,
                    PipelineState.ADVANCING,
                    quality_score=validation.quality_score,
                    next_step_approved=validation.next_step_approved,
                )
                return attempt

            retries += 1
            if retries >= ceiling:
                raise _StepAborted(
                    self._aborted(
                        step,
                        planned,
                        attempt=attempt,
                        state=state,
                        reasons=_rejection_reasons(validation),
                        diagnosis=last_diagnosis,
                        validation=validation,
                    ),
                )
            state = self._transition(
                step,
                attempt,
                state,
                PipelineState.RETRYING,
                quality_score=validation.quality_score,
            )
            self._sleep_with_stop(self.settings.pipeline.retry_delay_seconds)

    def _handle_diagnosis(  # noqa: PLR0913
        self,
        *,
        step: Step,
        attempt: int,
        state: PipelineState,
        task: Task,
        check: CheckRecord,
        diagnosis: Diagnosis,
    ) -> tuple[PipelineState, tuple[str, ...], tuple[str, ...]]:
        decision = decide_repair(diagnosis=diagnosis, auto_fix_allowed=task.auto_fix)
        if not decision.should_repair:
            logger.warning(
                "Step %d cannot be auto-fixed (%s); retrying as a failed attempt",
                step.id,
                decision.reason,
            )
            return state, diagnosis.manual_steps or check.errors, ()

        state = self._transition(
            step,
            attempt,
            state,
            PipelineState.FIXING,
            fixes=[action.description for action in diagnosis.suggested_fix],
        )
        try:
            applied = tuple(self.fix_applier.apply(diagnosis.suggested_fix))
        except FixFailed as error:
            logger.warning("Auto-fix for step %d failed: %s", step.id, error)
            return state, (*check.errors, str(error)), ()
        return state, check.errors, applied

    def _publish(
        self,
        step: Step,
        record: ExecutionRecord,
        check: CheckRecord,
        validation: ValidationResult,
    ) -> None:
        if self.report_sink is None:
            return
        try:
            location = self.report_sink.publish(step, record, check, validation=validation)
        except (ReportSinkError, OSError) as error:
            logger.warning("Report for step %d was not written: %s", step.id, error)
            return
        if location is not None:
            logger.debug("Report for step %d written to %s", step.id, location)

    def _transition(
        self,
        step: Step,
        attempt: int,
        state_from: PipelineState,
        state_to: PipelineState,
        **details: Any,
    ) -> PipelineState:
        self.run_log.append_event(
            PipelineEvent(
                step_id=step.id,
                attempt=attempt,
                state_from=state_from,
                state_to=state_to,
                details=details,
            ),
        )
        logger.info(
            "Step %d attempt %d: %s -> %s",
            step.id,
            attempt,
            state_from.value,
            state_to.value,
        )
        return state_to

    def _aborted(  # noqa: PLR0913
        self,
        step: Step,
        planned: list[Step],
        *,
        attempt: int,
        state: PipelineState,
        reasons: tuple[str, ...],
        diagnosis: Diagnosis | None,
        validation: ValidationResult | None,
    ) -> PipelineOutcome:
        self._transition(step, attempt, state, PipelineState.ABORTED, reasons=list(reasons))
        logger.error(
            "Step %d (%s) aborted after %d attempt(s)",
            step.id,
            step.kind.value,
            attempt,
        )
        return PipelineOutcome(
            status=RunStatus.ABORTED,
            steps=tuple(planned),
            failed_step_id=step.id,
            reasons=reasons,
            attempts=attempt,
            last_diagnosis=diagnosis,
            last_validation=validation,
        )

    def _cancelled(self, step: Step, planned: list[Step], attempt: int) -> PipelineOutcome:
        return PipelineOutcome(
            status=RunStatus.CANCELLED,
            steps=tuple(planned),
            failed_step_id=step.id,
            reasons=(f"Cancelled: {self._stop_reason or 'stop requested'}",),
            attempts=attempt,
        )

    def _last_validation(self) -> ValidationResult | None:
        for item in reversed(self.run_log.attempts):
            if item.validation is not None:
                return item.validation
        return None

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not self.install_signal_handlers or not hasattr(signal, "SIGINT"):
            yield
            return

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(reason=f"received {name}")

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            installed = False
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)


def _describe_failure(error: ExecutionFailed) -> str:
    cause = error.__cause__
    if cause is None:
        return str(error)
    return f"{error} ({type(cause).__name__})"


def _rejection_reasons(validation: ValidationResult) -> tuple[str, ...]:
    failing = tuple(reason for reason in validation.reasons if reason.startswith("FAIL"))
    return (
        f"Validation rejected with quality score {validation.quality_score}",
        *failing,
        *validation.recommendations,
    )
