"""Weighted quality gate deciding whether a step may be approved."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from stagegate.config import CheckSettings, GateSettings
from stagegate.pipeline.models import (
    CheckRecord,
    ConfidenceTier,
    ExecutionRecord,
    RequirementKind,
    Step,
    StepKind,
    ValidationResult,
)

logger = logging.getLogger(__name__)

RUBRIC_TOTAL_WEIGHT = 100
HIGH_CONFIDENCE_SCORE = 90
MIN_COMPLETENESS = 80


@dataclass(frozen=True, slots=True)
class GateInput:
    step: Step
    record: ExecutionRecord
    check: CheckRecord
    settings: GateSettings


CriterionFn = Callable[[GateInput], bool]


@dataclass(frozen=True, slots=True)
class Criterion:
    name: str
    weight: int
    evaluate: CriterionFn
    critical: bool = False


@dataclass(frozen=True, slots=True)
class CriterionOutcome:
    criterion: Criterion
    passed: bool
    error: str | None = None


NextStepRule = Callable[[GateInput, int, dict[str, CriterionOutcome]], bool]


@dataclass(frozen=True, slots=True)
class Rubric:
    kind: StepKind
    criteria: tuple[Criterion, ...]
    next_step_rule: NextStepRule | None = None

    def __post_init__(self) -> None:
        total = sum(item.weight for item in self.criteria)
        if total != RUBRIC_TOTAL_WEIGHT:
            raise ValueError(
                f"Rubric weights for {self.kind.value} must sum to {RUBRIC_TOTAL_WEIGHT}, "
                f"got {total}.",
            )


def check_passed(name: str) -> CriterionFn:
    return lambda data: name in data.check.passed


def _no_check_errors(data: GateInput) -> bool:
    return not data.check.errors


def _no_failed_checks(data: GateInput) -> bool:
    return not data.check.failed


def _coverage_adequate(data: GateInput) -> bool:
    coverage = data.check.coverage
    return coverage is not None and coverage >= data.settings.min_test_coverage


def _analysis_next_step(data: GateInput, score: int, _: dict[str, CriterionOutcome]) -> bool:
    return score >= data.settings.analysis_next_step_score


def _criterion_rule(name: str) -> NextStepRule:
    def _rule(_: GateInput, __: int, outcomes: dict[str, CriterionOutcome]) -> bool:
        outcome = outcomes.get(name)
        return outcome is not None and outcome.passed

    return _rule


DEFAULT_RUBRICS: dict[StepKind, Rubric] = {
    StepKind.ANALYSIS: Rubric(
        kind=StepKind.ANALYSIS,
        criteria=(
            Criterion("requirements analyzed", 30, check_passed("requirements analyzed"), True),
            Criterion("dependencies checked", 25, check_passed("dependencies checked"), True),
            Criterion("structure prepared", 20, check_passed("structure prepared")),
            Criterion("executed without errors", 25, _no_check_errors, True),
        ),
        next_step_rule=_analysis_next_step,
    ),
    StepKind.IMPLEMENTATION: Rubric(
        kind=StepKind.IMPLEMENTATION,
        criteria=(
            Criterion("files created or modified", 25, check_passed("files created or modified")),
            Criterion("no syntax errors", 30, check_passed("no syntax errors"), True),
            Criterion("basic functionality", 25, check_passed("basic functionality evidenced")),
            Criterion("no regressions", 20, check_passed("no regression warnings")),
        ),
        next_step_rule=_criterion_rule("basic functionality"),
    ),
    StepKind.INVESTIGATION: Rubric(
        kind=StepKind.INVESTIGATION,
        criteria=(
            Criterion("error analysis", 30, check_passed("error analysis performed"), True),
            Criterion("problem reproduced", 25, check_passed("problem reproduced"), True),
            Criterion("root cause identified", 25, check_passed("root cause identified"), True),
            Criterion("solution proposed", 20, check_passed("solution proposed")),
        ),
    ),
    StepKind.FIX: Rubric(
        kind=StepKind.FIX,
        criteria=(
            Criterion("fix applied", 40, check_passed("fix applied"), True),
            Criterion("checks passing", 30, _no_failed_checks, True),
            Criterion(
                "original problem resolved",
                20,
                check_passed("original problem resolved"),
                True,
            ),
            Criterion("no side effects", 10, check_passed("no side effects")),
        ),
        next_step_rule=_criterion_rule("original problem resolved"),
    ),
    StepKind.REFACTOR: Rubric(
        kind=StepKind.REFACTOR,
        criteria=(
            Criterion(
                "functionality preserved",
                40,
                check_passed("functionality preserved"),
                True,
            ),
            Criterion("code improved", 25, check_passed("code improved")),
            Criterion("performance maintained", 20, check_passed("performance maintained")),
            Criterion("structure optimized", 15, check_passed("structure optimized")),
        ),
    ),
    StepKind.TESTING: Rubric(
        kind=StepKind.TESTING,
        criteria=(
            Criterion("tests passed", 40, check_passed("tests passed"), True),
            Criterion("coverage adequate", 30, _coverage_adequate),
            Criterion("test cases created", 20, check_passed("test cases created")),
            Criterion("test report generated", 10, check_passed("test report generated")),
        ),
    ),
    StepKind.DOCUMENTATION: Rubric(
        kind=StepKind.DOCUMENTATION,
        criteria=(
            Criterion("documentation updated", 40, check_passed("documentation updated"), True),
            Criterion("readme updated", 25, check_passed("readme updated")),
            Criterion("code comments adequate", 20, check_passed("code comments adequate")),
            Criterion("usage examples included", 15, check_passed("usage examples included")),
        ),
    ),
    StepKind.VALIDATION: Rubric(
        kind=StepKind.VALIDATION,
        criteria=(
            Criterion("validation performed", 50, check_passed("validation performed"), True),
            Criterion("criteria met", 30, check_passed("criteria met"), True),
            Criterion("report generated", 20, check_passed("validation report generated")),
        ),
    ),
    StepKind.GENERAL: Rubric(
        kind=StepKind.GENERAL,
        criteria=(
            Criterion("execution completed", 40, check_passed("execution completed"), True),
            Criterion("no critical errors", 30, _no_check_errors, True),
            Criterion("objectives achieved", 20, check_passed("objectives achieved")),
            Criterion("deliverables created", 10, check_passed("deliverables created")),
        ),
    ),
}


class ValidationGate:
    """Score a (step, record, check) triple against the rubric for its kind.

    The gate holds no per-call state, so validating the same triple twice yields
    equal results.
    """

    def __init__(
        self,
        *,
        settings: GateSettings | None = None,
        rubrics: Mapping[StepKind, Rubric] | None = None,
        limits: CheckSettings | None = None,
    ) -> None:
        self.settings = settings or GateSettings()
        self.limits = limits or CheckSettings()
        self.rubrics = dict(DEFAULT_RUBRICS if rubrics is None else rubrics)

    def validate(
        self,
        step: Step,
        record: ExecutionRecord,
        check: CheckRecord,
    ) -> ValidationResult:
        rubric = self.rubrics.get(step.kind) or self.rubrics[StepKind.GENERAL]
        data = GateInput(step=step, record=record, check=check, settings=self.settings)

        outcomes: dict[str, CriterionOutcome] = {}
        for criterion in rubric.criteria:
            try:
                passed = bool(criterion.evaluate(data))
                outcomes[criterion.name] = CriterionOutcome(criterion=criterion, passed=passed)
            except Exception as error:  # noqa: BLE001
                outcomes[criterion.name] = CriterionOutcome(
                    criterion=criterion,
                    passed=False,
                    error=str(error),
                )

        total_weight = sum(item.weight for item in rubric.criteria)
        achieved = sum(item.criterion.weight for item in outcomes.values() if item.passed)
        score = round(achieved / total_weight * 100) if total_weight else 0
        satisfied = sum(1 for item in outcomes.values() if item.passed)
        completeness = round(satisfied / len(outcomes) * 100) if outcomes else 0
        critical_failures = [
            item.criterion.name
            for item in outcomes.values()
            if item.criterion.critical and not item.passed
        ]

        approved = not critical_failures and score >= self.settings.approval_threshold
        next_step_approved = approved
        if approved and rubric.next_step_rule is not None:
            try:
                next_step_approved = bool(rubric.next_step_rule(data, score, outcomes))
            except Exception:  # noqa: BLE001
                next_step_approved = False

        reasons = [_reason(item) for item in outcomes.values()]
        reasons.extend(_requirement_reasons(step, record))
        recommendations = _recommendations(
            critical_failures=critical_failures,
            score=score,
            completeness=completeness,
            approved=approved,
            next_step_approved=next_step_approved,
            threshold=self.settings.approval_threshold,
        )
        recommendations.extend(_general_observations(record, self.limits))

        result = ValidationResult(
            step_id=step.id,
            approved=approved,
            quality_score=score,
            completeness=completeness,
            confidence=_confidence(score, critical_failures, self.settings.approval_threshold),
            reasons=tuple(reasons),
            recommendations=tuple(recommendations),
            next_step_approved=next_step_approved,
        )
        logger.info(
            "Validation for step %d: score=%d approved=%s next_step=%s",
            step.id,
            score,
            approved,
            next_step_approved,
        )
        return result


def _confidence(score: int, critical_failures: list[str], threshold: int) -> ConfidenceTier:
    if critical_failures:
        return ConfidenceTier.LOW
    if score >= HIGH_CONFIDENCE_SCORE:
        return ConfidenceTier.HIGH
    if score >= threshold:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


def _reason(outcome: CriterionOutcome) -> str:
    criterion = outcome.criterion
    if outcome.passed:
        return f"PASS {criterion.name} ({criterion.weight})"
    suffix = " [critical]" if criterion.critical else ""
    detail = f": {outcome.error}" if outcome.error else ""
    return f"FAIL {criterion.name} ({criterion.weight}){suffix}{detail}"


def _requirement_reasons(step: Step, record: ExecutionRecord) -> list[str]:
    if step.kind != StepKind.IMPLEMENTATION:
        return []
    touched = {*record.files_created, *record.files_modified}
    reasons: list[str] = []
    for requirement in step.requirements:
        if requirement.kind != RequirementKind.FILE:
            continue
        state = "met" if requirement.value in touched else "not touched"
        reasons.append(f"Requirement {state}: file {requirement.value}")
    return reasons


def _recommendations(  # noqa: PLR0913
    *,
    critical_failures: list[str],
    score: int,
    completeness: int,
    approved: bool,
    next_step_approved: bool,
    threshold: int,
) -> list[str]:
    items: list[str] = []
    if critical_failures:
        items.append(f"Resolve {len(critical_failures)} critical failure(s) first.")
        items.extend(f"Fix critical criterion: {name}" for name in critical_failures)
    if score < threshold:
        items.append(f"Raise quality score from {score} to at least {threshold}.")
    if completeness < MIN_COMPLETENESS:
        items.append(f"Complete the remaining criteria ({completeness}% satisfied).")
    if approved and not next_step_approved:
        items.append("Step approved but the stricter conditions for the next step are not met.")
    return items


def _general_observations(record: ExecutionRecord, limits: CheckSettings) -> list[str]:
    items: list[str] = []
    if record.duration_seconds > limits.max_execution_seconds:
        items.append(f"Execution took longer than {limits.max_execution_seconds:.0f}s.")
    if record.memory_mb is not None and record.memory_mb > limits.max_memory_mb:
        items.append(f"Memory usage above {limits.max_memory_mb:.0f}MB.")
    if any(entry.level.upper() == "ERROR" for entry in record.log_entries):
        items.append("Error-level log entries were recorded.")
    if not record.deliverables or any(value is None for value in record.deliverables.values()):
        items.append("Some deliverables are empty or missing.")
    if record.files_modified and not record.backup_created:
        items.append("Files were modified without a backup.")
    return items
