"""Append-only history of one pipeline run."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from stagegate.pipeline.models import (
    CheckRecord,
    Diagnosis,
    ExecutionRecord,
    PipelineState,
    StepKind,
    ValidationResult,
    utc_now,
)


@dataclass(frozen=True, slots=True)
class PipelineEvent:
    """State transition entry for the audit trail."""

    step_id: int
    attempt: int
    state_from: PipelineState
    state_to: PipelineState
    details: dict[str, Any] = field(default_factory=dict)
    at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True, slots=True)
class AttemptRecord:
    """Everything produced by one attempt of one step."""

    step_id: int
    kind: StepKind
    attempt: int
    execution: ExecutionRecord | None = None
    check: CheckRecord | None = None
    diagnosis: Diagnosis | None = None
    validation: ValidationResult | None = None
    error: str | None = None
    fixes_applied: tuple[str, ...] = ()

    @property
    def approved(self) -> bool:
        return self.validation is not None and self.validation.approved


@dataclass(slots=True)
class RunStats:
    attempts: int = 0
    validations: int = 0
    approvals: int = 0
    average_score: float = 0.0

    @property
    def approval_rate(self) -> float:
        if self.validations == 0:
            return 0.0
        return round(self.approvals / self.validations * 100, 1)


class RunLog:
    """Caller-owned log; entries can be appended and read but never changed."""

    def __init__(self) -> None:
        self._events: list[PipelineEvent] = []
        self._attempts: list[AttemptRecord] = []

    @property
    def events(self) -> tuple[PipelineEvent, ...]:
        return tuple(self._events)

    @property
    def attempts(self) -> tuple[AttemptRecord, ...]:
        return tuple(self._attempts)

    def append_event(self, event: PipelineEvent) -> None:
        self._events.append(event)

    def append_attempt(self, attempt: AttemptRecord) -> None:
        self._attempts.append(attempt)

    def attempts_for(self, step_id: int) -> tuple[AttemptRecord, ...]:
        return tuple(item for item in self._attempts if item.step_id == step_id)

    def latest_approved(self, kind: StepKind) -> AttemptRecord | None:
        for item in reversed(self._attempts):
            if item.kind == kind and item.approved:
                return item
        return None

    def approved_attempts(self) -> tuple[AttemptRecord, ...]:
        return tuple(item for item in self._attempts if item.approved)

    def stats(self) -> RunStats:
        scores = [
            item.validation.quality_score for item in self._attempts if item.validation is not None
        ]
        return RunStats(
            attempts=len(self._attempts),
            validations=len(scores),
            approvals=sum(1 for item in self._attempts if item.approved),
            average_score=round(sum(scores) / len(scores), 1) if scores else 0.0,
        )
