"""Domain models for planned steps, attempt records and gate results."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


class StepKind(str, Enum):
    """Closed set of step kinds; each has a handler, a check battery and a rubric."""

    ANALYSIS = "analysis"
    IMPLEMENTATION = "implementation"
    INVESTIGATION = "investigation"
    FIX = "fix"
    REFACTOR = "refactor"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    VALIDATION = "validation"
    GENERAL = "general"


class TaskClass(str, Enum):
    """Keyword-driven task classification."""

    CREATION = "creation"
    BUGFIX = "bugfix"
    IMPROVEMENT = "improvement"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    GENERAL = "general"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class StepStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class RequirementKind(str, Enum):
    FILE = "file"
    FUNCTION = "function"
    TEST = "test"
    DEPENDENCY = "dependency"


class ErrorCategory(str, Enum):
    """Error taxonomy used by diagnosis and auto-fix eligibility."""

    FILE_SYSTEM = "file_system"
    NETWORK = "network"
    DEPENDENCY = "dependency"
    SYNTAX = "syntax"
    PERMISSION = "permission"
    MEMORY = "memory"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FixKind(str, Enum):
    FILE_PATCH = "file_patch"
    DEPENDENCY_INSTALL = "dependency_install"
    COMMAND = "command"
    CONFIG_WRITE = "config_write"


class ConfidenceTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PipelineState(str, Enum):
    """Controller states for one step attempt cycle."""

    PENDING = "pending"
    EXECUTING = "executing"
    CHECKING = "checking"
    DIAGNOSING = "diagnosing"
    FIXING = "fixing"
    VALIDATING = "validating"
    ADVANCING = "advancing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    ABORTED = "aborted"


class RunStatus(str, Enum):
    """Task-level outcome of one pipeline run."""

    COMPLETED = "completed"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class EnvironmentSnapshot:
    """Read-only view of the workspace used for planning and handlers."""

    root: Path
    languages: tuple[str, ...] = ()
    frameworks: tuple[str, ...] = ()
    files: tuple[str, ...] = ()
    dependencies: dict[str, tuple[str, ...]] = field(default_factory=dict)
    project_type: str = "generic"
    complexity: str = "Low"
    default_language: str = "Python"

    @property
    def primary_language(self) -> str:
        return self.languages[0] if self.languages else self.default_language

    def describe(self) -> str:
        """One-line context summary."""

        languages = ", ".join(self.languages) or "none detected"
        frameworks = ", ".join(self.frameworks) or "none detected"
        return (
            f"{self.project_type} project, {len(self.files)} files, "
            f"languages: {languages}; frameworks: {frameworks}; "
            f"complexity: {self.complexity}"
        )


@dataclass(frozen=True, slots=True)
class StepHints:
    """Caller-supplied commands, checks and flags the planner attaches to steps."""

    commands: tuple[str, ...] = ()
    verification_commands: tuple[str, ...] = ()
    api_endpoints: tuple[str, ...] = ()
    update_readme: bool = False


@dataclass(frozen=True, slots=True)
class Task:
    """Immutable task created once from user input."""

    description: str
    priority: Priority
    auto_fix: bool
    environment: EnvironmentSnapshot
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utc_now)
    hints: StepHints = field(default_factory=StepHints)


@dataclass(frozen=True, slots=True)
class Requirement:
    kind: RequirementKind
    value: str


@dataclass(frozen=True, slots=True)
class FileAction:
    """Declared edit a handler applies to a workspace file."""

    path: str
    content: str
    mode: str = "write"


@dataclass(slots=True)
class Step:
    """One unit of work; only status and completion timestamp ever change."""

    id: int
    kind: StepKind
    title: str
    description: str
    language: str
    requirements: tuple[Requirement, ...] = ()
    deliverables: tuple[str, ...] = ()
    status: StepStatus = StepStatus.PENDING
    completed_at: datetime | None = None
    commands: tuple[str, ...] = ()
    file_actions: tuple[FileAction, ...] = ()
    verification_commands: tuple[str, ...] = ()
    api_endpoints: tuple[str, ...] = ()
    update_readme: bool = False

    def target_files(self) -> tuple[str, ...]:
        return tuple(
            item.value for item in self.requirements if item.kind == RequirementKind.FILE
        )

    def dependencies(self) -> tuple[str, ...]:
        return tuple(
            item.value for item in self.requirements if item.kind == RequirementKind.DEPENDENCY
        )

    def mark_completed(self, *, at: datetime | None = None) -> None:
        self.status = StepStatus.COMPLETED
        self.completed_at = at or utc_now()


@dataclass(frozen=True, slots=True)
class LogEntry:
    level: str
    message: str


@dataclass(frozen=True, slots=True)
class ExecutionRecord:
    """Output of running a step once; frozen before checks see it."""

    step_id: int
    kind: StepKind
    started_at: datetime
    finished_at: datetime
    files_created: tuple[str, ...] = ()
    files_modified: tuple[str, ...] = ()
    commands: tuple[str, ...] = ()
    output: str = ""
    errors: tuple[str, ...] = ()
    deliverables: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    backup_created: bool = False
    memory_mb: float | None = None
    log_entries: tuple[LogEntry, ...] = ()

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.finished_at - self.started_at).total_seconds())


@dataclass(frozen=True, slots=True)
class CheckRecord:
    """Outcome of one check battery; error flags derive from the lists."""

    step_id: int
    passed: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    coverage: float | None = None
    performance: dict[str, float] = field(default_factory=dict)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors) or bool(self.failed)

    @property
    def can_proceed(self) -> bool:
        return not self.has_errors


@dataclass(frozen=True, slots=True)
class ClassifiedError:
    text: str
    category: ErrorCategory
    severity: Severity
    subject: str | None = None


@dataclass(frozen=True, slots=True)
class RootCause:
    category: ErrorCategory
    summary: str
    errors: tuple[str, ...]
    severity: Severity


@dataclass(frozen=True, slots=True)
class FixAction:
    kind: FixKind
    payload: dict[str, Any]
    description: str


@dataclass(frozen=True, slots=True)
class Diagnosis:
    """Categorised errors with either an auto-fix plan or manual steps."""

    total_errors: int
    categories: dict[ErrorCategory, int]
    root_causes: tuple[RootCause, ...]
    can_auto_fix: bool
    suggested_fix: tuple[FixAction, ...] = ()
    manual_steps: tuple[str, ...] = ()
    confidence: float = 0.0


@dataclass(frozen=True, slots=True)
class ValidationResult:
    step_id: int
    approved: bool
    quality_score: int
    completeness: int
    confidence: ConfidenceTier
    reasons: tuple[str, ...]
    recommendations: tuple[str, ...]
    next_step_approved: bool


@dataclass(frozen=True, slots=True)
class PipelineOutcome:
    """Task-level result surfaced to callers."""

    status: RunStatus
    steps: tuple[Step, ...]
    failed_step_id: int | None = None
    reasons: tuple[str, ...] = ()
    attempts: int = 0
    last_diagnosis: Diagnosis | None = None
    last_validation: ValidationResult | None = None
