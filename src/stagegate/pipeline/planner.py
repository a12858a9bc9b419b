"""Task classification and step planning."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from stagegate.pipeline.executor import default_test_command
from stagegate.pipeline.models import (
    EnvironmentSnapshot,
    Requirement,
    RequirementKind,
    Step,
    StepHints,
    StepKind,
    Task,
    TaskClass,
)

TASK_CLASSIFIER_VERSION = 1

REPRODUCTION_KINDS: frozenset[StepKind] = frozenset({StepKind.INVESTIGATION, StepKind.FIX})

# Checked in order; the first class with a matching word wins.
_CLASS_KEYWORDS: tuple[tuple[TaskClass, frozenset[str]], ...] = (
    (
        TaskClass.CREATION,
        frozenset(
            {
                "create",
                "creates",
                "creating",
                "add",
                "adds",
                "adding",
                "implement",
                "implements",
                "implementing",
                "build",
                "criar",
                "crie",
                "adicionar",
                "adicione",
                "implementar",
                "implemente",
            },
        ),
    ),
    (
        TaskClass.BUGFIX,
        frozenset(
            {
                "fix",
                "fixes",
                "fixing",
                "bug",
                "bugs",
                "error",
                "errors",
                "crash",
                "crashes",
                "broken",
                "corrigir",
                "corrija",
                "erro",
                "erros",
            },
        ),
    ),
    (
        TaskClass.IMPROVEMENT,
        frozenset(
            {
                "improve",
                "improving",
                "optimize",
                "optimise",
                "refactor",
                "refactoring",
                "cleanup",
                "melhorar",
                "otimizar",
                "refatorar",
            },
        ),
    ),
    (
        TaskClass.TESTING,
        frozenset({"test", "tests", "testing", "coverage", "testar", "teste", "testes"}),
    ),
    (
        TaskClass.DOCUMENTATION,
        frozenset(
            {
                "document",
                "documentation",
                "docs",
                "readme",
                "documentar",
                "documentação",
                "documentacao",
            },
        ),
    ),
)

_PATH_TOKEN = re.compile(
    r"(?<![\w/.-])((?:[\w.-]+/)*[\w-]+\."
    r"(?:py|js|ts|jsx|tsx|json|md|txt|yml|yaml|toml|cfg|ini|html|css))\b",
)


TEST_DEPENDENCIES: dict[str, tuple[str, ...]] = {
    "Python": ("pytest", "pytest-cov"),
    "JavaScript": ("jest",),
    "TypeScript": ("jest", "ts-jest"),
    "React": ("jest",),
}


class InvalidTask(ValueError):
    """Task description cannot be planned."""


@dataclass(frozen=True, slots=True)
class StepTemplate:
    kind: StepKind
    title: str
    deliverables: tuple[str, ...]
    language: str | None = None


ANALYSIS_TEMPLATE = StepTemplate(
    kind=StepKind.ANALYSIS,
    title="Analysis and preparation",
    deliverables=("Execution plan", "Identified files", "Dependency check"),
)
VALIDATION_TEMPLATE = StepTemplate(
    kind=StepKind.VALIDATION,
    title="Final validation",
    deliverables=("Validation report", "Final test run"),
)

MIDDLE_TEMPLATES: dict[TaskClass, tuple[StepTemplate, ...]] = {
    TaskClass.CREATION: (
        StepTemplate(
            kind=StepKind.IMPLEMENTATION,
            title="Implementation",
            deliverables=("Created files", "Working code"),
        ),
    ),
    TaskClass.BUGFIX: (
        StepTemplate(
            kind=StepKind.INVESTIGATION,
            title="Problem investigation",
            deliverables=("Error analysis", "Root cause"),
        ),
        StepTemplate(
            kind=StepKind.FIX,
            title="Apply fix",
            deliverables=("Fixed code", "Verification run"),
        ),
    ),
    TaskClass.IMPROVEMENT: (
        StepTemplate(
            kind=StepKind.REFACTOR,
            title="Refactor",
            deliverables=("Improved code", "Preserved behaviour"),
        ),
    ),
    TaskClass.TESTING: (
        StepTemplate(
            kind=StepKind.TESTING,
            title="Testing",
            deliverables=("Test suite", "Coverage report"),
        ),
    ),
    TaskClass.DOCUMENTATION: (
        StepTemplate(
            kind=StepKind.DOCUMENTATION,
            title="Documentation",
            deliverables=("Updated documentation", "Usage examples"),
            language="Markdown",
        ),
    ),
    TaskClass.GENERAL: (
        StepTemplate(
            kind=StepKind.GENERAL,
            title="Execute task",
            deliverables=("Completed task",),
        ),
    ),
}


def classify_task(description: str) -> TaskClass:
    """Deterministic keyword classification of a task description."""

    words = set(re.findall(r"\w+", description.lower()))
    for task_class, keywords in _CLASS_KEYWORDS:
        if words & keywords:
            return task_class
    return TaskClass.GENERAL


def extract_target_files(description: str) -> tuple[str, ...]:
    """File-like tokens mentioned in the description, in first-seen order."""

    seen: list[str] = []
    for match in _PATH_TOKEN.finditer(description):
        value = match.group(1).removeprefix("./")
        if value not in seen:
            seen.append(value)
    return tuple(seen)


class StepCatalog:
    """Builds the ordered step list for a task."""

    def __init__(
        self,
        *,
        min_description_chars: int = 10,
        test_command: str | None = None,
    ) -> None:
        self.min_description_chars = min_description_chars
        self.test_command = test_command

    def plan(self, task: Task, environment: EnvironmentSnapshot | None = None) -> list[Step]:
        description = task.description.strip()
        if not description:
            raise InvalidTask("Task description is empty.")
        if len(description) < self.min_description_chars:
            raise InvalidTask(
                f"Task description must have at least {self.min_description_chars} characters.",
            )

        snapshot = environment or task.environment
        task_class = classify_task(description)
        language = snapshot.primary_language
        targets = tuple(
            Requirement(kind=RequirementKind.FILE, value=path)
            for path in extract_target_files(description)
        )
        if task_class == TaskClass.TESTING:
            targets += tuple(
                Requirement(kind=RequirementKind.DEPENDENCY, value=name)
                for name in TEST_DEPENDENCIES.get(language, TEST_DEPENDENCIES["Python"])
            )
        templates = (ANALYSIS_TEMPLATE, *MIDDLE_TEMPLATES[task_class], VALIDATION_TEMPLATE)
        # Investigation and fix need something to run; the test suite stands in by default.
        reproduction = task.hints.commands or (
            self.test_command or default_test_command(language),
        )

        steps: list[Step] = []
        for index, template in enumerate(templates, start=1):
            steps.append(
                Step(
                    id=index,
                    kind=template.kind,
                    title=template.title,
                    description=_step_description(template, description),
                    language=template.language or language,
                    requirements=targets,
                    deliverables=template.deliverables,
                    **_step_hints(template.kind, task.hints, reproduction),
                ),
            )
        return steps


def _step_hints(
    kind: StepKind,
    hints: StepHints,
    reproduction: tuple[str, ...],
) -> dict[str, Any]:
    if kind in REPRODUCTION_KINDS:
        return {"commands": reproduction}
    if kind == StepKind.IMPLEMENTATION:
        return {
            "commands": hints.commands,
            "verification_commands": hints.verification_commands,
            "api_endpoints": hints.api_endpoints,
        }
    if kind == StepKind.GENERAL:
        return {"commands": hints.commands}
    if kind == StepKind.DOCUMENTATION:
        return {"update_readme": hints.update_readme}
    return {}


def _step_description(template: StepTemplate, task_description: str) -> str:
    if template.kind == StepKind.ANALYSIS:
        return f"Analyse the workspace and prepare for: {task_description}"
    if template.kind == StepKind.VALIDATION:
        return f"Validate the completed work for: {task_description}"
    return task_description
