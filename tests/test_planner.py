from __future__ import annotations

from dataclasses import replace

import allure
import pytest

from stagegate.pipeline.models import RequirementKind, StepHints, StepKind, StepStatus, TaskClass
from stagegate.pipeline.planner import (
    InvalidTask,
    StepCatalog,
    classify_task,
    extract_target_files,
)

pytestmark = [
    allure.epic("Pipeline Runtime"),
    allure.feature("Step Planning"),
]


@pytest.mark.parametrize(
    ("description", "expected"),
    [
        ("create a users module with CRUD helpers", TaskClass.CREATION),
        ("fix the null pointer on endpoint X", TaskClass.BUGFIX),
        ("corrigir erro no login", TaskClass.BUGFIX),
        ("optimize the slow report query", TaskClass.IMPROVEMENT),
        ("increase test coverage of the parser", TaskClass.TESTING),
        ("document the public API in the readme", TaskClass.DOCUMENTATION),
        ("rename the staging bucket to archive", TaskClass.GENERAL),
    ],
)
def test_classify_task(description: str, expected: TaskClass) -> None:
    assert classify_task(description) == expected


def test_classification_order_prefers_creation_over_bugfix() -> None:
    assert classify_task("add a fix for the bug in parsing") == TaskClass.CREATION


def test_classification_matches_whole_words_only() -> None:
    assert classify_task("update the address book export") == TaskClass.GENERAL


def test_bugfix_plan_is_analysis_investigation_fix_validation(make_task) -> None:
    steps = StepCatalog().plan(make_task("fix the null pointer on endpoint X"))

    assert [step.kind for step in steps] == [
        StepKind.ANALYSIS,
        StepKind.INVESTIGATION,
        StepKind.FIX,
        StepKind.VALIDATION,
    ]


@pytest.mark.parametrize(
    "description",
    [
        "create a users module in app/users.py",
        "fix the crash in app/main.py",
        "refactor the settings loader",
        "write tests for the parser module",
        "document the deployment process",
        "rotate the staging credentials",
    ],
)
def test_every_plan_has_contiguous_ids_with_analysis_first_and_validation_last(
    make_task,
    description: str,
) -> None:
    steps = StepCatalog().plan(make_task(description))

    assert [step.id for step in steps] == list(range(1, len(steps) + 1))
    assert steps[0].kind == StepKind.ANALYSIS
    assert steps[-1].kind == StepKind.VALIDATION
    assert sum(1 for step in steps if step.kind == StepKind.ANALYSIS) == 1
    assert sum(1 for step in steps if step.kind == StepKind.VALIDATION) == 1
    assert all(step.status == StepStatus.PENDING for step in steps)


def test_plan_is_reproducible(make_task) -> None:
    task = make_task("create a users module in app/users.py")

    first = StepCatalog().plan(task)
    second = StepCatalog().plan(task)

    assert [(s.id, s.kind, s.requirements) for s in first] == [
        (s.id, s.kind, s.requirements) for s in second
    ]


def test_plan_extracts_file_requirements(make_task) -> None:
    steps = StepCatalog().plan(make_task("create app/users.py and ./docs/users.md"))

    files = [req.value for req in steps[1].requirements if req.kind == RequirementKind.FILE]
    assert files == ["app/users.py", "docs/users.md"]


def test_testing_plan_declares_framework_dependencies(make_task) -> None:
    steps = StepCatalog().plan(make_task("write tests for the parser module"))

    assert steps[0].dependencies() == ("pytest", "pytest-cov")


def test_documentation_step_uses_markdown(make_task) -> None:
    steps = StepCatalog().plan(make_task("document the deployment process"))

    assert steps[1].kind == StepKind.DOCUMENTATION
    assert steps[1].language == "Markdown"
    assert steps[0].language == "Python"


@pytest.mark.parametrize("description", ["", "   ", "fix it"])
def test_short_or_empty_description_is_invalid(make_task, description: str) -> None:
    with pytest.raises(InvalidTask):
        StepCatalog(min_description_chars=10).plan(make_task(description))


def test_extract_target_files_ignores_urls_and_versions() -> None:
    found = extract_target_files("bump to v1.2 and edit src/app.py, see docs at example")

    assert found == ("src/app.py",)


def test_bugfix_steps_reproduce_with_the_test_suite_by_default(make_task) -> None:
    steps = StepCatalog().plan(make_task("fix the null pointer on endpoint X"))

    investigation, fix = steps[1], steps[2]
    assert investigation.commands == ("python -m pytest -q --cov --cov-report=term",)
    assert fix.commands == investigation.commands
    assert steps[0].commands == ()
    assert steps[-1].commands == ()


def test_configured_test_command_replaces_the_default_reproduction(make_task) -> None:
    steps = StepCatalog(test_command="make check").plan(
        make_task("fix the null pointer on endpoint X"),
    )

    assert steps[1].commands == ("make check",)


def test_hints_reach_the_steps_that_use_them(make_task) -> None:
    hints = StepHints(
        commands=("make build",),
        verification_commands=("curl -f localhost:8000/health",),
        api_endpoints=("http://localhost:8000/users",),
        update_readme=True,
    )

    creation = StepCatalog().plan(replace(make_task("create app/users.py"), hints=hints))
    bugfix = StepCatalog().plan(replace(make_task("fix the crash in app/main.py"), hints=hints))
    docs = StepCatalog().plan(replace(make_task("document the deployment process"), hints=hints))

    implementation = creation[1]
    assert implementation.kind == StepKind.IMPLEMENTATION
    assert implementation.commands == ("make build",)
    assert implementation.verification_commands == ("curl -f localhost:8000/health",)
    assert implementation.api_endpoints == ("http://localhost:8000/users",)
    assert bugfix[1].commands == ("make build",)
    assert bugfix[2].commands == ("make build",)
    assert docs[1].update_readme is True
    assert docs[0].update_readme is False
