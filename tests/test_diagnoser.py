from __future__ import annotations

import allure
import pytest

from stagegate.pipeline.diagnoser import (
    ERROR_CLASSIFIER_VERSION,
    Diagnoser,
    classify_error,
    remedy_for,
)
from stagegate.pipeline.models import ErrorCategory, FixKind, Severity

pytestmark = [
    allure.epic("Pipeline Runtime"),
    allure.feature("Diagnosis & Auto-fix"),
]


def test_classifier_version_is_stable() -> None:
    assert ERROR_CLASSIFIER_VERSION == 1


@pytest.mark.parametrize(
    ("text", "category", "severity"),
    [
        (
            "ModuleNotFoundError: No module named 'requests'",
            ErrorCategory.DEPENDENCY,
            Severity.HIGH,
        ),
        ("Error: Cannot find module 'express'", ErrorCategory.DEPENDENCY, Severity.HIGH),
        (
            "ENOENT: no such file or directory, open 'config/app.json'",
            ErrorCategory.FILE_SYSTEM,
            Severity.MEDIUM,
        ),
        ("Syntax error in app/users.py: invalid syntax", ErrorCategory.SYNTAX, Severity.LOW),
        ("[Errno 13] Permission denied: '/etc/app.conf'", ErrorCategory.PERMISSION, Severity.HIGH),
        ("connect ECONNREFUSED 127.0.0.1:5432", ErrorCategory.NETWORK, Severity.LOW),
        ("FATAL ERROR: JavaScript heap out of memory", ErrorCategory.MEMORY, Severity.CRITICAL),
        ("Critical check failed: root cause identified", ErrorCategory.UNKNOWN, Severity.CRITICAL),
        ("something odd happened", ErrorCategory.UNKNOWN, Severity.LOW),
    ],
)
def test_classify_error(text: str, category: ErrorCategory, severity: Severity) -> None:
    classified = classify_error(text)

    assert classified.category == category
    assert classified.severity == severity


def test_classify_error_extracts_subjects() -> None:
    assert classify_error("No module named 'yaml.loader'").subject == "yaml.loader"
    assert classify_error("File not found: app/users.py").subject == "app/users.py"
    assert classify_error("Syntax error in data/seed.json: Expecting value").subject == (
        "data/seed.json"
    )


def test_remedies_for_known_shapes() -> None:
    install = remedy_for(classify_error("No module named 'yaml.loader'"))
    placeholder = remedy_for(classify_error("File not found: app/users.py"))
    normalize = remedy_for(classify_error("Syntax error in data/seed.json: Expecting value"))

    assert install is not None
    assert install.kind == FixKind.DEPENDENCY_INSTALL
    assert install.payload == {"manager": "pip", "package": "yaml"}
    assert placeholder is not None
    assert placeholder.payload == {"path": "app/users.py", "operation": "create_placeholder"}
    assert normalize is not None
    assert normalize.payload == {"path": "data/seed.json", "operation": "normalize_tokens"}


def test_no_remedy_for_relative_node_import_or_permission() -> None:
    assert remedy_for(classify_error("Cannot find module './local-helper'")) is None
    assert remedy_for(classify_error("Permission denied: 'app/secret.txt'")) is None


def test_diagnosis_is_auto_fixable_when_every_error_has_a_remedy() -> None:
    diagnosis = Diagnoser().diagnose(
        [
            "Dependency install failed: No module named 'requests'",
            "File not found: app/users.py",
        ],
        auto_fix_allowed=True,
    )

    assert diagnosis.can_auto_fix is True
    assert diagnosis.total_errors == 2
    assert diagnosis.categories == {ErrorCategory.DEPENDENCY: 1, ErrorCategory.FILE_SYSTEM: 1}
    assert [action.kind for action in diagnosis.suggested_fix] == [
        FixKind.DEPENDENCY_INSTALL,
        FixKind.FILE_PATCH,
    ]
    assert diagnosis.manual_steps == ()
    assert diagnosis.confidence == 1.0


def test_one_unremediable_error_blocks_partial_auto_fix() -> None:
    diagnosis = Diagnoser().diagnose(
        [
            "No module named 'requests'",
            "Critical check failed: original problem resolved",
        ],
        auto_fix_allowed=True,
    )

    assert diagnosis.can_auto_fix is False
    assert diagnosis.suggested_fix == ()
    assert diagnosis.manual_steps
    assert {cause.category for cause in diagnosis.root_causes} == {
        ErrorCategory.DEPENDENCY,
        ErrorCategory.UNKNOWN,
    }


def test_auto_fix_disabled_overrides_available_remedies() -> None:
    diagnosis = Diagnoser().diagnose(
        ["Dependency install failed: No module named 'requests'"],
        auto_fix_allowed=False,
    )

    assert diagnosis.can_auto_fix is False
    assert diagnosis.suggested_fix == ()
    assert diagnosis.manual_steps[0].startswith("Auto-fix is disabled")
    assert "Install requests with pip" in diagnosis.manual_steps


def test_same_category_errors_share_one_root_cause() -> None:
    diagnosis = Diagnoser().diagnose(
        ["File not found: a.py", "File not found: b.py"],
        auto_fix_allowed=True,
    )

    assert len(diagnosis.root_causes) == 1
    assert diagnosis.root_causes[0].errors == ("File not found: a.py", "File not found: b.py")


def test_empty_error_list_is_not_auto_fixable() -> None:
    diagnosis = Diagnoser().diagnose([], auto_fix_allowed=True)

    assert diagnosis.can_auto_fix is False
    assert diagnosis.manual_steps
