from __future__ import annotations

import shlex
import sys
from pathlib import Path

import allure
from click.testing import CliRunner

from stagegate.main import stagegate

pytestmark = [
    allure.epic("Pipeline Runtime"),
    allure.feature("CLI"),
]


def test_scan_lists_detected_stack(workspace: Path) -> None:
    (workspace / "app.py").write_text("print('hi')\n")
    (workspace / "requirements.txt").write_text("requests\n")

    result = CliRunner().invoke(stagegate, ["scan", "--workspace", str(workspace)])

    assert result.exit_code == 0, result.output
    assert "Languages: Python" in result.output
    assert "Frameworks: Python" in result.output
    assert "Dependencies (pip): requests" in result.output


def test_plan_prints_ordered_steps(workspace: Path) -> None:
    result = CliRunner().invoke(
        stagegate,
        [
            "plan",
            "--workspace",
            str(workspace),
            "--description",
            "fix the crash in app/main.py",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Classification: bugfix" in result.output
    assert "1. [analysis] Analysis and preparation (Python)" in result.output
    assert "2. [investigation]" in result.output
    assert "3. [fix]" in result.output
    assert "4. [validation]" in result.output
    assert "requires file: app/main.py" in result.output


def test_plan_rejects_short_description(workspace: Path) -> None:
    result = CliRunner().invoke(
        stagegate,
        ["plan", "--workspace", str(workspace), "--description", "fix it"],
    )

    assert result.exit_code == 1
    assert "at least 10 characters" in result.output


def test_run_general_task_completes_and_writes_reports(workspace: Path, tmp_path: Path) -> None:
    report_dir = tmp_path / "reports"

    result = CliRunner().invoke(
        stagegate,
        [
            "run",
            "--workspace",
            str(workspace),
            "--description",
            "rotate the staging credentials",
            "--retry-delay",
            "0",
            "--report-dir",
            str(report_dir),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Step 2 [general] attempt 1: approved score=80" in result.output
    assert "Outcome: completed attempts=3" in result.output
    assert len(list(report_dir.glob("*.json"))) == 3


def test_run_aborts_with_non_zero_exit(workspace: Path, monkeypatch) -> None:
    monkeypatch.setenv("STAGEGATE_APPROVAL_THRESHOLD", "90")

    result = CliRunner().invoke(
        stagegate,
        [
            "run",
            "--workspace",
            str(workspace),
            "--description",
            "rotate the staging credentials",
            "--max-retries",
            "1",
            "--retry-delay",
            "0",
            "--no-auto-fix",
        ],
    )

    assert result.exit_code == 1
    assert "Failed step: 2" in result.output
    assert "Validation rejected with quality score 80" in result.output
    assert "Pipeline aborted." in result.output


def test_run_rejects_invalid_settings(workspace: Path, monkeypatch) -> None:
    monkeypatch.setenv("STAGEGATE_APPROVAL_THRESHOLD", "150")

    result = CliRunner().invoke(
        stagegate,
        ["run", "--workspace", str(workspace), "--description", "rotate the staging credentials"],
    )

    assert result.exit_code == 1
    assert "STAGEGATE_APPROVAL_THRESHOLD" in result.output


def test_scan_rejects_unparsable_settings(workspace: Path, monkeypatch) -> None:
    monkeypatch.setenv("STAGEGATE_MAX_RETRIES", "abc")

    result = CliRunner().invoke(stagegate, ["scan", "--workspace", str(workspace)])

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "invalid literal" in result.output


def test_plan_rejects_out_of_range_settings(workspace: Path, monkeypatch) -> None:
    monkeypatch.setenv("STAGEGATE_MAX_RETRIES", "0")

    result = CliRunner().invoke(
        stagegate,
        ["plan", "--workspace", str(workspace), "--description", "fix the crash in app/main.py"],
    )

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "STAGEGATE_MAX_RETRIES" in result.output


def test_plan_shows_reproduction_and_verification_hints(workspace: Path) -> None:
    result = CliRunner().invoke(
        stagegate,
        [
            "plan",
            "--workspace",
            str(workspace),
            "--description",
            "fix the crash in app/main.py",
            "--command",
            "python app/main.py",
        ],
    )

    assert result.exit_code == 0, result.output
    assert result.output.count("runs: python app/main.py") == 2


def test_plan_defaults_reproduction_to_the_test_suite(workspace: Path, monkeypatch) -> None:
    monkeypatch.setenv("STAGEGATE_TEST_COMMAND", "make check")

    result = CliRunner().invoke(
        stagegate,
        ["plan", "--workspace", str(workspace), "--description", "fix the crash in app/main.py"],
    )

    assert result.exit_code == 0, result.output
    assert result.output.count("runs: make check") == 2


def test_run_bugfix_reproduces_then_fixes_missing_file(workspace: Path) -> None:
    reproduce = shlex.join(
        [sys.executable, "-c", "import pathlib; print(pathlib.Path('data/seed.txt').read_text())"],
    )

    result = CliRunner().invoke(
        stagegate,
        [
            "run",
            "--workspace",
            str(workspace),
            "--description",
            "fix the crash when data/seed.txt is missing",
            "--command",
            reproduce,
            "--retry-delay",
            "0",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Step 2 [investigation] attempt 1: approved" in result.output
    assert "Step 3 [fix] attempt 1: approved" in result.output
    assert "Outcome: completed attempts=4" in result.output
    assert (workspace / "data" / "seed.txt").read_text() == "Auto-generated file\n"
