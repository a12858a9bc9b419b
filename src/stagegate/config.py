"""Runtime configuration for the staged task pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass(slots=True)
class PipelineSettings:
    """Control-loop settings."""

    max_retries: int = 3
    retry_delay_seconds: float = 2.0
    min_description_chars: int = 10
    default_language: str = "Python"


@dataclass(slots=True)
class ExecutionSettings:
    """Handler side-effect settings."""

    command_timeout_seconds: int = 300
    test_command: str = ""
    regression_command: str = ""
    install_missing_dependencies: bool = True


@dataclass(slots=True)
class CheckSettings:
    """Ceilings used by the kind-agnostic check battery."""

    max_execution_seconds: float = 300.0
    max_memory_mb: float = 512.0
    min_coverage: float = 80.0


@dataclass(slots=True)
class GateSettings:
    """Validation gate thresholds."""

    approval_threshold: int = 70
    analysis_next_step_score: int = 80
    min_test_coverage: float = 70.0
    max_refactor_seconds: float = 5.0


@dataclass(slots=True)
class RecoverySettings:
    """Retry budgets for transient file, network and dependency-install operations."""

    file_retries: int = 2
    file_delay_seconds: float = 1.0
    network_retries: int = 3
    network_delay_seconds: float = 2.0
    dependency_retries: int = 3
    dependency_delay_seconds: float = 5.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by pipeline concern."""

    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    checks: CheckSettings = field(default_factory=CheckSettings)
    gate: GateSettings = field(default_factory=GateSettings)
    recovery: RecoverySettings = field(default_factory=RecoverySettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults suitable for local runs."""

        return cls(
            pipeline=PipelineSettings(
                max_retries=int(
                    os.getenv("STAGEGATE_MAX_RETRIES", os.getenv("MAX_RETRIES", "3")),
                ),
                retry_delay_seconds=float(os.getenv("STAGEGATE_RETRY_DELAY_SECONDS", "2.0")),
                min_description_chars=int(
                    os.getenv("STAGEGATE_MIN_DESCRIPTION_CHARS", "10"),
                ),
                default_language=os.getenv("STAGEGATE_DEFAULT_LANGUAGE", "Python"),
            ),
            execution=ExecutionSettings(
                command_timeout_seconds=int(
                    os.getenv("STAGEGATE_COMMAND_TIMEOUT_SECONDS", "300"),
                ),
                test_command=os.getenv("STAGEGATE_TEST_COMMAND", "").strip(),
                regression_command=os.getenv("STAGEGATE_REGRESSION_COMMAND", "").strip(),
                install_missing_dependencies=_env_bool(
                    "STAGEGATE_INSTALL_MISSING_DEPENDENCIES",
                    default=True,
                ),
            ),
            checks=CheckSettings(
                max_execution_seconds=float(
                    os.getenv("STAGEGATE_MAX_EXECUTION_SECONDS", "300"),
                ),
                max_memory_mb=float(os.getenv("STAGEGATE_MAX_MEMORY_MB", "512")),
                min_coverage=float(os.getenv("STAGEGATE_MIN_COVERAGE", "80")),
            ),
            gate=GateSettings(
                approval_threshold=int(os.getenv("STAGEGATE_APPROVAL_THRESHOLD", "70")),
                analysis_next_step_score=int(
                    os.getenv("STAGEGATE_ANALYSIS_NEXT_STEP_SCORE", "80"),
                ),
                min_test_coverage=float(os.getenv("STAGEGATE_GATE_MIN_COVERAGE", "70")),
                max_refactor_seconds=float(
                    os.getenv("STAGEGATE_MAX_REFACTOR_SECONDS", "5"),
                ),
            ),
            recovery=RecoverySettings(
                file_retries=int(os.getenv("STAGEGATE_RECOVERY_FILE_RETRIES", "2")),
                file_delay_seconds=float(
                    os.getenv("STAGEGATE_RECOVERY_FILE_DELAY_SECONDS", "1.0"),
                ),
                network_retries=int(os.getenv("STAGEGATE_RECOVERY_NETWORK_RETRIES", "3")),
                network_delay_seconds=float(
                    os.getenv("STAGEGATE_RECOVERY_NETWORK_DELAY_SECONDS", "2.0"),
                ),
                dependency_retries=int(
                    os.getenv("STAGEGATE_RECOVERY_DEPENDENCY_RETRIES", "3"),
                ),
                dependency_delay_seconds=float(
                    os.getenv("STAGEGATE_RECOVERY_DEPENDENCY_DELAY_SECONDS", "5.0"),
                ),
            ),
        )

    def validate(self) -> None:  # noqa: C901
        """Raise configuration error when a value is out of its valid range."""

        if self.pipeline.max_retries <= 0:
            raise ValueError("STAGEGATE_MAX_RETRIES must be > 0.")
        if self.pipeline.retry_delay_seconds < 0:
            raise ValueError("STAGEGATE_RETRY_DELAY_SECONDS must be >= 0.")
        if self.pipeline.min_description_chars <= 0:
            raise ValueError("STAGEGATE_MIN_DESCRIPTION_CHARS must be > 0.")
        if not self.pipeline.default_language.strip():
            raise ValueError("STAGEGATE_DEFAULT_LANGUAGE must not be empty.")
        if self.execution.command_timeout_seconds <= 0:
            raise ValueError("STAGEGATE_COMMAND_TIMEOUT_SECONDS must be > 0.")
        if self.checks.max_execution_seconds <= 0:
            raise ValueError("STAGEGATE_MAX_EXECUTION_SECONDS must be > 0.")
        if self.checks.max_memory_mb <= 0:
            raise ValueError("STAGEGATE_MAX_MEMORY_MB must be > 0.")
        _validate_percent("STAGEGATE_MIN_COVERAGE", self.checks.min_coverage)
        _validate_percent("STAGEGATE_APPROVAL_THRESHOLD", self.gate.approval_threshold)
        _validate_percent(
            "STAGEGATE_ANALYSIS_NEXT_STEP_SCORE",
            self.gate.analysis_next_step_score,
        )
        _validate_percent("STAGEGATE_GATE_MIN_COVERAGE", self.gate.min_test_coverage)
        if self.gate.max_refactor_seconds <= 0:
            raise ValueError("STAGEGATE_MAX_REFACTOR_SECONDS must be > 0.")
        for name, value in (
            ("STAGEGATE_RECOVERY_FILE_RETRIES", self.recovery.file_retries),
            ("STAGEGATE_RECOVERY_NETWORK_RETRIES", self.recovery.network_retries),
            ("STAGEGATE_RECOVERY_DEPENDENCY_RETRIES", self.recovery.dependency_retries),
        ):
            if value < 0:
                raise ValueError(f"{name} must be >= 0.")


def _validate_percent(name: str, value: float) -> None:
    if not 0 <= value <= 100:  # noqa: PLR2004
        raise ValueError(f"{name} must be between 0 and 100.")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
