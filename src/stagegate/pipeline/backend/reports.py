"""Reporting sinks for validated step attempts."""

from __future__ import annotations

import json
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Any

from stagegate.pipeline.backend.base import ReportSinkError
from stagegate.pipeline.models import CheckRecord, ExecutionRecord, Step, ValidationResult


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True, default=_json_default),
        "utf-8",
    )


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


class JsonReportSink:
    """Write one JSON document per validated attempt into a report directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self._sequence = 0

    def publish(
        self,
        step: Step,
        record: ExecutionRecord,
        check: CheckRecord,
        *,
        validation: ValidationResult | None = None,
    ) -> Path:
        self._sequence += 1
        path = self.directory / f"{self._sequence:03d}-step-{step.id:02d}-{step.kind.value}.json"
        payload = {
            "step": {
                "id": step.id,
                "kind": step.kind.value,
                "title": step.title,
                "description": step.description,
                "language": step.language,
            },
            "execution": asdict(record),
            "duration_seconds": record.duration_seconds,
            "check": {
                **asdict(check),
                "has_errors": check.has_errors,
                "can_proceed": check.can_proceed,
            },
            "validation": asdict(validation) if validation is not None else None,
        }
        try:
            write_json(path, payload)
        except (OSError, TypeError, ValueError) as error:
            raise ReportSinkError(f"Failed to write report {path}: {error}") from error
        return path


class NullReportSink:
    """Discard reports."""

    def publish(
        self,
        step: Step,
        record: ExecutionRecord,
        check: CheckRecord,
        *,
        validation: ValidationResult | None = None,
    ) -> None:
        return None


def _json_default(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
