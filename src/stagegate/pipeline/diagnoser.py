"""Deterministic error classification and auto-fix eligibility."""

from __future__ import annotations

import logging
import re
from collections import Counter
from pathlib import PurePosixPath

from stagegate.pipeline.models import (
    ClassifiedError,
    Diagnosis,
    ErrorCategory,
    FixAction,
    FixKind,
    RootCause,
    Severity,
)

logger = logging.getLogger(__name__)

ERROR_CLASSIFIER_VERSION = 1

_PERMISSION_PATTERNS: tuple[str, ...] = (
    "permission denied",
    "eacces",
    "eperm",
    "access denied",
    "operation not permitted",
)
_DEPENDENCY_PATTERNS: tuple[str, ...] = (
    "no module named",
    "modulenotfounderror",
    "cannot find module",
    "module not found",
    "can't resolve",
    "missing dependency",
    "could not resolve dependency",
    "no matching distribution",
    "package not found",
)
_SYNTAX_PATTERNS: tuple[str, ...] = (
    "syntaxerror",
    "syntax error",
    "invalid syntax",
    "unexpected token",
    "jsondecodeerror",
    "expecting value",
    "expecting property name",
    "unterminated string",
)
_FILE_SYSTEM_PATTERNS: tuple[str, ...] = (
    "enoent",
    "no such file or directory",
    "file not found",
    "filenotfounderror",
    "missing file",
    "is a directory",
    "enospc",
    "no space left",
)
_NETWORK_PATTERNS: tuple[str, ...] = (
    "econnrefused",
    "etimedout",
    "enotfound",
    "connection refused",
    "connection reset",
    "connection timed out",
    "network is unreachable",
    "name or service not known",
)
_MEMORY_PATTERNS: tuple[str, ...] = (
    "out of memory",
    "memoryerror",
    "javascript heap",
    "cannot allocate memory",
)

_CATEGORY_RULES: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (ErrorCategory.PERMISSION, _PERMISSION_PATTERNS),
    (ErrorCategory.DEPENDENCY, _DEPENDENCY_PATTERNS),
    (ErrorCategory.SYNTAX, _SYNTAX_PATTERNS),
    (ErrorCategory.FILE_SYSTEM, _FILE_SYSTEM_PATTERNS),
    (ErrorCategory.NETWORK, _NETWORK_PATTERNS),
    (ErrorCategory.MEMORY, _MEMORY_PATTERNS),
)

_SEVERITY_RULES: tuple[tuple[Severity, tuple[str, ...]], ...] = (
    (Severity.CRITICAL, ("fatal", "critical", "enospc", "no space left", "out of memory")),
    (
        Severity.HIGH,
        (
            "permission denied",
            "eacces",
            "module not found",
            "no module named",
            "cannot find module",
        ),
    ),
    (
        Severity.MEDIUM,
        ("enoent", "no such file", "file not found", "warning", "deprecated"),
    ),
)

_PIP_MODULE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"No module named '([^']+)'"),
    re.compile(r"Missing dependency '([^']+)'"),
    re.compile(r"No matching distribution found for ([\w.-]+)"),
)
_NPM_MODULE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"Cannot find module '([^']+)'"),
    re.compile(r"Can't resolve '([^']+)'"),
)
_PATH_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"File not found: (.+?)\s*$"),
    re.compile(r"Missing file: (.+?)\s*$"),
    re.compile(r"ENOENT: no such file or directory, \w+ '([^']+)'"),
    re.compile(r"No such file or directory: '([^']+)'"),
)
_SYNTAX_PATH_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"Syntax error in (.+?): "),
    re.compile(r'File "([^"]+)", line \d+'),
)

NORMALIZABLE_SUFFIXES: frozenset[str] = frozenset({".json", ".js", ".jsx", ".ts", ".tsx", ".py"})

_MANUAL_STEPS: dict[ErrorCategory, str] = {
    ErrorCategory.FILE_SYSTEM: "Check that the referenced paths exist and the disk has space.",
    ErrorCategory.NETWORK: "Verify network connectivity and that the target service is running.",
    ErrorCategory.DEPENDENCY: "Install the missing packages and confirm the dependency manifest.",
    ErrorCategory.SYNTAX: "Open the reported files and correct the syntax errors by hand.",
    ErrorCategory.PERMISSION: "Grant the required file or directory permissions; "
    "permission errors need manual intervention.",
    ErrorCategory.MEMORY: "Reduce memory usage or raise the process memory limit.",
    ErrorCategory.UNKNOWN: "Review the failed checks and the step output to find the cause.",
}


def classify_error(text: str) -> ClassifiedError:
    """Assign category, severity and extracted subject to one error string."""

    haystack = text.lower()
    category = ErrorCategory.UNKNOWN
    for candidate, patterns in _CATEGORY_RULES:
        if _first_match(haystack, patterns) is not None:
            category = candidate
            break

    severity = Severity.LOW
    for candidate_severity, patterns in _SEVERITY_RULES:
        if _first_match(haystack, patterns) is not None:
            severity = candidate_severity
            break

    return ClassifiedError(
        text=text,
        category=category,
        severity=severity,
        subject=_extract_subject(text, category),
    )


def remedy_for(error: ClassifiedError) -> FixAction | None:
    """Known deterministic remedy for one classified error, if any."""

    if error.category == ErrorCategory.DEPENDENCY:
        return _dependency_remedy(error)
    if error.category == ErrorCategory.FILE_SYSTEM:
        if error.subject is None or _first_match(
            error.text.lower(),
            ("enospc", "no space left", "is a directory"),
        ):
            return None
        return FixAction(
            kind=FixKind.FILE_PATCH,
            payload={"path": error.subject, "operation": "create_placeholder"},
            description=f"Create placeholder file {error.subject}",
        )
    if error.category == ErrorCategory.SYNTAX:
        if error.subject is None:
            return None
        if PurePosixPath(error.subject).suffix.lower() not in NORMALIZABLE_SUFFIXES:
            return None
        return FixAction(
            kind=FixKind.FILE_PATCH,
            payload={"path": error.subject, "operation": "normalize_tokens"},
            description=f"Normalise malformed tokens in {error.subject}",
        )
    return None


class Diagnoser:
    """Turns check errors into a Diagnosis with an all-or-nothing fix plan."""

    def diagnose(
        self,
        errors: list[str] | tuple[str, ...],
        *,
        auto_fix_allowed: bool,
    ) -> Diagnosis:
        classified = [classify_error(text) for text in errors]
        categories = Counter(item.category for item in classified)

        root_causes: list[RootCause] = []
        for category in categories:
            members = [item for item in classified if item.category == category]
            worst = max(members, key=lambda item: _SEVERITY_ORDER[item.severity])
            root_causes.append(
                RootCause(
                    category=category,
                    summary=f"{len(members)} {category.value} error(s): {members[0].text}",
                    errors=tuple(item.text for item in members),
                    severity=worst.severity,
                ),
            )

        remedies = [remedy_for(item) for item in classified]
        fixable = bool(classified) and all(remedy is not None for remedy in remedies)
        can_auto_fix = fixable and auto_fix_allowed
        known = sum(1 for item in classified if item.category != ErrorCategory.UNKNOWN)
        confidence = round(known / len(classified), 2) if classified else 0.0

        suggested_fix: tuple[FixAction, ...] = ()
        manual_steps: tuple[str, ...] = ()
        if can_auto_fix:
            suggested_fix = _dedupe(remedy for remedy in remedies if remedy is not None)
        else:
            manual_steps = _manual_steps(
                classified,
                root_causes,
                fixable=fixable,
                auto_fix_allowed=auto_fix_allowed,
            )

        logger.info(
            "Diagnosed %d error(s) in %d categories; auto-fix possible: %s",
            len(classified),
            len(categories),
            can_auto_fix,
        )
        return Diagnosis(
            total_errors=len(classified),
            categories=dict(categories),
            root_causes=tuple(root_causes),
            can_auto_fix=can_auto_fix,
            suggested_fix=suggested_fix,
            manual_steps=manual_steps,
            confidence=confidence,
        )


_SEVERITY_ORDER: dict[Severity, int] = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


def _dependency_remedy(error: ClassifiedError) -> FixAction | None:
    for pattern in _PIP_MODULE_PATTERNS:
        match = pattern.search(error.text)
        if match:
            package = match.group(1).split(".")[0]
            return _install_action("pip", package)
    for pattern in _NPM_MODULE_PATTERNS:
        match = pattern.search(error.text)
        if match:
            package = match.group(1)
            if package.startswith((".", "/")):
                return None
            return _install_action("npm", package)
    return None


def _install_action(manager: str, package: str) -> FixAction:
    return FixAction(
        kind=FixKind.DEPENDENCY_INSTALL,
        payload={"manager": manager, "package": package},
        description=f"Install {package} with {manager}",
    )


def _extract_subject(text: str, category: ErrorCategory) -> str | None:
    if category == ErrorCategory.DEPENDENCY:
        for pattern in (*_PIP_MODULE_PATTERNS, *_NPM_MODULE_PATTERNS):
            match = pattern.search(text)
            if match:
                return match.group(1)
        return None
    if category == ErrorCategory.SYNTAX:
        patterns = _SYNTAX_PATH_PATTERNS
    elif category in {ErrorCategory.FILE_SYSTEM, ErrorCategory.PERMISSION}:
        patterns = _PATH_PATTERNS
    else:
        return None
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def _manual_steps(
    classified: list[ClassifiedError],
    root_causes: list[RootCause],
    *,
    fixable: bool,
    auto_fix_allowed: bool,
) -> tuple[str, ...]:
    if not classified:
        return ("No error details were reported; inspect the failed checks.",)
    steps: list[str] = []
    if fixable and not auto_fix_allowed:
        steps.append("Auto-fix is disabled for this task; apply the remedies below by hand.")
        steps.extend(
            remedy.description
            for remedy in _dedupe(
                action for action in (remedy_for(item) for item in classified) if action
            )
        )
    for cause in root_causes:
        steps.append(_MANUAL_STEPS[cause.category])
        steps.extend(f"  - {text}" for text in cause.errors)
    return tuple(steps)


def _dedupe(actions) -> tuple[FixAction, ...]:
    unique: list[FixAction] = []
    for action in actions:
        if action not in unique:
            unique.append(action)
    return tuple(unique)


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
