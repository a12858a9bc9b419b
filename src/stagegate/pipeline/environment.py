"""Workspace scanning for the environment snapshot used at planning time."""

from __future__ import annotations

import json
import logging
import os
import re
from collections import Counter
from pathlib import Path

from stagegate.pipeline.models import EnvironmentSnapshot

logger = logging.getLogger(__name__)

IGNORED_DIRECTORIES: frozenset[str] = frozenset(
    {
        "node_modules",
        "dist",
        "build",
        ".git",
        "coverage",
        "logs",
        "tmp",
        "__pycache__",
        ".venv",
        "venv",
        ".pytest_cache",
    },
)

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    ".py": "Python",
    ".js": "JavaScript",
    ".ts": "TypeScript",
    ".jsx": "React",
    ".tsx": "React",
    ".java": "Java",
    ".cpp": "C++",
    ".c": "C",
    ".php": "PHP",
    ".rb": "Ruby",
    ".go": "Go",
    ".rs": "Rust",
    ".html": "HTML",
    ".css": "CSS",
    ".json": "JSON",
    ".md": "Markdown",
    ".yml": "YAML",
    ".yaml": "YAML",
}

# Data and markup formats never become the primary language of a step.
_NON_CODE_LANGUAGES: frozenset[str] = frozenset({"JSON", "Markdown", "YAML", "HTML", "CSS"})

FRAMEWORK_MARKERS: tuple[tuple[str, str], ...] = (
    ("package.json", "Node.js"),
    ("requirements.txt", "Python"),
    ("pyproject.toml", "Python"),
    ("composer.json", "PHP"),
    ("pom.xml", "Maven/Java"),
    ("build.gradle", "Gradle/Java"),
    ("Cargo.toml", "Rust"),
    ("Dockerfile", "Docker"),
)

_REQUIREMENT_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")

_LOW_COMPLEXITY_FILES = 10
_MEDIUM_COMPLEXITY_FILES = 50


def scan_workspace(root: Path, *, default_language: str = "Python") -> EnvironmentSnapshot:
    """Walk the workspace and summarise languages, frameworks and dependencies."""

    files = _collect_files(root)
    language_counts: Counter[str] = Counter()
    for relative in files:
        language = LANGUAGE_BY_EXTENSION.get(Path(relative).suffix.lower())
        if language is not None:
            language_counts[language] += 1
    code_languages = [
        name for name, _ in language_counts.most_common() if name not in _NON_CODE_LANGUAGES
    ]
    other_languages = [
        name for name, _ in language_counts.most_common() if name in _NON_CODE_LANGUAGES
    ]
    languages = tuple(code_languages + other_languages)

    frameworks: list[str] = []
    for marker, framework in FRAMEWORK_MARKERS:
        if (root / marker).is_file() and framework not in frameworks:
            frameworks.append(framework)

    dependencies: dict[str, tuple[str, ...]] = {}
    pip_dependencies = _read_requirements(root / "requirements.txt")
    if pip_dependencies:
        dependencies["pip"] = pip_dependencies
    npm_dependencies = _read_package_json(root / "package.json")
    if npm_dependencies:
        dependencies["npm"] = npm_dependencies

    snapshot = EnvironmentSnapshot(
        root=root,
        languages=languages,
        frameworks=tuple(frameworks),
        files=tuple(files),
        dependencies=dependencies,
        project_type=_detect_project_type(frameworks, languages),
        complexity=_assess_complexity(len(files), len(code_languages)),
        default_language=default_language,
    )
    logger.info("Scanned workspace %s: %s", root, snapshot.describe())
    return snapshot


def _collect_files(root: Path) -> list[str]:
    collected: list[str] = []
    for current, directories, filenames in os.walk(root):
        directories[:] = sorted(name for name in directories if name not in IGNORED_DIRECTORIES)
        for filename in sorted(filenames):
            relative = Path(current, filename).relative_to(root)
            collected.append(relative.as_posix())
    return collected


def _read_requirements(path: Path) -> tuple[str, ...]:
    if not path.is_file():
        return ()
    names: list[str] = []
    for line in path.read_text("utf-8", errors="replace").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(("#", "-")):
            continue
        match = _REQUIREMENT_NAME.match(stripped)
        if match:
            names.append(match.group(1))
    return tuple(names)


def _read_package_json(path: Path) -> tuple[str, ...]:
    if not path.is_file():
        return ()
    try:
        payload = json.loads(path.read_text("utf-8"))
    except ValueError:
        logger.warning("Ignoring unparsable %s", path)
        return ()
    if not isinstance(payload, dict):
        return ()
    names: list[str] = []
    for section in ("dependencies", "devDependencies"):
        block = payload.get(section)
        if isinstance(block, dict):
            names.extend(str(name) for name in block)
    return tuple(names)


def _detect_project_type(frameworks: list[str], languages: tuple[str, ...]) -> str:
    if "Node.js" in frameworks and "HTML" in languages:
        return "web-application"
    if "Node.js" in frameworks:
        return "node"
    if "Python" in frameworks or (languages and languages[0] == "Python"):
        return "python"
    if any(name.endswith("/Java") for name in frameworks):
        return "java"
    return "generic"


def _assess_complexity(file_count: int, language_count: int) -> str:
    if file_count < _LOW_COMPLEXITY_FILES and language_count <= 2:  # noqa: PLR2004
        return "Low"
    if file_count < _MEDIUM_COMPLEXITY_FILES and language_count <= 3:  # noqa: PLR2004
        return "Medium"
    return "High"
