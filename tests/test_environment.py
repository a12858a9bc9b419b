from __future__ import annotations

import json

import allure

from stagegate.pipeline.environment import scan_workspace

pytestmark = [
    allure.epic("Pipeline Runtime"),
    allure.feature("Environment Scan"),
]


def test_scan_python_workspace(workspace) -> None:
    (workspace / "app").mkdir()
    (workspace / "app" / "main.py").write_text("print('hi')\n")
    (workspace / "app" / "util.py").write_text("")
    (workspace / "README.md").write_text("# App\n")
    (workspace / "requirements.txt").write_text(
        "# pinned\nrequests==2.32.0\n-r dev.txt\n\nhttpx>=0.27 ; python_version>='3.11'\n",
    )

    snapshot = scan_workspace(workspace)

    assert snapshot.languages == ("Python", "Markdown")
    assert snapshot.primary_language == "Python"
    assert snapshot.frameworks == ("Python",)
    assert snapshot.dependencies == {"pip": ("requests", "httpx")}
    assert snapshot.project_type == "python"
    assert snapshot.complexity == "Low"
    assert snapshot.files == ("README.md", "app/main.py", "app/util.py", "requirements.txt")


def test_code_languages_rank_ahead_of_data_formats(workspace) -> None:
    for name in ("a.json", "b.json", "c.json", "notes.md", "d.js", "e.js", "run.py"):
        (workspace / name).write_text("")

    snapshot = scan_workspace(workspace)

    assert snapshot.languages == ("JavaScript", "Python", "JSON", "Markdown")
    assert snapshot.primary_language == "JavaScript"


def test_scan_skips_ignored_directories(workspace) -> None:
    (workspace / "node_modules" / "left-pad").mkdir(parents=True)
    (workspace / "node_modules" / "left-pad" / "index.js").write_text("")
    (workspace / "src").mkdir()
    (workspace / "src" / "index.js").write_text("")
    (workspace / "public").mkdir()
    (workspace / "public" / "index.html").write_text("")
    (workspace / "package.json").write_text(
        json.dumps({"dependencies": {"express": "^4"}, "devDependencies": {"jest": "^29"}}),
    )

    snapshot = scan_workspace(workspace)

    assert "node_modules/left-pad/index.js" not in snapshot.files
    assert snapshot.primary_language == "JavaScript"
    assert snapshot.frameworks == ("Node.js",)
    assert snapshot.dependencies == {"npm": ("express", "jest")}
    assert snapshot.project_type == "web-application"


def test_empty_workspace_falls_back_to_default_language(workspace) -> None:
    snapshot = scan_workspace(workspace, default_language="TypeScript")

    assert snapshot.languages == ()
    assert snapshot.primary_language == "TypeScript"
    assert snapshot.project_type == "generic"
    assert "none detected" in snapshot.describe()


def test_unparsable_package_json_is_ignored(workspace) -> None:
    (workspace / "package.json").write_text("{not json")

    snapshot = scan_workspace(workspace)

    assert snapshot.dependencies == {}
    assert snapshot.frameworks == ("Node.js",)


def test_complexity_grows_with_file_count(workspace) -> None:
    for index in range(12):
        (workspace / f"module_{index}.py").write_text("")

    assert scan_workspace(workspace).complexity == "Medium"
