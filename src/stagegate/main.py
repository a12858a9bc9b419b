"""CLI entrypoint for stagegate."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from stagegate import __version__
from stagegate.pipeline.controllers import (
    PipelineCliController,
    PlanCommand,
    RunCommand,
    ScanCommand,
)
from stagegate.pipeline.models import Priority, StepHints

click.rich_click.USE_MARKDOWN = True
PIPELINE_CONTROLLER = PipelineCliController()

_WORKSPACE_OPTION = click.option(
    "--workspace",
    type=click.Path(path_type=Path, file_okay=False, exists=True),
    default=Path(),
    show_default=True,
    help="Workspace directory the task operates on.",
)


def _hint_options(func: Callable[..., Any]) -> Callable[..., Any]:
    options = (
        click.option(
            "--command",
            "commands",
            multiple=True,
            help="Command run by implementation and general steps; "
            "reproduces the problem in investigation and fix steps.",
        ),
        click.option(
            "--verify",
            "verification_commands",
            multiple=True,
            help="Command that must succeed for an implementation step to pass its checks.",
        ),
        click.option(
            "--endpoint",
            "api_endpoints",
            multiple=True,
            help="URL an implementation step must serve successfully.",
        ),
        click.option(
            "--update-readme",
            is_flag=True,
            help="Documentation steps update README.md even when it does not exist yet.",
        ),
    )
    for option in reversed(options):
        func = option(func)
    return func


def _hints(
    commands: tuple[str, ...],
    verification_commands: tuple[str, ...],
    api_endpoints: tuple[str, ...],
    update_readme: bool,
) -> StepHints:
    return StepHints(
        commands=tuple(commands),
        verification_commands=tuple(verification_commands),
        api_endpoints=tuple(api_endpoints),
        update_readme=update_readme,
    )


@click.group()
@click.version_option(version=__version__, prog_name="stagegate")
@click.option("--verbose", is_flag=True, help="Log pipeline progress.")
@click.option("--debug", is_flag=True, help="Log everything, including collaborator details.")
def stagegate(verbose: bool, debug: bool) -> None:
    """Staged task pipeline with checks, auto-fix and quality gates."""

    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@stagegate.command("scan")
@_WORKSPACE_OPTION
def scan(workspace: Path) -> None:
    """Show languages, frameworks and dependencies detected in the workspace."""

    try:
        lines = PIPELINE_CONTROLLER.scan(ScanCommand(workspace=workspace))
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@stagegate.command("plan")
@_WORKSPACE_OPTION
@click.option("--description", required=True, help="Free-text task description.")
@_hint_options
def plan(  # noqa: PLR0913
    workspace: Path,
    description: str,
    commands: tuple[str, ...],
    verification_commands: tuple[str, ...],
    api_endpoints: tuple[str, ...],
    update_readme: bool,
) -> None:
    """Classify a task and print the steps it would run."""

    try:
        lines = PIPELINE_CONTROLLER.plan(
            PlanCommand(
                workspace=workspace,
                description=description,
                hints=_hints(commands, verification_commands, api_endpoints, update_readme),
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@stagegate.command("run")
@_WORKSPACE_OPTION
@click.option("--description", required=True, help="Free-text task description.")
@click.option(
    "--priority",
    type=click.Choice([item.value for item in Priority], case_sensitive=False),
    default=Priority.MEDIUM.value,
    show_default=True,
    help="Task priority.",
)
@click.option(
    "--auto-fix/--no-auto-fix",
    default=True,
    show_default=True,
    help="Allow deterministic remedies to be applied before retrying a step.",
)
@click.option(
    "--max-retries",
    type=click.IntRange(min=1),
    default=None,
    help="Per-step retry ceiling (defaults to STAGEGATE_MAX_RETRIES).",
)
@click.option(
    "--retry-delay",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds to wait between attempts (defaults to STAGEGATE_RETRY_DELAY_SECONDS).",
)
@click.option(
    "--report-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Write one JSON report per validated attempt into this directory.",
)
@_hint_options
def run(  # noqa: PLR0913
    workspace: Path,
    description: str,
    priority: str,
    auto_fix: bool,
    max_retries: int | None,
    retry_delay: float | None,
    report_dir: Path | None,
    commands: tuple[str, ...],
    verification_commands: tuple[str, ...],
    api_endpoints: tuple[str, ...],
    update_readme: bool,
) -> None:
    """Run the task step by step until every step is approved or the run aborts."""

    try:
        result = PIPELINE_CONTROLLER.run(
            RunCommand(
                workspace=workspace,
                description=description,
                priority=Priority(priority.lower()),
                auto_fix=auto_fix,
                max_retries=max_retries,
                retry_delay_seconds=retry_delay,
                report_dir=report_dir,
                hints=_hints(commands, verification_commands, api_endpoints, update_readme),
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(f"Pipeline {result.outcome.status.value}.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    stagegate()
