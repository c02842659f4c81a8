"""CLI entrypoint for persevere."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from persevere import __version__
from persevere.controllers import (
    VCS_GITHUB,
    VCS_MEMORY,
    JobCliController,
    JobCreateCommand,
    JobInspectCommand,
    JobListCommand,
    JobRunCommand,
    JobTranscriptCommand,
    JobWorkerCommand,
)
from persevere.errors import PersevereError
from persevere.jobs.models import AutopilotPolicy, JobStatus

click.rich_click.USE_MARKDOWN = True
JOB_CONTROLLER = JobCliController()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

CommandT = TypeVar("CommandT")


def _db_path_option(func: Callable[..., None]) -> Callable[..., None]:
    return click.option(
        "--db-path",
        type=click.Path(path_type=Path),
        default=None,
        help="SQLite DB path (default: PERSEVERE_DB_PATH or .persevere.db).",
    )(func)


def _execution_options(func: Callable[..., None]) -> Callable[..., None]:
    func = click.option(
        "--demo-agent",
        is_flag=True,
        default=False,
        help="Use the bundled deterministic agent instead of a real LLM CLI.",
    )(func)
    return click.option(
        "--vcs",
        type=click.Choice([VCS_GITHUB, VCS_MEMORY]),
        default=VCS_GITHUB,
        show_default=True,
        help="Version control backend. `memory` runs against a throwaway sandbox.",
    )(func)


@click.group()
@click.version_option(version=__version__, prog_name="persevere")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Log level for diagnostic output on stderr.",
)
def persevere(log_level: str) -> None:
    """Persevere: autonomous goal-to-pull-request job runner."""

    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)


@persevere.group()
def jobs() -> None:
    """Job commands."""


@jobs.command("create")
@_db_path_option
@click.option("--goal", required=True, help="Natural-language project goal.")
@click.option("--repository", required=True, help="Target GitHub repository as owner/name.")
@click.option(
    "--criterion",
    "acceptance_criteria",
    multiple=True,
    help="Acceptance criterion. Can be repeated.",
)
@click.option("--tech", "tech_stack", multiple=True, help="Tech stack entry KEY=VALUE. Repeatable.")
@click.option(
    "--time-budget-hours",
    type=click.FloatRange(min=0),
    default=None,
    help="Soft deadline for the run (default: PERSEVERE_DEFAULT_TIME_BUDGET_HOURS).",
)
@click.option(
    "--policy",
    "autopilot_policy",
    type=click.Choice([policy.value for policy in AutopilotPolicy]),
    default=AutopilotPolicy.STANDARD.value,
    show_default=True,
    help="`restricted` opens the pull request as a draft.",
)
@click.option("--default-branch", default="main", show_default=True, help="Base branch.")
def jobs_create(  # noqa: PLR0913
    db_path: Path | None,
    goal: str,
    repository: str,
    acceptance_criteria: tuple[str, ...],
    tech_stack: tuple[str, ...],
    time_budget_hours: float | None,
    autopilot_policy: str,
    default_branch: str,
) -> None:
    """Create a queued job."""

    _emit(
        JOB_CONTROLLER.create_job,
        JobCreateCommand(
            db_path=db_path,
            goal=goal,
            repository=repository,
            acceptance_criteria=acceptance_criteria,
            tech_stack=tech_stack,
            time_budget_hours=time_budget_hours,
            autopilot_policy=autopilot_policy,
            default_branch=default_branch,
        ),
    )


@jobs.command("transcript")
@_db_path_option
@click.argument("job_id")
@click.argument(
    "transcript_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--demo-agent", is_flag=True, default=False, help="Use the bundled deterministic agent.")
def jobs_transcript(
    db_path: Path | None,
    job_id: str,
    transcript_path: Path,
    demo_agent: bool,
) -> None:
    """Extract goal, criteria and budget from a meeting transcript into a queued job."""

    _emit(
        JOB_CONTROLLER.apply_transcript,
        JobTranscriptCommand(
            db_path=db_path,
            job_id=job_id,
            transcript_path=transcript_path,
            demo_agent=demo_agent,
        ),
    )


@jobs.command("run")
@_db_path_option
@click.argument("job_id")
@_execution_options
def jobs_run(db_path: Path | None, job_id: str, vcs: str, demo_agent: bool) -> None:
    """Run one queued job in the foreground."""

    _emit(
        JOB_CONTROLLER.run_job,
        JobRunCommand(db_path=db_path, job_id=job_id, vcs=vcs, demo_agent=demo_agent),
    )


@jobs.command("worker")
@_db_path_option
@click.option("--once", is_flag=True, default=False, help="Run at most one job.")
@click.option("--max-jobs", type=click.IntRange(min=1), default=None, help="Stop after N jobs.")
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Exit after this many consecutive empty polls.",
)
@_execution_options
def jobs_worker(  # noqa: PLR0913
    db_path: Path | None,
    once: bool,
    max_jobs: int | None,
    max_idle_polls: int,
    vcs: str,
    demo_agent: bool,
) -> None:
    """Poll queued jobs oldest first and run them."""

    _emit(
        JOB_CONTROLLER.run_worker,
        JobWorkerCommand(
            db_path=db_path,
            once=once,
            max_jobs=max_jobs,
            max_idle_polls=max_idle_polls,
            vcs=vcs,
            demo_agent=demo_agent,
        ),
    )


@jobs.command("list")
@_db_path_option
@click.option(
    "--status",
    type=click.Choice([status.value for status in JobStatus]),
    default=None,
    help="Filter by status.",
)
@click.option("--limit", type=click.IntRange(min=1), default=50, show_default=True)
def jobs_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List jobs, newest first."""

    _emit(JOB_CONTROLLER.list_jobs, JobListCommand(db_path=db_path, status=status, limit=limit))


@jobs.command("inspect")
@_db_path_option
@click.argument("job_id")
def jobs_inspect(db_path: Path | None, job_id: str) -> None:
    """Show a job record and its full step ledger."""

    _emit(JOB_CONTROLLER.inspect_job, JobInspectCommand(db_path=db_path, job_id=job_id))


def _emit(handler: Callable[[CommandT], list[str]], command: CommandT) -> None:
    try:
        lines = handler(command)
    except (PersevereError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    persevere()
