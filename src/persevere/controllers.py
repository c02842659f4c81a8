"""Controllers for job CLI commands."""

from __future__ import annotations

import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from persevere.config import SUPPORTED_AGENTS, Settings
from persevere.extraction.adapter import StructuredExtractor
from persevere.extraction.routing import build_extractor
from persevere.jobs.models import AutopilotPolicy, JobCreate, JobStatus, JobView
from persevere.jobs.repository import JobRepository
from persevere.orchestrator.dispatcher import JobWorker
from persevere.orchestrator.intake import TranscriptIntake
from persevere.orchestrator.milestones import MilestoneStatus
from persevere.orchestrator.runner import JobOrchestrator
from persevere.vcs.base import VersionControl
from persevere.vcs.github import GitHubVersionControl
from persevere.vcs.memory import InMemoryVersionControl

VCS_GITHUB = "github"
VCS_MEMORY = "memory"
SANDBOX_README = "# Sandbox repository\n\nCreated in memory for a local Persevere run.\n"


@dataclass(slots=True)
class JobCreateCommand:
    """CLI input for job creation."""

    db_path: Path | None
    goal: str
    repository: str
    acceptance_criteria: tuple[str, ...]
    tech_stack: tuple[str, ...]
    time_budget_hours: float | None
    autopilot_policy: str
    default_branch: str


@dataclass(slots=True)
class JobTranscriptCommand:
    """CLI input for transcript intake."""

    db_path: Path | None
    job_id: str
    transcript_path: Path
    demo_agent: bool = False


@dataclass(slots=True)
class JobRunCommand:
    """CLI input for running one job in the foreground."""

    db_path: Path | None
    job_id: str
    vcs: str = VCS_GITHUB
    demo_agent: bool = False


@dataclass(slots=True)
class JobWorkerCommand:
    """CLI input for the queue worker."""

    db_path: Path | None
    once: bool
    max_jobs: int | None
    max_idle_polls: int = 1
    vcs: str = VCS_GITHUB
    demo_agent: bool = False


@dataclass(slots=True)
class JobListCommand:
    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class JobInspectCommand:
    db_path: Path | None
    job_id: str


class JobCliController:
    """Coordinates job creation, execution and inspection for the CLI."""

    def create_job(self, command: JobCreateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        budget = (
            command.time_budget_hours
            if command.time_budget_hours is not None
            else settings.runner.default_time_budget_hours
        )
        if budget > settings.runner.max_time_budget_hours:
            raise ValueError(
                f"--time-budget-hours must be <= {settings.runner.max_time_budget_hours:g} "
                "(PERSEVERE_MAX_TIME_BUDGET_HOURS).",
            )
        with _repository(settings) as repository:
            job = repository.create_job(
                JobCreate(
                    goal=command.goal,
                    repository=_validate_repository_slug(command.repository),
                    acceptance_criteria=[item for item in command.acceptance_criteria if item.strip()],
                    tech_stack=_parse_tech_stack(command.tech_stack),
                    time_budget_hours=budget,
                    autopilot_policy=AutopilotPolicy(command.autopilot_policy),
                    default_branch=command.default_branch,
                ),
            )
        return [
            f"Job created: job_id={job.job_id} status={job.status.value}",
            f"Repository: {job.repository}@{job.default_branch}",
            f"Time budget: {job.time_budget_hours:g}h policy={job.autopilot_policy.value}",
        ]

    def apply_transcript(self, command: JobTranscriptCommand) -> list[str]:
        settings = _settings_for_llm(command.db_path, demo_agent=command.demo_agent)
        settings.validate_for_run(require_github=False)
        transcript = command.transcript_path.read_text("utf-8")
        with _repository(settings) as repository:
            intake = TranscriptIntake(
                repository=repository,
                extractor=build_extractor(settings.llm),
                max_time_budget_hours=settings.runner.max_time_budget_hours,
            )
            job = intake.apply_transcript(job_id=command.job_id, transcript=transcript)
        return [
            f"Spec applied: job_id={job.job_id}",
            f"Goal: {job.goal}",
            f"Acceptance criteria: {len(job.acceptance_criteria)}",
            f"Time budget: {job.time_budget_hours:g}h",
        ]

    def run_job(self, command: JobRunCommand) -> list[str]:
        settings = _settings_for_llm(command.db_path, demo_agent=command.demo_agent)
        settings.validate_for_run(require_github=command.vcs == VCS_GITHUB)
        extractor = build_extractor(settings.llm)
        with _repository(settings) as repository:
            job = repository.require_job(job_id=command.job_id)
            with _version_control(settings, kind=command.vcs, jobs=[job]) as vcs:
                result = _orchestrator(settings, repository, extractor, vcs).run(command.job_id)
        finished = result.job
        return [
            f"Job {finished.job_id} {finished.status.value}",
            f"Branch: {finished.branch_name}",
            f"Pull request: {finished.pull_request.url if finished.pull_request else '-'}",
            "Milestones: "
            f"implemented={result.count(MilestoneStatus.IMPLEMENTED)} "
            f"failed={result.count(MilestoneStatus.FAILED)} "
            f"skipped={result.count(MilestoneStatus.SKIPPED)} "
            f"truncated={str(result.truncated).lower()}",
        ]

    def run_worker(self, command: JobWorkerCommand) -> list[str]:
        settings = _settings_for_llm(command.db_path, demo_agent=command.demo_agent)
        settings.validate_for_run(require_github=command.vcs == VCS_GITHUB)
        extractor = build_extractor(settings.llm)
        with _repository(settings) as repository:
            queued = repository.list_jobs(status=JobStatus.QUEUED, limit=1_000)
            with _version_control(settings, kind=command.vcs, jobs=queued) as vcs:
                worker = JobWorker(
                    repository=repository,
                    orchestrator=_orchestrator(settings, repository, extractor, vcs),
                    poll_interval_seconds=settings.runner.worker_poll_interval_seconds,
                )
                summary = (
                    worker.run_once()
                    if command.once
                    else worker.run_loop(
                        max_jobs=command.max_jobs,
                        max_idle_polls=command.max_idle_polls,
                    )
                )
        return [
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} skipped={summary.skipped} "
            f"idle_polls={summary.idle_polls}",
        ]

    def list_jobs(self, command: JobListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = JobStatus(command.status) if command.status else None
        with _repository(settings) as repository:
            jobs = repository.list_jobs(status=status_filter, limit=command.limit)
        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} status={job.status.value} repo={job.repository} "
                f"created_at={job.created_at.isoformat()} goal={_shorten(job.goal)}",
            )
        return lines

    def inspect_job(self, command: JobInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_job_details(job_id=command.job_id)
        if details is None:
            return [f"Job not found: {command.job_id}"]

        job = details.job
        lines = [
            f"Job: {job.job_id}",
            f"Status: {job.status.value}",
            f"Goal: {job.goal}",
            f"Repository: {job.repository}@{job.default_branch}",
            f"Policy: {job.autopilot_policy.value}",
            f"Time budget: {job.time_budget_hours:g}h",
            f"Branch: {job.branch_name or '-'}",
            f"Pull request: {job.pull_request.url if job.pull_request else '-'}",
            f"Started: {_iso(job.started_at)}",
            f"Completed: {_iso(job.completed_at)}",
            f"Failed: {_iso(job.failed_at)}",
            f"Error: {job.error_message or '-'}",
            f"Steps: {len(details.steps)}",
        ]
        for step in details.steps:
            lines.append(
                f"  {step.step_order:>3} {step.created_at.isoformat()} {step.step_type.value} "
                f"{_shorten(json.dumps(step.payload, ensure_ascii=False, sort_keys=True), 120)}",
            )
        return lines


@contextmanager
def _repository(settings: Settings) -> Iterator[JobRepository]:
    repository = JobRepository(
        db_path=settings.db_path,
        user_id=settings.user_context.user_id,
        user_name=settings.user_context.user_name,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _version_control(
    settings: Settings,
    *,
    kind: str,
    jobs: list[JobView],
) -> Iterator[VersionControl]:
    if kind == VCS_MEMORY:
        sandbox = InMemoryVersionControl()
        for job in {job.repository: job for job in jobs}.values():
            sandbox.seed_repository(
                job.repository,
                files={"README.md": SANDBOX_README},
                default_branch=job.default_branch,
            )
        yield sandbox
        return
    if kind != VCS_GITHUB:
        raise ValueError(f"Unsupported VCS backend: {kind!r}. Use github or memory.")
    with GitHubVersionControl(
        token=settings.github.token,
        api_url=settings.github.api_url,
        timeout_seconds=settings.github.timeout_seconds,
        max_retries=settings.github.max_retries,
    ) as github:
        yield github


def _orchestrator(
    settings: Settings,
    repository: JobRepository,
    extractor: StructuredExtractor,
    vcs: VersionControl,
) -> JobOrchestrator:
    return JobOrchestrator(
        repository=repository,
        extractor=extractor,
        vcs=vcs,
        branch_prefix=settings.runner.branch_prefix,
        analysis_file_sample=settings.runner.analysis_file_sample,
    )


def _settings_for_llm(db_path: Path | None, *, demo_agent: bool) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    if not demo_agent:
        return settings
    template = sys.executable + " -m persevere.extraction.demo_agent --prompt-file {prompt_file}"
    settings.llm = replace(
        settings.llm,
        fallback_agent=None,
        command_templates=dict.fromkeys(SUPPORTED_AGENTS, template),
    )
    return settings


def _parse_tech_stack(items: tuple[str, ...]) -> dict[str, Any]:
    stack: dict[str, Any] = {}
    for item in items:
        key, separator, value = item.partition("=")
        if not separator or not key.strip():
            raise ValueError(f"Invalid --tech value {item!r}; expected KEY=VALUE.")
        stack[key.strip()] = value.strip()
    return stack


def _validate_repository_slug(value: str) -> str:
    owner, separator, name = value.strip().partition("/")
    if not separator or not owner or not name or "/" in name:
        raise ValueError(f"Invalid repository {value!r}; expected owner/name.")
    return f"{owner}/{name}"


def _shorten(value: str, width: int = 60) -> str:
    flat = " ".join(value.split())
    return flat if len(flat) <= width else flat[: width - 3] + "..."


def _iso(value: Any) -> str:
    return value.isoformat() if value is not None else "-"
