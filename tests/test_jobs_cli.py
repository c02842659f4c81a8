from __future__ import annotations

import re
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from persevere.jobs.models import JobStatus
from persevere.jobs.repository import JobRepository
from persevere.main import persevere

pytestmark = [
    allure.epic("CLI"),
    allure.feature("Job Commands"),
]

JOB_ID_RE = re.compile(r"job_id=([0-9a-f-]{36})")


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("PERSEVERE_LLM_FALLBACK_AGENT", "PERSEVERE_GITHUB_TOKEN", "GITHUB_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PERSEVERE_LLM_PRIMARY_AGENT", "codex")


def _create(runner: CliRunner, db_path: Path, *extra: str) -> str:
    result = runner.invoke(
        persevere,
        [
            "jobs",
            "create",
            "--db-path",
            str(db_path),
            "--goal",
            "Add a status page",
            "--repository",
            "acme/site",
            "--criterion",
            "Page renders",
            "--tech",
            "language=python",
            *extra,
        ],
    )
    assert result.exit_code == 0, result.output
    match = JOB_ID_RE.search(result.output)
    assert match is not None
    return match.group(1)


def test_create_run_list_and_inspect_in_sandbox(tmp_path: Path) -> None:
    runner = CliRunner()
    db_path = tmp_path / "cli.db"
    job_id = _create(runner, db_path, "--time-budget-hours", "2")

    run = runner.invoke(
        persevere,
        ["jobs", "run", job_id, "--db-path", str(db_path), "--vcs", "memory", "--demo-agent"],
    )
    assert run.exit_code == 0, run.output
    assert f"Job {job_id} completed" in run.output
    assert "implemented=3 failed=0 skipped=0 truncated=false" in run.output

    listed = runner.invoke(persevere, ["jobs", "list", "--db-path", str(db_path)])
    assert listed.exit_code == 0, listed.output
    assert "Jobs: 1" in listed.output
    assert "status=completed" in listed.output

    inspected = runner.invoke(persevere, ["jobs", "inspect", job_id, "--db-path", str(db_path)])
    assert inspected.exit_code == 0, inspected.output
    assert "Status: completed" in inspected.output
    assert "Steps: 10" in inspected.output
    assert "PR_CREATED" in inspected.output


def test_run_of_completed_job_reports_precondition_error(tmp_path: Path) -> None:
    runner = CliRunner()
    db_path = tmp_path / "cli.db"
    job_id = _create(runner, db_path)
    args = ["jobs", "run", job_id, "--db-path", str(db_path), "--vcs", "memory", "--demo-agent"]
    assert runner.invoke(persevere, args).exit_code == 0

    again = runner.invoke(persevere, args)

    assert again.exit_code == 1
    assert "not in queued status" in again.output


def test_transcript_then_worker(tmp_path: Path) -> None:
    runner = CliRunner()
    db_path = tmp_path / "cli.db"
    job_id = _create(runner, db_path)
    transcript = tmp_path / "meeting.txt"
    transcript.write_text("Alice: we need a status page.\nBob: three hours tops.\n", "utf-8")

    applied = runner.invoke(
        persevere,
        ["jobs", "transcript", job_id, str(transcript), "--db-path", str(db_path), "--demo-agent"],
    )
    assert applied.exit_code == 0, applied.output
    assert "Goal: Ship a status page for the demo service" in applied.output

    worker = runner.invoke(
        persevere,
        ["jobs", "worker", "--db-path", str(db_path), "--vcs", "memory", "--demo-agent"],
    )
    assert worker.exit_code == 0, worker.output
    assert "processed=1 succeeded=1 failed=0 skipped=0" in worker.output

    repository = JobRepository(db_path)
    try:
        job = repository.require_job(job_id=job_id)
    finally:
        repository.close()
    assert job.status is JobStatus.COMPLETED
    assert job.time_budget_hours == 3


def test_create_rejects_bad_input(tmp_path: Path) -> None:
    runner = CliRunner()
    db_path = tmp_path / "cli.db"

    bad_repo = runner.invoke(
        persevere,
        ["jobs", "create", "--db-path", str(db_path), "--goal", "g", "--repository", "nope"],
    )
    bad_tech = runner.invoke(
        persevere,
        [
            "jobs",
            "create",
            "--db-path",
            str(db_path),
            "--goal",
            "g",
            "--repository",
            "a/b",
            "--tech",
            "python",
        ],
    )

    assert bad_repo.exit_code == 1
    assert "expected owner/name" in bad_repo.output
    assert bad_tech.exit_code == 1
    assert "KEY=VALUE" in bad_tech.output


def test_github_run_requires_token(tmp_path: Path) -> None:
    runner = CliRunner()
    db_path = tmp_path / "cli.db"
    job_id = _create(runner, db_path)

    result = runner.invoke(persevere, ["jobs", "run", job_id, "--db-path", str(db_path)])

    assert result.exit_code == 1
    assert "GitHub token is required" in result.output


def test_inspect_unknown_job(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        persevere,
        ["jobs", "inspect", "missing", "--db-path", str(tmp_path / "cli.db")],
    )

    assert result.exit_code == 0
    assert "Job not found: missing" in result.output
