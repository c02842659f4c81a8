from __future__ import annotations

from collections.abc import Callable

import allure
from conftest import ManualClock, ScriptedProvider, plan_response

from persevere.extraction.adapter import StructuredExtractor
from persevere.jobs.models import JobStatus
from persevere.jobs.repository import JobRepository
from persevere.orchestrator.dispatcher import JobDispatcher, JobWorker
from persevere.orchestrator.runner import JobOrchestrator
from persevere.vcs.memory import InMemoryVersionControl

pytestmark = [
    allure.epic("Agent Loop"),
    allure.feature("Dispatch and Worker"),
]


def _orchestrator(
    repository: JobRepository,
    vcs: InMemoryVersionControl,
    clock: ManualClock,
    responses: list[str | Exception],
) -> JobOrchestrator:
    return JobOrchestrator(
        repository=repository,
        extractor=StructuredExtractor(primary=ScriptedProvider("primary", responses)),
        vcs=vcs,
        clock=clock,
    )


def test_dispatcher_runs_job_in_background(
    repository: JobRepository,
    vcs: InMemoryVersionControl,
    clock: ManualClock,
    make_job: Callable[..., str],
) -> None:
    job_id = make_job()
    dispatcher = JobDispatcher(_orchestrator(repository, vcs, clock, [plan_response(1)]))

    thread = dispatcher.submit(job_id)
    dispatcher.join(timeout=30)

    assert thread.daemon
    assert not thread.is_alive()
    assert repository.require_job(job_id=job_id).status is JobStatus.COMPLETED


def test_dispatcher_logs_and_swallows_run_errors(
    repository: JobRepository,
    vcs: InMemoryVersionControl,
    clock: ManualClock,
    make_job: Callable[..., str],
    caplog,
) -> None:
    job_id = make_job(default_branch="missing")
    dispatcher = JobDispatcher(_orchestrator(repository, vcs, clock, [plan_response(1)]))

    dispatcher.submit(job_id)
    dispatcher.join(timeout=30)

    assert repository.require_job(job_id=job_id).status is JobStatus.FAILED
    assert f"Background run of job {job_id} failed" in caplog.text


def test_worker_processes_queue_oldest_first(
    repository: JobRepository,
    vcs: InMemoryVersionControl,
    clock: ManualClock,
    make_job: Callable[..., str],
) -> None:
    first = make_job(goal="first")
    second = make_job(goal="second", default_branch="missing")
    third = make_job(goal="third")
    worker = JobWorker(
        repository=repository,
        orchestrator=_orchestrator(
            repository,
            vcs,
            clock,
            [plan_response(1), plan_response(1)],
        ),
        poll_interval_seconds=0,
    )

    summary = worker.run_loop()

    assert summary.processed == 3
    assert summary.succeeded == 2
    assert summary.failed == 1
    assert summary.idle_polls == 1
    assert repository.require_job(job_id=first).status is JobStatus.COMPLETED
    assert repository.require_job(job_id=second).status is JobStatus.FAILED
    assert repository.require_job(job_id=third).status is JobStatus.COMPLETED


def test_worker_run_once_on_empty_queue_is_idle(
    repository: JobRepository,
    vcs: InMemoryVersionControl,
    clock: ManualClock,
) -> None:
    worker = JobWorker(repository=repository, orchestrator=_orchestrator(repository, vcs, clock, []))

    summary = worker.run_once()

    assert summary.processed == 0
    assert summary.idle_polls == 1


def test_worker_counts_lost_claim_as_skipped(
    repository: JobRepository,
    vcs: InMemoryVersionControl,
    clock: ManualClock,
    make_job: Callable[..., str],
    monkeypatch,
) -> None:
    job_id = make_job()
    worker = JobWorker(repository=repository, orchestrator=_orchestrator(repository, vcs, clock, []))
    original_list = repository.list_jobs

    def _list_then_steal(**kwargs):  # noqa: ANN003, ANN202
        jobs = original_list(**kwargs)
        repository.claim_job(job_id=job_id)
        return jobs

    monkeypatch.setattr(repository, "list_jobs", _list_then_steal)

    summary = worker.run_once()

    assert summary.skipped == 1
    assert summary.processed == 0


def test_dispatcher_drops_finished_threads_on_submit(
    repository: JobRepository,
    vcs: InMemoryVersionControl,
    clock: ManualClock,
    make_job: Callable[..., str],
) -> None:
    first_id, second_id = make_job(), make_job()
    dispatcher = JobDispatcher(
        _orchestrator(repository, vcs, clock, [plan_response(1), plan_response(1)]),
    )

    first = dispatcher.submit(first_id)
    first.join(timeout=30)
    second = dispatcher.submit(second_id)
    second.join(timeout=30)

    assert not first.is_alive()
    assert dispatcher._threads == [second]
    assert repository.require_job(job_id=second_id).status is JobStatus.COMPLETED
