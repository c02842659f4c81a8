"""Background execution of queued jobs."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from persevere.errors import JobNotQueued
from persevere.jobs.models import JobStatus
from persevere.jobs.repository import JobRepository
from persevere.orchestrator.runner import JobOrchestrator

logger = logging.getLogger(__name__)


class JobDispatcher:
    """Fire-and-forget: each submitted job runs on its own daemon thread."""

    def __init__(self, orchestrator: JobOrchestrator) -> None:
        self.orchestrator = orchestrator
        self._threads: list[threading.Thread] = []

    def submit(self, job_id: str) -> threading.Thread:
        thread = threading.Thread(
            target=self._run,
            args=(job_id,),
            name=f"persevere-job-{job_id[:8]}",
            daemon=True,
        )
        thread.start()
        self._threads = [item for item in self._threads if item.is_alive()]
        self._threads.append(thread)
        return thread

    def join(self, timeout: float | None = None) -> None:
        for thread in self._threads:
            thread.join(timeout)
        self._threads = [thread for thread in self._threads if thread.is_alive()]

    def _run(self, job_id: str) -> None:
        try:
            self.orchestrator.run(job_id)
        except Exception:
            logger.exception("Background run of job %s failed", job_id)


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.skipped += other.skipped
        self.idle_polls += other.idle_polls


class JobWorker:
    """Polls queued jobs oldest first and runs them in the calling thread."""

    def __init__(
        self,
        *,
        repository: JobRepository,
        orchestrator: JobOrchestrator,
        poll_interval_seconds: float = 2.0,
    ) -> None:
        self.repository = repository
        self.orchestrator = orchestrator
        self.poll_interval_seconds = poll_interval_seconds
        self._stop_requested = False

    def run_once(self) -> WorkerRunSummary:
        """Run at most one queued job."""

        summary = WorkerRunSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary

        candidates = self.repository.list_jobs(status=JobStatus.QUEUED, limit=1, oldest_first=True)
        if not candidates:
            summary.idle_polls = 1
            return summary

        job_id = candidates[0].job_id
        try:
            self.orchestrator.run(job_id)
        except JobNotQueued:
            logger.info("Job %s was claimed by another worker", job_id)
            summary.skipped = 1
            return summary
        except Exception:
            logger.exception("Job %s failed", job_id)
            summary.processed = 1
            summary.failed = 1
            return summary
        summary.processed = 1
        summary.succeeded = 1
        return summary

    def run_loop(self, *, max_jobs: int | None = None, max_idle_polls: int = 1) -> WorkerRunSummary:
        """Run jobs until the queue stays idle for `max_idle_polls` polls or `max_jobs` ran."""

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while not self._stop_requested:
                if max_jobs is not None and aggregate.processed >= max_jobs:
                    break
                summary = self.run_once()
                aggregate.add(summary)
                if summary.idle_polls:
                    consecutive_idle += 1
                    if consecutive_idle >= max_idle_polls:
                        break
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0
        return aggregate

    def request_stop(self) -> None:
        self._stop_requested = True

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            logger.info("Received %s; stopping after the current job", signal.Signals(signum).name)
            self.request_stop()

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
