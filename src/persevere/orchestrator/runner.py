"""The agent loop: drives one queued job to completed or failed."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from persevere.errors import JobStateConflict
from persevere.extraction.adapter import StructuredExtractor
from persevere.jobs.models import AutopilotPolicy, JobView, Plan, PullRequestRef, StepType
from persevere.jobs.repository import JobRepository
from persevere.orchestrator.analysis import AnalysisOutcome, RepositoryAnalysis, analyze_repository
from persevere.orchestrator.milestones import (
    MarkdownMilestoneImplementer,
    MilestoneImplementer,
    MilestoneOutcome,
    MilestoneStatus,
)
from persevere.orchestrator.planner import generate_plan
from persevere.orchestrator.pull_request import render_body, render_title
from persevere.storage.common import utc_now
from persevere.vcs.base import FileChange, VersionControl

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

COMMIT_PREFIX = "[Persevere]"
PLAN_DOCUMENT_PATH = "persevere/PLAN.md"


@dataclass(frozen=True, slots=True)
class Deadline:
    """Soft deadline: `started_at + budget`, checked between milestones only."""

    started_at: datetime
    budget: timedelta

    @property
    def expires_at(self) -> datetime:
        return self.started_at + self.budget

    def reached(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(slots=True)
class JobRunResult:
    """What a finished run produced."""

    job: JobView
    plan: Plan
    analysis: AnalysisOutcome
    outcomes: list[MilestoneOutcome] = field(default_factory=list)
    truncated: bool = False

    def count(self, status: MilestoneStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is status)


class JobOrchestrator:
    """Runs the agent loop for one job at a time.

    Adapters are injected by reference. Every significant transition is
    appended to the step ledger right after its action succeeds; a fatal error
    marks the job failed, records `JOB_FAILED` and propagates to the caller.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: JobRepository,
        extractor: StructuredExtractor,
        vcs: VersionControl,
        implementer: MilestoneImplementer | None = None,
        branch_prefix: str = "persevere",
        analysis_file_sample: int = 50,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.ledger = repository.ledger
        self.extractor = extractor
        self.vcs = vcs
        self.implementer = implementer or MarkdownMilestoneImplementer()
        self.branch_prefix = branch_prefix.strip().strip("/")
        self.analysis_file_sample = analysis_file_sample
        self.clock = clock

    def run(self, job_id: str) -> JobRunResult:
        """Run a queued job to completion.

        Raises `PreconditionFailed` without side effects when the job is missing
        or not queued. Any later fatal error is re-raised after the job is
        marked failed.
        """

        job = self.repository.claim_job(job_id=job_id, now=self.clock())
        started_at = job.started_at or self.clock()
        logger.info("Job %s claimed; time budget %.2fh", job_id, job.time_budget_hours)

        stage = "start"
        try:
            self.ledger.append(
                job_id=job_id,
                step_type=StepType.JOB_STARTED,
                payload={"started_at": started_at.isoformat()},
            )

            stage = "branch"
            branch_name, base_sha = self._create_branch(job)

            stage = "analysis"
            analysis = self._analyze(job, ref=base_sha)

            stage = "plan"
            plan = generate_plan(self.extractor, job=job, analysis=analysis.analysis)
            self.ledger.append(
                job_id=job_id,
                step_type=StepType.PLAN_CREATED,
                payload=plan.to_payload(),
            )
            logger.info("Job %s planned with %d milestone(s)", job_id, len(plan.milestones))

            stage = "milestones"
            deadline = Deadline(started_at=started_at, budget=job.time_budget)
            outcomes, truncated = self._implement_milestones(
                job,
                plan=plan,
                branch_name=branch_name,
                deadline=deadline,
            )

            stage = "pull_request"
            pull_request = self._open_pull_request(
                job,
                plan=plan,
                branch_name=branch_name,
                outcomes=outcomes,
                truncated=truncated,
            )

            stage = "complete"
            result = JobRunResult(
                job=job,
                plan=plan,
                analysis=analysis,
                outcomes=outcomes,
                truncated=truncated,
            )
            finished_at = self.clock()
            summary = _execution_summary(
                branch_name=branch_name,
                pull_request=pull_request,
                elapsed=finished_at - started_at,
                result=result,
            )
            result.job = self.repository.complete_job(
                job_id=job_id,
                execution_summary=summary,
                now=finished_at,
            )
            self.ledger.append(job_id=job_id, step_type=StepType.JOB_COMPLETED, payload=summary)
        except Exception as error:
            self._record_failure(job_id=job_id, error=error, stage=stage)
            raise

        logger.info(
            "Job %s completed: implemented=%d failed=%d skipped=%d pr=%s",
            job_id,
            result.count(MilestoneStatus.IMPLEMENTED),
            result.count(MilestoneStatus.FAILED),
            result.count(MilestoneStatus.SKIPPED),
            pull_request.url,
        )
        return result

    def _create_branch(self, job: JobView) -> tuple[str, str]:
        epoch_millis = int(self.clock().timestamp() * 1000)
        branch_name = f"{self.branch_prefix}/{job.job_id[:8]}-{epoch_millis}"
        base_sha = self.vcs.create_branch(
            repository=job.repository,
            base=job.default_branch,
            name=branch_name,
        )
        self.repository.set_branch_name(job_id=job.job_id, branch_name=branch_name)
        self.ledger.append(
            job_id=job.job_id,
            step_type=StepType.BRANCH_CREATED,
            payload={
                "branch_name": branch_name,
                "base": job.default_branch,
                "base_sha": base_sha,
            },
        )
        return branch_name, base_sha

    def _analyze(self, job: JobView, *, ref: str) -> AnalysisOutcome:
        outcome = analyze_repository(
            self.vcs,
            repository=job.repository,
            ref=ref,
            file_sample=self.analysis_file_sample,
        )
        if outcome.ok:
            self.ledger.append(
                job_id=job.job_id,
                step_type=StepType.REPOSITORY_ANALYZED,
                payload=outcome.analysis.to_payload(),
            )
        else:
            self.ledger.append(
                job_id=job.job_id,
                step_type=StepType.ANALYSIS_FAILED,
                payload={"error": outcome.error, "fallback": RepositoryAnalysis.empty().to_payload()},
            )
        return outcome

    def _implement_milestones(
        self,
        job: JobView,
        *,
        plan: Plan,
        branch_name: str,
        deadline: Deadline,
    ) -> tuple[list[MilestoneOutcome], bool]:
        outcomes: list[MilestoneOutcome] = []
        for index, milestone in enumerate(plan.milestones):
            now = self.clock()
            if deadline.reached(now):
                skipped = [
                    MilestoneOutcome(index=position, title=item.title, status=MilestoneStatus.SKIPPED)
                    for position, item in enumerate(plan.milestones)
                    if position >= index
                ]
                outcomes.extend(skipped)
                self.ledger.append(
                    job_id=job.job_id,
                    step_type=StepType.DEADLINE_REACHED,
                    payload={
                        "deadline": deadline.expires_at.isoformat(),
                        "checked_at": now.isoformat(),
                        "skipped": [{"index": o.index, "title": o.title} for o in skipped],
                    },
                )
                logger.info(
                    "Job %s reached its time budget; skipping %d milestone(s)",
                    job.job_id,
                    len(skipped),
                )
                return outcomes, True

            outcome = self._implement_one(job, index=index, branch_name=branch_name, plan=plan)
            outcomes.append(outcome)
            step_type = (
                StepType.MILESTONE_IMPLEMENTED
                if outcome.status is MilestoneStatus.IMPLEMENTED
                else StepType.MILESTONE_FAILED
            )
            self.ledger.append(job_id=job.job_id, step_type=step_type, payload=outcome.to_payload())
        return outcomes, False

    def _implement_one(
        self,
        job: JobView,
        *,
        index: int,
        branch_name: str,
        plan: Plan,
    ) -> MilestoneOutcome:
        milestone = plan.milestones[index]
        try:
            files = self.implementer.build_changes(job, milestone, index)
            commit_sha = self.vcs.commit_files(
                repository=job.repository,
                branch=branch_name,
                message=f"{COMMIT_PREFIX} {milestone.title}",
                files=files,
            )
        except Exception as error:  # noqa: BLE001
            logger.warning(
                "Milestone %d (%s) of job %s failed: %s",
                index + 1,
                milestone.title,
                job.job_id,
                error,
            )
            return MilestoneOutcome(
                index=index,
                title=milestone.title,
                status=MilestoneStatus.FAILED,
                error=str(error) or type(error).__name__,
                error_type=type(error).__name__,
            )
        return MilestoneOutcome(
            index=index,
            title=milestone.title,
            status=MilestoneStatus.IMPLEMENTED,
            commit_sha=commit_sha,
            paths=[change.path for change in files],
        )

    def _open_pull_request(
        self,
        job: JobView,
        *,
        plan: Plan,
        branch_name: str,
        outcomes: list[MilestoneOutcome],
        truncated: bool,
    ) -> PullRequestRef:
        body = render_body(job, plan=plan, outcomes=outcomes, truncated=truncated)
        plan_commit_sha = None
        if not any(outcome.status is MilestoneStatus.IMPLEMENTED for outcome in outcomes):
            # A pull request needs at least one commit ahead of its base.
            plan_commit_sha = self.vcs.commit_files(
                repository=job.repository,
                branch=branch_name,
                message=f"{COMMIT_PREFIX} Implementation plan",
                files=[FileChange(path=PLAN_DOCUMENT_PATH, content=body + "\n")],
            )

        draft = job.autopilot_policy is AutopilotPolicy.RESTRICTED
        title = render_title(job)
        pull_request = self.vcs.create_pull_request(
            repository=job.repository,
            head=branch_name,
            base=job.default_branch,
            title=title,
            body=body,
            draft=draft,
        )
        self.repository.set_pull_request(job_id=job.job_id, pull_request=pull_request)
        payload: dict[str, Any] = {
            "number": pull_request.number,
            "url": pull_request.url,
            "title": title,
            "draft": draft,
        }
        if plan_commit_sha is not None:
            payload["plan_commit_sha"] = plan_commit_sha
        self.ledger.append(job_id=job.job_id, step_type=StepType.PR_CREATED, payload=payload)
        return pull_request

    def _record_failure(self, *, job_id: str, error: Exception, stage: str) -> None:
        message = str(error).strip() or type(error).__name__
        logger.error("Job %s failed during %s: %s", job_id, stage, message)
        try:
            self.repository.fail_job(job_id=job_id, error_message=message, now=self.clock())
        except JobStateConflict:
            logger.exception("Job %s could not be marked failed", job_id)
            return
        self.ledger.append(
            job_id=job_id,
            step_type=StepType.JOB_FAILED,
            payload={"error": message, "error_type": type(error).__name__, "stage": stage},
        )


def _execution_summary(
    *,
    branch_name: str,
    pull_request: PullRequestRef,
    elapsed: timedelta,
    result: JobRunResult,
) -> dict[str, Any]:
    return {
        "branch_name": branch_name,
        "pr_number": pull_request.number,
        "pr_url": pull_request.url,
        "execution_time_ms": int(elapsed.total_seconds() * 1000),
        "milestones_implemented": result.count(MilestoneStatus.IMPLEMENTED),
        "milestones_failed": result.count(MilestoneStatus.FAILED),
        "milestones_skipped": result.count(MilestoneStatus.SKIPPED),
        "truncated": result.truncated,
    }
