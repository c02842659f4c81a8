"""Job store backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from persevere.errors import JobNotFound, JobNotQueued, JobStateConflict
from persevere.jobs.ledger import StepLedger, step_record
from persevere.jobs.models import (
    AutopilotPolicy,
    JobCreate,
    JobDetails,
    JobSpecUpdate,
    JobStatus,
    JobView,
    PullRequestRef,
    StepType,
)
from persevere.storage.alembic_runner import upgrade_head
from persevere.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from persevere.storage.sqlmodel_models import DEFAULT_USER_ID, AppUser, JobRecord


class JobRepository:
    """Job record persistence facade; owns the engine shared with the step ledger.

    Every status transition is one conditional `UPDATE ... WHERE status = <expected>`
    whose row count is checked, so a transition that lost a race is observable
    instead of silently overwriting a newer state.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        user_id: str = DEFAULT_USER_ID,
        user_name: str = "Default User",
        sqlite_busy_timeout_ms: int = 5_000,
    ) -> None:
        self.db_path = db_path
        self.user_id = user_id
        self.user_name = user_name
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)
        self.ledger = StepLedger(self.engine)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations and ensure actor context exists."""

        upgrade_head(self.db_path)
        self._ensure_actor_context()

    def _ensure_actor_context(self) -> None:
        with Session(self.engine) as session:
            user = session.exec(
                select(AppUser).where(AppUser.user_id == self.user_id),
            ).one_or_none()
            if user is not None:
                return
            session.add(
                AppUser(
                    user_id=self.user_id,
                    display_name=self.user_name,
                    created_at=utc_now(),
                ),
            )
            session.commit()

    def create_job(self, payload: JobCreate) -> JobView:
        """Create a queued job and record `JOB_CREATED` as its first step."""

        if not payload.goal.strip():
            raise ValueError("Job goal must not be empty.")
        if payload.time_budget_hours < 0:
            raise ValueError(f"time_budget_hours must be >= 0, got {payload.time_budget_hours}")
        now = utc_now()
        job_id = payload.job_id or str(uuid4())
        with Session(self.engine) as session:
            row = JobRecord(
                job_id=job_id,
                user_id=self.user_id,
                goal=payload.goal.strip(),
                acceptance_criteria_json=json.dumps(payload.acceptance_criteria, ensure_ascii=False),
                tech_stack_json=json.dumps(payload.tech_stack, ensure_ascii=False, sort_keys=True),
                time_budget_hours=payload.time_budget_hours,
                autopilot_policy=AutopilotPolicy(payload.autopilot_policy).value,
                repository=payload.repository,
                default_branch=payload.default_branch,
                status=JobStatus.QUEUED.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            view = _to_job_view(row)
            session.add(
                step_record(
                    job_id=job_id,
                    step_type=StepType.JOB_CREATED,
                    step_order=1,
                    payload={
                        "goal": view.goal,
                        "acceptance_criteria": view.acceptance_criteria,
                        "tech_stack": view.tech_stack,
                        "time_budget_hours": view.time_budget_hours,
                        "autopilot_policy": view.autopilot_policy.value,
                        "repository": view.repository,
                        "default_branch": view.default_branch,
                    },
                ),
            )
            session.commit()
        return view

    def get_job(self, *, job_id: str) -> JobView | None:
        with Session(self.engine) as session:
            row = self._select_job(session=session, job_id=job_id)
            return _to_job_view(row) if row is not None else None

    def require_job(self, *, job_id: str) -> JobView:
        """Return a job or raise `JobNotFound`."""

        job = self.get_job(job_id=job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        limit: int = 50,
        oldest_first: bool = False,
    ) -> list[JobView]:
        """List jobs, newest first unless `oldest_first` is set."""

        order = col(JobRecord.created_at).asc() if oldest_first else col(JobRecord.created_at).desc()
        with Session(self.engine) as session:
            statement = select(JobRecord).where(JobRecord.user_id == self.user_id)
            if status is not None:
                statement = statement.where(JobRecord.status == status.value)
            rows = session.exec(statement.order_by(order).limit(limit)).all()
        return [_to_job_view(row) for row in rows]

    def get_job_details(self, *, job_id: str) -> JobDetails | None:
        """Return job record with its full ledger."""

        job = self.get_job(job_id=job_id)
        if job is None:
            return None
        return JobDetails(job=job, steps=self.ledger.list_by_job(job_id=job_id))

    def claim_job(self, *, job_id: str, now: datetime | None = None) -> JobView:
        """Atomically move a queued job to running.

        Raises `JobNotFound` or `JobNotQueued` without touching the row.
        """

        started_at = now or utc_now()
        with Session(self.engine) as session:
            row = self._select_job(session=session, job_id=job_id)
            if row is None:
                raise JobNotFound(job_id)
            result = session.exec(
                sa_update(JobRecord)
                .where(
                    col(JobRecord.job_id) == job_id,
                    col(JobRecord.user_id) == self.user_id,
                    col(JobRecord.status) == JobStatus.QUEUED.value,
                )
                .values(
                    status=JobStatus.RUNNING.value,
                    started_at=to_db_datetime(started_at),
                    updated_at=to_db_datetime(started_at),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                current = self._select_job(session=session, job_id=job_id)
                raise JobNotQueued(job_id, current.status if current is not None else "missing")
            session.commit()
            claimed = self._select_job(session=session, job_id=job_id)
            if claimed is None:
                raise JobNotFound(job_id)
            return _to_job_view(claimed)

    def apply_spec(self, *, job_id: str, spec: JobSpecUpdate) -> JobView:
        """Replace goal and constraints of a job that has not started yet."""

        self._guarded_update(
            job_id=job_id,
            expected=JobStatus.QUEUED,
            values={
                "goal": spec.goal.strip(),
                "acceptance_criteria_json": json.dumps(
                    spec.acceptance_criteria,
                    ensure_ascii=False,
                ),
                "tech_stack_json": json.dumps(spec.tech_stack, ensure_ascii=False, sort_keys=True),
                "time_budget_hours": spec.time_budget_hours,
            },
            extra_where=(),
        )
        return self.require_job(job_id=job_id)

    def set_branch_name(self, *, job_id: str, branch_name: str) -> None:
        """Persist the working branch; allowed once per job."""

        self._guarded_update(
            job_id=job_id,
            expected=JobStatus.RUNNING,
            values={"branch_name": branch_name},
            extra_where=(col(JobRecord.branch_name).is_(None),),
        )

    def set_pull_request(self, *, job_id: str, pull_request: PullRequestRef) -> None:
        self._guarded_update(
            job_id=job_id,
            expected=JobStatus.RUNNING,
            values={"pr_number": pull_request.number, "pr_url": pull_request.url},
            extra_where=(),
        )

    def complete_job(
        self,
        *,
        job_id: str,
        execution_summary: dict[str, Any],
        now: datetime | None = None,
    ) -> JobView:
        """Mark a running job as completed."""

        completed_at = now or utc_now()
        self._guarded_update(
            job_id=job_id,
            expected=JobStatus.RUNNING,
            values={
                "status": JobStatus.COMPLETED.value,
                "completed_at": to_db_datetime(completed_at),
                "execution_summary_json": json.dumps(
                    execution_summary,
                    ensure_ascii=False,
                    sort_keys=True,
                ),
            },
            extra_where=(),
            now=completed_at,
        )
        return self.require_job(job_id=job_id)

    def fail_job(self, *, job_id: str, error_message: str, now: datetime | None = None) -> JobView:
        """Mark a running job as failed."""

        if not error_message.strip():
            raise ValueError("error_message must not be empty.")
        failed_at = now or utc_now()
        self._guarded_update(
            job_id=job_id,
            expected=JobStatus.RUNNING,
            values={
                "status": JobStatus.FAILED.value,
                "failed_at": to_db_datetime(failed_at),
                "error_message": error_message,
            },
            extra_where=(),
            now=failed_at,
        )
        return self.require_job(job_id=job_id)

    def _guarded_update(  # noqa: PLR0913
        self,
        *,
        job_id: str,
        expected: JobStatus,
        values: dict[str, Any],
        extra_where: tuple[Any, ...],
        now: datetime | None = None,
    ) -> None:
        updated_at = now or utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(JobRecord)
                .where(
                    col(JobRecord.job_id) == job_id,
                    col(JobRecord.user_id) == self.user_id,
                    col(JobRecord.status) == expected.value,
                    *extra_where,
                )
                .values(**values, updated_at=to_db_datetime(updated_at)),
            )
            if result.rowcount == 1:
                session.commit()
                return
            session.rollback()
            row = self._select_job(session=session, job_id=job_id)
            if row is None:
                raise JobNotFound(job_id)
            raise JobStateConflict(
                f"Job update rejected: job_id={job_id} status={row.status} "
                f"expected={expected.value} fields={sorted(values)}",
            )

    def _select_job(self, *, session: Session, job_id: str) -> JobRecord | None:
        return session.exec(
            select(JobRecord).where(
                JobRecord.job_id == job_id,
                JobRecord.user_id == self.user_id,
            ),
        ).one_or_none()


def _load_json(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    parsed = json.loads(raw)
    if not isinstance(parsed, type(default)):
        return default
    return parsed


def _optional_aware(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _to_job_view(row: JobRecord) -> JobView:
    pull_request = (
        PullRequestRef(number=row.pr_number, url=row.pr_url or "")
        if row.pr_number is not None
        else None
    )
    summary = _load_json(row.execution_summary_json, {}) if row.execution_summary_json else None
    return JobView(
        job_id=row.job_id,
        user_id=row.user_id,
        goal=row.goal,
        acceptance_criteria=[str(item) for item in _load_json(row.acceptance_criteria_json, [])],
        tech_stack=_load_json(row.tech_stack_json, {}),
        time_budget_hours=row.time_budget_hours,
        autopilot_policy=AutopilotPolicy(row.autopilot_policy),
        repository=row.repository,
        default_branch=row.default_branch,
        status=JobStatus(row.status),
        branch_name=row.branch_name,
        pull_request=pull_request,
        started_at=_optional_aware(row.started_at),
        completed_at=_optional_aware(row.completed_at),
        failed_at=_optional_aware(row.failed_at),
        error_message=row.error_message,
        execution_summary=summary,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
