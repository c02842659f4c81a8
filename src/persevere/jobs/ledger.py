"""Append-only, strictly ordered step ledger."""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from persevere.errors import JobNotFound, JobStateConflict
from persevere.jobs.models import StepType, StepView
from persevere.storage.common import to_utc_aware_datetime, utc_now
from persevere.storage.sqlmodel_models import JobRecord, JobStepRecord

logger = logging.getLogger(__name__)

MAX_ORDER_CONFLICTS = 10


class StepLedger:
    """Ledger writes assign `max(step_order) + 1` per job; rows are never updated."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def append(
        self,
        *,
        job_id: str,
        step_type: StepType,
        payload: dict[str, Any] | None = None,
    ) -> StepView:
        """Persist the next entry for a job and return it."""

        for _ in range(MAX_ORDER_CONFLICTS):
            with Session(self.engine) as session:
                if session.get(JobRecord, job_id) is None:
                    raise JobNotFound(job_id)
                current = session.exec(
                    select(func.max(JobStepRecord.step_order)).where(
                        JobStepRecord.job_id == job_id,
                    ),
                ).one()
                row = step_record(
                    job_id=job_id,
                    step_type=step_type,
                    step_order=(current or 0) + 1,
                    payload=payload,
                )
                session.add(row)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    logger.debug("Step order collision for job %s, retrying", job_id)
                    continue
                session.refresh(row)
                return _to_step_view(row)
        raise JobStateConflict(
            f"Could not assign ledger order after {MAX_ORDER_CONFLICTS} attempts "
            f"(job_id={job_id}, step_type={step_type.value}).",
        )

    def list_by_job(self, *, job_id: str) -> list[StepView]:
        """Return all entries for a job in ascending order."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(JobStepRecord)
                .where(JobStepRecord.job_id == job_id)
                .order_by(col(JobStepRecord.step_order).asc()),
            ).all()
        return [_to_step_view(row) for row in rows]


def step_record(
    *,
    job_id: str,
    step_type: StepType,
    step_order: int,
    payload: dict[str, Any] | None,
) -> JobStepRecord:
    """Build an unsaved ledger row; callers own the transaction."""

    return JobStepRecord(
        job_id=job_id,
        step_type=step_type.value,
        step_order=step_order,
        payload_json=json.dumps(payload or {}, ensure_ascii=False, sort_keys=True, default=str),
        created_at=utc_now(),
    )


def _to_step_view(row: JobStepRecord) -> StepView:
    payload: dict[str, Any] = {}
    parsed = json.loads(row.payload_json)
    if isinstance(parsed, dict):
        payload = parsed
    return StepView(
        job_id=row.job_id,
        step_type=StepType(row.step_type),
        step_order=row.step_order,
        payload=payload,
        created_at=to_utc_aware_datetime(row.created_at),
    )
