"""Transcript intake: turn a planning meeting transcript into a job spec."""

from __future__ import annotations

import logging

from persevere.errors import JobNotQueued
from persevere.extraction.adapter import StructuredExtractor
from persevere.extraction.schemas import SpecSchema
from persevere.jobs.models import JobStatus, JobView, StepType
from persevere.jobs.repository import JobRepository

logger = logging.getLogger(__name__)

MAX_TRANSCRIPT_CHARS = 10_000


def build_spec_prompt(transcript: str) -> str:
    return (
        "Extract the following information from this meeting transcript:\n"
        "1. Project goal (one clear sentence)\n"
        "2. Acceptance criteria (list of specific, testable requirements)\n"
        "3. Tech stack preferences (languages, frameworks, tools)\n"
        "4. Time budget (in hours)\n"
        "5. Key milestones (ordered list with estimated hours)\n\n"
        f"Transcript:\n{transcript[:MAX_TRANSCRIPT_CHARS]}\n\n"
        "Respond with JSON only."
    )


class TranscriptIntake:
    """Applies an extracted spec to a queued job and records `SPEC_CREATED`."""

    def __init__(
        self,
        *,
        repository: JobRepository,
        extractor: StructuredExtractor,
        max_time_budget_hours: float | None = None,
    ) -> None:
        self.repository = repository
        self.extractor = extractor
        self.max_time_budget_hours = max_time_budget_hours

    def apply_transcript(self, *, job_id: str, transcript: str) -> JobView:
        if not transcript.strip():
            raise ValueError("Transcript must not be empty.")
        job = self.repository.require_job(job_id=job_id)
        if job.status is not JobStatus.QUEUED:
            raise JobNotQueued(job_id, job.status.value)

        spec = self.extractor.extract(build_spec_prompt(transcript), SpecSchema)
        update = spec.to_job_spec()
        if self.max_time_budget_hours is not None and (
            update.time_budget_hours > self.max_time_budget_hours
        ):
            logger.warning(
                "Extracted time budget %.1fh for job %s capped at %.1fh",
                update.time_budget_hours,
                job_id,
                self.max_time_budget_hours,
            )
            update.time_budget_hours = self.max_time_budget_hours

        updated = self.repository.apply_spec(job_id=job_id, spec=update)
        self.repository.ledger.append(
            job_id=job_id,
            step_type=StepType.SPEC_CREATED,
            payload={
                "spec": spec.model_dump(mode="json"),
                "time_budget_hours": update.time_budget_hours,
                "transcript_length": len(transcript),
                "truncated": len(transcript) > MAX_TRANSCRIPT_CHARS,
            },
        )
        logger.info("Job %s spec extracted from a %d-char transcript", job_id, len(transcript))
        return updated
