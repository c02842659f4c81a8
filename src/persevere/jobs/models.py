"""Domain models for jobs, ledger steps and plans."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Job lifecycle states. Only forward transitions exist."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AutopilotPolicy(str, Enum):
    STANDARD = "standard"
    RESTRICTED = "restricted"


class StepType(str, Enum):
    """Ledger entry tags."""

    JOB_CREATED = "JOB_CREATED"
    SPEC_CREATED = "SPEC_CREATED"
    JOB_STARTED = "JOB_STARTED"
    BRANCH_CREATED = "BRANCH_CREATED"
    REPOSITORY_ANALYZED = "REPOSITORY_ANALYZED"
    ANALYSIS_FAILED = "ANALYSIS_FAILED"
    PLAN_CREATED = "PLAN_CREATED"
    MILESTONE_IMPLEMENTED = "MILESTONE_IMPLEMENTED"
    MILESTONE_FAILED = "MILESTONE_FAILED"
    DEADLINE_REACHED = "DEADLINE_REACHED"
    PR_CREATED = "PR_CREATED"
    JOB_COMPLETED = "JOB_COMPLETED"
    JOB_FAILED = "JOB_FAILED"


@dataclass(slots=True)
class JobCreate:
    """Input payload for creating a queued job."""

    goal: str
    repository: str
    acceptance_criteria: list[str] = field(default_factory=list)
    tech_stack: dict[str, Any] = field(default_factory=dict)
    time_budget_hours: float = 5.0
    autopilot_policy: AutopilotPolicy = AutopilotPolicy.STANDARD
    default_branch: str = "main"
    job_id: str | None = None


@dataclass(frozen=True, slots=True)
class PullRequestRef:
    """Stable identifier of an opened pull request."""

    number: int
    url: str


@dataclass(slots=True)
class JobView:
    """Readable job record for CLI and agent loop."""

    job_id: str
    user_id: str
    goal: str
    acceptance_criteria: list[str]
    tech_stack: dict[str, Any]
    time_budget_hours: float
    autopilot_policy: AutopilotPolicy
    repository: str
    default_branch: str
    status: JobStatus
    branch_name: str | None
    pull_request: PullRequestRef | None
    started_at: datetime | None
    completed_at: datetime | None
    failed_at: datetime | None
    error_message: str | None
    execution_summary: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime

    @property
    def time_budget(self) -> timedelta:
        return timedelta(hours=self.time_budget_hours)


@dataclass(slots=True)
class StepView:
    """One immutable ledger entry."""

    job_id: str
    step_type: StepType
    step_order: int
    payload: dict[str, Any]
    created_at: datetime


@dataclass(slots=True)
class JobDetails:
    """Job record with its full ledger."""

    job: JobView
    steps: list[StepView]


@dataclass(frozen=True, slots=True)
class Milestone:
    """A planned unit of work."""

    title: str
    description: str
    estimated_hours: float
    tasks: tuple[str, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "estimated_hours": self.estimated_hours,
            "tasks": list(self.tasks),
        }


@dataclass(frozen=True, slots=True)
class Plan:
    """Ordered milestones, produced once per run."""

    milestones: tuple[Milestone, ...]

    def to_payload(self) -> dict[str, Any]:
        return {"milestones": [milestone.to_payload() for milestone in self.milestones]}


@dataclass(slots=True)
class JobSpecUpdate:
    """Goal and constraints extracted from a planning transcript."""

    goal: str
    acceptance_criteria: list[str]
    tech_stack: dict[str, Any]
    time_budget_hours: float
