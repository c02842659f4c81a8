"""Target schemas for structured extraction."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from persevere.jobs.models import JobSpecUpdate, Milestone, Plan


class _StrictSchema(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore", frozen=True)


class MilestoneSchema(_StrictSchema):
    title: str = Field(min_length=1)
    description: str
    estimated_hours: float = Field(ge=0)
    tasks: list[str] = Field(default_factory=list)


class PlanSchema(_StrictSchema):
    """Implementation plan requested from the planner."""

    milestones: list[MilestoneSchema]

    def to_plan(self) -> Plan:
        return Plan(
            milestones=tuple(
                Milestone(
                    title=item.title.strip(),
                    description=item.description.strip(),
                    estimated_hours=item.estimated_hours,
                    tasks=tuple(task.strip() for task in item.tasks if task.strip()),
                )
                for item in self.milestones
            ),
        )


class SpecMilestoneSchema(_StrictSchema):
    title: str = Field(min_length=1)
    description: str
    estimated_hours: float = Field(gt=0)


class SpecSchema(_StrictSchema):
    """Project spec extracted from a planning meeting transcript."""

    goal: str = Field(min_length=1)
    acceptance_criteria: list[str]
    tech_stack: dict[str, Any]
    time_budget_hours: float = Field(gt=0)
    milestones: list[SpecMilestoneSchema]

    def to_job_spec(self) -> JobSpecUpdate:
        return JobSpecUpdate(
            goal=self.goal,
            acceptance_criteria=list(self.acceptance_criteria),
            tech_stack=dict(self.tech_stack),
            time_budget_hours=self.time_budget_hours,
        )
