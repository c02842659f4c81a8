"""Plan generation through structured extraction."""

from __future__ import annotations

import json

from persevere.extraction.adapter import StructuredExtractor
from persevere.extraction.schemas import PlanSchema
from persevere.jobs.models import JobView, Plan
from persevere.orchestrator.analysis import RepositoryAnalysis


def build_plan_prompt(job: JobView, analysis: RepositoryAnalysis) -> str:
    criteria = "\n".join(f"- {item}" for item in job.acceptance_criteria) or "- (none given)"
    return (
        "Generate an implementation plan for this project:\n\n"
        f"Goal: {job.goal}\n\n"
        f"Acceptance Criteria:\n{criteria}\n\n"
        f"Tech Stack: {json.dumps(job.tech_stack, ensure_ascii=False, sort_keys=True)}\n\n"
        f"Time Budget: {job.time_budget_hours:g} hours\n\n"
        f"Autopilot Policy: {job.autopilot_policy.value}\n\n"
        "Repository Analysis:\n"
        f"{json.dumps(analysis.to_payload(), ensure_ascii=False, indent=2, sort_keys=True)}\n\n"
        "Break the work into ordered milestones. Each milestone has a title, a "
        "description, estimated_hours and a list of concrete tasks. The total estimate "
        "should fit the time budget.\n\n"
        "Respond with JSON only."
    )


def generate_plan(
    extractor: StructuredExtractor,
    *,
    job: JobView,
    analysis: RepositoryAnalysis,
) -> Plan:
    """Ask the model for a plan; raises `ExtractionFailed` subclasses on failure."""

    return extractor.extract(build_plan_prompt(job, analysis), PlanSchema).to_plan()
