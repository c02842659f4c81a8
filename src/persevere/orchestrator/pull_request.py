"""Pull request title and description rendering."""

from __future__ import annotations

from collections.abc import Sequence

from persevere.jobs.models import JobView, Plan
from persevere.orchestrator.milestones import MilestoneOutcome, MilestoneStatus

TITLE_PREFIX = "[Persevere]"
MAX_TITLE_GOAL_CHARS = 100

_STATUS_MARKS = {
    MilestoneStatus.IMPLEMENTED: "done",
    MilestoneStatus.FAILED: "failed",
    MilestoneStatus.SKIPPED: "skipped (time budget reached)",
}


def render_title(job: JobView) -> str:
    return f"{TITLE_PREFIX} {job.goal[:MAX_TITLE_GOAL_CHARS]}"


def render_body(
    job: JobView,
    *,
    plan: Plan,
    outcomes: Sequence[MilestoneOutcome],
    truncated: bool,
) -> str:
    """Markdown description: goal, criteria, plan and what happened to each milestone."""

    by_index = {outcome.index: outcome for outcome in outcomes}
    lines = ["## Goal", "", job.goal, "", "## Acceptance Criteria", ""]
    if job.acceptance_criteria:
        lines.extend(f"- {item}" for item in job.acceptance_criteria)
    else:
        lines.append("_None specified._")
    lines.extend(["", "## Implementation Plan", ""])
    if not plan.milestones:
        lines.extend(["_The plan contained no milestones._", ""])
    for index, milestone in enumerate(plan.milestones):
        outcome = by_index.get(index)
        status = _STATUS_MARKS[outcome.status] if outcome is not None else "not started"
        lines.extend([f"### {milestone.title} ({status})", "", milestone.description, ""])
        if outcome is not None and outcome.error:
            lines.extend([f"> Error: {outcome.error}", ""])
    if truncated:
        lines.extend(
            [
                f"The time budget of {job.time_budget_hours:g} hours was reached "
                "before all milestones were attempted.",
                "",
            ],
        )
    lines.extend(["---", "", "*This PR was automatically generated by Persevere.*"])
    return "\n".join(lines)
