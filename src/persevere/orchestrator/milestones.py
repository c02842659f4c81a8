"""Milestone implementers: turn a milestone into a set of file changes."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from persevere.jobs.models import JobView, Milestone
from persevere.vcs.base import FileChange

_SLUG_RE = re.compile(r"[^a-z0-9]+")
MAX_SLUG_LENGTH = 60


class MilestoneStatus(str, Enum):
    IMPLEMENTED = "implemented"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class MilestoneOutcome:
    """Typed result of one milestone; failures are values, not exceptions."""

    index: int
    title: str
    status: MilestoneStatus
    commit_sha: str | None = None
    paths: list[str] = field(default_factory=list)
    error: str | None = None
    error_type: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "index": self.index,
            "title": self.title,
            "status": self.status.value,
        }
        if self.commit_sha is not None:
            payload["commit_sha"] = self.commit_sha
            payload["paths"] = list(self.paths)
        if self.error is not None:
            payload["error"] = self.error
            payload["error_type"] = self.error_type
        return payload


class MilestoneImplementer(Protocol):
    """Produces the files to commit for one milestone."""

    def build_changes(self, job: JobView, milestone: Milestone, index: int) -> list[FileChange]:
        """Return the files for `milestone`; raising marks the milestone as failed."""


class MarkdownMilestoneImplementer:
    """Writes one markdown document per milestone under `persevere/`."""

    def __init__(self, *, directory: str = "persevere") -> None:
        self.directory = directory.strip("/")

    def build_changes(self, job: JobView, milestone: Milestone, index: int) -> list[FileChange]:
        lines = [f"# {milestone.title}", "", milestone.description, ""]
        if milestone.tasks:
            lines.extend(["## Tasks", ""])
            lines.extend(f"- [ ] {task}" for task in milestone.tasks)
            lines.append("")
        lines.append(f"_Milestone {index + 1} of job {job.job_id}._")
        path = f"{self.directory}/{index + 1:02d}-{slugify(milestone.title)}.md"
        return [FileChange(path=path, content="\n".join(lines) + "\n")]


def slugify(title: str) -> str:
    slug = _SLUG_RE.sub("-", title.lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-") or "milestone"
