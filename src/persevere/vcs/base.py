"""Version control adapter interface."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from persevere.jobs.models import PullRequestRef

DEFAULT_FILE_MODE = "100644"


@dataclass(frozen=True, slots=True)
class FileChange:
    """One file to write in a commit."""

    path: str
    content: str
    mode: str = DEFAULT_FILE_MODE


@dataclass(slots=True)
class RepositorySnapshot:
    """Read-only view of a repository at a ref, used for analysis."""

    language: str | None
    default_branch: str | None
    files: list[str] = field(default_factory=list)


class VersionControl(Protocol):
    """Protocol implemented by version control adapters.

    `repository` is always the `owner/name` slug.
    """

    def create_branch(self, *, repository: str, base: str, name: str) -> str:
        """Create `name` at the head of `base`; return the head sha."""

    def commit_files(
        self,
        *,
        repository: str,
        branch: str,
        message: str,
        files: Sequence[FileChange],
    ) -> str:
        """Commit `files` on top of `branch` and fast-forward it; return the commit sha."""

    def create_pull_request(  # noqa: PLR0913
        self,
        *,
        repository: str,
        head: str,
        base: str,
        title: str,
        body: str,
        draft: bool = False,
    ) -> PullRequestRef:
        """Open a pull request from `head` into `base`."""

    def update_pull_request(
        self,
        *,
        repository: str,
        number: int,
        title: str | None = None,
        body: str | None = None,
    ) -> PullRequestRef:
        """Update title and/or body of an existing pull request."""

    def describe_repository(self, *, repository: str, ref: str) -> RepositorySnapshot:
        """Return language and file listing at `ref` (a branch name or commit sha)."""
