"""In-process version control store for sandbox runs and tests."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from persevere.errors import RefAlreadyExists, RefNotFound, VcsError
from persevere.jobs.models import PullRequestRef
from persevere.vcs.base import FileChange, RepositorySnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommitObject:
    sha: str
    tree: str
    parents: tuple[str, ...]
    message: str


@dataclass(slots=True)
class PullRequestRecord:
    number: int
    head: str
    base: str
    title: str
    body: str
    draft: bool
    url: str


@dataclass(slots=True)
class _Repository:
    language: str | None
    default_branch: str
    refs: dict[str, str] = field(default_factory=dict)
    pulls: dict[int, PullRequestRecord] = field(default_factory=dict)


class InMemoryVersionControl:
    """Content-addressed blob/tree/commit store with GitHub-like semantics.

    Trees are flat `path -> (mode, blob_sha)` maps. Objects are written before
    the ref moves and are harmless if the ref update never happens.
    """

    def __init__(self, *, base_url: str = "https://example.invalid") -> None:
        self.base_url = base_url.rstrip("/")
        self._lock = threading.Lock()
        self._repositories: dict[str, _Repository] = {}
        self._blobs: dict[str, str] = {}
        self._trees: dict[str, dict[str, tuple[str, str]]] = {}
        self._commits: dict[str, CommitObject] = {}

    def seed_repository(
        self,
        repository: str,
        *,
        files: Mapping[str, str] | None = None,
        default_branch: str = "main",
        language: str | None = None,
    ) -> str:
        """Create `repository` with one initial commit on `default_branch`."""

        with self._lock:
            if repository in self._repositories:
                raise VcsError(f"Repository already exists: {repository}")
            entries = {
                path: ("100644", self._write_blob(content))
                for path, content in (files or {}).items()
            }
            tree_sha = self._write_tree(entries)
            commit_sha = self._write_commit(tree=tree_sha, parents=(), message="Initial commit")
            self._repositories[repository] = _Repository(
                language=language,
                default_branch=default_branch,
                refs={default_branch: commit_sha},
            )
        return commit_sha

    def head(self, *, repository: str, branch: str) -> str:
        with self._lock:
            return self._ref(self._repo(repository), branch)

    def read_file(self, *, repository: str, ref: str, path: str) -> str | None:
        with self._lock:
            commit = self._commits[self._ref(self._repo(repository), ref)]
            entry = self._trees[commit.tree].get(path)
            return self._blobs[entry[1]] if entry is not None else None

    def commit(self, sha: str) -> CommitObject:
        return self._commits[sha]

    def branches(self, repository: str) -> list[str]:
        with self._lock:
            return sorted(self._repo(repository).refs)

    def pull_requests(self, repository: str) -> list[PullRequestRecord]:
        with self._lock:
            return [self._repo(repository).pulls[n] for n in sorted(self._repo(repository).pulls)]

    def create_branch(self, *, repository: str, base: str, name: str) -> str:
        with self._lock:
            repo = self._repo(repository)
            head_sha = self._ref(repo, base)
            if name in repo.refs:
                raise RefAlreadyExists(f"heads/{name}")
            repo.refs[name] = head_sha
        logger.debug("Created branch %s from %s in %s", name, base, repository)
        return head_sha

    def commit_files(
        self,
        *,
        repository: str,
        branch: str,
        message: str,
        files: Sequence[FileChange],
    ) -> str:
        if not files:
            raise VcsError(f"Refusing to create an empty commit on {branch}")
        with self._lock:
            repo = self._repo(repository)
            parent_sha = self._ref(repo, branch)
            entries = dict(self._trees[self._commits[parent_sha].tree])
            for change in files:
                entries[change.path] = (change.mode, self._write_blob(change.content))
            tree_sha = self._write_tree(entries)
            commit_sha = self._write_commit(tree=tree_sha, parents=(parent_sha,), message=message)
            self._update_ref(repo, branch=branch, expected=parent_sha, new=commit_sha)
        return commit_sha

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
        with self._lock:
            repo = self._repo(repository)
            self._ref(repo, head)
            self._ref(repo, base)
            number = len(repo.pulls) + 1
            url = f"{self.base_url}/{repository}/pull/{number}"
            repo.pulls[number] = PullRequestRecord(
                number=number,
                head=head,
                base=base,
                title=title,
                body=body,
                draft=draft,
                url=url,
            )
        return PullRequestRef(number=number, url=url)

    def update_pull_request(
        self,
        *,
        repository: str,
        number: int,
        title: str | None = None,
        body: str | None = None,
    ) -> PullRequestRef:
        with self._lock:
            record = self._repo(repository).pulls.get(number)
            if record is None:
                raise VcsError(f"Pull request #{number} not found in {repository}")
            if title is not None:
                record.title = title
            if body is not None:
                record.body = body
            return PullRequestRef(number=record.number, url=record.url)

    def describe_repository(self, *, repository: str, ref: str) -> RepositorySnapshot:
        with self._lock:
            repo = self._repo(repository)
            commit = self._commits[self._resolve(repo, ref)]
            return RepositorySnapshot(
                language=repo.language,
                default_branch=repo.default_branch,
                files=sorted(self._trees[commit.tree]),
            )

    def _update_ref(self, repo: _Repository, *, branch: str, expected: str, new: str) -> None:
        if repo.refs.get(branch) != expected:
            raise VcsError(f"Ref heads/{branch} moved; fast-forward rejected")
        repo.refs[branch] = new

    def _repo(self, repository: str) -> _Repository:
        repo = self._repositories.get(repository)
        if repo is None:
            raise VcsError(f"Repository not found: {repository}")
        return repo

    def _ref(self, repo: _Repository, branch: str) -> str:
        sha = repo.refs.get(branch)
        if sha is None:
            raise RefNotFound(f"heads/{branch}")
        return sha

    def _resolve(self, repo: _Repository, ref: str) -> str:
        if ref in repo.refs or ref not in self._commits:
            return self._ref(repo, ref)
        return ref

    def _write_blob(self, content: str) -> str:
        sha = _object_sha("blob", content)
        self._blobs.setdefault(sha, content)
        return sha

    def _write_tree(self, entries: dict[str, tuple[str, str]]) -> str:
        sha = _object_sha("tree", json.dumps(entries, sort_keys=True))
        self._trees.setdefault(sha, dict(entries))
        return sha

    def _write_commit(self, *, tree: str, parents: tuple[str, ...], message: str) -> str:
        body = json.dumps({"tree": tree, "parents": list(parents), "message": message})
        sha = _object_sha("commit", body)
        self._commits.setdefault(
            sha,
            CommitObject(sha=sha, tree=tree, parents=parents, message=message),
        )
        return sha


def _object_sha(kind: str, body: str) -> str:
    data = body.encode("utf-8")
    return hashlib.sha1(f"{kind} {len(data)}\0".encode() + data, usedforsecurity=False).hexdigest()
