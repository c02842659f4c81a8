from __future__ import annotations

import allure
import httpx
import pytest
from conftest import REPOSITORY, FakeGitHub

from persevere.errors import RefAlreadyExists, RefNotFound, VcsError
from persevere.vcs.base import FileChange
from persevere.vcs.github import GitHubVersionControl

pytestmark = [
    allure.epic("Version Control"),
    allure.feature("GitHub Adapter"),
]

REPO = REPOSITORY
PREFIX = f"/repos/{REPO}"


@pytest.fixture()
def adapter(github: FakeGitHub) -> GitHubVersionControl:
    return GitHubVersionControl(
        token="secret-token",
        api_url="https://api.github.test",
        transport=httpx.MockTransport(github.handler),
    )


def test_create_branch_from_base_head(github: FakeGitHub, adapter: GitHubVersionControl) -> None:
    sha = adapter.create_branch(repository=REPO, base="main", name="persevere/abc-1")

    assert sha == "c0"
    assert github.refs["persevere/abc-1"] == "c0"


def test_create_branch_missing_base_is_ref_not_found(adapter: GitHubVersionControl) -> None:
    with pytest.raises(RefNotFound, match="heads/develop"):
        adapter.create_branch(repository=REPO, base="develop", name="work")


def test_create_branch_existing_name_is_ref_already_exists(adapter: GitHubVersionControl) -> None:
    adapter.create_branch(repository=REPO, base="main", name="work")

    with pytest.raises(RefAlreadyExists):
        adapter.create_branch(repository=REPO, base="main", name="work")


def test_commit_files_creates_objects_then_fast_forwards(
    github: FakeGitHub,
    adapter: GitHubVersionControl,
) -> None:
    adapter.create_branch(repository=REPO, base="main", name="work")

    sha = adapter.commit_files(
        repository=REPO,
        branch="work",
        message="[Persevere] One",
        files=[FileChange(path="a.md", content="A"), FileChange(path="b.md", content="B")],
    )

    assert github.refs["work"] == sha
    assert github.commits[sha]["parents"] == ["c0"]
    tree = github.trees[github.commits[sha]["tree"]]
    assert set(tree) == {"README.md", "pyproject.toml", "a.md", "b.md"}
    mutating = [entry for entry in github.requests if entry[0] in {"POST", "PATCH"}]
    assert mutating[-1] == ("PATCH", f"{PREFIX}/git/refs/heads/work")


def test_commit_files_failure_before_ref_update_keeps_ref(
    github: FakeGitHub,
    adapter: GitHubVersionControl,
) -> None:
    adapter.create_branch(repository=REPO, base="main", name="work")
    github.fail_ref_update = True

    with pytest.raises(VcsError, match="HTTP 500"):
        adapter.commit_files(
            repository=REPO,
            branch="work",
            message="never lands",
            files=[FileChange(path="a.md", content="A")],
        )

    assert github.refs["work"] == "c0"


def test_pull_request_create_and_update(github: FakeGitHub, adapter: GitHubVersionControl) -> None:
    adapter.create_branch(repository=REPO, base="main", name="work")

    created = adapter.create_pull_request(
        repository=REPO,
        head="work",
        base="main",
        title="[Persevere] Goal",
        body="body",
        draft=True,
    )
    updated = adapter.update_pull_request(repository=REPO, number=created.number, title="New")

    assert created.number == 1
    assert created.url == f"https://github.com/{REPO}/pull/1"
    assert updated == created
    assert github.pulls[1]["draft"] is True
    assert github.pulls[1]["title"] == "New"


def test_describe_repository_returns_blob_paths_only(adapter: GitHubVersionControl) -> None:
    snapshot = adapter.describe_repository(repository=REPO, ref="main")

    assert snapshot.language == "Python"
    assert snapshot.files == ["README.md", "pyproject.toml"]


def test_describe_repository_at_branch_base_sha(
    github: FakeGitHub,
    adapter: GitHubVersionControl,
) -> None:
    base_sha = adapter.create_branch(repository=REPO, base="main", name="persevere/abc-1")

    snapshot = adapter.describe_repository(repository=REPO, ref=base_sha)

    assert snapshot.files == ["README.md", "pyproject.toml"]
    assert ("GET", f"{PREFIX}/git/trees/c0") in github.requests


def test_transport_errors_become_vcs_errors() -> None:
    def _refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    adapter = GitHubVersionControl(token="t", transport=httpx.MockTransport(_refuse))

    with pytest.raises(VcsError, match="request failed"):
        adapter.describe_repository(repository=REPO, ref="main")
