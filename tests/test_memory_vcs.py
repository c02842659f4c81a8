from __future__ import annotations

import allure
import pytest
from conftest import REPOSITORY

from persevere.errors import RefAlreadyExists, RefNotFound, VcsError
from persevere.vcs.base import FileChange
from persevere.vcs.memory import InMemoryVersionControl

pytestmark = [
    allure.epic("Version Control"),
    allure.feature("Sandbox Store"),
]


class _FailingRefUpdate(InMemoryVersionControl):
    """Fails after blobs, tree and commit objects were written."""

    def _update_ref(self, repo, *, branch, expected, new):  # noqa: ANN001, ANN202
        raise VcsError("ref update refused")


def test_create_branch_points_at_base_head(vcs: InMemoryVersionControl) -> None:
    base_head = vcs.head(repository=REPOSITORY, branch="main")

    sha = vcs.create_branch(repository=REPOSITORY, base="main", name="persevere/abc-1")

    assert sha == base_head
    assert vcs.head(repository=REPOSITORY, branch="persevere/abc-1") == base_head


def test_create_branch_errors(vcs: InMemoryVersionControl) -> None:
    with pytest.raises(RefNotFound):
        vcs.create_branch(repository=REPOSITORY, base="develop", name="feature")
    vcs.create_branch(repository=REPOSITORY, base="main", name="feature")
    with pytest.raises(RefAlreadyExists):
        vcs.create_branch(repository=REPOSITORY, base="main", name="feature")


def test_commit_files_layers_on_head_tree_and_advances_ref(vcs: InMemoryVersionControl) -> None:
    vcs.create_branch(repository=REPOSITORY, base="main", name="work")
    parent = vcs.head(repository=REPOSITORY, branch="work")

    sha = vcs.commit_files(
        repository=REPOSITORY,
        branch="work",
        message="[Persevere] Step one",
        files=[FileChange(path="persevere/01-step-one.md", content="# Step one\n")],
    )

    assert vcs.head(repository=REPOSITORY, branch="work") == sha
    assert vcs.commit(sha).parents == (parent,)
    assert vcs.read_file(repository=REPOSITORY, ref="work", path="README.md") == "# widgets\n"
    assert vcs.read_file(repository=REPOSITORY, ref="work", path="persevere/01-step-one.md") == (
        "# Step one\n"
    )
    assert vcs.read_file(repository=REPOSITORY, ref="main", path="persevere/01-step-one.md") is None


def test_failed_ref_update_leaves_branch_unchanged() -> None:
    store = _FailingRefUpdate()
    store.seed_repository(REPOSITORY, files={"README.md": "hi\n"})
    store.create_branch(repository=REPOSITORY, base="main", name="work")
    before = store.head(repository=REPOSITORY, branch="work")

    with pytest.raises(VcsError, match="refused"):
        store.commit_files(
            repository=REPOSITORY,
            branch="work",
            message="never lands",
            files=[FileChange(path="a.txt", content="a"), FileChange(path="b.txt", content="b")],
        )

    assert store.head(repository=REPOSITORY, branch="work") == before
    assert store.read_file(repository=REPOSITORY, ref="work", path="a.txt") is None


def test_empty_commit_is_rejected(vcs: InMemoryVersionControl) -> None:
    with pytest.raises(VcsError, match="empty commit"):
        vcs.commit_files(repository=REPOSITORY, branch="main", message="nothing", files=[])


def test_pull_requests_are_numbered_and_updatable(vcs: InMemoryVersionControl) -> None:
    vcs.create_branch(repository=REPOSITORY, base="main", name="work")

    ref = vcs.create_pull_request(
        repository=REPOSITORY,
        head="work",
        base="main",
        title="T",
        body="B",
        draft=True,
    )
    updated = vcs.update_pull_request(repository=REPOSITORY, number=ref.number, body="B2")

    assert ref.number == 1
    assert updated == ref
    [record] = vcs.pull_requests(REPOSITORY)
    assert record.draft is True
    assert record.body == "B2"
    assert record.title == "T"


def test_describe_repository_lists_files(vcs: InMemoryVersionControl) -> None:
    snapshot = vcs.describe_repository(repository=REPOSITORY, ref="main")

    assert snapshot.language == "Python"
    assert snapshot.default_branch == "main"
    assert snapshot.files == ["README.md", "pyproject.toml"]


def test_describe_repository_accepts_commit_sha(vcs: InMemoryVersionControl) -> None:
    base_sha = vcs.create_branch(repository=REPOSITORY, base="main", name="persevere/abc-1")
    vcs.commit_files(
        repository=REPOSITORY,
        branch="persevere/abc-1",
        message="later",
        files=[FileChange(path="notes.md", content="n\n")],
    )

    snapshot = vcs.describe_repository(repository=REPOSITORY, ref=base_sha)

    assert snapshot.files == ["README.md", "pyproject.toml"]
    with pytest.raises(RefNotFound):
        vcs.describe_repository(repository=REPOSITORY, ref="deadbeef")
