"""Shared test fixtures."""

from __future__ import annotations

import json
import sys
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from itertools import count
from pathlib import Path

import httpx
import pytest

from persevere.errors import ProviderError
from persevere.extraction.adapter import StructuredExtractor
from persevere.extraction.base import CompletionRequest
from persevere.jobs.models import JobCreate
from persevere.jobs.repository import JobRepository
from persevere.vcs.memory import InMemoryVersionControl

DEMO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m persevere.extraction.demo_agent --prompt-file {{prompt_file}}"
)
REPOSITORY = "acme/widgets"


class ScriptedProvider:
    """Completion provider returning canned responses in order."""

    def __init__(self, name: str, responses: list[str | Exception]) -> None:
        self.name = name
        self.responses = list(responses)
        self.requests: list[CompletionRequest] = []

    def complete(self, request: CompletionRequest) -> str:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class ManualClock:
    """Deterministic clock; every call returns the current value."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 18, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)

class FakeGitHub:
    """Minimal Git Data API: refs, blobs, trees, commits and pulls."""

    def __init__(self, repository: str = REPOSITORY) -> None:
        self.prefix = f"/repos/{repository}"
        self.html_base = f"https://github.com/{repository}"
        self.refs = {"main": "c0"}
        self.commits = {"c0": {"tree": "t0", "parents": []}}
        self.trees = {"t0": {"README.md": "b0", "pyproject.toml": "b00"}}
        self.blobs = {"b0": "hello", "b00": "[project]\n"}
        self.pulls: dict[int, dict[str, object]] = {}
        self.requests: list[tuple[str, str]] = []
        self.fail_ref_update = False
        self.fail_pull_request = False
        self._ids = count(1)

    def handler(self, request: httpx.Request) -> httpx.Response:  # noqa: C901, PLR0911, PLR0912
        method, path, prefix = request.method, request.url.path, self.prefix
        self.requests.append((method, path))
        body = json.loads(request.content) if request.content else {}
        assert request.headers["Authorization"] == "Bearer secret-token"

        if method == "GET" and path.startswith(f"{prefix}/git/ref/heads/"):
            branch = path.removeprefix(f"{prefix}/git/ref/heads/")
            if branch not in self.refs:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json={"object": {"sha": self.refs[branch]}})
        if method == "POST" and path == f"{prefix}/git/refs":
            branch = body["ref"].removeprefix("refs/heads/")
            if branch in self.refs:
                return httpx.Response(422, json={"message": "Reference already exists"})
            self.refs[branch] = body["sha"]
            return httpx.Response(201, json={"ref": body["ref"], "object": {"sha": body["sha"]}})
        if method == "GET" and path.startswith(f"{prefix}/git/commits/"):
            sha = path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={"sha": sha, "tree": {"sha": self.commits[sha]["tree"]}})
        if method == "POST" and path == f"{prefix}/git/blobs":
            sha = f"b{next(self._ids)}"
            self.blobs[sha] = body["content"]
            return httpx.Response(201, json={"sha": sha})
        if method == "POST" and path == f"{prefix}/git/trees":
            sha = f"t{next(self._ids)}"
            entries = dict(self.trees[body["base_tree"]])
            entries.update({item["path"]: item["sha"] for item in body["tree"]})
            self.trees[sha] = entries
            return httpx.Response(201, json={"sha": sha})
        if method == "POST" and path == f"{prefix}/git/commits":
            sha = f"c{next(self._ids)}"
            self.commits[sha] = {"tree": body["tree"], "parents": body["parents"]}
            return httpx.Response(201, json={"sha": sha})
        if method == "PATCH" and path.startswith(f"{prefix}/git/refs/heads/"):
            if self.fail_ref_update:
                return httpx.Response(500, json={"message": "Server Error"})
            branch = path.removeprefix(f"{prefix}/git/refs/heads/")
            self.refs[branch] = body["sha"]
            return httpx.Response(200, json={"object": {"sha": body["sha"]}})
        if method == "POST" and path == f"{prefix}/pulls":
            if self.fail_pull_request:
                return httpx.Response(422, json={"message": "Validation Failed"})
            number = len(self.pulls) + 1
            self.pulls[number] = body
            return httpx.Response(
                201,
                json={"number": number, "html_url": f"{self.html_base}/pull/{number}"},
            )
        if method == "PATCH" and path.startswith(f"{prefix}/pulls/"):
            number = int(path.rsplit("/", 1)[-1])
            self.pulls[number].update(body)
            return httpx.Response(
                200,
                json={"number": number, "html_url": f"{self.html_base}/pull/{number}"},
            )
        if method == "GET" and path == prefix:
            return httpx.Response(200, json={"language": "Python", "default_branch": "main"})
        if method == "GET" and path.startswith(f"{prefix}/git/trees/"):
            assert request.url.params["recursive"] == "1"
            # tree_sha is a single path segment: a sha or a slash-free branch name
            ref = path.removeprefix(f"{prefix}/git/trees/")
            sha = self.refs.get(ref, ref)
            if "/" in ref or sha not in self.commits:
                return httpx.Response(404, json={"message": "Not Found"})
            tree = self.trees[self.commits[sha]["tree"]]
            items = [{"path": "docs", "type": "tree"}]
            items.extend({"path": name, "type": "blob"} for name in sorted(tree))
            return httpx.Response(200, json={"tree": items})
        return httpx.Response(404, json={"message": f"unhandled {method} {path}"})


def plan_response(milestones: int, *, prose: str = "Sure, here is the plan:") -> str:
    payload = {
        "milestones": [
            {
                "title": f"Milestone {index}",
                "description": f"Deliver increment {index}.",
                "estimated_hours": 1.5,
                "tasks": [f"Task {index}.a", f"Task {index}.b"],
            }
            for index in range(1, milestones + 1)
        ],
    }
    return f"{prose}\n{json.dumps(payload)}\nLet me know if you need changes."


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[JobRepository]:
    repo = JobRepository(tmp_path / "jobs.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def vcs() -> InMemoryVersionControl:
    store = InMemoryVersionControl()
    store.seed_repository(
        REPOSITORY,
        files={"README.md": "# widgets\n", "pyproject.toml": "[project]\nname='widgets'\n"},
        language="Python",
    )
    return store


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def make_job(repository: JobRepository) -> Callable[..., str]:
    def _make_job(**overrides: object) -> str:
        payload = JobCreate(
            goal="Add a health endpoint",
            repository=REPOSITORY,
            acceptance_criteria=["GET /health returns 200"],
            tech_stack={"language": "python"},
            time_budget_hours=2.0,
        )
        for key, value in overrides.items():
            setattr(payload, key, value)
        return repository.create_job(payload).job_id

    return _make_job


@pytest.fixture()
def plan_extractor() -> Callable[[int], StructuredExtractor]:
    def _build(milestones: int = 3) -> StructuredExtractor:
        return StructuredExtractor(
            primary=ScriptedProvider("primary", [plan_response(milestones)]),
        )

    return _build


@pytest.fixture()
def failing_provider() -> Callable[[str], ScriptedProvider]:
    def _build(name: str = "primary") -> ScriptedProvider:
        return ScriptedProvider(
            name,
            [ProviderError("quota exceeded", provider=name, failure_class="billing_or_quota")],
        )

    return _build


@pytest.fixture()
def github() -> FakeGitHub:
    return FakeGitHub()
