"""GitHub Git Data API adapter."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any
from urllib.parse import quote

import httpx

from persevere.errors import RefAlreadyExists, RefNotFound, VcsError
from persevere.jobs.models import PullRequestRef
from persevere.vcs.base import FileChange, RepositorySnapshot

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_USER_AGENT = "persevere/0.1"
GITHUB_API_VERSION = "2022-11-28"
_REF_EXISTS_MARKER = "reference already exists"


class GitHubVersionControl:
    """Branch, commit and pull request operations over the GitHub REST API.

    `commit_files` writes blobs, a tree and a commit object first; those are
    unreachable until the final fast-forward of the branch ref, so a failure at
    any earlier point leaves the branch exactly where it was.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        token: str,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
            "User-Agent": user_agent,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        self._client = httpx.Client(
            base_url=api_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    def create_branch(self, *, repository: str, base: str, name: str) -> str:
        head_sha = self._head_sha(repository=repository, branch=base)
        response = self._send(
            "POST",
            f"/repos/{repository}/git/refs",
            json={"ref": f"refs/heads/{name}", "sha": head_sha},
        )
        if response.status_code == 422 and _REF_EXISTS_MARKER in response.text.lower():
            raise RefAlreadyExists(f"heads/{name}")
        _raise_for_status(response, action=f"create branch {name}")
        logger.info("Created branch %s from %s at %s", name, base, head_sha[:12])
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
        parent_sha = self._head_sha(repository=repository, branch=branch)
        parent = self._json(
            "GET",
            f"/repos/{repository}/git/commits/{parent_sha}",
            action="read head commit",
        )
        base_tree_sha = parent["tree"]["sha"]

        tree_items: list[dict[str, str]] = []
        for change in files:
            blob = self._json(
                "POST",
                f"/repos/{repository}/git/blobs",
                json={"content": change.content, "encoding": "utf-8"},
                action=f"create blob for {change.path}",
            )
            tree_items.append(
                {"path": change.path, "mode": change.mode, "type": "blob", "sha": blob["sha"]},
            )
        tree = self._json(
            "POST",
            f"/repos/{repository}/git/trees",
            json={"base_tree": base_tree_sha, "tree": tree_items},
            action="create tree",
        )
        commit = self._json(
            "POST",
            f"/repos/{repository}/git/commits",
            json={"message": message, "tree": tree["sha"], "parents": [parent_sha]},
            action="create commit",
        )
        self._json(
            "PATCH",
            f"/repos/{repository}/git/refs/heads/{_quote_ref(branch)}",
            json={"sha": commit["sha"], "force": False},
            action=f"fast-forward {branch}",
        )
        return str(commit["sha"])

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
        data = self._json(
            "POST",
            f"/repos/{repository}/pulls",
            json={"title": title, "body": body, "head": head, "base": base, "draft": draft},
            action=f"open pull request {head} -> {base}",
        )
        return PullRequestRef(number=int(data["number"]), url=str(data["html_url"]))

    def update_pull_request(
        self,
        *,
        repository: str,
        number: int,
        title: str | None = None,
        body: str | None = None,
    ) -> PullRequestRef:
        changes: dict[str, str] = {}
        if title is not None:
            changes["title"] = title
        if body is not None:
            changes["body"] = body
        data = self._json(
            "PATCH",
            f"/repos/{repository}/pulls/{number}",
            json=changes,
            action=f"update pull request #{number}",
        )
        return PullRequestRef(number=int(data["number"]), url=str(data["html_url"]))

    def describe_repository(self, *, repository: str, ref: str) -> RepositorySnapshot:
        repo = self._json("GET", f"/repos/{repository}", action="read repository")
        tree = self._json(
            "GET",
            f"/repos/{repository}/git/trees/{_quote_ref(ref)}",
            params={"recursive": "1"},
            action=f"read tree at {ref}",
        )
        files = [
            str(item["path"])
            for item in tree.get("tree", [])
            if isinstance(item, dict) and item.get("type") == "blob"
        ]
        return RepositorySnapshot(
            language=repo.get("language"),
            default_branch=repo.get("default_branch"),
            files=files,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GitHubVersionControl:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _head_sha(self, *, repository: str, branch: str) -> str:
        response = self._send("GET", f"/repos/{repository}/git/ref/heads/{_quote_ref(branch)}")
        if response.status_code == 404:
            raise RefNotFound(f"heads/{branch}")
        _raise_for_status(response, action=f"read ref heads/{branch}")
        return str(response.json()["object"]["sha"])

    def _json(
        self,
        method: str,
        path: str,
        *,
        action: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        response = self._send(method, path, json=json, params=params)
        _raise_for_status(response, action=action)
        payload = response.json()
        if not isinstance(payload, dict):
            raise VcsError(f"GitHub returned a non-object payload for {action}")
        return payload

    def _send(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            return self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as error:
            raise VcsError(f"GitHub request timed out: {method} {path}") from error
        except httpx.HTTPError as error:
            raise VcsError(f"GitHub request failed: {method} {path}: {error}") from error


def _raise_for_status(response: httpx.Response, *, action: str) -> None:
    if response.is_success:
        return
    message = ""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = str(body.get("message", ""))
    raise VcsError(
        f"GitHub failed to {action}: HTTP {response.status_code} {message}".rstrip(),
    )


def _quote_ref(ref: str) -> str:
    return quote(ref, safe="/")
