"""Runtime configuration for job orchestration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

SUPPORTED_AGENTS = ("claude", "codex", "gemini")


@dataclass(slots=True)
class LlmSettings:
    """CLI agent routing for structured extraction."""

    primary_agent: str = "codex"
    fallback_agent: str | None = None
    timeout_seconds: int = 600
    command_templates: dict[str, str] = field(
        default_factory=lambda: {
            "claude": "claude -p --model {model} -- {prompt}",
            "codex": "codex exec {model} {prompt}",
            "gemini": "gemini --model {model} --prompt {prompt}",
        },
    )
    models: dict[str, str] = field(
        default_factory=lambda: {
            "claude": "sonnet",
            "codex": "gpt-5-codex",
            "gemini": "gemini-2.5-pro",
        },
    )


@dataclass(slots=True)
class GitHubSettings:
    """GitHub REST API access."""

    api_url: str = "https://api.github.com"
    token: str = ""
    timeout_seconds: float = 30.0
    max_retries: int = 3


@dataclass(slots=True)
class RunnerSettings:
    """Agent loop defaults."""

    branch_prefix: str = "persevere"
    default_time_budget_hours: float = 5.0
    max_time_budget_hours: float = 100.0
    analysis_file_sample: int = 50
    worker_poll_interval_seconds: float = 2.0


@dataclass(slots=True)
class UserContextSettings:
    """User context settings."""

    user_id: str = "default_user"
    user_name: str = "Default User"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".persevere.db")
    llm: LlmSettings = field(default_factory=LlmSettings)
    github: GitHubSettings = field(default_factory=GitHubSettings)
    runner: RunnerSettings = field(default_factory=RunnerSettings)
    user_context: UserContextSettings = field(default_factory=UserContextSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        llm_defaults = LlmSettings()
        return cls(
            db_path=db_path or Path(os.getenv("PERSEVERE_DB_PATH", ".persevere.db")),
            llm=LlmSettings(
                primary_agent=os.getenv("PERSEVERE_LLM_PRIMARY_AGENT", "codex").strip().lower(),
                fallback_agent=_optional_env("PERSEVERE_LLM_FALLBACK_AGENT"),
                timeout_seconds=int(os.getenv("PERSEVERE_LLM_TIMEOUT_SECONDS", "600")),
                command_templates={
                    agent: os.getenv(
                        f"PERSEVERE_LLM_{agent.upper()}_COMMAND_TEMPLATE",
                        template,
                    )
                    for agent, template in llm_defaults.command_templates.items()
                },
                models={
                    agent: os.getenv(f"PERSEVERE_LLM_{agent.upper()}_MODEL", model)
                    for agent, model in llm_defaults.models.items()
                },
            ),
            github=GitHubSettings(
                api_url=os.getenv("PERSEVERE_GITHUB_API_URL", "https://api.github.com"),
                token=os.getenv("PERSEVERE_GITHUB_TOKEN", os.getenv("GITHUB_TOKEN", "")),
                timeout_seconds=float(os.getenv("PERSEVERE_GITHUB_TIMEOUT_SECONDS", "30.0")),
                max_retries=int(os.getenv("PERSEVERE_GITHUB_MAX_RETRIES", "3")),
            ),
            runner=RunnerSettings(
                branch_prefix=os.getenv("PERSEVERE_BRANCH_PREFIX", "persevere"),
                default_time_budget_hours=float(
                    os.getenv("PERSEVERE_DEFAULT_TIME_BUDGET_HOURS", "5.0"),
                ),
                max_time_budget_hours=float(
                    os.getenv("PERSEVERE_MAX_TIME_BUDGET_HOURS", "100.0"),
                ),
                analysis_file_sample=int(os.getenv("PERSEVERE_ANALYSIS_FILE_SAMPLE", "50")),
                worker_poll_interval_seconds=float(
                    os.getenv("PERSEVERE_WORKER_POLL_INTERVAL_SECONDS", "2.0"),
                ),
            ),
            user_context=UserContextSettings(
                user_id=os.getenv("PERSEVERE_USER_ID", "default_user"),
                user_name=os.getenv("PERSEVERE_USER_NAME", "Default User"),
            ),
        )

    def validate_for_run(self, *, require_github: bool = True) -> None:
        """Raise configuration error if the agent loop cannot be wired."""

        primary = self.llm.primary_agent
        if primary not in SUPPORTED_AGENTS:
            raise ValueError(
                f"Unsupported PERSEVERE_LLM_PRIMARY_AGENT: {primary!r}. "
                f"Use one of {SUPPORTED_AGENTS}.",
            )
        fallback = self.llm.fallback_agent
        if fallback is not None and fallback not in SUPPORTED_AGENTS:
            raise ValueError(
                f"Unsupported PERSEVERE_LLM_FALLBACK_AGENT: {fallback!r}. "
                f"Use one of {SUPPORTED_AGENTS}.",
            )
        if self.llm.timeout_seconds <= 0:
            raise ValueError("PERSEVERE_LLM_TIMEOUT_SECONDS must be > 0.")
        for agent in (primary, fallback):
            if agent is None:
                continue
            template = self.llm.command_templates.get(agent, "")
            if "{prompt}" not in template and "{prompt_file}" not in template:
                raise ValueError(
                    f"PERSEVERE_LLM_{agent.upper()}_COMMAND_TEMPLATE must include "
                    "{prompt} or {prompt_file}.",
                )
            if not self.llm.models.get(agent, "").strip():
                raise ValueError(f"PERSEVERE_LLM_{agent.upper()}_MODEL must not be empty.")

        if not self.runner.branch_prefix.strip().strip("/"):
            raise ValueError("PERSEVERE_BRANCH_PREFIX must not be empty.")
        if self.runner.default_time_budget_hours < 0:
            raise ValueError("PERSEVERE_DEFAULT_TIME_BUDGET_HOURS must be >= 0.")
        if self.runner.analysis_file_sample <= 0:
            raise ValueError("PERSEVERE_ANALYSIS_FILE_SAMPLE must be a positive integer.")

        if not require_github:
            return
        parsed = urlparse(self.github.api_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(
                f"Invalid PERSEVERE_GITHUB_API_URL: {self.github.api_url!r}. "
                "Expected an absolute URL with http:// or https:// scheme.",
            )
        if not self.github.token.strip():
            raise ValueError(
                "A GitHub token is required. Set PERSEVERE_GITHUB_TOKEN or GITHUB_TOKEN.",
            )


def _optional_env(name: str) -> str | None:
    value = os.getenv(name, "").strip().lower()
    return value or None
