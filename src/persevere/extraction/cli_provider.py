"""Subprocess-based completion provider for CLI agents (claude, codex, gemini)."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
from pathlib import Path

from persevere.errors import ProviderError
from persevere.extraction.base import CompletionRequest
from persevere.extraction.failure_classifier import FailureClass, classify_provider_failure

logger = logging.getLogger(__name__)

STDERR_PREVIEW_CHARS = 500


class CliAgentProvider:
    """Run one CLI agent invocation per completion.

    The command template may reference `{model}`, `{prompt}` and `{prompt_file}`;
    values are shell-quoted before the template is split into argv.
    """

    def __init__(
        self,
        *,
        agent: str,
        model: str,
        command_template: str,
        timeout_seconds: int = 600,
    ) -> None:
        self.agent = agent
        self.model = model
        self.command_template = command_template
        self.timeout_seconds = timeout_seconds

    @property
    def name(self) -> str:
        return f"{self.agent}:{self.model}"

    def complete(self, request: CompletionRequest) -> str:
        full_prompt = f"{request.system}\n\n{request.prompt}"
        with tempfile.TemporaryDirectory(prefix="persevere-llm-") as workdir:
            prompt_file = Path(workdir) / "prompt.txt"
            prompt_file.write_text(full_prompt, "utf-8")
            argv = build_run_args(
                command_template=self.command_template,
                model=self.model,
                prompt=full_prompt,
                prompt_file=prompt_file,
            )
            env = os.environ.copy()
            env["PERSEVERE_LLM_AGENT"] = self.agent
            env["PERSEVERE_LLM_MODEL"] = self.model
            env["PERSEVERE_LLM_TEMPERATURE"] = str(request.temperature)
            env["PERSEVERE_LLM_MAX_TOKENS"] = str(request.max_tokens)
            try:
                completed = subprocess.run(  # noqa: S603
                    argv,
                    env=env,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout_seconds,
                    check=False,
                )
            except FileNotFoundError as error:
                raise ProviderError(
                    f"CLI agent command not found: {argv[0]}",
                    provider=self.name,
                    failure_class=FailureClass.BACKEND_NON_RETRYABLE.value,
                ) from error
            except subprocess.TimeoutExpired as error:
                raise ProviderError(
                    f"CLI agent timed out after {self.timeout_seconds}s",
                    provider=self.name,
                    failure_class=FailureClass.TIMEOUT.value,
                    transient=True,
                ) from error
            except OSError as error:
                raise ProviderError(
                    f"CLI agent failed to start: {error}",
                    provider=self.name,
                    failure_class=FailureClass.BACKEND_TRANSIENT.value,
                    transient=True,
                ) from error

        if completed.returncode != 0:
            classified = classify_provider_failure(
                provider=self.agent,
                exit_code=completed.returncode,
                stdout=completed.stdout,
                stderr=completed.stderr,
            )
            logger.warning(
                "CLI agent %s exited with %d (%s)",
                self.name,
                completed.returncode,
                classified.reason_code,
            )
            raise ProviderError(
                f"CLI agent {self.name} exited with code {completed.returncode}: "
                f"{completed.stderr.strip()[:STDERR_PREVIEW_CHARS]}",
                provider=self.name,
                failure_class=classified.failure_class.value,
                transient=classified.transient,
            )
        if not completed.stdout.strip():
            raise ProviderError(
                f"CLI agent {self.name} returned an empty response",
                provider=self.name,
                failure_class=FailureClass.BACKEND_NON_RETRYABLE.value,
            )
        return completed.stdout


def build_run_args(
    *,
    command_template: str,
    model: str,
    prompt: str,
    prompt_file: Path,
) -> list[str]:
    """Render a command template into argv."""

    stripped = command_template.strip()
    if not stripped:
        raise ProviderError("CLI agent command template is empty.", provider="cli")
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise ProviderError(
            "CLI agent command template must include {prompt} or {prompt_file}.",
            provider="cli",
        )
    try:
        rendered = stripped.format(
            model=shlex.quote(model),
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
        )
    except (KeyError, IndexError) as error:
        raise ProviderError(
            f"Unsupported command template placeholder: {error}",
            provider="cli",
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise ProviderError("CLI agent command template rendered empty command.", provider="cli")
    return argv
