"""Provider interface for structured extraction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True)
class CompletionRequest:
    """One completion call: a system instruction plus the user prompt."""

    system: str
    prompt: str
    temperature: float = 0.3
    max_tokens: int = 2000


class CompletionProvider(Protocol):
    """Protocol implemented by LLM completion providers."""

    name: str

    def complete(self, request: CompletionRequest) -> str:
        """Return raw response text or raise `ProviderError`."""
