"""Structured extraction adapter with primary/fallback CLI agent providers."""

from persevere.extraction.adapter import StructuredExtractor
from persevere.extraction.base import CompletionProvider, CompletionRequest
from persevere.extraction.cli_provider import CliAgentProvider

__all__ = [
    "CliAgentProvider",
    "CompletionProvider",
    "CompletionRequest",
    "StructuredExtractor",
]
