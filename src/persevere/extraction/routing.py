"""Resolve the primary/fallback CLI agent pair from settings."""

from __future__ import annotations

from dataclasses import dataclass

from persevere.config import SUPPORTED_AGENTS, LlmSettings
from persevere.extraction.adapter import StructuredExtractor
from persevere.extraction.cli_provider import CliAgentProvider


@dataclass(frozen=True, slots=True)
class ProviderRoute:
    """Resolved agent, model and command template for one provider."""

    agent: str
    model: str
    command_template: str


def resolve_provider_routes(settings: LlmSettings) -> tuple[ProviderRoute, ProviderRoute | None]:
    """Return the primary route and the fallback route, if one is configured and distinct."""

    primary = _resolve_route(settings, _normalize_agent(settings.primary_agent))
    if settings.fallback_agent is None:
        return primary, None
    fallback = _resolve_route(settings, _normalize_agent(settings.fallback_agent))
    if fallback.agent == primary.agent and fallback.model == primary.model:
        return primary, None
    return primary, fallback


def build_extractor(settings: LlmSettings) -> StructuredExtractor:
    """Construct the extraction adapter once for the process."""

    primary, fallback = resolve_provider_routes(settings)
    return StructuredExtractor(
        primary=_provider(primary, timeout_seconds=settings.timeout_seconds),
        fallback=(
            _provider(fallback, timeout_seconds=settings.timeout_seconds)
            if fallback is not None
            else None
        ),
    )


def _provider(route: ProviderRoute, *, timeout_seconds: int) -> CliAgentProvider:
    return CliAgentProvider(
        agent=route.agent,
        model=route.model,
        command_template=route.command_template,
        timeout_seconds=timeout_seconds,
    )


def _resolve_route(settings: LlmSettings, agent: str) -> ProviderRoute:
    _validate_supported_agent(agent)
    model = settings.models.get(agent, "").strip()
    if not model:
        raise ValueError(f"Empty model id for agent={agent!r}")
    command_template = settings.command_templates.get(agent, "").strip()
    if not command_template:
        raise ValueError(f"Empty command template for agent={agent!r}")
    return ProviderRoute(agent=agent, model=model, command_template=command_template)


def _normalize_agent(value: str) -> str:
    return value.strip().lower()


def _validate_supported_agent(agent: str) -> None:
    if agent in SUPPORTED_AGENTS:
        return
    raise ValueError(f"Unsupported LLM agent: {agent!r}. Use codex, claude, or gemini.")
