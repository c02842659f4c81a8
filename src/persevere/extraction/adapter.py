"""Structured extraction: prompt in, schema-validated object out."""

from __future__ import annotations

import logging
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from persevere.errors import InvalidStructuredOutput, PersevereError, ProviderError
from persevere.extraction.base import CompletionProvider, CompletionRequest
from persevere.extraction.json_extract import parse_json_object

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

EXTRACTION_SYSTEM_PROMPT = (
    "You are a helpful assistant that extracts structured data from conversations.\n"
    "Respond ONLY with valid JSON that matches the requested schema. "
    "Do not include any explanatory text, only a single JSON object."
)


class StructuredExtractor:
    """Primary/fallback provider pair behind one `extract` call.

    The fallback is tried at most once, and only when the primary provider call
    itself raised. Parse and validation failures surface immediately.
    """

    def __init__(
        self,
        *,
        primary: CompletionProvider,
        fallback: CompletionProvider | None = None,
        temperature: float = 0.3,
    ) -> None:
        if fallback is not None and fallback.name == primary.name:
            fallback = None
        self.primary = primary
        self.fallback = fallback
        self.temperature = temperature

    def extract(self, prompt: str, schema: type[SchemaT]) -> SchemaT:
        """Return an instance of `schema` parsed from the model response."""

        request = CompletionRequest(
            system=EXTRACTION_SYSTEM_PROMPT,
            prompt=f"{prompt}\n\nJSON schema:\n{schema.model_json_schema()}",
            temperature=self.temperature,
        )
        response = self._complete(request)
        payload = parse_json_object(response)
        try:
            return schema.model_validate(payload)
        except ValidationError as error:
            raise InvalidStructuredOutput(
                f"Model response does not match {schema.__name__}: "
                f"{error.error_count()} validation error(s); {_first_error(error)}",
            ) from error

    def _complete(self, request: CompletionRequest) -> str:
        try:
            return self.primary.complete(request)
        except Exception as error:
            if self.fallback is None:
                if isinstance(error, PersevereError):
                    raise
                raise ProviderError(
                    f"Provider {self.primary.name} failed: {error}",
                    provider=self.primary.name,
                ) from error
            logger.warning(
                "Provider %s failed, falling back to %s: %s",
                self.primary.name,
                self.fallback.name,
                error,
            )

        try:
            return self.fallback.complete(request)
        except PersevereError:
            raise
        except Exception as error:
            raise ProviderError(
                f"Fallback provider {self.fallback.name} failed: {error}",
                provider=self.fallback.name,
            ) from error


def _first_error(error: ValidationError) -> str:
    details = error.errors()
    if not details:
        return str(error)
    first = details[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location or '<root>'}: {first.get('msg', '')}"
