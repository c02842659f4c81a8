"""Locate and decode the first JSON object embedded in free-form model output."""

from __future__ import annotations

import json
from typing import Any

from persevere.errors import InvalidStructuredOutput, NoJsonObjectFound

PREVIEW_CHARS = 200


def find_first_json_object(text: str) -> str:
    """Return the first top-level balanced `{...}` span of `text`.

    Braces inside JSON string literals (including escaped quotes) do not count
    towards the balance. A span whose opening brace never closes is skipped and
    scanning resumes after it.
    """

    start = text.find("{")
    while start != -1:
        end = _matching_brace(text, start)
        if end is not None:
            return text[start : end + 1]
        start = text.find("{", start + 1)
    raise NoJsonObjectFound(
        f"No JSON object found in model response: {_preview(text)!r}",
    )


def parse_json_object(text: str) -> dict[str, Any]:
    """Decode the first balanced JSON object of `text` into a dict."""

    candidate = find_first_json_object(text)
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as error:
        raise InvalidStructuredOutput(
            f"JSON object in model response is malformed: {error.msg} "
            f"(line {error.lineno}, column {error.colno})",
        ) from error
    if not isinstance(parsed, dict):
        raise InvalidStructuredOutput("JSON payload in model response is not an object.")
    return parsed


def _matching_brace(text: str, start: int) -> int | None:
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return None


def _preview(text: str) -> str:
    compact = " ".join(text.split())
    if len(compact) <= PREVIEW_CHARS:
        return compact
    return compact[:PREVIEW_CHARS] + "..."
