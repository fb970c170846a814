"""Best-effort recovery of structured data from model responses."""

import json
import re
from typing import Any

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)
_BULLET_PATTERN = re.compile(r"^\s*[-*•]\s+", re.MULTILINE)
_BOLD_PATTERN = re.compile(r"\*\*(.*?)\*\*")
_ITALIC_PATTERN = re.compile(r"\*(.*?)\*")
_CODE_PATTERN = re.compile(r"`(.*?)`")


class ResponseParseError(ValueError):
    """Raised when no JSON object can be recovered from a response."""


def _first_object(text: str) -> dict[str, Any] | None:
    """Decode the first well-formed JSON object embedded in ``text``."""
    decoder = json.JSONDecoder()
    index = text.find("{")
    while index != -1:
        try:
            value, _ = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            index = text.find("{", index + 1)
            continue
        if isinstance(value, dict):
            return value
        index = text.find("{", index + 1)
    return None


def extract_json(text: str) -> dict[str, Any]:
    """Parse a JSON object out of a model response.

    Tries the whole text, then a fenced code block, then the first
    well-formed object anywhere in the text.

    Raises:
        ResponseParseError: If no object can be found.
    """
    if not isinstance(text, str) or not text.strip():
        raise ResponseParseError("Empty response")

    stripped = text.strip()
    try:
        value = json.loads(stripped)
        if isinstance(value, dict):
            return value
    except json.JSONDecodeError:
        pass

    if fence := _FENCE_PATTERN.search(stripped):
        found = _first_object(fence.group(1))
        if found is not None:
            return found

    found = _first_object(stripped)
    if found is not None:
        return found

    raise ResponseParseError(f"No JSON object in response: {stripped[:200]!r}")


def clean_text(text: str, max_length: int, plain: bool = True) -> str:
    """Strip markdown decoration and truncate a free-text response."""
    if not isinstance(text, str):
        return ""
    cleaned = text.strip().strip('"').strip()
    if plain:
        cleaned = _BULLET_PATTERN.sub("", cleaned)
        cleaned = _BOLD_PATTERN.sub(r"\1", cleaned)
        cleaned = _ITALIC_PATTERN.sub(r"\1", cleaned)
        cleaned = _CODE_PATTERN.sub(r"\1", cleaned)
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3] + "..."
    return cleaned
