"""Lenient decoding of JSON objects embedded in LLM text output."""

from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)
_DECODER = json.JSONDecoder()


class StructuredOutputError(ValueError):
    """The model's reply did not contain a decodable JSON object."""


def content_text(content: Any) -> str:
    """Flatten a LangChain message ``content`` (str or content blocks) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


def extract_json_object(text: str) -> dict[str, Any]:
    """Return the first JSON object found in *text*.

    Tries the whole string, then the body of a fenced code block, then scans
    each ``{`` for an object that decodes on its own, so prose before or
    after the reply (braces included) is ignored.  Raises
    :class:`StructuredOutputError` when no JSON object is found.
    """
    candidates = [text.strip()]
    fence = _FENCE_RE.search(text)
    if fence:
        candidates.append(fence.group(1))

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(value, dict):
            return value

    start = text.find("{")
    while start != -1:
        try:
            value, _ = _DECODER.raw_decode(text, start)
        except ValueError:
            value = None
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)

    raise StructuredOutputError(f"No JSON object in model output: {text[:200]!r}")
