"""Response parsing utilities for LLM output.

Extracts JSON objects and unified diffs from raw model responses that may be
wrapped in code fences or surrounded by prose.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from patchloop.core.exceptions import DecodeError

_OUTER_FENCE = re.compile(r"^\s*```[A-Za-z0-9_+-]*[ \t]*\n?(.*?)\n?[ \t]*```\s*$", re.DOTALL)


def extract_code_blocks(text: str, language: Optional[str] = None) -> list[str]:
    """Extract fenced code blocks from LLM output.

    Args:
        text: Raw LLM response.
        language: If specified, only return blocks with this language tag.

    Returns:
        List of code block contents (without fences).
    """
    if language:
        pattern = rf"```{re.escape(language)}[ \t]*\n(.*?)```"
    else:
        pattern = r"```(?:[\w+-]+)?[ \t]*\n(.*?)```"

    return re.findall(pattern, text, re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove one fence wrapping the whole text (opening ```lang line and closing ```).

    Fences inside the body, such as Markdown inside a JSON string, are kept.
    """
    text = text or ""
    match = _OUTER_FENCE.match(text)
    return (match.group(1) if match else text).strip()


def extract_json(text: str) -> dict[str, Any]:
    """Decode the single JSON object carried by a model response.

    A fence wrapping the whole reply is stripped and the text is parsed
    directly; failing that, the span from the first ``{`` to the last ``}``
    is parsed. Malformed JSON inside the braces is not repaired.

    Raises:
        DecodeError: With a bounded preview of the offending text.
    """
    cleaned = strip_code_fences(text)

    try:
        value = json.loads(cleaned)
    except json.JSONDecodeError:
        value = None
    if isinstance(value, dict):
        return value

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        try:
            value = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as e:
            raise DecodeError(f"Failed to parse JSON from LLM response: {e}", text) from e
        if isinstance(value, dict):
            return value

    raise DecodeError("LLM response does not contain a JSON object", text or "<empty>")


def _looks_like_diff(text: str) -> bool:
    lines = text.splitlines()
    return any(ln.startswith("--- ") for ln in lines) and any(ln.startswith("+++ ") for ln in lines)


def extract_diff(text: str) -> str:
    """Pull a unified diff out of a model reply.

    Prefers a ```diff or ```patch block, then any fenced block holding diff
    headers, and otherwise returns the reply unchanged.
    """
    for language in ("diff", "patch"):
        for block in extract_code_blocks(text, language):
            if _looks_like_diff(block):
                return block
    for block in extract_code_blocks(text):
        if _looks_like_diff(block):
            return block
    return text
