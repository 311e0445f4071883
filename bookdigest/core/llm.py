"""Helpers for turning raw generator output into artifacts."""

import json
import re
from typing import Any

from pydantic import ValidationError

from bookdigest.core.errors import MalformedOutputError
from bookdigest.core.schemas_artifacts import MindMapData

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL)
_MERMAID_RE = re.compile(r"```mermaid\s*(.*?)```", re.DOTALL)


def strip_llm_fences(raw_output: str) -> str | None:
    """Return the body of the first ``` or ```json fenced block, if any."""
    fence_match = _FENCE_RE.search(raw_output)
    if fence_match:
        return fence_match.group(1).strip()
    return None


def parse_llm_json(raw_output: str, context: str = "JSON") -> Any:
    """
    Parse LLM output as JSON.

    Tries the raw payload first, then the body of a fenced code block.

    Args:
        raw_output: Raw string from the generator
        context: Label used in error messages

    Returns:
        Decoded JSON value

    Raises:
        MalformedOutputError: If the output is empty or neither attempt parses
    """
    if not raw_output or not raw_output.strip():
        raise MalformedOutputError(f"Generator returned empty {context} output")

    try:
        return json.loads(raw_output.strip())
    except json.JSONDecodeError:
        pass

    fenced = strip_llm_fences(raw_output)
    if fenced is not None:
        try:
            return json.loads(fenced)
        except json.JSONDecodeError:
            pass

    raise MalformedOutputError(f"Generator returned malformed {context} output")


def parse_mindmap_payload(raw_output: str | dict | MindMapData) -> MindMapData:
    """
    Parse a mind map from generator output.

    Raises:
        MalformedOutputError: If the payload is not JSON or not a valid mind map
    """
    if isinstance(raw_output, MindMapData):
        return raw_output

    data = raw_output if isinstance(raw_output, dict) else parse_llm_json(raw_output, "mind map")
    try:
        return MindMapData.model_validate(data)
    except ValidationError as e:
        raise MalformedOutputError(f"Mind map payload is invalid: {e}") from e


def extract_mermaid_block(raw_output: str) -> str:
    """Keep only the body of a ```mermaid block; otherwise return the trimmed text."""
    match = _MERMAID_RE.search(raw_output)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return raw_output.strip()
