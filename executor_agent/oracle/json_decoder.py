"""Strict decoding of JSON decisions embedded in free-text oracle responses."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from executor_agent.exceptions import OracleDecodeError


def find_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span of ``text``.

    Braces inside JSON string literals are ignored, so prose before or after
    the object and markdown fences around it are tolerated.
    """
    start = text.find("{")
    while start != -1:
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
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def decode_json_object(text: Optional[str]) -> Dict[str, Any]:
    """Locate and parse the first JSON object in ``text``.

    Raises:
        OracleDecodeError: when no object is present or it does not parse.
    """
    if not text or not text.strip():
        raise OracleDecodeError("Oracle returned an empty response", raw_response=text)

    span = find_json_object(text)
    if span is None:
        raise OracleDecodeError("No JSON object found in oracle response", raw_response=text)

    try:
        data = json.loads(span)
    except json.JSONDecodeError as ex:
        raise OracleDecodeError(f"Malformed JSON in oracle response: {ex}", raw_response=text) from ex

    if not isinstance(data, dict):
        raise OracleDecodeError("Oracle response is not a JSON object", raw_response=text)
    return data


__all__ = ["decode_json_object", "find_json_object"]
