"""Formatting and inspection helpers for registry tool schemas and tool results.

Everything here is derived from the declared schemas, so prompts stay free of
domain knowledge about particular tools.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from executor_agent.registry.tooling_metadata import (
    PromptDescriptor,
    RegistryCatalog,
    ToolDescriptor,
)

IDENTIFIER_PATTERN = r"^[0-9a-fA-F]{24}$"
ERROR_RESULT_MARKER = "Error executing tool"

_IDENTIFIER_FIELD = re.compile(r"^(_?id|ID|.+_id|.+Id|.+ID)$")
_PLACEHOLDER_TOKENS = ("extracted", "extract", "from_step", "from step", "placeholder")
_PLACEHOLDER_PATTERNS = (re.compile(r"extract.*step", re.IGNORECASE), re.compile(r"\{\{.*\}\}"))
_LOOKUP_PREFIXES = re.compile(r"^(get|create|update|delete)_")
_IDENTIFYING_FIELDS = ("name", "shortCode", "code", "title", "location")
_NOISE_FIELDS = {"_id", "id", "createdAt", "updatedAt"}


@dataclass(slots=True)
class ToolParameter:
    name: str
    schema: Dict[str, Any]
    required: bool


@dataclass(slots=True)
class ToolParameters:
    """Required, optional and all parameters of a tool schema."""

    required: List[str] = field(default_factory=list)
    optional: List[str] = field(default_factory=list)
    all: List[ToolParameter] = field(default_factory=list)


@dataclass(slots=True)
class LookupFlow:
    """A get-by-identifier tool paired with the listing tool that yields the identifier."""

    needs_lookup: bool
    reason: str
    lookup_tool: Optional[str] = None
    id_param_name: Optional[str] = None


def get_tool_parameters(tool: Optional[ToolDescriptor]) -> ToolParameters:
    if tool is None or not tool.properties:
        return ToolParameters(required=list(tool.required_params) if tool else [])

    required = tool.required_params
    parameters = [
        ToolParameter(name=name, schema=dict(schema or {}), required=name in required)
        for name, schema in tool.properties.items()
    ]
    return ToolParameters(required=required, optional=tool.optional_params, all=parameters)


def find_tool(catalog: Optional[RegistryCatalog], name: str) -> Optional[ToolDescriptor]:
    return catalog.find_tool(name) if catalog else None


def find_prompt(catalog: Optional[RegistryCatalog], name: str) -> Optional[PromptDescriptor]:
    return catalog.find_prompt(name) if catalog else None


def find_tools_by_pattern(catalog: Optional[RegistryCatalog], pattern: str) -> List[ToolDescriptor]:
    if not catalog:
        return []
    regex = re.compile(pattern, re.IGNORECASE)
    return [tool for tool in catalog.tools if regex.search(tool.name)]


def is_identifier_field(name: str) -> bool:
    """Return True for ``id``, ``_id`` and names ending in ``_id``, ``Id`` or ``ID``."""
    return bool(_IDENTIFIER_FIELD.match(name))


def is_valid_identifier(value: Any, pattern: str = IDENTIFIER_PATTERN) -> bool:
    return isinstance(value, str) and re.fullmatch(pattern, value) is not None


def is_placeholder(value: Any) -> bool:
    """Return True when a string still carries an unresolved placeholder marker."""
    if not isinstance(value, str):
        return False
    lowered = value.lower()
    if any(token in lowered for token in _PLACEHOLDER_TOKENS):
        return True
    return any(pattern.search(value) for pattern in _PLACEHOLDER_PATTERNS)


def is_null_like(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and value.strip().lower() in ("", "null")


def is_unresolved(value: Any) -> bool:
    return is_null_like(value) or is_placeholder(value)


def is_error_result(result: Any) -> bool:
    """Return True for tool outputs that carry an error instead of data."""
    if isinstance(result, dict):
        return bool(result.get("isError"))
    if isinstance(result, str):
        return ERROR_RESULT_MARKER in result
    if isinstance(result, list):
        return any(isinstance(item, str) and ERROR_RESULT_MARKER in item for item in result)
    return False


def extract_identifier(item: Any, pattern: str = IDENTIFIER_PATTERN) -> Optional[str]:
    """Pull a well-formed identifier out of a result item, preferring ``_id`` then ``id``."""
    if not isinstance(item, dict):
        return None

    for key in ("_id", "id"):
        if is_valid_identifier(item.get(key), pattern):
            return item[key]

    for key, value in item.items():
        if is_identifier_field(key) and is_valid_identifier(value, pattern):
            return value
    return None


def detect_lookup_flow(catalog: Optional[RegistryCatalog], tool_name: str) -> LookupFlow:
    """Detect a ``get_X`` tool that needs an identifier obtainable from ``list_X``."""
    tool = find_tool(catalog, tool_name)
    if tool is None:
        return LookupFlow(needs_lookup=False, reason="Tool not found")

    parameters = get_tool_parameters(tool)
    id_param = next(
        (param for param in parameters.all if param.required and is_identifier_field(param.name)),
        None,
    )
    if id_param is None:
        return LookupFlow(needs_lookup=False, reason="No required identifier parameter found")

    base_name = _LOOKUP_PREFIXES.sub("", tool_name)
    names = "|".join(re.escape(name) for name in _plural_forms(base_name))
    for pattern in (rf"^list_({names})$", rf"^search_({names})$", rf"({names}).*list"):
        candidates = [candidate for candidate in find_tools_by_pattern(catalog, pattern) if candidate.name != tool_name]
        if candidates:
            lookup = candidates[0].name
            return LookupFlow(
                needs_lookup=True,
                lookup_tool=lookup,
                id_param_name=id_param.name,
                reason=f"{tool_name} requires {id_param.name}. Use {lookup} to find the identifier first.",
            )

    return LookupFlow(
        needs_lookup=True,
        id_param_name=id_param.name,
        reason=f"{tool_name} requires {id_param.name}, but no obvious lookup tool was found.",
    )


def _plural_forms(name: str) -> List[str]:
    forms = [name, f"{name}s", f"{name}es"]
    if name.endswith("y"):
        forms.append(f"{name[:-1]}ies")
    return forms


def format_tools_for_prompt(catalog: Optional[RegistryCatalog]) -> str:
    """Render tools and workflow templates as a prompt section."""
    if not catalog:
        return ""

    lines: List[str] = []
    if catalog.tools:
        lines.append(f"## Available Tools ({len(catalog.tools)})")
        for tool in catalog.tools:
            lines.append(f"### {tool.name}")
            lines.append(tool.description or "No description available")
            parameters = get_tool_parameters(tool)
            if not parameters.all:
                lines.append("No parameters required.")
            for param in parameters.all:
                marker = "[REQUIRED]" if param.required else "(optional)"
                lines.append(f"  - {param.name} {marker}: type {param.schema.get('type', 'any')}")
                if param.schema.get("description"):
                    lines.append(f"    {param.schema['description']}")
                if param.schema.get("enum"):
                    lines.append(f"    Allowed values: {', '.join(map(str, param.schema['enum']))}")
            lines.append("")

    if catalog.prompts:
        lines.append(f"## Available Workflow Templates ({len(catalog.prompts)})")
        for prompt in catalog.prompts:
            lines.append(f"### {prompt.name}")
            lines.append(prompt.description or "No description available")
            for argument in prompt.arguments:
                marker = "[REQUIRED]" if argument.required else "(optional)"
                lines.append(f"  - {argument.name} {marker}: {argument.description}".rstrip(": "))
            lines.append("")

    return "\n".join(lines).strip()


def format_array_results_for_extraction(result: Any, max_items: int = 3) -> str:
    """Render the first items of an array result with identifiers highlighted."""
    if not isinstance(result, list) or not result:
        return "Empty array or not an array"

    blocks: List[str] = []
    for index, item in enumerate(result[:max_items], start=1):
        if not isinstance(item, dict):
            blocks.append(f"Item {index}: {json.dumps(item, default=str)}")
            continue

        block = [f"Item {index}:"]
        if item.get("_id"):
            block.append(f'  * _id: "{item["_id"]}" (identifier, use this for id parameters)')
        if item.get("id") and item.get("id") != item.get("_id"):
            block.append(f'  id: "{item["id"]}"')
        for key in _IDENTIFYING_FIELDS:
            if item.get(key):
                block.append(f"  {key}: {json.dumps(item[key], default=str)}")

        others = {
            key: value
            for key, value in item.items()
            if key not in _NOISE_FIELDS and key not in _IDENTIFYING_FIELDS and not key.startswith("__")
        }
        if others:
            rendered = json.dumps(dict(list(others.items())[:5]), default=str)
            block.append(f"  ... other fields: {rendered[:100]}{'...' if len(rendered) > 100 else ''}")
        blocks.append("\n".join(block))

    text = f"Array with {len(result)} item(s):\n\n" + "\n".join(blocks)
    if len(result) > max_items:
        text += f"\n... ({len(result) - max_items} more items)"
    return text


def truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


__all__ = [
    "ERROR_RESULT_MARKER",
    "IDENTIFIER_PATTERN",
    "LookupFlow",
    "ToolParameter",
    "ToolParameters",
    "detect_lookup_flow",
    "extract_identifier",
    "find_prompt",
    "find_tool",
    "find_tools_by_pattern",
    "format_array_results_for_extraction",
    "format_tools_for_prompt",
    "get_tool_parameters",
    "is_error_result",
    "is_identifier_field",
    "is_null_like",
    "is_placeholder",
    "is_unresolved",
    "is_valid_identifier",
    "truncate",
]
