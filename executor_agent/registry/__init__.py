"""Tool registry contract, adapters and schema helpers."""

from executor_agent.registry.mcp_registry import McpToolRegistry
from executor_agent.registry.tool_registry import ToolRegistry
from executor_agent.registry.tooling_metadata import (
    ParamCategorization,
    PromptArgument,
    PromptDescriptor,
    RegistryCatalog,
    ToolDescriptor,
    ValidationReport,
)

__all__ = [
    "McpToolRegistry",
    "ParamCategorization",
    "PromptArgument",
    "PromptDescriptor",
    "RegistryCatalog",
    "ToolDescriptor",
    "ToolRegistry",
    "ValidationReport",
]
