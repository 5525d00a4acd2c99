"""Contract for the external registry of invocable tools and workflow templates."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from executor_agent.registry.tooling_metadata import (
    PromptDescriptor,
    RegistryCatalog,
    ToolDescriptor,
    ValidationReport,
)


class ToolRegistry:
    """Abstract tool registry.

    Implementations list the callable tools and workflow templates, invoke a
    tool by name, and validate arguments against the live schema. ``invoke``
    raises :class:`~executor_agent.exceptions.ToolError` when the tool fails.
    """

    async def list_tools(self) -> List[ToolDescriptor]:  # pragma: no cover - interface
        raise NotImplementedError

    async def list_prompts(self) -> List[PromptDescriptor]:  # pragma: no cover - interface
        raise NotImplementedError

    async def invoke(self, name: str, arguments: Dict[str, Any]) -> Any:  # pragma: no cover - interface
        raise NotImplementedError

    async def validate(
        self,
        name: str,
        arguments: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> ValidationReport:  # pragma: no cover - interface
        raise NotImplementedError

    async def get_prompt(self, name: str, arguments: Dict[str, Any]) -> Any:  # pragma: no cover - interface
        raise NotImplementedError

    async def load_catalog(self) -> RegistryCatalog:
        """List tools and workflow templates together."""
        tools = await self.list_tools()
        prompts = await self.list_prompts()
        return RegistryCatalog(tools=tools, prompts=prompts)


__all__ = ["ToolRegistry"]
