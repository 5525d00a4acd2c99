"""JSON-RPC tool registry adapter for MCP-style tool servers."""

from __future__ import annotations

import itertools
import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from executor_agent.exceptions import ToolError, ToolRegistryError
from executor_agent.registry.tool_registry import ToolRegistry
from executor_agent.registry.tooling_metadata import (
    PromptDescriptor,
    ToolDescriptor,
    ValidationReport,
)


class McpToolRegistry(ToolRegistry):
    """Tool registry that speaks JSON-RPC 2.0 over HTTP."""

    def __init__(
        self,
        server_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._server_url = server_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))
        self._logger = logger or logging.getLogger(self.__class__.__name__)
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def list_tools(self) -> List[ToolDescriptor]:
        result = await self._request("tools/list", {})
        return [ToolDescriptor.from_dict(raw) for raw in (result or {}).get("tools", [])]

    async def list_prompts(self) -> List[PromptDescriptor]:
        result = await self._request("prompts/list", {})
        return [PromptDescriptor.from_dict(raw) for raw in (result or {}).get("prompts", [])]

    async def invoke(self, name: str, arguments: Dict[str, Any]) -> Any:
        self._logger.info("Calling tool %s", name)
        result = await self._request(
            "tools/call", {"name": name, "arguments": arguments}, tool_name=name
        )
        payload = self.parse_content(result)

        if isinstance(result, dict) and result.get("isError"):
            message = payload if isinstance(payload, str) else json.dumps(payload, default=str)
            raise ToolError(f"Error executing tool {name}: {message}", tool_name=name)

        return payload

    async def validate(
        self,
        name: str,
        arguments: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> ValidationReport:
        result = await self._request(
            "tools/validate",
            {"name": name, "arguments": arguments, "context": context or {}},
            tool_name=name,
        )
        payload = self.parse_content(result) if isinstance(result, dict) and "content" in result else result

        try:
            return ValidationReport.model_validate(payload or {})
        except ValidationError as ex:
            raise ToolRegistryError(
                f"Malformed validation report for {name}: {ex}", tool_name=name
            ) from ex

    async def get_prompt(self, name: str, arguments: Dict[str, Any]) -> Any:
        self._logger.info("Fetching workflow template %s", name)
        return await self._request(
            "prompts/get",
            {"name": name, "arguments": {key: str(value) for key, value in arguments.items()}},
            tool_name=name,
        )

    @staticmethod
    def parse_content(result: Any) -> Any:
        """Decode ``{"content": [{"type": "text", "text": ...}]}`` payloads.

        Text items holding JSON are decoded. A single item is returned on its
        own and a singly-nested array is flattened.
        """
        if not isinstance(result, dict) or "content" not in result:
            return result

        values: List[Any] = []
        for item in result.get("content") or []:
            if not isinstance(item, dict) or item.get("type") != "text":
                values.append(item)
                continue
            text = item.get("text", "")
            try:
                values.append(json.loads(text))
            except (json.JSONDecodeError, TypeError):
                values.append(text)

        parsed: Any = values[0] if len(values) == 1 else values
        if isinstance(parsed, list) and len(parsed) == 1 and isinstance(parsed[0], list):
            parsed = parsed[0]
        return parsed

    async def _request(
        self,
        method: str,
        params: Dict[str, Any],
        *,
        tool_name: Optional[str] = None,
    ) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}

        try:
            response = await self._client.post(self._server_url, json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as ex:
            raise ToolRegistryError(
                f"{method} failed with HTTP {ex.response.status_code}",
                tool_name=tool_name,
                status_code=ex.response.status_code,
            ) from ex
        except httpx.HTTPError as ex:
            raise ToolRegistryError(f"{method} failed: {ex}", tool_name=tool_name) from ex
        except json.JSONDecodeError as ex:
            raise ToolRegistryError(f"{method} returned invalid JSON", tool_name=tool_name) from ex

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            raise ToolRegistryError(f"{method} error: {message}", tool_name=tool_name)

        return data.get("result") if isinstance(data, dict) else None


__all__ = ["McpToolRegistry"]
