"""Exception hierarchy for the plan step execution engine."""

from __future__ import annotations

from typing import Optional


class ExecutorError(Exception):
    """Base exception for all executor errors."""


class OracleError(ExecutorError):
    """Raised when the reasoning oracle cannot produce a usable decision."""


class OracleUnavailableError(OracleError):
    """Raised when no chat completion service is configured or the call fails."""


class OracleDecodeError(OracleError):
    """Raised when an oracle response is not a structurally valid decision."""

    def __init__(self, message: str, raw_response: Optional[str] = None) -> None:
        self.raw_response = raw_response
        super().__init__(message)


class ToolError(ExecutorError):
    """Raised when a registry tool invocation fails."""

    def __init__(self, message: str, tool_name: Optional[str] = None) -> None:
        self.message = message
        self.tool_name = tool_name
        super().__init__(message)


class ToolRegistryError(ToolError):
    """Raised on transport or protocol failures talking to the tool registry."""

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, tool_name=tool_name)


__all__ = [
    "ExecutorError",
    "OracleDecodeError",
    "OracleError",
    "OracleUnavailableError",
    "ToolError",
    "ToolRegistryError",
]
