"""Runtime assembly for the plan step executor."""

from executor_agent.runtime.runtime_builder import ExecutorRuntimeBuilder
from executor_agent.runtime.runtime_types import ExecutorRuntime

__all__ = ["ExecutorRuntime", "ExecutorRuntimeBuilder"]
