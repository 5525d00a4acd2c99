"""Runtime data structures for the plan step executor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from semantic_kernel import Kernel

from executor_agent.execution.engine import ExecutionEngine
from executor_agent.execution.parameter_resolver import ParameterResolver
from executor_agent.execution.state_manager import StateManager
from executor_agent.execution.step_executor import StepExecutor
from executor_agent.observability.telemetry_service import TelemetryService
from executor_agent.oracle.reasoning_oracle import ReasoningOracle
from executor_agent.reasoning.coordinator import Coordinator
from executor_agent.reasoning.error_handler import ErrorHandler
from executor_agent.reasoning.plan_validator import PlanValidator
from executor_agent.reasoning.question_generator import QuestionGenerator
from executor_agent.registry.tool_registry import ToolRegistry


@dataclass(slots=True)
class ExecutorRuntime:
    """Aggregated components of a configured executor."""

    kernel: Kernel
    registry: ToolRegistry
    oracle: ReasoningOracle
    coordinator: Coordinator
    parameter_resolver: ParameterResolver
    error_handler: ErrorHandler
    question_generator: QuestionGenerator
    plan_validator: PlanValidator
    state_manager: StateManager
    step_executor: StepExecutor
    engine: ExecutionEngine
    telemetry_service: Optional[TelemetryService] = None

    def dispose(self) -> None:
        """Release kernel-scoped resources."""
        self.kernel.remove_all_services()
