"""Executor runtime builder that composes the chat model, tool registry and execution components."""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from semantic_kernel import Kernel
from semantic_kernel.connectors.ai.open_ai import AzureChatCompletion, OpenAIChatCompletion

from config import Settings
from executor_agent.execution.engine import ExecutionEngine
from executor_agent.execution.parameter_resolver import ParameterResolver
from executor_agent.execution.state_manager import StateManager
from executor_agent.execution.step_executor import SleepFn, StepExecutor
from executor_agent.observability.telemetry_service import TelemetryService
from executor_agent.oracle.reasoning_oracle import ReasoningOracle
from executor_agent.reasoning.coordinator import Coordinator
from executor_agent.reasoning.error_handler import ErrorHandler
from executor_agent.reasoning.plan_validator import PlanValidator
from executor_agent.reasoning.question_generator import QuestionGenerator
from executor_agent.registry.mcp_registry import McpToolRegistry
from executor_agent.registry.tool_registry import ToolRegistry
from executor_agent.runtime.runtime_types import ExecutorRuntime


class ExecutorRuntimeBuilder:
    """Factory for assembling the executor runtime from settings."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        telemetry_service: Optional[TelemetryService] = None,
        logger: Optional[logging.Logger] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        registry: Optional[ToolRegistry] = None,
        sleep: Optional[SleepFn] = None,
    ) -> None:
        self._settings = settings or Settings()
        self._telemetry_service = telemetry_service
        self._logger = logger or logging.getLogger(self.__class__.__name__)
        self._http_client = http_client
        self._registry = registry
        self._sleep = sleep

        self._kernel: Kernel = Kernel()
        self._runtime: Optional[ExecutorRuntime] = None
        self._owned_registry: Optional[McpToolRegistry] = None

    async def build(self) -> ExecutorRuntime:
        """Construct the runtime and return initialized components."""
        await self._configure_ai_service()
        registry = self._build_registry()

        config = self._settings.executor
        telemetry = self._telemetry_service

        oracle = ReasoningOracle(
            self._kernel,
            service_id="default",
            telemetry=telemetry,
            logger=self._logger.getChild("ReasoningOracle"),
        )
        coordinator = Coordinator(
            oracle, config=config, telemetry=telemetry, logger=self._logger.getChild("Coordinator")
        )
        parameter_resolver = ParameterResolver(
            registry, oracle, config=config, telemetry=telemetry, logger=self._logger.getChild("ParameterResolver")
        )
        error_handler = ErrorHandler(
            oracle, config=config, telemetry=telemetry, logger=self._logger.getChild("ErrorHandler")
        )
        question_generator = QuestionGenerator(
            oracle, config=config, telemetry=telemetry, logger=self._logger.getChild("QuestionGenerator")
        )
        state_manager = StateManager(logger=self._logger.getChild("StateManager"))
        plan_validator = PlanValidator(
            oracle,
            config=config,
            state_manager=state_manager,
            telemetry=telemetry,
            logger=self._logger.getChild("PlanValidator"),
        )

        step_executor = StepExecutor(
            registry=registry,
            coordinator=coordinator,
            parameter_resolver=parameter_resolver,
            error_handler=error_handler,
            question_generator=question_generator,
            config=config,
            telemetry=telemetry,
            logger=self._logger.getChild("StepExecutor"),
            sleep=self._sleep,
        )
        engine = ExecutionEngine(
            registry=registry,
            step_executor=step_executor,
            plan_validator=plan_validator,
            error_handler=error_handler,
            question_generator=question_generator,
            state_manager=state_manager,
            config=config,
            telemetry=telemetry,
            logger=self._logger.getChild("ExecutionEngine"),
        )

        self._runtime = ExecutorRuntime(
            kernel=self._kernel,
            registry=registry,
            oracle=oracle,
            coordinator=coordinator,
            parameter_resolver=parameter_resolver,
            error_handler=error_handler,
            question_generator=question_generator,
            plan_validator=plan_validator,
            state_manager=state_manager,
            step_executor=step_executor,
            engine=engine,
            telemetry_service=telemetry,
        )
        return self._runtime

    async def __aenter__(self) -> ExecutorRuntime:
        return await self.build()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._runtime:
            self._runtime.dispose()
        self._runtime = None
        if self._owned_registry:
            await self._owned_registry.aclose()
            self._owned_registry = None

    def _build_registry(self) -> ToolRegistry:
        if self._registry:
            return self._registry

        registry_config = self._settings.tool_registry
        if not registry_config.server_url:
            raise ValueError("No tool registry configured: set MCP_SERVER_URL or pass a registry")

        self._logger.info("Connecting tool registry at %s", registry_config.server_url)
        self._owned_registry = McpToolRegistry(
            registry_config.server_url,
            client=self._http_client,
            timeout_seconds=registry_config.timeout_seconds,
            logger=self._logger.getChild("McpToolRegistry"),
        )
        return self._owned_registry

    async def _configure_ai_service(self) -> None:
        """Wire Azure OpenAI or OpenAI chat completion services if configured."""
        if self._settings.azure_openai:
            azure = self._settings.azure_openai
            self._logger.info("Configuring Azure OpenAI chat completion service (%s)", azure.model_id)
            chat_service = AzureChatCompletion(
                deployment_name=azure.model_id,
                endpoint=azure.endpoint,
                api_key=azure.api_key,
                api_version=azure.api_version,
                service_id="default",
            )
            self._kernel.add_service(chat_service)
            return

        if self._settings.openai:
            openai = self._settings.openai
            self._logger.info("Configuring OpenAI chat completion service (%s)", openai.model_id)
            chat_service = OpenAIChatCompletion(
                ai_model_id=openai.model_id,
                api_key=openai.api_key,
                service_id="default",
            )
            self._kernel.add_service(chat_service)
            return

        self._logger.warning(
            "No chat completion service configured. Oracle-backed decisions will use their fallbacks."
        )


__all__ = ["ExecutorRuntimeBuilder"]
