"""Outer execution loop: runs a plan step by step with progress checkpoints."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Optional

from config import ExecutorConfig
from executor_agent.exceptions import ToolError
from executor_agent.execution.models import (
    AdaptDecision,
    AskUserDecision,
    ErrorType,
    ExecutionResult,
    ExecutionState,
    FollowUpQuestion,
    Plan,
    PlanExecutionReport,
    PlanValidationResult,
    RequestContext,
    SkipDecision,
    StepExecution,
    StepOutcome,
)
from executor_agent.execution.state_manager import StateManager
from executor_agent.execution.step_executor import StepExecutor
from executor_agent.observability.telemetry_service import TelemetryService
from executor_agent.reasoning.error_handler import ErrorHandler
from executor_agent.reasoning.plan_validator import PlanValidator
from executor_agent.reasoning.question_generator import QuestionGenerator
from executor_agent.registry.tool_registry import ToolRegistry
from executor_agent.registry.tooling_metadata import RegistryCatalog


class ExecutionEngine:
    """Executes plans sequentially, pausing for the user when a step cannot proceed."""

    def __init__(
        self,
        *,
        registry: ToolRegistry,
        step_executor: StepExecutor,
        plan_validator: PlanValidator,
        error_handler: ErrorHandler,
        question_generator: QuestionGenerator,
        state_manager: Optional[StateManager] = None,
        config: Optional[ExecutorConfig] = None,
        telemetry: Optional[TelemetryService] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._registry = registry
        self._step_executor = step_executor
        self._plan_validator = plan_validator
        self._error_handler = error_handler
        self._question_generator = question_generator
        self._state_manager = state_manager or StateManager()
        self._config = config or ExecutorConfig()
        self._telemetry = telemetry
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    async def execute_plan(
        self,
        plan: Plan,
        request_context: RequestContext,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        catalog: Optional[RegistryCatalog] = None,
    ) -> PlanExecutionReport:
        """Run ``plan`` until it completes, fails closed, is cancelled or needs the user."""
        timer = time.perf_counter()
        state = self._state_manager.build_initial_state(
            plan, request_context, catalog or await self._load_catalog()
        )

        activity = None
        if self._telemetry:
            activity = self._telemetry.start_activity(
                "ExecutionEngine.execute_plan",
                {"plan.id": plan.id, "plan.steps": len(plan.steps), "request.id": request_context.id},
            )

        with activity or contextlib.nullcontext():
            report = await self._run(state, timer, cancel_event)

        self._logger.info(
            "Plan %s finished: success=%s, %s/%s steps, %s error(s), awaiting_user=%s",
            plan.id,
            report.overall_success,
            len(state.executed_steps),
            len(plan.steps),
            len(report.errors),
            report.requires_user_feedback,
        )
        return report

    async def _run(
        self,
        state: ExecutionState,
        timer: float,
        cancel_event: Optional[asyncio.Event],
    ) -> PlanExecutionReport:
        last_validation: Optional[PlanValidationResult] = None
        paused = False
        cancelled = False
        replan_requested = False

        while True:
            if cancel_event is not None and cancel_event.is_set():
                self._logger.info("Cancellation requested, not starting further steps")
                cancelled = True
                break

            ready = self._state_manager.get_ready_steps(state)
            if not ready:
                remaining = [step.order for step in state.plan.ordered_steps() if step.id not in state.executed_steps]
                if remaining:
                    state.errors.append(
                        f"Execution deadlock: steps {', '.join(map(str, remaining))} cannot execute"
                    )
                break

            step = ready[0]
            try:
                execution = await self._step_executor.execute_step(
                    self._state_manager.build_step_context(step, state)
                )
            except Exception as ex:
                self._logger.error(f"Unexpected error executing step {step.order}: {ex}", exc_info=ex)
                self._state_manager.record_result(
                    state,
                    ExecutionResult(
                        step_id=step.id,
                        step_order=step.order,
                        success=False,
                        outcome=StepOutcome.FAILED,
                        error=str(ex),
                        error_type=ErrorType.TOOL,
                        tool_called=step.action,
                        parameters_used=dict(step.parameters),
                    ),
                )
                continue

            self._state_manager.update_state_after_step(state, execution)

            if await self._needs_user(execution, state):
                paused = True
                break

            if execution.result.outcome == StepOutcome.SKIPPED and not self._config.continue_on_skip:
                break

            last_validation = await self._plan_validator.validate_progress(state)
            if last_validation.goal_achieved:
                self._logger.info("Goal achieved at %.0f%% progress", last_validation.progress * 100)
                break
            if not last_validation.should_continue:
                replan_requested = last_validation.should_replan or last_validation.should_adapt
                self._logger.warning(
                    "Stopping plan execution: %s (replan requested: %s)",
                    last_validation.reasoning,
                    replan_requested,
                )
                break

        return self._report(state, timer, last_validation, paused, cancelled, replan_requested)

    async def _needs_user(self, execution: StepExecution, state: ExecutionState) -> bool:
        """Apply the plan-level failure policy; True when execution must pause for the user."""
        result = execution.result
        step = execution.step

        if result.outcome == StepOutcome.AWAITING_USER:
            if execution.question is None:
                question = await self._question_generator.generate_error_question(
                    result.error or "Step needs user input", result.error_type or ErrorType.TOOL, step, state
                )
                self._add_question(state, question)
            return True

        if result.outcome != StepOutcome.FAILED:
            return False

        if result.error_type in (ErrorType.COORDINATION, ErrorType.VALIDATION):
            question = await self._question_generator.generate_missing_data_question(
                step, state, result.missing_params
            )
            if question is None:
                question = await self._question_generator.generate_error_question(
                    result.error or "", result.error_type, step, state
                )
            self._add_question(state, question)
            return question is not None

        decision = await self._error_handler.handle_error(
            result.error or "", result.error_type or ErrorType.TOOL, step, state, result, attempt=result.retries
        )
        if isinstance(decision, AskUserDecision):
            question = await self._question_generator.generate_error_question(
                result.error or "", result.error_type or ErrorType.TOOL, step, state
            )
            self._add_question(state, question)
            return question is not None
        if isinstance(decision, AdaptDecision) and decision.adaptation:
            state.adaptations.append(decision.adaptation)
            self._logger.info("Adaptation suggested for step %s: %s", step.order, decision.adaptation.reason)
        elif isinstance(decision, SkipDecision):
            self._logger.warning("Continuing past failed step %s: %s", step.order, decision.reason)
        return False

    @staticmethod
    def _add_question(state: ExecutionState, question: Optional[FollowUpQuestion]) -> None:
        if question is not None:
            state.questions_asked.append(question)

    async def _load_catalog(self) -> RegistryCatalog:
        try:
            return await self._registry.load_catalog()
        except ToolError as ex:
            self._logger.warning(f"Could not list registry tools, continuing without a catalog: {ex}")
            return RegistryCatalog()

    def _report(
        self,
        state: ExecutionState,
        timer: float,
        last_validation: Optional[PlanValidationResult],
        paused: bool,
        cancelled: bool,
        replan_requested: bool,
    ) -> PlanExecutionReport:
        all_succeeded = len(state.executed_steps) == len(state.plan.steps) and all(
            result.success for result in state.execution_results
        )
        return PlanExecutionReport(
            request_id=state.request_context.id,
            plan=state.plan,
            overall_success=all_succeeded and not state.errors,
            results=list(state.execution_results),
            partial_results=dict(state.partial_results),
            errors=list(state.errors),
            questions=list(state.questions_asked),
            adaptations=list(state.adaptations),
            plan_updates=list(state.plan_updates),
            requires_user_feedback=paused or bool(state.questions_asked),
            cancelled=cancelled,
            replan_requested=replan_requested,
            last_validation=last_validation,
            total_duration_ms=int((time.perf_counter() - timer) * 1000),
        )


__all__ = ["ExecutionEngine"]
