"""Drives a single plan step from coordination to a terminal result."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from config import ExecutorConfig
from executor_agent.exceptions import ToolError
from executor_agent.execution.models import (
    AdaptDecision,
    Adaptation,
    AskUserDecision,
    ErrorDecision,
    ErrorType,
    ExecutionResult,
    ExecutionState,
    FollowUpQuestion,
    PlanUpdate,
    RetryDecision,
    SkipDecision,
    Step,
    StepContext,
    StepExecution,
    StepOutcome,
    StepPhase,
)
from executor_agent.execution.parameter_resolver import ParameterResolver
from executor_agent.observability.telemetry_service import TelemetryService
from executor_agent.reasoning.coordinator import Coordinator
from executor_agent.reasoning.error_handler import ErrorHandler
from executor_agent.reasoning.question_generator import QuestionGenerator
from executor_agent.registry.schema_formatter import (
    is_identifier_field,
    is_placeholder,
    is_valid_identifier,
)
from executor_agent.registry.tool_registry import ToolRegistry

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class _Preparation:
    """A step revision ready for invocation, or the reason it is not."""

    step: Step
    error_type: Optional[ErrorType] = None
    error: Optional[str] = None
    missing_params: List[str] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)


class StepExecutor:
    """Runs one step through coordination, validation, invocation and recovery.

    The input step and state are never mutated. The returned
    :class:`StepExecution` carries the final step revision and, when
    parameters or action were rewritten, a :class:`PlanUpdate` for the caller
    to commit.
    """

    def __init__(
        self,
        *,
        registry: ToolRegistry,
        coordinator: Coordinator,
        parameter_resolver: ParameterResolver,
        error_handler: ErrorHandler,
        question_generator: Optional[QuestionGenerator] = None,
        config: Optional[ExecutorConfig] = None,
        telemetry: Optional[TelemetryService] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Optional[SleepFn] = None,
    ) -> None:
        self._registry = registry
        self._coordinator = coordinator
        self._resolver = parameter_resolver
        self._error_handler = error_handler
        self._question_generator = question_generator
        self._config = config or ExecutorConfig()
        self._telemetry = telemetry
        self._logger = logger or logging.getLogger(self.__class__.__name__)
        self._sleep = sleep or asyncio.sleep

    async def execute_step(self, context: StepContext) -> StepExecution:
        step = context.step
        activity = None
        if self._telemetry:
            activity = self._telemetry.start_activity(
                "StepExecutor.execute_step",
                {"step.id": step.id, "step.order": step.order, "step.action": step.action},
            )

        with activity or contextlib.nullcontext():
            timer = time.perf_counter()
            execution = await self._run(step, context.state, timer)
            duration = time.perf_counter() - timer

        result = execution.result
        self._logger.info(
            "Step %s (%s) finished: %s after %s attempt(s)",
            step.order,
            result.tool_called,
            result.outcome.value,
            result.retries,
        )
        if self._telemetry:
            self._telemetry.record_step_execution(
                action=result.tool_called,
                duration_seconds=duration,
                success=result.success,
                tags={"outcome": result.outcome.value, "attempts": result.retries},
            )
            if result.error_type:
                self._telemetry.record_error("StepExecutor", result.error_type.value, result.error)
        return execution

    async def _run(self, original: Step, state: ExecutionState, timer: float) -> StepExecution:
        self._transition(original, StepPhase.COORDINATING)
        prepared = await self._prepare(original, state)
        reasons = list(prepared.reasons)
        step = prepared.step

        if prepared.error_type:
            self._transition(step, StepPhase.FAILED)
            return self._finish(
                original,
                step,
                timer,
                outcome=StepOutcome.FAILED,
                attempts=0,
                error=prepared.error,
                error_type=prepared.error_type,
                missing_params=prepared.missing_params,
                reasons=reasons,
            )

        attempts = 0
        last_error = ""
        decision: Optional[ErrorDecision] = None
        adaptation: Optional[Adaptation] = None

        while attempts < self._config.max_attempts:
            attempts += 1
            self._transition(step, StepPhase.INVOKING, attempts)

            try:
                output = await self._invoke(step, state)
            except Exception as ex:
                last_error = str(ex) or type(ex).__name__
                self._logger.warning(f"Step {step.order} attempt {attempts} failed: {last_error}")
            else:
                self._transition(step, StepPhase.SUCCEEDED)
                return self._finish(
                    original,
                    step,
                    timer,
                    outcome=StepOutcome.SUCCEEDED,
                    attempts=attempts,
                    output=output,
                    decision=decision,
                    adaptation=adaptation,
                    reasons=reasons,
                )

            self._transition(step, StepPhase.RECOVERING, attempts)
            failed = self._result(step, timer, StepOutcome.FAILED, attempts, error=last_error, error_type=ErrorType.TOOL)
            try:
                decision = await self._error_handler.handle_error(
                    last_error, ErrorType.TOOL, step, state, failed, attempt=attempts
                )
            except Exception as ex:
                self._logger.error(f"Error handler failed for step {step.order}: {ex}", exc_info=ex)
                break

            if self._telemetry:
                self._telemetry.record_retry(step.action, attempts, decision.decision)

            if isinstance(decision, SkipDecision):
                self._transition(step, StepPhase.SKIPPED)
                return self._finish(
                    original, step, timer,
                    outcome=StepOutcome.SKIPPED,
                    attempts=attempts,
                    error=last_error,
                    error_type=ErrorType.TOOL,
                    decision=decision,
                    adaptation=adaptation,
                    reasons=reasons,
                )

            if isinstance(decision, AskUserDecision):
                self._transition(step, StepPhase.AWAITING_USER)
                question = await self._ask_user(last_error, step, state)
                return self._finish(
                    original, step, timer,
                    outcome=StepOutcome.AWAITING_USER,
                    attempts=attempts,
                    error=last_error,
                    error_type=ErrorType.TOOL,
                    decision=decision,
                    adaptation=adaptation,
                    question=question,
                    reasons=reasons,
                )

            if isinstance(decision, AdaptDecision):
                new_action = decision.adaptation.adapted_action if decision.adaptation else None
                if new_action and new_action != step.action and attempts < self._config.max_attempts:
                    adaptation = decision.adaptation.model_copy(update={
                        "step_id": step.id,
                        "original_action": step.action,
                    })
                    self._logger.info("Adapting step %s: %s -> %s", step.order, step.action, new_action)
                    reasons.append(f"Adapted {step.action} to {new_action}: {decision.reason}")

                    # The new tool may declare a different schema, so coordinate it from scratch.
                    adapted = step.revise(
                        action=new_action,
                        parameters=self._adapted_parameters(step, new_action, adaptation, state),
                    )
                    self._transition(adapted, StepPhase.COORDINATING)
                    prepared = await self._prepare(adapted, state)
                    reasons.extend(prepared.reasons)
                    step = prepared.step
                    if prepared.error_type:
                        self._transition(step, StepPhase.FAILED)
                        return self._finish(
                            original, step, timer,
                            outcome=StepOutcome.FAILED,
                            attempts=attempts,
                            error=prepared.error,
                            error_type=prepared.error_type,
                            missing_params=prepared.missing_params,
                            decision=decision,
                            adaptation=adaptation,
                            reasons=reasons,
                        )
                    continue
                limit = self._config.max_attempts
            elif isinstance(decision, RetryDecision):
                limit = min(decision.max_retries, self._config.max_attempts)
            else:
                raise TypeError(f"Unhandled error decision: {decision!r}")

            if attempts >= limit:
                break

            self._transition(step, StepPhase.RETRYING, attempts)
            await self._sleep(self._config.retry_backoff_seconds * attempts)

        self._transition(step, StepPhase.FAILED)
        return self._finish(
            original, step, timer,
            outcome=StepOutcome.FAILED,
            attempts=attempts,
            error=last_error,
            error_type=ErrorType.TOOL,
            decision=decision,
            adaptation=adaptation,
            reasons=reasons,
        )

    async def _prepare(self, step: Step, state: ExecutionState) -> _Preparation:
        """Coordinate, validate and check a step revision before invocation."""
        reasons: List[str] = []
        previous_results = state.partial_results

        coordination = await self._coordinator.should_coordinate(step, state, previous_results)
        outcome = await self._coordinator.coordinate_parameters(step, state, previous_results, coordination)
        if outcome.was_updated:
            step = step.revise(parameters=outcome.parameters)
            reasons.append(f"Coordinated parameters: {outcome.reason or 'values extracted from previous results'}")

        if outcome.extraction_impossible:
            return _Preparation(
                step=step,
                error_type=ErrorType.COORDINATION,
                error=outcome.reason or "Parameter extraction impossible",
                missing_params=outcome.remaining_placeholders,
                reasons=reasons,
            )
        if outcome.remaining_placeholders:
            return _Preparation(
                step=step,
                error_type=ErrorType.COORDINATION,
                error=f"Unresolved placeholder parameters: {', '.join(outcome.remaining_placeholders)}",
                missing_params=outcome.remaining_placeholders,
                reasons=reasons,
            )

        self._transition(step, StepPhase.VALIDATING)
        resolution = await self._resolver.validate_and_resolve(step, state)
        if resolution.was_updated:
            step = step.revise(parameters=resolution.parameters)
            reasons.append("Resolved missing required parameters")
        if not resolution.success:
            return _Preparation(
                step=step,
                error_type=ErrorType.VALIDATION,
                error=resolution.error,
                missing_params=resolution.missing_params,
                reasons=reasons,
            )

        violations = self.invalid_arguments(step, state)
        if violations:
            return _Preparation(
                step=step,
                error_type=ErrorType.COORDINATION,
                error=f"Parameters not safe to invoke: {', '.join(violations)}",
                missing_params=violations,
                reasons=reasons,
            )
        return _Preparation(step=step, reasons=reasons)

    def invalid_arguments(self, step: Step, state: ExecutionState) -> List[str]:
        """Parameters that would break the invocation invariant."""
        tool = state.catalog.find_tool(step.action)
        invalid = []
        for name, value in step.parameters.items():
            if is_placeholder(value) or (isinstance(value, str) and value.strip().lower() == "null"):
                invalid.append(name)
                continue
            if not (tool and is_identifier_field(name) and isinstance(value, str)):
                continue
            declared_type = tool.properties.get(name, {}).get("type", "string")
            if (
                declared_type == "string"
                and not is_valid_identifier(value, self._config.identifier_pattern)
                and len(value) < self._config.identifier_min_plausible_length
            ):
                invalid.append(name)
        return invalid

    async def _invoke(self, step: Step, state: ExecutionState) -> Any:
        arguments = {name: value for name, value in step.parameters.items() if value is not None}
        catalog = state.catalog

        if catalog.find_tool(step.action) or not (catalog.tools or catalog.prompts):
            return await self._registry.invoke(step.action, arguments)
        if catalog.find_prompt(step.action):
            return await self._registry.get_prompt(step.action, arguments)
        raise ToolError(
            f"{step.action} is neither a registered tool nor a workflow template",
            tool_name=step.action,
        )

    def _adapted_parameters(
        self,
        step: Step,
        new_action: str,
        adaptation: Adaptation,
        state: ExecutionState,
    ) -> Dict[str, Any]:
        tool = state.catalog.find_tool(new_action)
        if tool:
            parameters = {name: value for name, value in step.parameters.items() if tool.declares(name)}
        else:
            parameters = dict(step.parameters)
        parameters.update(adaptation.adapted_parameters or {})
        return parameters

    async def _ask_user(self, error: str, step: Step, state: ExecutionState) -> Optional[FollowUpQuestion]:
        if not self._question_generator:
            return None
        return await self._question_generator.generate_error_question(error, ErrorType.TOOL, step, state)

    def _transition(self, step: Step, phase: StepPhase, attempt: Optional[int] = None) -> None:
        suffix = f" (attempt {attempt})" if attempt else ""
        self._logger.debug(f"Step {step.order} [{step.action}] -> {phase.value}{suffix}")

    def _result(
        self,
        step: Step,
        timer: float,
        outcome: StepOutcome,
        attempts: int,
        *,
        output: Any = None,
        error: Optional[str] = None,
        error_type: Optional[ErrorType] = None,
        missing_params: Optional[List[str]] = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            step_id=step.id,
            step_order=step.order,
            success=outcome == StepOutcome.SUCCEEDED,
            outcome=outcome,
            result=output,
            error=error,
            error_type=error_type,
            duration_ms=int((time.perf_counter() - timer) * 1000),
            retries=attempts,
            tool_called=step.action,
            parameters_used=dict(step.parameters),
            missing_params=list(missing_params or []),
        )

    def _finish(
        self,
        original: Step,
        step: Step,
        timer: float,
        *,
        outcome: StepOutcome,
        attempts: int,
        output: Any = None,
        error: Optional[str] = None,
        error_type: Optional[ErrorType] = None,
        missing_params: Optional[List[str]] = None,
        decision: Optional[ErrorDecision] = None,
        adaptation: Optional[Adaptation] = None,
        question: Optional[FollowUpQuestion] = None,
        reasons: Optional[List[str]] = None,
    ) -> StepExecution:
        result = self._result(
            step,
            timer,
            outcome,
            attempts,
            output=output,
            error=error,
            error_type=error_type,
            missing_params=missing_params,
        )

        plan_update = None
        if step.parameters != original.parameters or step.action != original.action:
            plan_update = PlanUpdate(
                step_id=step.id,
                step_order=step.order,
                original_parameters=dict(original.parameters),
                updated_parameters=dict(step.parameters),
                reason="; ".join(reasons or []) or "Parameters updated during execution",
                original_action=original.action if step.action != original.action else None,
                updated_action=step.action if step.action != original.action else None,
            )

        return StepExecution(
            result=result,
            step=step,
            plan_update=plan_update,
            decision=decision,
            question=question,
            adaptation=adaptation,
        )


__all__ = ["SleepFn", "StepExecutor"]
