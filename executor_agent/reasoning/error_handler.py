"""Oracle-driven recovery decisions for failed tool invocations."""

from __future__ import annotations

import json
import logging
from typing import Optional

from config import ExecutorConfig
from executor_agent.exceptions import OracleError
from executor_agent.execution.models import (
    ERROR_DECISION_ADAPTER,
    AdaptDecision,
    AskUserDecision,
    ErrorDecision,
    ErrorType,
    ExecutionResult,
    ExecutionState,
    Step,
)
from executor_agent.observability.telemetry_service import TelemetryService
from executor_agent.oracle.reasoning_oracle import OracleRequest, ReasoningOracle
from executor_agent.registry.schema_formatter import (
    format_tools_for_prompt,
    get_tool_parameters,
    is_unresolved,
)

FALLBACK_REASON = "Failed to analyze error automatically"

_SYSTEM_PROMPT = """You are the error recovery agent of a plan executor. You analyze a failed tool
call in the context of the whole execution and choose how to recover:

- "retry": the failure looks transient and the same call may succeed.
- "adapt": a different tool from the catalog would work better, for example a
  list or search tool that finds an identifier before a get-by-id call.
- "ask-user": information is missing that cannot be looked up or inferred.
- "skip": the step is not essential for the user's goal.

Respond ONLY with valid JSON:
{
  "decision": "retry" | "adapt" | "ask-user" | "skip",
  "reason": "why this decision",
  "adaptation": {
    "stepId": "step id",
    "originalAction": "failed tool",
    "adaptedAction": "tool name from the catalog",
    "adaptedParameters": {"param": "value"},
    "reason": "why the alternative works"
  },
  "maxRetries": 3
}
Only include "adaptation" for "adapt" and "maxRetries" for "retry"."""


class ErrorHandler:
    """Chooses retry, adapt, ask-user or skip after a tool failure."""

    def __init__(
        self,
        oracle: ReasoningOracle,
        *,
        config: Optional[ExecutorConfig] = None,
        telemetry: Optional[TelemetryService] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._oracle = oracle
        self._config = config or ExecutorConfig()
        self._telemetry = telemetry
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    async def handle_error(
        self,
        error_message: str,
        error_type: ErrorType,
        step: Step,
        state: ExecutionState,
        last_result: Optional[ExecutionResult] = None,
        *,
        attempt: int = 0,
    ) -> ErrorDecision:
        """Return a recovery decision; falls back to asking the user when analysis fails."""
        request = OracleRequest(
            system_prompt=self._build_system_prompt(state),
            user_prompt=self._build_prompt(error_message, error_type, step, state, last_result, attempt),
            temperature=self._config.error_analysis_temperature,
            max_tokens=self._config.oracle_max_tokens,
        )

        try:
            decision = await self._oracle.decide(request, ERROR_DECISION_ADAPTER, component="ErrorHandler")
        except OracleError as ex:
            self._logger.warning(f"Error analysis failed for step {step.order}: {ex}")
            if self._telemetry:
                self._telemetry.record_error("ErrorHandler", type(ex).__name__, str(ex))
            return AskUserDecision(reason=FALLBACK_REASON)

        if isinstance(decision, AdaptDecision) and decision.adaptation:
            decision = decision.model_copy(update={
                "adaptation": decision.adaptation.model_copy(update={
                    "step_id": decision.adaptation.step_id or step.id,
                    "original_action": decision.adaptation.original_action or step.action,
                })
            })

        self._logger.info(
            "Error decision for step %s: %s (%s)", step.order, decision.decision, decision.reason
        )
        return decision

    def _build_system_prompt(self, state: ExecutionState) -> str:
        catalog_text = format_tools_for_prompt(state.catalog)
        return f"{_SYSTEM_PROMPT}\n\n{catalog_text}" if catalog_text else _SYSTEM_PROMPT

    def _build_prompt(
        self,
        error_message: str,
        error_type: ErrorType,
        step: Step,
        state: ExecutionState,
        last_result: Optional[ExecutionResult],
        attempt: int,
    ) -> str:
        tool = state.catalog.find_tool(step.action)
        if tool:
            required = get_tool_parameters(tool).required
            missing = [name for name in required if is_unresolved(step.parameters.get(name))]
            tool_text = (
                f"Required parameters: {', '.join(required) or 'none'}\n"
                f"Parameters used: {json.dumps(step.parameters, default=str)}\n"
                f"Missing required parameters: {', '.join(missing) or 'none'}"
            )
        else:
            tool_text = f"{step.action} is not a known tool in the catalog."

        previews = []
        for step_id, result in state.partial_results.items():
            source = state.plan.get_step(step_id)
            text = result if isinstance(result, str) else json.dumps(result, default=str)
            previews.append(f"Step {source.order if source else step_id}: {text[:100]}")

        succeeded = sum(1 for result in state.execution_results if result.success)
        failed = len(state.execution_results) - succeeded
        attempts = attempt or (last_result.retries if last_result else 0)

        return f"""User goal: {state.plan.goal}
User query: {state.request_context.user_query}

Failed step #{step.order}: {step.description}
Action: {step.action}
Error type: {error_type.value}
Error: {error_message}
Attempts so far: {attempts} of {self._config.max_attempts}

Tool schema:
{tool_text}

Execution history:
- Steps executed: {len(state.execution_results)}/{len(state.plan.steps)}
- Succeeded: {succeeded}
- Failed: {failed}
- Errors so far: {len(state.errors)}

Previous step results:
{chr(10).join(previews) if previews else 'No previous results'}

Decide how to recover from this error."""


__all__ = ["ErrorHandler", "FALLBACK_REASON"]
