"""Assesses plan progress between steps."""

from __future__ import annotations

import json
import logging
from typing import Optional

from config import ExecutorConfig
from executor_agent.exceptions import OracleError
from executor_agent.execution.models import ExecutionState, PlanValidationResult
from executor_agent.execution.state_manager import StateManager
from executor_agent.observability.telemetry_service import TelemetryService
from executor_agent.oracle.reasoning_oracle import OracleRequest, ReasoningOracle

_SYSTEM_PROMPT = (
    "You review the progress of a plan executor after each step. You judge whether the "
    "plan is still valid, whether the user's goal is achieved, and whether execution "
    "should continue, adapt or be replanned. Respond ONLY with valid JSON."
)


class PlanValidator:
    """Combines a deterministic progress ratio with an oracle assessment."""

    def __init__(
        self,
        oracle: ReasoningOracle,
        *,
        config: Optional[ExecutorConfig] = None,
        state_manager: Optional[StateManager] = None,
        telemetry: Optional[TelemetryService] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._oracle = oracle
        self._config = config or ExecutorConfig()
        self._state_manager = state_manager or StateManager()
        self._telemetry = telemetry
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    async def validate_progress(self, state: ExecutionState) -> PlanValidationResult:
        progress = self._state_manager.get_progress(state)
        has_errors = bool(state.errors)
        goal_achieved = self._state_manager.is_goal_achieved(state)

        request = OracleRequest(
            system_prompt=_SYSTEM_PROMPT,
            user_prompt=self._build_prompt(state, progress),
            temperature=self._config.validation_temperature,
            max_tokens=self._config.validation_max_tokens,
        )

        try:
            assessment = await self._oracle.decide(request, PlanValidationResult, component="PlanValidator")
        except OracleError as ex:
            self._logger.warning(f"Progress validation failed, failing closed: {ex}")
            if self._telemetry:
                self._telemetry.record_error("PlanValidator", type(ex).__name__, str(ex))
            return PlanValidationResult(
                is_valid=not has_errors,
                progress=progress,
                goal_achieved=goal_achieved,
                should_continue=not has_errors,
                should_adapt=False,
                should_replan=has_errors,
                reasoning=f"Automatic validation unavailable: {ex}",
                recommendations=["Review the accumulated errors before continuing"] if has_errors else [],
            )

        result = assessment.model_copy(update={"progress": progress})
        self._logger.info(
            "Plan progress %.0f%%: valid=%s, goal_achieved=%s, continue=%s, replan=%s",
            progress * 100,
            result.is_valid,
            result.goal_achieved,
            result.should_continue,
            result.should_replan,
        )
        return result

    def _build_prompt(self, state: ExecutionState, progress: float) -> str:
        recent = [
            {
                "step": result.step_order,
                "action": result.tool_called,
                "success": result.success,
                "error": result.error,
            }
            for result in state.execution_results[-3:]
        ]

        partial = []
        for step_id, value in state.partial_results.items():
            text = value if isinstance(value, str) else json.dumps(value, default=str)
            partial.append(f"- {step_id}: {text[:100]}")

        return f"""Plan goal: {state.plan.goal}
User query: {state.request_context.user_query}

Progress: {len(state.executed_steps)}/{len(state.plan.steps)} steps executed ({progress:.0%})

Recent results:
{json.dumps(recent, indent=2)}

Partial results:
{chr(10).join(partial) if partial else '(none)'}

Errors:
{chr(10).join(f'- {error}' for error in state.errors) if state.errors else '(none)'}

Respond ONLY with valid JSON:
{{
  "isValid": true | false,
  "goalAchieved": true | false,
  "shouldContinue": true | false,
  "shouldAdapt": true | false,
  "shouldReplan": true | false,
  "reasoning": "short explanation",
  "recommendations": ["..."]
}}"""


__all__ = ["PlanValidator"]
