"""Turns blocked steps into structured follow-up questions for the user."""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import List, Optional

from pydantic import Field

from config import ExecutorConfig
from executor_agent.exceptions import OracleError
from executor_agent.execution.models import (
    CamelModel,
    ErrorType,
    ExecutionState,
    FollowUpQuestion,
    QuestionCategory,
    QuestionContext,
    QuestionPriority,
    Step,
)
from executor_agent.observability.telemetry_service import TelemetryService
from executor_agent.oracle.reasoning_oracle import OracleRequest, ReasoningOracle

_SYSTEM_PROMPT = (
    "You write follow-up questions for the user of a plan executor when a step cannot "
    "proceed on its own. Questions are short, specific and answerable in one reply. "
    "Explain what failed and offer a concrete suggestion. Respond ONLY with valid JSON."
)

_RESPONSE_FORMAT = """Respond ONLY with valid JSON:
{
  "question": "the question for the user",
  "category": "missing-data" | "error-recovery" | "coordination" | "ambiguity" | "user-choice",
  "priority": "low" | "medium" | "high",
  "whatFailed": "one sentence",
  "whatWasTried": ["attempt 1", "attempt 2"],
  "currentState": "one sentence on where the plan stands",
  "suggestion": "what the user could provide or decide"
}"""


class QuestionDraft(CamelModel):
    """Question wording proposed by the oracle."""

    question: str = Field(..., min_length=1)
    category: Optional[QuestionCategory] = None
    priority: QuestionPriority = QuestionPriority.MEDIUM
    what_failed: Optional[str] = None
    what_was_tried: List[str] = Field(default_factory=list)
    current_state: Optional[str] = None
    suggestion: Optional[str] = None


def new_question_id() -> str:
    return f"question-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class QuestionGenerator:
    """Generates error-recovery and missing-data questions, with templated fallbacks."""

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

    async def generate_error_question(
        self,
        error: str,
        error_type: ErrorType,
        step: Step,
        state: ExecutionState,
    ) -> Optional[FollowUpQuestion]:
        if not error or not error.strip():
            return None

        tried = self._what_was_tried(step, state)
        prompt = f"""Plan goal: {state.plan.goal}
User query: {state.request_context.user_query}

Step #{step.order}: {step.description}
Action: {step.action}
Parameters: {json.dumps(step.parameters, default=str)}
Error type: {error_type.value}
Error: {error}

What was tried:
{chr(10).join(f'- {item}' for item in tried) or '- nothing yet'}

Write one question that lets the user unblock this step.
{_RESPONSE_FORMAT}"""

        fallback = QuestionDraft(
            question=(
                f"Step {step.order} ({step.action}) failed: {error}. "
                "How would you like to proceed: provide corrected details, skip this step, or stop?"
            ),
            category=QuestionCategory.ERROR_RECOVERY,
            priority=QuestionPriority.HIGH,
            what_failed=error,
            what_was_tried=tried,
            current_state=self._current_state(state),
            suggestion="Provide the missing or corrected information, or ask to skip this step.",
        )
        return await self._generate(step, prompt, fallback, QuestionCategory.ERROR_RECOVERY)

    async def generate_missing_data_question(
        self,
        step: Step,
        state: ExecutionState,
        missing_params: List[str],
    ) -> Optional[FollowUpQuestion]:
        if not missing_params:
            return None

        tool = state.catalog.find_tool(step.action)
        descriptions = []
        for name in missing_params:
            schema = tool.properties.get(name, {}) if tool else {}
            descriptions.append(f"- {name}: {schema.get('description', 'no description')}")

        prompt = f"""Plan goal: {state.plan.goal}
User query: {state.request_context.user_query}

Step #{step.order}: {step.description}
Action: {step.action}
Known parameters: {json.dumps(step.parameters, default=str)}

These required values could not be determined automatically:
{chr(10).join(descriptions)}

Write one question asking the user for exactly these values.
{_RESPONSE_FORMAT}"""

        names = ", ".join(missing_params)
        fallback = QuestionDraft(
            question=f"To run step {step.order} ({step.action}) I need: {names}. Could you provide these values?",
            category=QuestionCategory.MISSING_DATA,
            priority=QuestionPriority.HIGH,
            what_failed=f"Required values could not be determined: {names}",
            what_was_tried=self._what_was_tried(step, state),
            current_state=self._current_state(state),
            suggestion=f"Provide {names} directly, or a name or code that identifies them.",
        )
        return await self._generate(step, prompt, fallback, QuestionCategory.MISSING_DATA)

    async def _generate(
        self,
        step: Step,
        prompt: str,
        fallback: QuestionDraft,
        default_category: QuestionCategory,
    ) -> FollowUpQuestion:
        request = OracleRequest(
            system_prompt=_SYSTEM_PROMPT,
            user_prompt=prompt,
            temperature=self._config.question_temperature,
            max_tokens=self._config.oracle_max_tokens,
        )

        try:
            draft = await self._oracle.decide(request, QuestionDraft, component="QuestionGenerator")
        except OracleError as ex:
            self._logger.warning(f"Question generation failed for step {step.order}, using template: {ex}")
            draft = fallback

        question = FollowUpQuestion(
            id=new_question_id(),
            question=draft.question,
            category=draft.category or default_category,
            priority=draft.priority,
            context=QuestionContext(
                step_id=step.id,
                step_order=step.order,
                what_failed=draft.what_failed or fallback.what_failed or "",
                what_was_tried=draft.what_was_tried or fallback.what_was_tried,
                current_state=draft.current_state or fallback.current_state or "",
                suggestion=draft.suggestion or fallback.suggestion or "",
            ),
        )

        if self._telemetry:
            self._telemetry.record_question(question.category.value, question.priority.value)
        return question

    @staticmethod
    def _what_was_tried(step: Step, state: ExecutionState) -> List[str]:
        tried = [
            f"Called {result.tool_called} with {json.dumps(result.parameters_used, default=str)} "
            f"({result.retries} attempt(s)): {result.error or 'no error'}"
            for result in state.execution_results
            if result.step_id == step.id
        ]
        tried.extend(
            f"Adapted {adaptation.original_action} to {adaptation.adapted_action}"
            for adaptation in state.adaptations
            if adaptation.step_id == step.id
        )
        if not tried:
            tried.append(f"Prepared {step.action} with {json.dumps(step.parameters, default=str)}")
        return tried

    @staticmethod
    def _current_state(state: ExecutionState) -> str:
        return (
            f"{len(state.executed_steps)} of {len(state.plan.steps)} steps executed, "
            f"{len(state.errors)} error(s) so far"
        )


__all__ = ["QuestionDraft", "QuestionGenerator", "new_question_id"]
