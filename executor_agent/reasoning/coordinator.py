"""Resolves a step's parameters from the outputs of earlier steps."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Set

from config import ExecutorConfig
from executor_agent.exceptions import OracleError
from executor_agent.execution.models import (
    CoordinationOutcome,
    CoordinationRecommendation,
    CoordinationResult,
    ExecutionState,
    Step,
)
from executor_agent.observability.telemetry_service import TelemetryService
from executor_agent.oracle.reasoning_oracle import OracleRequest, ReasoningOracle
from executor_agent.registry.schema_formatter import (
    detect_lookup_flow,
    extract_identifier,
    format_array_results_for_extraction,
    get_tool_parameters,
    is_error_result,
    is_identifier_field,
    is_null_like,
    is_placeholder,
    is_valid_identifier,
    truncate,
)
from executor_agent.registry.tooling_metadata import ToolDescriptor

_STEP_REFERENCE = re.compile(r"step[\s_-]*([A-Za-z0-9-]+)", re.IGNORECASE)
_STEP_PREFIX = re.compile(r"^step[\s_-]*", re.IGNORECASE)

_SYSTEM_PROMPT = (
    "You are the parameter coordinator of a plan executor. You fill in a step's "
    "parameters with concrete values taken from the outputs of earlier steps. "
    "You never invent values and you always answer with a single JSON object."
)


class Coordinator:
    """Decides whether a step needs parameter enrichment and applies it safely.

    Oracle proposals pass through deterministic guards before they are written
    into the parameter set: empty or null values, names outside the declared
    schema, and malformed identifiers are all discarded.
    """

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

    async def should_coordinate(
        self,
        step: Step,
        state: ExecutionState,
        previous_results: Optional[Dict[str, Any]] = None,
    ) -> CoordinationResult:
        """Ask whether the step's parameters need values extracted from prior results."""
        previous_results = state.partial_results if previous_results is None else previous_results
        tool = state.catalog.find_tool(step.action)

        blocked = self.find_unextractable_params(step, tool, previous_results)
        if blocked:
            self._logger.info(
                "Step %s cannot be coordinated: %s depend on empty or failed results",
                step.order,
                ", ".join(blocked),
            )
            return CoordinationResult(
                needs_coordination=True,
                reasoning="Referenced prior results are empty or errors, so no value can be extracted.",
                missing_params=blocked,
                recommendation=CoordinationRecommendation.ASK_USER,
            )

        if not previous_results and not self.unresolved_params(step, tool):
            return CoordinationResult(reasoning="No unresolved parameters and no prior results.")

        request = OracleRequest(
            system_prompt=_SYSTEM_PROMPT,
            user_prompt=self._build_prompt(step, state, previous_results, tool),
            temperature=self._config.coordination_temperature,
            max_tokens=self._config.oracle_max_tokens,
        )

        try:
            coordination = await self._oracle.decide(request, CoordinationResult, component="Coordinator")
        except OracleError as ex:
            self._logger.warning(f"Coordination analysis failed for step {step.order}: {ex}")
            if self._telemetry:
                self._telemetry.record_error("Coordinator", type(ex).__name__, str(ex))
            return CoordinationResult(
                needs_coordination=False,
                reasoning=f"Coordination analysis unavailable: {ex}",
                recommendation=CoordinationRecommendation.PROCEED,
            )

        self._logger.info(
            "Coordination for step %s: needs_coordination=%s, recommendation=%s",
            step.order,
            coordination.needs_coordination,
            coordination.recommendation.value,
        )
        return coordination

    async def coordinate_parameters(
        self,
        step: Step,
        state: ExecutionState,
        previous_results: Optional[Dict[str, Any]],
        coordination: CoordinationResult,
    ) -> CoordinationOutcome:
        """Apply a coordination verdict to the step's parameters."""
        previous_results = state.partial_results if previous_results is None else previous_results
        original = dict(step.parameters)
        tool = state.catalog.find_tool(step.action)

        blocked = self.find_unextractable_params(step, tool, previous_results)
        if blocked:
            return CoordinationOutcome(
                parameters=dict(original),
                original_parameters=original,
                extraction_impossible=True,
                reason=(
                    f"Cannot determine {', '.join(blocked)}: the prior result it depends on "
                    "is empty or an error"
                ),
                remaining_placeholders=blocked,
            )

        if not coordination.needs_coordination:
            return CoordinationOutcome(
                parameters=dict(original),
                original_parameters=original,
                remaining_placeholders=self._pending(original, tool),
            )

        allowed = self._declared_names(step, state)
        parameters = dict(original)
        attempts: List[str] = []

        for name, value in coordination.extracted_values.items():
            if self._accept_value(name, value, allowed, attempts):
                parameters[name] = value
                attempts.append(f"{name}: extracted")

        for name, value in coordination.parameters.items():
            if parameters.get(name) == value:
                continue
            if self._accept_value(name, value, allowed, attempts):
                parameters[name] = value
                attempts.append(f"{name}: set from coordination parameters")

        remaining = self._pending(parameters, tool)
        if remaining:
            identifier = self._latest_array_identifier(previous_results)
            for name in remaining:
                if identifier and is_identifier_field(name):
                    parameters[name] = identifier
                    attempts.append(f"{name}: identifier taken from most recent array result")
                    self._logger.info("Fallback extraction set %s=%s for step %s", name, identifier, step.order)
            remaining = self._pending(parameters, tool)

        return CoordinationOutcome(
            parameters=parameters,
            was_updated=parameters != original,
            original_parameters=original,
            reason=coordination.reasoning or None,
            remaining_placeholders=remaining,
            extraction_attempts=attempts,
        )

    def unresolved_params(self, step: Step, tool: Optional[ToolDescriptor]) -> List[str]:
        """Parameters holding placeholders or nulls, plus schema-required ones that are absent."""
        names = self._pending(step.parameters, tool)
        if tool:
            names.extend(name for name in tool.required_params if name not in step.parameters)
        return names

    @staticmethod
    def _pending(parameters: Dict[str, Any], tool: Optional[ToolDescriptor]) -> List[str]:
        """Names still holding a placeholder, or a null where the schema requires a value."""
        required = set(tool.required_params) if tool else set()
        return [
            name
            for name, value in parameters.items()
            if is_placeholder(value)
            or (isinstance(value, str) and value.strip().lower() == "null")
            or (is_null_like(value) and name in required)
        ]

    def find_unextractable_params(
        self,
        step: Step,
        tool: Optional[ToolDescriptor],
        previous_results: Dict[str, Any],
    ) -> List[str]:
        """Pending parameters whose referenced prior result is empty or an error.

        Only parameters present in the step count. Absent required parameters
        are left to parameter validation, which can resolve or infer them.
        """
        blocked = []
        for name in self._pending(step.parameters, tool):
            referenced = self._referenced_results(step.parameters[name], previous_results)
            if any(self._is_dead_end(result) for result in referenced):
                blocked.append(name)
        return blocked

    @staticmethod
    def _is_dead_end(result: Any) -> bool:
        return (isinstance(result, list) and not result) or is_error_result(result)

    @staticmethod
    def _referenced_results(value: Any, previous_results: Dict[str, Any]) -> List[Any]:
        """Prior results a parameter value points at; all of them when it names no known step."""
        if isinstance(value, str):
            tokens = {match.lower() for match in _STEP_REFERENCE.findall(value)}
            if tokens:
                matched = [
                    result
                    for step_id, result in previous_results.items()
                    if step_id.lower() in tokens or _STEP_PREFIX.sub("", step_id).lower() in tokens
                ]
                if matched:
                    return matched
        return list(previous_results.values())

    def _declared_names(self, step: Step, state: ExecutionState) -> Set[str]:
        tool = state.catalog.find_tool(step.action)
        if tool:
            return set(tool.properties) | set(tool.required_params)
        prompt = state.catalog.find_prompt(step.action)
        if prompt:
            return {argument.name for argument in prompt.arguments}
        return set(step.parameters)

    def _accept_value(self, name: str, value: Any, allowed: Set[str], attempts: List[str]) -> bool:
        if is_null_like(value) or is_placeholder(value):
            attempts.append(f"{name}: discarded empty or placeholder value")
            return False

        if name not in allowed:
            self._logger.warning("Discarding %s: not a declared parameter", name)
            attempts.append(f"{name}: discarded, not in schema")
            return False

        if is_identifier_field(name) and not is_valid_identifier(value, self._config.identifier_pattern):
            if isinstance(value, str) and len(value) >= self._config.identifier_min_plausible_length:
                self._logger.warning(
                    "Accepting %s=%s although it does not match the identifier format", name, value
                )
                return True
            self._logger.warning("Discarding %s=%r: not a valid identifier", name, value)
            attempts.append(f"{name}: discarded invalid identifier")
            return False

        return True

    def _latest_array_identifier(self, previous_results: Dict[str, Any]) -> Optional[str]:
        for result in reversed(list(previous_results.values())):
            if isinstance(result, list) and result:
                identifier = extract_identifier(result[0], self._config.identifier_pattern)
                if identifier:
                    return identifier
        return None

    def _format_previous_results(self, state: ExecutionState, previous_results: Dict[str, Any]) -> str:
        if not previous_results:
            return "(No previous results)"

        blocks = []
        for step_id, result in previous_results.items():
            source = state.plan.get_step(step_id)
            header = f"[{step_id}]" + (f" step #{source.order} ({source.action})" if source else "")
            if isinstance(result, list):
                if not result:
                    body = "EMPTY ARRAY: the lookup returned no items, nothing can be extracted from it."
                else:
                    body = format_array_results_for_extraction(result)
            else:
                body = json.dumps(result, default=str)
            blocks.append(f"{header}\n{truncate(body, self._config.result_preview_chars)}")
        return "\n\n".join(blocks)

    def _build_prompt(
        self,
        step: Step,
        state: ExecutionState,
        previous_results: Dict[str, Any],
        tool: Optional[ToolDescriptor],
    ) -> str:
        if tool:
            parameters = get_tool_parameters(tool)
            schema_text = (
                f"Required: {', '.join(parameters.required) or '(none)'}\n"
                f"Optional: {', '.join(parameters.optional) or '(none)'}\n"
                f"Properties: {json.dumps(tool.properties, indent=2)}"
            )
        else:
            schema_text = "(No schema available for this action)"

        lookup = detect_lookup_flow(state.catalog, step.action)
        lookup_text = lookup.reason if lookup.needs_lookup else "(none)"

        return f"""Plan goal: {state.plan.goal}
User query: {state.request_context.user_query}

Current step #{step.order}: {step.description}
Action: {step.action}
Current parameters:
{json.dumps(step.parameters, indent=2, default=str)}

Schema for {step.action}:
{schema_text}

Lookup flow: {lookup_text}

Previous step results:
{self._format_previous_results(state, previous_results)}

Decide whether the current parameters need concrete values taken from the previous results.
Respond ONLY with valid JSON:
{{
  "needsCoordination": true | false,
  "reasoning": "short explanation",
  "parameters": {{"param": "value"}},
  "extractedValues": {{"param": "value copied from a previous result"}},
  "missingParams": ["params that cannot be determined"],
  "alternatives": [],
  "recommendation": "proceed" | "extract" | "ask-user" | "skip"
}}

Rules:
- Use ONLY parameter names from the schema above.
- Copy identifiers verbatim from previous results (prefer the _id field).
- Match items to the user query (names, codes) when a result holds several items.
- Never invent values and never return placeholders or "null"; list such params in missingParams.
- If a previous result is an empty array, values cannot be extracted from it."""


__all__ = ["Coordinator"]
