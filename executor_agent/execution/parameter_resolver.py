"""Validates step parameters against the live schema and fills in missing ones."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import Field

from config import ExecutorConfig
from executor_agent.exceptions import OracleError, ToolError
from executor_agent.execution.models import CamelModel, ExecutionState, Step
from executor_agent.observability.telemetry_service import TelemetryService
from executor_agent.oracle.reasoning_oracle import OracleRequest, ReasoningOracle
from executor_agent.registry.schema_formatter import (
    detect_lookup_flow,
    extract_identifier,
    format_tools_for_prompt,
    is_identifier_field,
    is_null_like,
    is_unresolved,
    truncate,
)
from executor_agent.registry.tool_registry import ToolRegistry
from executor_agent.registry.tooling_metadata import (
    ParamCategorization,
    ToolDescriptor,
    ValidationReport,
)

_SHORT_CODE = re.compile(r"\b[A-Z]{2,4}\b")

_SYSTEM_PROMPT = (
    "You complete the parameters of a tool call for a plan executor. You only use tools "
    "from the catalog and values supported by the context. Respond ONLY with valid JSON."
)


class ResolutionStrategy(CamelModel):
    tool: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ParamResolution(CamelModel):
    param_name: str
    resolution_strategy: ResolutionStrategy


class ResolutionPlan(CamelModel):
    """Lookup calls proposed by the oracle for resolvable parameters."""

    resolutions: List[ParamResolution] = Field(default_factory=list)


class ParamInference(CamelModel):
    param_name: str
    inferred_value: Any = None


class InferencePlan(CamelModel):
    """Values the oracle derived from context for inferable parameters."""

    inferences: List[ParamInference] = Field(default_factory=list)


@dataclass(slots=True)
class ResolutionOutcome:
    """Parameters after validation, and whether the step may be invoked."""

    success: bool
    parameters: Dict[str, Any]
    was_updated: bool = False
    error: Optional[str] = None
    missing_params: List[str] = field(default_factory=list)


class ParameterResolver:
    """Checks required parameters and resolves or infers the missing ones.

    Missing parameters are triaged by the registry into resolvable (fetched by
    calling a lookup tool), inferable (derived by the oracle) and must-ask-user.
    Any must-ask-user parameter fails validation without invoking anything.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        oracle: ReasoningOracle,
        *,
        config: Optional[ExecutorConfig] = None,
        telemetry: Optional[TelemetryService] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._registry = registry
        self._oracle = oracle
        self._config = config or ExecutorConfig()
        self._telemetry = telemetry
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    async def validate_and_resolve(self, step: Step, state: ExecutionState) -> ResolutionOutcome:
        parameters = dict(step.parameters)
        tool = state.catalog.find_tool(step.action)
        prompt = state.catalog.find_prompt(step.action)

        if tool is None:
            if prompt is not None:
                missing = [name for name in prompt.required_arguments if is_unresolved(parameters.get(name))]
                if missing:
                    self._logger.warning(
                        "Workflow template %s is missing arguments %s; it may apply defaults",
                        step.action,
                        missing,
                    )
            return ResolutionOutcome(success=True, parameters=parameters)

        report = await self._validate(tool, parameters, state)
        if self._is_complete(report):
            return ResolutionOutcome(success=True, parameters=parameters)

        categorization = report.categorization
        triaged = set(categorization.resolvable) | set(categorization.can_infer) | set(categorization.must_ask_user)
        must_ask = list(categorization.must_ask_user) + [
            name for name in report.missing_params if name not in triaged
        ]
        if must_ask:
            return self._failure(parameters, must_ask, "Missing required parameters that need user input")

        updates: Dict[str, Any] = {}
        if categorization.resolvable:
            updates.update(await self._resolve(step, state, categorization.resolvable, parameters))
        if categorization.can_infer:
            updates.update(await self._infer(step, state, tool, categorization.can_infer, parameters))

        if not updates:
            return self._failure(parameters, report.missing_params, "Could not resolve missing required parameters")

        parameters.update(updates)
        self._logger.info("Resolved parameters for step %s: %s", step.order, sorted(updates))

        report = await self._validate(tool, parameters, state)
        if not self._is_complete(report):
            return self._failure(
                parameters,
                report.missing_params,
                "Required parameters still missing after resolution",
                was_updated=True,
            )
        return ResolutionOutcome(success=True, parameters=parameters, was_updated=True)

    def build_validation_context(self, state: ExecutionState) -> Dict[str, Any]:
        """Hints the registry validator can use to categorize missing parameters."""
        query = state.request_context.user_query
        context: Dict[str, Any] = {"userQuery": query}

        codes = _SHORT_CODE.findall(query)
        if codes:
            context["shortCode"] = codes[0]

        identifiers = {}
        for step_id, result in state.partial_results.items():
            if isinstance(result, list) and result:
                identifier = extract_identifier(result[0], self._config.identifier_pattern)
                if identifier:
                    identifiers[step_id] = identifier
        if identifiers:
            context["knownIdentifiers"] = identifiers
        return context

    @staticmethod
    def _is_complete(report: ValidationReport) -> bool:
        return report.is_valid and not report.missing_params

    @staticmethod
    def _failure(
        parameters: Dict[str, Any],
        missing: List[str],
        message: str,
        *,
        was_updated: bool = False,
    ) -> ResolutionOutcome:
        detail = f"{message}: {', '.join(missing)}" if missing else message
        return ResolutionOutcome(
            success=False,
            parameters=parameters,
            was_updated=was_updated,
            error=detail,
            missing_params=list(missing),
        )

    async def _validate(
        self,
        tool: ToolDescriptor,
        parameters: Dict[str, Any],
        state: ExecutionState,
    ) -> ValidationReport:
        try:
            return await self._registry.validate(tool.name, parameters, self.build_validation_context(state))
        except ToolError as ex:
            self._logger.warning(f"Registry validation unavailable for {tool.name}, checking schema locally: {ex}")
            return self._local_report(tool, parameters, state)

    def _local_report(
        self,
        tool: ToolDescriptor,
        parameters: Dict[str, Any],
        state: ExecutionState,
    ) -> ValidationReport:
        missing = [name for name in tool.required_params if is_unresolved(parameters.get(name))]
        lookup = detect_lookup_flow(state.catalog, tool.name)
        resolvable = [
            name
            for name in missing
            if is_identifier_field(name) and lookup.lookup_tool and lookup.id_param_name == name
        ]
        return ValidationReport(
            is_valid=not missing,
            missing_params=missing,
            categorization=ParamCategorization(
                resolvable=resolvable,
                must_ask_user=[name for name in missing if name not in resolvable],
            ),
            required_params=tool.required_params,
            provided_params=[name for name in parameters if not is_unresolved(parameters[name])],
        )

    async def _resolve(
        self,
        step: Step,
        state: ExecutionState,
        names: List[str],
        parameters: Dict[str, Any],
    ) -> Dict[str, Any]:
        request = OracleRequest(
            system_prompt=_SYSTEM_PROMPT,
            user_prompt=f"""User query: {state.request_context.user_query}
Step #{step.order}: {step.description}
Action: {step.action}
Known parameters: {json.dumps(parameters, default=str)}

These parameters can be looked up by calling another tool: {', '.join(names)}

{format_tools_for_prompt(state.catalog)}

For each parameter choose one lookup tool and its arguments.
Respond ONLY with valid JSON:
{{"resolutions": [{{"paramName": "name", "resolutionStrategy": {{"tool": "tool_name", "arguments": {{}}}}}}]}}""",
            temperature=self._config.coordination_temperature,
            max_tokens=self._config.oracle_max_tokens,
        )

        try:
            plan = await self._oracle.decide(request, ResolutionPlan, component="ParameterResolver")
        except OracleError as ex:
            self._logger.warning(f"Could not plan parameter lookups for step {step.order}: {ex}")
            return {}

        resolved: Dict[str, Any] = {}
        for resolution in plan.resolutions:
            if resolution.param_name not in names:
                continue
            strategy = resolution.resolution_strategy
            if state.catalog.tools and state.catalog.find_tool(strategy.tool) is None:
                self._logger.warning("Skipping lookup via unknown tool %s", strategy.tool)
                continue

            try:
                result = await self._registry.invoke(strategy.tool, strategy.arguments)
            except ToolError as ex:
                self._logger.warning(f"Lookup {strategy.tool} for {resolution.param_name} failed: {ex}")
                continue

            value = self._identifier_from(result)
            if value is not None:
                resolved[resolution.param_name] = value
                self._logger.info(
                    "Resolved %s via %s: %s", resolution.param_name, strategy.tool, truncate(str(value), 60)
                )
        return resolved

    def _identifier_from(self, result: Any) -> Optional[Any]:
        first = result[0] if isinstance(result, list) and result else result
        if not isinstance(first, dict):
            return None
        value = extract_identifier(first, self._config.identifier_pattern)
        if value is None:
            value = first.get("_id") or first.get("id")
        return None if is_null_like(value) else value

    async def _infer(
        self,
        step: Step,
        state: ExecutionState,
        tool: ToolDescriptor,
        names: List[str],
        parameters: Dict[str, Any],
    ) -> Dict[str, Any]:
        schemas = {name: tool.properties.get(name, {}) for name in names}
        request = OracleRequest(
            system_prompt=_SYSTEM_PROMPT,
            user_prompt=f"""Plan goal: {state.plan.goal}
User query: {state.request_context.user_query}
Step #{step.order}: {step.description}
Action: {step.action}
Known parameters: {json.dumps(parameters, default=str)}

Infer sensible values for these parameters from the context:
{json.dumps(schemas, indent=2)}

Respond ONLY with valid JSON:
{{"inferences": [{{"paramName": "name", "inferredValue": "value"}}]}}""",
            temperature=self._config.coordination_temperature,
            max_tokens=self._config.oracle_max_tokens,
        )

        try:
            plan = await self._oracle.decide(request, InferencePlan, component="ParameterResolver")
        except OracleError as ex:
            self._logger.warning(f"Could not infer parameters for step {step.order}: {ex}")
            return {}

        return {
            inference.param_name: inference.inferred_value
            for inference in plan.inferences
            if inference.param_name in names and not is_unresolved(inference.inferred_value)
        }


__all__ = [
    "InferencePlan",
    "ParameterResolver",
    "ResolutionOutcome",
    "ResolutionPlan",
]
