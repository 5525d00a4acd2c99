"""Typed models for plans, step executions and oracle decisions."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from executor_agent.registry.tooling_metadata import RegistryCatalog


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model accepting both camelCase aliases and field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenModel(BaseModel):
    """Immutable record that also accepts camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class ErrorType(str, Enum):
    """Machine-readable failure kinds reported on a step result."""

    COORDINATION = "coordination-error"
    VALIDATION = "validation-error"
    TOOL = "tool-error"


class StepPhase(str, Enum):
    """States of the step execution state machine."""

    COORDINATING = "coordinating"
    VALIDATING = "validating"
    INVOKING = "invoking"
    RECOVERING = "recovering"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    AWAITING_USER = "awaiting-user"
    SKIPPED = "skipped"
    FAILED = "failed"


class StepOutcome(str, Enum):
    """Terminal states a step execution can end in."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    AWAITING_USER = "awaiting-user"


class StepParameters(dict):
    """Read-only parameter mapping held by a step revision.

    Changes go through :meth:`Step.revise`, which builds a new revision.
    """

    def _read_only(self, *args, **kwargs):
        raise TypeError("Step parameters are read-only, use Step.revise() to change them")

    __setitem__ = __delitem__ = __ior__ = _read_only
    clear = pop = popitem = setdefault = update = _read_only

    def __reduce__(self):
        return (self.__class__, (dict(self),))


class Step(FrozenModel):
    """One unit of plan execution: an action name plus its parameters."""

    id: str
    order: int
    action: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=StepParameters)
    dependencies: List[str] = Field(default_factory=list)
    revision: int = 0

    @field_validator("parameters")
    @classmethod
    def _freeze_parameters(cls, value: Dict[str, Any]) -> StepParameters:
        return StepParameters(value)

    def revise(
        self,
        *,
        action: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> "Step":
        """Return the next revision with a new action and/or parameter set."""
        return self.model_copy(
            update={
                "action": action or self.action,
                "parameters": StepParameters(parameters if parameters is not None else self.parameters),
                "revision": self.revision + 1,
            }
        )


class Plan(FrozenModel):
    """Ordered steps towards a natural-language goal."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    goal: str
    steps: List[Step] = Field(default_factory=list)
    version: int = 0

    def get_step(self, step_id: str) -> Optional[Step]:
        return next((step for step in self.steps if step.id == step_id), None)

    def ordered_steps(self) -> List[Step]:
        return sorted(self.steps, key=lambda step: step.order)

    def commit(self, revision: Step) -> "Plan":
        """Return a new plan version with ``revision`` replacing the step of the same id."""
        if self.get_step(revision.id) is None:
            raise ValueError(f"Step {revision.id} is not part of plan {self.id}")
        steps = [revision if step.id == revision.id else step for step in self.steps]
        return self.model_copy(update={"steps": steps, "version": self.version + 1})


class RequestContext(CamelModel):
    """The user request a plan execution serves."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_query: str = ""
    agent_chain: List[str] = Field(default_factory=list)


class ExecutionResult(FrozenModel):
    """Terminal record of one step execution."""

    step_id: str
    step_order: int
    success: bool
    outcome: StepOutcome
    result: Any = None
    error: Optional[str] = None
    error_type: Optional[ErrorType] = None
    duration_ms: int = 0
    retries: int = 0
    timestamp: datetime = Field(default_factory=_utcnow)
    tool_called: str = ""
    parameters_used: Dict[str, Any] = Field(default_factory=dict)
    missing_params: List[str] = Field(default_factory=list)


class PlanUpdate(FrozenModel):
    """Audit record of a parameter or action rewrite."""

    step_id: str
    step_order: int
    timestamp: datetime = Field(default_factory=_utcnow)
    original_parameters: Dict[str, Any] = Field(default_factory=dict)
    updated_parameters: Dict[str, Any] = Field(default_factory=dict)
    reason: str = ""
    original_action: Optional[str] = None
    updated_action: Optional[str] = None


class CoordinationRecommendation(str, Enum):
    PROCEED = "proceed"
    EXTRACT = "extract"
    ASK_USER = "ask-user"
    SKIP = "skip"


class CoordinationResult(CamelModel):
    """Oracle verdict on whether a step's parameters need resolving."""

    needs_coordination: bool = False
    reasoning: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)
    extracted_values: Dict[str, Any] = Field(default_factory=dict)
    missing_params: List[str] = Field(default_factory=list)
    alternatives: List[Any] = Field(default_factory=list)
    recommendation: CoordinationRecommendation = CoordinationRecommendation.PROCEED

    @field_validator("parameters", "extracted_values", mode="before")
    @classmethod
    def _null_mapping(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("missing_params", "alternatives", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value


class CoordinationOutcome(BaseModel):
    """Parameters after coordination, with an account of what happened."""

    parameters: Dict[str, Any] = Field(default_factory=dict)
    was_updated: bool = False
    original_parameters: Dict[str, Any] = Field(default_factory=dict)
    extraction_impossible: bool = False
    reason: Optional[str] = None
    remaining_placeholders: List[str] = Field(default_factory=list)
    extraction_attempts: List[str] = Field(default_factory=list)


class Adaptation(CamelModel):
    """A rewrite of a step's action suggested during error recovery."""

    step_id: Optional[str] = None
    original_action: Optional[str] = None
    adapted_action: Optional[str] = None
    adapted_parameters: Optional[Dict[str, Any]] = None
    reason: str = ""


class RetryDecision(CamelModel):
    decision: Literal["retry"] = "retry"
    reason: str = ""
    max_retries: int = Field(default=3, ge=1)


class AdaptDecision(CamelModel):
    decision: Literal["adapt"] = "adapt"
    reason: str = ""
    adaptation: Optional[Adaptation] = None


class AskUserDecision(CamelModel):
    decision: Literal["ask-user"] = "ask-user"
    reason: str = ""


class SkipDecision(CamelModel):
    decision: Literal["skip"] = "skip"
    reason: str = ""


ErrorDecision = Annotated[
    Union[RetryDecision, AdaptDecision, AskUserDecision, SkipDecision],
    Field(discriminator="decision"),
]
ERROR_DECISION_ADAPTER: TypeAdapter = TypeAdapter(ErrorDecision)


class QuestionCategory(str, Enum):
    MISSING_DATA = "missing-data"
    ERROR_RECOVERY = "error-recovery"
    COORDINATION = "coordination"
    AMBIGUITY = "ambiguity"
    USER_CHOICE = "user-choice"


class QuestionPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class QuestionContext(FrozenModel):
    """What failed, what was tried and what to do next."""

    step_id: str
    step_order: int
    what_failed: str
    what_was_tried: List[str] = Field(default_factory=list)
    current_state: str = ""
    suggestion: str = ""


class FollowUpQuestion(FrozenModel):
    """A structured question surfaced to the end user."""

    id: str
    question: str
    category: QuestionCategory
    priority: QuestionPriority = QuestionPriority.MEDIUM
    context: QuestionContext
    created_at: datetime = Field(default_factory=_utcnow)


class PlanValidationResult(CamelModel):
    """Assessment of whether a plan is still valid and making progress."""

    is_valid: bool = True
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    goal_achieved: bool = False
    should_continue: bool = True
    should_adapt: bool = False
    should_replan: bool = False
    reasoning: str = ""
    recommendations: List[str] = Field(default_factory=list)


@dataclass(slots=True)
class ExecutionState:
    """Process-local state of one plan execution."""

    plan: Plan
    request_context: RequestContext
    catalog: RegistryCatalog = field(default_factory=RegistryCatalog)
    executed_steps: Set[str] = field(default_factory=set)
    execution_results: List[ExecutionResult] = field(default_factory=list)
    partial_results: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    questions_asked: List[FollowUpQuestion] = field(default_factory=list)
    adaptations: List[Adaptation] = field(default_factory=list)
    plan_updates: List[PlanUpdate] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)

    @property
    def previous_results(self) -> Dict[str, Any]:
        return self.partial_results


@dataclass(slots=True)
class StepContext:
    """Input to a single step execution."""

    step: Step
    state: ExecutionState


@dataclass(slots=True)
class StepExecution:
    """Output of a single step execution.

    ``step`` is the latest revision of the step; the caller commits it into
    the plan together with ``plan_update``.
    """

    result: ExecutionResult
    step: Step
    plan_update: Optional[PlanUpdate] = None
    decision: Optional[ErrorDecision] = None
    question: Optional[FollowUpQuestion] = None
    adaptation: Optional[Adaptation] = None


class PlanExecutionReport(BaseModel):
    """Outcome of running a plan through the execution engine."""

    request_id: str
    plan: Plan
    overall_success: bool
    results: List[ExecutionResult] = Field(default_factory=list)
    partial_results: Dict[str, Any] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)
    questions: List[FollowUpQuestion] = Field(default_factory=list)
    adaptations: List[Adaptation] = Field(default_factory=list)
    plan_updates: List[PlanUpdate] = Field(default_factory=list)
    requires_user_feedback: bool = False
    cancelled: bool = False
    replan_requested: bool = False
    last_validation: Optional[PlanValidationResult] = None
    total_duration_ms: int = 0


__all__ = [
    "Adaptation",
    "AdaptDecision",
    "AskUserDecision",
    "CoordinationOutcome",
    "CoordinationRecommendation",
    "CoordinationResult",
    "ERROR_DECISION_ADAPTER",
    "ErrorDecision",
    "ErrorType",
    "ExecutionResult",
    "ExecutionState",
    "FollowUpQuestion",
    "Plan",
    "PlanExecutionReport",
    "PlanUpdate",
    "PlanValidationResult",
    "QuestionCategory",
    "QuestionContext",
    "QuestionPriority",
    "RequestContext",
    "RetryDecision",
    "SkipDecision",
    "Step",
    "StepParameters",
    "StepContext",
    "StepExecution",
    "StepOutcome",
    "StepPhase",
]
