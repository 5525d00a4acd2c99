"""Builds and updates the process-local state of a plan execution."""

from __future__ import annotations

import logging
from typing import List, Optional

from executor_agent.execution.models import (
    ExecutionResult,
    ExecutionState,
    Plan,
    PlanUpdate,
    RequestContext,
    Step,
    StepContext,
    StepExecution,
)
from executor_agent.registry.tooling_metadata import RegistryCatalog


class StateManager:
    """Owns every mutation of :class:`ExecutionState` made on behalf of the engine."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    def build_initial_state(
        self,
        plan: Plan,
        request_context: RequestContext,
        catalog: Optional[RegistryCatalog] = None,
    ) -> ExecutionState:
        return ExecutionState(
            plan=plan,
            request_context=request_context,
            catalog=catalog or RegistryCatalog(),
        )

    def build_step_context(self, step: Step, state: ExecutionState) -> StepContext:
        return StepContext(step=step, state=state)

    def update_state_after_step(self, state: ExecutionState, execution: StepExecution) -> ExecutionState:
        """Commit the step revision and record the result of one step execution."""
        current = state.plan.get_step(execution.step.id)
        if current is not None and current != execution.step:
            state.plan = state.plan.commit(execution.step)
            self._logger.debug(
                "Committed revision %s of step %s (plan version %s)",
                execution.step.revision,
                execution.step.id,
                state.plan.version,
            )

        self.record_result(state, execution.result, execution.plan_update)

        if execution.adaptation:
            state.adaptations.append(execution.adaptation)
        if execution.question:
            state.questions_asked.append(execution.question)
        return state

    def record_result(
        self,
        state: ExecutionState,
        result: ExecutionResult,
        plan_update: Optional[PlanUpdate] = None,
    ) -> None:
        state.execution_results.append(result)
        state.executed_steps.add(result.step_id)

        # Empty lists are kept: later steps must see that a lookup came back empty.
        if result.success and result.result is not None:
            state.partial_results[result.step_id] = result.result

        if result.error:
            state.errors.append(f"Step {result.step_order}: {result.error}")

        if plan_update:
            state.plan_updates.append(plan_update)

    def get_progress(self, state: ExecutionState) -> float:
        total = len(state.plan.steps)
        return len(state.executed_steps) / total if total else 0.0

    def is_goal_achieved(self, state: ExecutionState) -> bool:
        total = len(state.plan.steps)
        return total > 0 and len(state.executed_steps) == total and not state.errors

    def get_ready_steps(self, state: ExecutionState) -> List[Step]:
        """Steps not yet executed whose dependencies have all executed, in plan order."""
        return [
            step
            for step in state.plan.ordered_steps()
            if step.id not in state.executed_steps
            and all(dependency in state.executed_steps for dependency in step.dependencies)
        ]


__all__ = ["StateManager"]
