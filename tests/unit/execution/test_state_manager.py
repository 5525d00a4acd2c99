"""Tests for execution state bookkeeping and immutable plan revisions."""

import copy

import pytest

from conftest import FACILITY_ID
from executor_agent.execution.models import (
    Adaptation,
    ExecutionResult,
    Plan,
    PlanUpdate,
    Step,
    StepExecution,
    StepParameters,
    StepOutcome,
)
from executor_agent.execution.state_manager import StateManager


def _result(step_id: str, order: int, *, success: bool = True, result=None, error=None) -> ExecutionResult:
    return ExecutionResult(
        step_id=step_id,
        step_order=order,
        success=success,
        outcome=StepOutcome.SUCCEEDED if success else StepOutcome.FAILED,
        result=result,
        error=error,
        retries=1,
    )


class TestPlanModels:
    """Test immutable step and plan revisions."""

    def test_revise_bumps_revision(self):
        step = Step(id="s", order=1, action="list_facilities", parameters={"shortCode": "WTP"})

        revised = step.revise(parameters={"shortCode": "HQ"})

        assert revised.revision == 1
        assert revised.parameters == {"shortCode": "HQ"}
        assert step.parameters == {"shortCode": "WTP"}
        with pytest.raises(ValueError):
            step.action = "other"

    def test_commit_returns_new_version(self, plan):
        revised = plan.get_step("step-2").revise(parameters={"facility_id": FACILITY_ID})

        committed = plan.commit(revised)

        assert committed.version == plan.version + 1
        assert committed.get_step("step-2").parameters == {"facility_id": FACILITY_ID}
        assert plan.get_step("step-2").parameters == {"facility_id": "<extracted from step-1>"}

    def test_committed_parameters_are_read_only(self, plan):
        revised = plan.get_step("step-2").revise(parameters={"facility_id": FACILITY_ID})
        committed = plan.commit(revised)
        step = committed.get_step("step-2")

        with pytest.raises(TypeError):
            step.parameters["facility_id"] = "other"
        with pytest.raises(TypeError):
            step.parameters.update({"facility_id": "other"})
        with pytest.raises(TypeError):
            del plan.get_step("step-1").parameters["shortCode"]

        assert step.parameters == {"facility_id": FACILITY_ID}
        assert isinstance(step.parameters, StepParameters)
        assert step.model_dump()["parameters"] == {"facility_id": FACILITY_ID}
        assert copy.deepcopy(step.parameters) == {"facility_id": FACILITY_ID}

    def test_commit_unknown_step(self, plan):
        with pytest.raises(ValueError):
            plan.commit(Step(id="ghost", order=9, action="noop"))

    def test_plan_accepts_camel_case(self):
        plan = Plan.model_validate({
            "goal": "g",
            "steps": [{"id": "a", "order": 1, "action": "list_facilities", "dependencies": []}],
        })
        assert plan.steps[0].action == "list_facilities"


class TestStateManager:
    """Test state mutation on behalf of the engine."""

    def test_successful_result_is_stored(self, state):
        manager = StateManager()

        manager.record_result(state, _result("step-1", 1, result=[{"_id": FACILITY_ID}]))

        assert "step-1" in state.executed_steps
        assert state.partial_results["step-1"] == [{"_id": FACILITY_ID}]
        assert state.errors == []

    def test_empty_array_result_is_kept(self, state):
        manager = StateManager()

        manager.record_result(state, _result("step-1", 1, result=[]))

        assert state.partial_results["step-1"] == []

    def test_failed_result_records_error_only(self, state):
        manager = StateManager()

        manager.record_result(state, _result("step-1", 1, success=False, error="timeout"))

        assert "step-1" in state.executed_steps
        assert "step-1" not in state.partial_results
        assert state.errors == ["Step 1: timeout"]

    def test_update_commits_revision_and_audit(self, state):
        manager = StateManager()
        original = state.plan.get_step("step-2")
        revised = original.revise(parameters={"facility_id": FACILITY_ID})
        update = PlanUpdate(
            step_id="step-2",
            step_order=2,
            original_parameters=dict(original.parameters),
            updated_parameters=dict(revised.parameters),
            reason="Coordinated parameters",
        )
        adaptation = Adaptation(step_id="step-2", original_action="get_facility", adapted_action="list_facilities")

        manager.update_state_after_step(state, StepExecution(
            result=_result("step-2", 2, result={"name": "Water Treatment"}),
            step=revised,
            plan_update=update,
            adaptation=adaptation,
        ))

        assert state.plan.version == 1
        assert state.plan.get_step("step-2").parameters == {"facility_id": FACILITY_ID}
        assert state.plan_updates == [update]
        assert state.adaptations == [adaptation]

    def test_unchanged_step_keeps_plan_version(self, state):
        manager = StateManager()
        step = state.plan.get_step("step-1")

        manager.update_state_after_step(state, StepExecution(result=_result("step-1", 1, result=[]), step=step))

        assert state.plan.version == 0

    def test_ready_steps_follow_dependencies(self, state):
        manager = StateManager()

        assert [step.id for step in manager.get_ready_steps(state)] == ["step-1"]

        state.executed_steps.add("step-1")
        assert [step.id for step in manager.get_ready_steps(state)] == ["step-2"]

    def test_progress_and_goal(self, state):
        manager = StateManager()
        assert manager.get_progress(state) == 0.0

        state.executed_steps.update({"step-1", "step-2"})
        assert manager.get_progress(state) == 1.0
        assert manager.is_goal_achieved(state) is True

        state.errors.append("Step 2: boom")
        assert manager.is_goal_achieved(state) is False

    def test_empty_plan_is_not_achieved(self, state, request_context):
        manager = StateManager()
        empty = manager.build_initial_state(Plan(goal="nothing"), request_context)

        assert manager.get_progress(empty) == 0.0
        assert manager.is_goal_achieved(empty) is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
