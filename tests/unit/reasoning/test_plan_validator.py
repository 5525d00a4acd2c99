"""Tests for progress validation between steps."""

from unittest.mock import Mock

import pytest

from conftest import FakeOracle
from executor_agent.execution.state_manager import StateManager
from executor_agent.reasoning.plan_validator import PlanValidator


class TestPlanValidator:
    """Test progress assessment."""

    @pytest.mark.asyncio
    async def test_progress_is_computed_not_trusted(self, state):
        oracle = FakeOracle([{
            "isValid": True,
            "progress": 0.9,
            "goalAchieved": False,
            "shouldContinue": True,
            "reasoning": "on track",
        }])
        validator = PlanValidator(oracle)
        state.executed_steps.add("step-1")

        result = await validator.validate_progress(state)

        assert result.progress == 0.5
        assert result.should_continue is True
        assert result.reasoning == "on track"

    @pytest.mark.asyncio
    async def test_oracle_can_stop_execution(self, state):
        oracle = FakeOracle([{"isValid": False, "shouldContinue": False, "shouldReplan": True}])
        validator = PlanValidator(oracle)

        result = await validator.validate_progress(state)

        assert result.should_continue is False
        assert result.should_replan is True

    @pytest.mark.asyncio
    async def test_fails_closed_on_errors(self, state, mock_telemetry_service):
        validator = PlanValidator(FakeOracle([RuntimeError("down")]), telemetry=mock_telemetry_service)
        state.executed_steps.add("step-1")
        state.errors.append("Step 1: timeout")

        result = await validator.validate_progress(state)

        assert result.is_valid is False
        assert result.should_continue is False
        assert result.should_replan is True
        assert result.goal_achieved is False
        mock_telemetry_service.record_error.assert_called_once()

    @pytest.mark.asyncio
    async def test_fallback_without_errors_continues(self, state):
        validator = PlanValidator(FakeOracle(["garbled"]))
        state.executed_steps.update({"step-1", "step-2"})

        result = await validator.validate_progress(state)

        assert result.is_valid is True
        assert result.should_continue is True
        assert result.should_replan is False
        assert result.goal_achieved is True
        assert result.progress == 1.0

    @pytest.mark.asyncio
    async def test_uses_state_manager_for_progress(self, state):
        state_manager = Mock(spec=StateManager)
        state_manager.get_progress.return_value = 0.25
        state_manager.is_goal_achieved.return_value = False
        validator = PlanValidator(FakeOracle([RuntimeError("down")]), state_manager=state_manager)

        result = await validator.validate_progress(state)

        assert result.progress == 0.25
        assert result.goal_achieved is False
        state_manager.get_progress.assert_called_once_with(state)
        state_manager.is_goal_achieved.assert_called_once_with(state)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
