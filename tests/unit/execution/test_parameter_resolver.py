"""Tests for validating and filling in missing required parameters."""

import pytest

from conftest import FACILITY_ID, SENSOR_ID, FakeOracle
from executor_agent.exceptions import ToolRegistryError
from executor_agent.execution.models import Step
from executor_agent.execution.parameter_resolver import ParameterResolver
from executor_agent.registry.tooling_metadata import ParamCategorization, ValidationReport


def _missing(name: str, **categories) -> ValidationReport:
    return ValidationReport(
        is_valid=False,
        missing_params=[name],
        categorization=ParamCategorization(**categories),
    )


class TestValidateAndResolve:
    """Test the validation and resolution flow."""

    @pytest.mark.asyncio
    async def test_valid_parameters_pass_through(self, registry, state):
        resolver = ParameterResolver(registry, FakeOracle())
        step = Step(id="s", order=1, action="get_facility", parameters={"facility_id": FACILITY_ID})

        outcome = await resolver.validate_and_resolve(step, state)

        assert outcome.success is True
        assert outcome.was_updated is False
        args = registry.validate.await_args.args
        assert args[0] == "get_facility"
        assert args[2]["userQuery"] == "Show me facility WTP"

    @pytest.mark.asyncio
    async def test_resolvable_param_is_looked_up(self, registry, state):
        registry.validate.side_effect = [
            _missing("facility_id", resolvable=["facility_id"]),
            ValidationReport(is_valid=True),
        ]
        registry.invoke.return_value = [{"_id": FACILITY_ID, "shortCode": "WTP"}]
        oracle = FakeOracle([{
            "resolutions": [{
                "paramName": "facility_id",
                "resolutionStrategy": {"tool": "list_facilities", "arguments": {"shortCode": "WTP"}},
            }],
        }])
        resolver = ParameterResolver(registry, oracle)
        step = Step(id="s", order=2, action="get_facility")

        outcome = await resolver.validate_and_resolve(step, state)

        assert outcome.success is True
        assert outcome.was_updated is True
        assert outcome.parameters == {"facility_id": FACILITY_ID}
        registry.invoke.assert_awaited_once_with("list_facilities", {"shortCode": "WTP"})

    @pytest.mark.asyncio
    async def test_lookup_via_unknown_tool_is_ignored(self, registry, state):
        registry.validate.return_value = _missing("facility_id", resolvable=["facility_id"])
        oracle = FakeOracle([{
            "resolutions": [{"paramName": "facility_id", "resolutionStrategy": {"tool": "find_anything"}}],
        }])
        resolver = ParameterResolver(registry, oracle)

        outcome = await resolver.validate_and_resolve(Step(id="s", order=2, action="get_facility"), state)

        assert outcome.success is False
        assert outcome.missing_params == ["facility_id"]
        registry.invoke.assert_not_called()

    @pytest.mark.asyncio
    async def test_inferable_param(self, registry, state):
        registry.validate.side_effect = [_missing("hours", can_infer=["hours"]), ValidationReport(is_valid=True)]
        oracle = FakeOracle([{"inferences": [{"paramName": "hours", "inferredValue": 24}]}])
        resolver = ParameterResolver(registry, oracle)
        step = Step(id="s", order=3, action="get_sensor_readings", parameters={"sensorId": SENSOR_ID})

        outcome = await resolver.validate_and_resolve(step, state)

        assert outcome.success is True
        assert outcome.parameters == {"sensorId": SENSOR_ID, "hours": 24}

    @pytest.mark.asyncio
    async def test_must_ask_user_fails_without_lookups(self, registry, state):
        registry.validate.return_value = _missing("hours", must_ask_user=["hours"])
        oracle = FakeOracle()
        resolver = ParameterResolver(registry, oracle)
        step = Step(id="s", order=3, action="get_sensor_readings", parameters={"sensorId": SENSOR_ID})

        outcome = await resolver.validate_and_resolve(step, state)

        assert outcome.success is False
        assert outcome.missing_params == ["hours"]
        assert outcome.error == "Missing required parameters that need user input: hours"
        assert oracle.requests == []

    @pytest.mark.asyncio
    async def test_local_schema_check_when_registry_cannot_validate(self, registry, state):
        registry.validate.side_effect = ToolRegistryError("tools/validate error: Method not found")
        registry.invoke.return_value = [{"_id": FACILITY_ID}]
        oracle = FakeOracle([{
            "resolutions": [{
                "paramName": "facility_id",
                "resolutionStrategy": {"tool": "list_facilities", "arguments": {"shortCode": "WTP"}},
            }],
        }])
        resolver = ParameterResolver(registry, oracle)

        outcome = await resolver.validate_and_resolve(Step(id="s", order=2, action="get_facility"), state)

        assert outcome.success is True
        assert outcome.parameters == {"facility_id": FACILITY_ID}

    @pytest.mark.asyncio
    async def test_workflow_template_only_warns(self, registry, state):
        resolver = ParameterResolver(registry, FakeOracle())
        step = Step(id="s", order=4, action="facility_report")

        outcome = await resolver.validate_and_resolve(step, state)

        assert outcome.success is True
        registry.validate.assert_not_called()


class TestValidationContext:
    """Test hints passed to the registry validator."""

    def test_short_code_and_known_identifiers(self, registry, state):
        resolver = ParameterResolver(registry, FakeOracle())
        state.partial_results["step-1"] = [{"_id": FACILITY_ID, "shortCode": "WTP"}]

        context = resolver.build_validation_context(state)

        assert context == {
            "userQuery": "Show me facility WTP",
            "shortCode": "WTP",
            "knownIdentifiers": {"step-1": FACILITY_ID},
        }


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
