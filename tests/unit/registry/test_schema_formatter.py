"""Tests for schema inspection and prompt formatting helpers."""

import pytest

from conftest import FACILITY_ID
from executor_agent.registry.schema_formatter import (
    detect_lookup_flow,
    extract_identifier,
    find_prompt,
    find_tool,
    format_array_results_for_extraction,
    format_tools_for_prompt,
    get_tool_parameters,
    is_error_result,
    is_identifier_field,
    is_null_like,
    is_placeholder,
    is_valid_identifier,
    truncate,
)
from executor_agent.registry.tooling_metadata import RegistryCatalog, ToolDescriptor


class TestFieldInspection:
    """Test identifier, placeholder and null detection."""

    @pytest.mark.parametrize("name", ["id", "_id", "ID", "facility_id", "sensorId", "plantID"])
    def test_identifier_fields(self, name):
        assert is_identifier_field(name)

    @pytest.mark.parametrize("name", ["name", "identity", "hidden", "shortCode"])
    def test_non_identifier_fields(self, name):
        assert not is_identifier_field(name)

    def test_valid_identifier(self):
        assert is_valid_identifier(FACILITY_ID)
        assert not is_valid_identifier("507f1f77")
        assert not is_valid_identifier("z" * 24)
        assert not is_valid_identifier(None)

    @pytest.mark.parametrize(
        "value",
        ["<extracted from step-1>", "EXTRACT_FROM_STEP_1", "{{facility.id}}", "from_step_2", "placeholder"],
    )
    def test_placeholders(self, value):
        assert is_placeholder(value)

    @pytest.mark.parametrize("value", ["WTP", FACILITY_ID, 42, None, ["a"]])
    def test_concrete_values(self, value):
        assert not is_placeholder(value)

    def test_null_like(self):
        assert is_null_like(None)
        assert is_null_like("")
        assert is_null_like(" NULL ")
        assert not is_null_like(0)
        assert not is_null_like("none")


class TestErrorResults:
    """Test detection of error-shaped tool output."""

    def test_error_payloads(self):
        assert is_error_result({"isError": True, "content": []})
        assert is_error_result("Error executing tool get_facility: not found")
        assert is_error_result(["Error executing tool get_facility: boom"])

    def test_data_payloads(self):
        assert not is_error_result({"name": "WTP"})
        assert not is_error_result([])
        assert not is_error_result([{"_id": FACILITY_ID}])
        assert not is_error_result(None)


class TestExtractIdentifier:
    """Test identifier extraction from result items."""

    def test_prefers_underscore_id(self):
        other = "a" * 24
        assert extract_identifier({"id": other, "_id": FACILITY_ID}) == FACILITY_ID

    def test_falls_back_to_any_identifier_field(self):
        assert extract_identifier({"name": "WTP", "facilityId": FACILITY_ID}) == FACILITY_ID

    def test_rejects_malformed(self):
        assert extract_identifier({"_id": "123"}) is None
        assert extract_identifier("not a dict") is None


class TestLookupFlow:
    """Test get/list pairing."""

    def test_detects_list_tool(self, catalog):
        flow = detect_lookup_flow(catalog, "get_facility")

        assert flow.needs_lookup is True
        assert flow.lookup_tool == "list_facilities"
        assert flow.id_param_name == "facility_id"

    def test_tool_without_identifier(self, catalog):
        flow = detect_lookup_flow(catalog, "list_facilities")
        assert flow.needs_lookup is False

    def test_unknown_tool(self, catalog):
        assert detect_lookup_flow(catalog, "drop_tables").needs_lookup is False

    def test_identifier_without_lookup_tool(self):
        catalog = RegistryCatalog(tools=[
            ToolDescriptor(
                name="get_invoice",
                input_schema={"properties": {"invoice_id": {"type": "string"}}, "required": ["invoice_id"]},
            )
        ])
        flow = detect_lookup_flow(catalog, "get_invoice")

        assert flow.needs_lookup is True
        assert flow.lookup_tool is None
        assert "no obvious lookup tool" in flow.reason


class TestFormatting:
    """Test prompt rendering."""

    def test_find_by_name(self, catalog):
        assert find_tool(catalog, "get_facility").name == "get_facility"
        assert find_prompt(catalog, "facility_report").required_arguments == ["facility_name"]
        assert find_tool(None, "get_facility") is None
        assert find_prompt(catalog, "get_facility") is None

    def test_tool_parameters(self, catalog):
        parameters = get_tool_parameters(catalog.find_tool("get_sensor_readings"))

        assert parameters.required == ["sensorId", "hours"]
        assert parameters.optional == []
        assert {param.name for param in parameters.all} == {"sensorId", "hours"}

    def test_format_tools_for_prompt(self, catalog):
        text = format_tools_for_prompt(catalog)

        assert "## Available Tools (4)" in text
        assert "facility_id [REQUIRED]: type string" in text
        assert "Allowed values: active, inactive" in text
        assert "## Available Workflow Templates (1)" in text
        assert "facility_name [REQUIRED]" in text

    def test_format_array_results(self):
        items = [{"_id": FACILITY_ID, "name": "Water Treatment", "shortCode": "WTP", "capacity": 10}] * 4
        text = format_array_results_for_extraction(items, max_items=2)

        assert text.startswith("Array with 4 item(s)")
        assert f'* _id: "{FACILITY_ID}"' in text
        assert "shortCode" in text
        assert "(2 more items)" in text

    def test_format_empty_array(self):
        assert format_array_results_for_extraction([]) == "Empty array or not an array"

    def test_truncate(self):
        assert truncate("abcdef", 3) == "abc..."
        assert truncate("abc", 3) == "abc"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
