"""Pytest configuration and shared fixtures."""

import json
from typing import Any, List, Optional
from unittest.mock import AsyncMock, Mock

import pytest
from semantic_kernel import Kernel

from config import ExecutorConfig, Settings
from executor_agent.exceptions import OracleUnavailableError
from executor_agent.execution.models import ExecutionState, Plan, RequestContext, Step
from executor_agent.observability.telemetry_service import TelemetryService
from executor_agent.oracle.reasoning_oracle import OracleRequest, ReasoningOracle
from executor_agent.registry.tool_registry import ToolRegistry
from executor_agent.registry.tooling_metadata import (
    PromptArgument,
    PromptDescriptor,
    RegistryCatalog,
    ToolDescriptor,
    ValidationReport,
)

FACILITY_ID = "507f1f77bcf86cd799439011"
SENSOR_ID = "65a1b2c3d4e5f60718293a4b"


class FakeOracle(ReasoningOracle):
    """Oracle that replays scripted replies instead of calling a chat model.

    Each scripted item is raw reply text, a dict (sent as JSON), or an
    exception instance that is raised as an unavailable oracle.
    """

    def __init__(self, responses: Optional[List[Any]] = None):
        super().__init__(Kernel())
        self.responses = list(responses or [])
        self.requests: List[OracleRequest] = []

    @property
    def is_available(self) -> bool:
        return True

    async def complete(self, request: OracleRequest) -> str:
        self.requests.append(request)
        if not self.responses:
            raise OracleUnavailableError("No scripted oracle response left")

        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise OracleUnavailableError(str(response)) from response
        if isinstance(response, (dict, list)):
            return json.dumps(response)
        return response


async def no_sleep(seconds: float) -> None:
    """Replacement for asyncio.sleep so retry backoff does not slow the tests."""


@pytest.fixture
def mock_settings() -> Settings:
    """Create mock settings for testing."""
    settings = Settings()
    # Override with test values
    settings.azure_openai = None
    settings.openai = None
    return settings


@pytest.fixture
def executor_config() -> ExecutorConfig:
    return ExecutorConfig(retry_backoff_seconds=0.0)


@pytest.fixture
def mock_telemetry_service(mock_settings: Settings) -> TelemetryService:
    """Create a mock telemetry service for testing."""
    service = TelemetryService(mock_settings)
    # Mock the initialization to avoid actual telemetry setup
    service.initialize = Mock()
    service.start_activity = Mock(return_value=None)
    service.record_step_execution = Mock()
    service.record_oracle_call = Mock()
    service.record_retry = Mock()
    service.record_question = Mock()
    service.record_error = Mock()
    return service


@pytest.fixture
def catalog() -> RegistryCatalog:
    """Facility monitoring tools with a list/get lookup pair."""
    return RegistryCatalog(
        tools=[
            ToolDescriptor(
                name="list_facilities",
                description="List facilities, optionally filtered by short code",
                input_schema={
                    "type": "object",
                    "properties": {
                        "shortCode": {"type": "string", "description": "Facility short code"},
                        "limit": {"type": "number"},
                    },
                },
            ),
            ToolDescriptor(
                name="get_facility",
                description="Get a facility by its identifier",
                input_schema={
                    "type": "object",
                    "properties": {
                        "facility_id": {"type": "string", "description": "Facility identifier"},
                    },
                    "required": ["facility_id"],
                },
            ),
            ToolDescriptor(
                name="list_sensors",
                description="List the sensors installed in a facility",
                input_schema={
                    "type": "object",
                    "properties": {
                        "facility_id": {"type": "string", "description": "Facility identifier"},
                        "status": {"type": "string", "enum": ["active", "inactive"]},
                    },
                    "required": ["facility_id"],
                },
            ),
            ToolDescriptor(
                name="get_sensor_readings",
                description="Read recent measurements from a sensor",
                input_schema={
                    "type": "object",
                    "properties": {
                        "sensorId": {"type": "string", "description": "Sensor identifier"},
                        "hours": {"type": "number"},
                    },
                    "required": ["sensorId", "hours"],
                },
            ),
        ],
        prompts=[
            PromptDescriptor(
                name="facility_report",
                description="Summarize the state of a facility",
                arguments=[
                    PromptArgument(name="facility_name", description="Facility name", required=True),
                    PromptArgument(name="period", description="Reporting period"),
                ],
            ),
        ],
    )


@pytest.fixture
def registry(catalog: RegistryCatalog) -> Mock:
    """Registry double whose validator accepts everything by default."""
    registry = Mock(spec=ToolRegistry)
    registry.list_tools = AsyncMock(return_value=catalog.tools)
    registry.list_prompts = AsyncMock(return_value=catalog.prompts)
    registry.load_catalog = AsyncMock(return_value=catalog)
    registry.invoke = AsyncMock(return_value={"ok": True})
    registry.validate = AsyncMock(return_value=ValidationReport(is_valid=True))
    registry.get_prompt = AsyncMock(return_value={"messages": []})
    return registry


@pytest.fixture
def plan() -> Plan:
    return Plan(
        id="plan-1",
        goal="Show the details of facility WTP",
        steps=[
            Step(
                id="step-1",
                order=1,
                action="list_facilities",
                description="Find the facility with short code WTP",
                parameters={"shortCode": "WTP"},
            ),
            Step(
                id="step-2",
                order=2,
                action="get_facility",
                description="Get the facility details",
                parameters={"facility_id": "<extracted from step-1>"},
                dependencies=["step-1"],
            ),
        ],
    )


@pytest.fixture
def request_context() -> RequestContext:
    return RequestContext(id="req-1", user_query="Show me facility WTP", agent_chain=["planner", "executor"])


@pytest.fixture
def state(plan: Plan, request_context: RequestContext, catalog: RegistryCatalog) -> ExecutionState:
    return ExecutionState(plan=plan, request_context=request_context, catalog=catalog)
