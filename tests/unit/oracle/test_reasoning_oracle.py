"""Tests for the chat-model backed reasoning oracle."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest
from semantic_kernel import Kernel

from conftest import FakeOracle
from executor_agent.exceptions import OracleDecodeError, OracleUnavailableError
from executor_agent.execution.models import (
    ERROR_DECISION_ADAPTER,
    AdaptDecision,
    CoordinationResult,
    RetryDecision,
)
from executor_agent.oracle.reasoning_oracle import OracleRequest, ReasoningOracle


def _request() -> OracleRequest:
    return OracleRequest(system_prompt="system", user_prompt="user", temperature=0.3, max_tokens=200)


def _kernel_with(service) -> Mock:
    kernel = Mock()
    kernel.get_services_by_type.return_value = {"default": service}
    return kernel


class TestComplete:
    """Test raw completion against the configured chat service."""

    @pytest.mark.asyncio
    async def test_no_service_configured(self):
        oracle = ReasoningOracle(Kernel())

        assert oracle.is_available is False
        with pytest.raises(OracleUnavailableError):
            await oracle.complete(_request())

    @pytest.mark.asyncio
    async def test_applies_request_settings(self):
        settings = SimpleNamespace(temperature=None, max_tokens=None, response_format=None)
        service = Mock()
        service.instantiate_prompt_execution_settings.return_value = settings
        service.get_chat_message_content = AsyncMock(return_value=Mock(content='{"ok": true}'))

        oracle = ReasoningOracle(_kernel_with(service), service_id="default")
        reply = await oracle.complete(_request())

        assert reply == '{"ok": true}'
        assert settings.temperature == 0.3
        assert settings.max_tokens == 200
        assert settings.response_format == {"type": "json_object"}

        history, passed_settings = service.get_chat_message_content.call_args.args
        assert passed_settings is settings
        assert history.messages[-1].content == "user"

    @pytest.mark.asyncio
    async def test_service_failure_is_unavailable(self):
        service = Mock()
        service.instantiate_prompt_execution_settings.return_value = SimpleNamespace()
        service.get_chat_message_content = AsyncMock(side_effect=RuntimeError("rate limited"))

        oracle = ReasoningOracle(_kernel_with(service))

        with pytest.raises(OracleUnavailableError, match="rate limited"):
            await oracle.complete(_request())

    @pytest.mark.asyncio
    async def test_empty_reply_is_unavailable(self):
        service = Mock()
        service.instantiate_prompt_execution_settings.return_value = SimpleNamespace()
        service.get_chat_message_content = AsyncMock(return_value=Mock(content=""))

        oracle = ReasoningOracle(_kernel_with(service))

        with pytest.raises(OracleUnavailableError):
            await oracle.complete(_request())


class TestDecide:
    """Test structured decisions."""

    @pytest.mark.asyncio
    async def test_decodes_model(self):
        oracle = FakeOracle(['Analysis done. {"needsCoordination": true, "parameters": null}'])

        result = await oracle.decide(_request(), CoordinationResult)

        assert isinstance(result, CoordinationResult)
        assert result.needs_coordination is True
        assert result.parameters == {}

    @pytest.mark.asyncio
    async def test_decodes_discriminated_union(self):
        oracle = FakeOracle([
            {"decision": "retry", "reason": "timeout", "maxRetries": 2},
            {
                "decision": "adapt",
                "reason": "use the list tool",
                "adaptation": {"adaptedAction": "list_facilities", "adaptedParameters": {"shortCode": "WTP"}},
            },
        ])

        retry = await oracle.decide(_request(), ERROR_DECISION_ADAPTER)
        adapt = await oracle.decide(_request(), ERROR_DECISION_ADAPTER)

        assert isinstance(retry, RetryDecision)
        assert retry.max_retries == 2
        assert isinstance(adapt, AdaptDecision)
        assert adapt.adaptation.adapted_action == "list_facilities"

    @pytest.mark.asyncio
    async def test_unknown_decision_is_rejected(self):
        oracle = FakeOracle([{"decision": "give-up", "reason": "?"}])

        with pytest.raises(OracleDecodeError):
            await oracle.decide(_request(), ERROR_DECISION_ADAPTER)

    @pytest.mark.asyncio
    async def test_records_telemetry(self, mock_telemetry_service):
        oracle = FakeOracle(["not json"])
        oracle._telemetry = mock_telemetry_service

        with pytest.raises(OracleDecodeError):
            await oracle.decide(_request(), CoordinationResult, component="Coordinator")

        kwargs = mock_telemetry_service.record_oracle_call.call_args.kwargs
        assert kwargs["component"] == "Coordinator"
        assert kwargs["success"] is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
