"""Reasoning oracle client backed by a Semantic Kernel chat completion service."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Type, Union

from pydantic import BaseModel, TypeAdapter, ValidationError
from semantic_kernel import Kernel
from semantic_kernel.connectors.ai.chat_completion_client_base import ChatCompletionClientBase
from semantic_kernel.contents.chat_history import ChatHistory

from executor_agent.exceptions import OracleDecodeError, OracleUnavailableError
from executor_agent.observability.telemetry_service import TelemetryService
from executor_agent.oracle.json_decoder import decode_json_object


@dataclass(slots=True)
class OracleRequest:
    """A single structured request to the oracle."""

    system_prompt: str
    user_prompt: str
    temperature: float = 0.2
    max_tokens: int = 1500
    json_response: bool = True


class ReasoningOracle:
    """Send structured prompts to the configured chat model and decode JSON decisions."""

    def __init__(
        self,
        kernel: Kernel,
        *,
        service_id: Optional[str] = None,
        telemetry: Optional[TelemetryService] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._kernel = kernel
        self._service_id = service_id
        self._telemetry = telemetry
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    @property
    def is_available(self) -> bool:
        return bool(self._kernel.get_services_by_type(ChatCompletionClientBase))

    async def complete(self, request: OracleRequest) -> str:
        """Return the raw text of the model's reply.

        Raises:
            OracleUnavailableError: no chat service is configured or the call failed.
        """
        service = self._resolve_service()

        settings = service.instantiate_prompt_execution_settings()
        overrides = {"temperature": request.temperature, "max_tokens": request.max_tokens}
        if request.json_response:
            overrides["response_format"] = {"type": "json_object"}
        for key, value in overrides.items():
            if hasattr(settings, key):
                setattr(settings, key, value)

        history = ChatHistory(system_message=request.system_prompt)
        history.add_user_message(request.user_prompt)

        try:
            response = await service.get_chat_message_content(history, settings)
        except Exception as ex:
            raise OracleUnavailableError(f"Chat completion failed: {ex}") from ex

        if not response or not response.content:
            raise OracleUnavailableError("Chat completion returned no content")
        return str(response.content)

    async def decide(
        self,
        request: OracleRequest,
        schema: Union[Type[BaseModel], TypeAdapter],
        *,
        component: str = "ReasoningOracle",
    ) -> Any:
        """Ask the oracle and validate its JSON reply against ``schema``.

        Raises:
            OracleUnavailableError: the oracle could not be reached.
            OracleDecodeError: the reply is not a structurally valid decision.
        """
        adapter = schema if isinstance(schema, TypeAdapter) else TypeAdapter(schema)
        started = time.perf_counter()
        success = False

        try:
            raw = await self.complete(request)
            data = decode_json_object(raw)
            try:
                decision = adapter.validate_python(data)
            except ValidationError as ex:
                raise OracleDecodeError(f"Invalid decision shape: {ex}", raw_response=raw) from ex
            success = True
            return decision
        finally:
            if self._telemetry:
                self._telemetry.record_oracle_call(
                    component=component,
                    duration_seconds=time.perf_counter() - started,
                    success=success,
                )

    def _resolve_service(self) -> ChatCompletionClientBase:
        services = self._kernel.get_services_by_type(ChatCompletionClientBase)
        if not services:
            raise OracleUnavailableError("No chat completion service configured")

        if self._service_id and self._service_id in services:
            return services[self._service_id]
        return next(iter(services.values()))


__all__ = ["OracleRequest", "ReasoningOracle"]
