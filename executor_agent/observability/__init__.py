"""Telemetry for plan execution."""

from executor_agent.observability.telemetry_service import TelemetryService

__all__ = ["TelemetryService"]
