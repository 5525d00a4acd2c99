"""Service for configuring and recording executor telemetry using OpenTelemetry."""

import logging
import os
import socket
from typing import Any, Dict, Optional

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from config import Settings


class TelemetryService:
    """
    Configures tracing and metrics for plan execution.

    Recording methods are no-ops until :meth:`initialize` has created the
    instruments, so components can call them unconditionally once they hold
    a service instance.
    """

    def __init__(self, settings: Settings, logger: Optional[logging.Logger] = None):
        self._settings = settings
        self._logger = logger or logging.getLogger(__name__)

        self._tracer_provider: Optional[TracerProvider] = None
        self._meter_provider: Optional[MeterProvider] = None
        self._tracer = None
        self._meter = None

        self._step_execution_counter = None
        self._step_execution_histogram = None
        self._oracle_call_counter = None
        self._oracle_call_histogram = None
        self._retry_counter = None
        self._question_counter = None
        self._error_counter = None

    def initialize(self) -> None:
        """Initialize OpenTelemetry providers based on configuration."""
        self._logger.info("Initializing telemetry service")

        observability_config = self._settings.observability
        if not observability_config.enable_telemetry:
            self._logger.info("Telemetry disabled by configuration")
            return

        try:
            self._initialize_tracing(observability_config.service_name, observability_config.service_version)
            self._initialize_metrics(observability_config.service_name, observability_config.service_version)
            self._logger.info("Telemetry service initialized successfully")
        except Exception as ex:
            self._logger.error(f"Failed to initialize telemetry service: {ex}", exc_info=ex)
            raise

    def record_step_execution(
        self,
        action: str,
        duration_seconds: float,
        success: bool,
        tags: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record the terminal result of one step execution."""
        if not self._step_execution_counter or not self._step_execution_histogram:
            return

        base_tags = {"action": action, "success": str(success).lower()}
        base_tags.update(self._stringify(tags))

        self._step_execution_counter.add(1, base_tags)
        self._step_execution_histogram.record(duration_seconds, base_tags)

        self._logger.debug(
            f"Recorded step execution: {action}, Duration: {duration_seconds:.3f}s, Success: {success}"
        )

    def record_oracle_call(self, component: str, duration_seconds: float, success: bool) -> None:
        """Record a reasoning oracle round-trip."""
        if not self._oracle_call_counter or not self._oracle_call_histogram:
            return

        tags = {"component": component, "success": str(success).lower()}
        self._oracle_call_counter.add(1, tags)
        self._oracle_call_histogram.record(duration_seconds, tags)

    def record_retry(self, action: str, attempt: int, decision: str) -> None:
        """Record a recovery decision taken after a failed tool invocation."""
        if not self._retry_counter:
            return

        self._retry_counter.add(1, {"action": action, "attempt": str(attempt), "decision": decision})

    def record_question(self, category: str, priority: str) -> None:
        """Record a follow-up question handed to the user."""
        if not self._question_counter:
            return

        self._question_counter.add(1, {"category": category, "priority": priority})

    def record_error(
        self,
        component: str,
        error_type: str,
        error_message: Optional[str] = None,
        tags: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record an error event."""
        if not self._error_counter:
            return

        base_tags = {"component": component, "error_type": error_type}
        if error_message:
            base_tags["error_message"] = error_message[:100]
        base_tags.update(self._stringify(tags))

        self._error_counter.add(1, base_tags)

        self._logger.debug(f"Recorded error: {component}, Type: {error_type}, Message: {error_message}")

    def start_activity(self, name: str, tags: Optional[Dict[str, Any]] = None):
        """Create a new span, or return None when tracing is not initialized."""
        if not self._tracer:
            return None

        span = self._tracer.start_span(name)
        for key, value in self._stringify(tags).items():
            span.set_attribute(key, value)
        return span

    @staticmethod
    def _stringify(tags: Optional[Dict[str, Any]]) -> Dict[str, str]:
        if not tags:
            return {}
        return {key: str(value) if value is not None else "null" for key, value in tags.items()}

    def _resource(self, service_name: str, service_version: str) -> Resource:
        return Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
            "deployment.environment": os.environ.get("ENVIRONMENT", "development"),
            "service.instance.id": socket.gethostname(),
        })

    def _initialize_tracing(self, service_name: str, service_version: str) -> None:
        """Initialize distributed tracing."""
        observability_config = self._settings.observability

        self._tracer_provider = TracerProvider(resource=self._resource(service_name, service_version))
        trace.set_tracer_provider(self._tracer_provider)

        if observability_config.console_exporter_enabled:
            self._tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

        if observability_config.otlp_exporter_enabled and observability_config.otlp_endpoint:
            self._tracer_provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=observability_config.otlp_endpoint))
            )

        self._tracer = trace.get_tracer(service_name, service_version)

    def _initialize_metrics(self, service_name: str, service_version: str) -> None:
        """Initialize metrics collection."""
        observability_config = self._settings.observability

        readers = []
        if observability_config.console_exporter_enabled:
            readers.append(
                PeriodicExportingMetricReader(ConsoleMetricExporter(), export_interval_millis=60000)
            )
        if observability_config.otlp_exporter_enabled and observability_config.otlp_endpoint:
            readers.append(
                PeriodicExportingMetricReader(
                    OTLPMetricExporter(endpoint=observability_config.otlp_endpoint),
                    export_interval_millis=60000,
                )
            )

        self._meter_provider = MeterProvider(
            resource=self._resource(service_name, service_version),
            metric_readers=readers,
        )
        metrics.set_meter_provider(self._meter_provider)
        self._meter = metrics.get_meter(service_name, service_version)

        self._step_execution_counter = self._meter.create_counter(
            name="step_executions_total",
            description="Total number of plan step executions",
            unit="1",
        )
        self._step_execution_histogram = self._meter.create_histogram(
            name="step_execution_duration_seconds",
            description="Duration of plan step executions in seconds",
            unit="s",
        )
        self._oracle_call_counter = self._meter.create_counter(
            name="oracle_calls_total",
            description="Total number of reasoning oracle calls",
            unit="1",
        )
        self._oracle_call_histogram = self._meter.create_histogram(
            name="oracle_call_duration_seconds",
            description="Duration of reasoning oracle calls in seconds",
            unit="s",
        )
        self._retry_counter = self._meter.create_counter(
            name="step_recovery_decisions_total",
            description="Recovery decisions taken after failed tool invocations",
            unit="1",
        )
        self._question_counter = self._meter.create_counter(
            name="follow_up_questions_total",
            description="Follow-up questions handed to the user",
            unit="1",
        )
        self._error_counter = self._meter.create_counter(
            name="errors_total",
            description="Total number of errors encountered",
            unit="1",
        )

    def shutdown(self) -> None:
        """Shutdown telemetry providers."""
        if self._tracer_provider:
            self._tracer_provider.shutdown()
            self._tracer_provider = None

        if self._meter_provider:
            self._meter_provider.shutdown()
            self._meter_provider = None


__all__ = ["TelemetryService"]
