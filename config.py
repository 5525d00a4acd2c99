"""Configuration management for the plan step executor."""

from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AzureOpenAIConfig(BaseModel):
    """Azure OpenAI configuration."""
    endpoint: str = Field(..., description="Azure OpenAI endpoint")
    api_key: str = Field(..., description="Azure OpenAI API key")
    model_id: str = Field(default="gpt-4-turbo", description="Default model ID")
    api_version: str = Field(default="2024-05-01-preview", description="API version")


class OpenAIConfig(BaseModel):
    """OpenAI configuration."""
    api_key: str = Field(..., description="OpenAI API key")
    model_id: str = Field(default="gpt-4-turbo", description="Default model ID")


class ExecutorConfig(BaseModel):
    """Step execution, recovery and oracle tuning."""
    max_attempts: int = Field(default=3, ge=1, description="Invocation attempts per step")
    retry_backoff_seconds: float = Field(default=1.0, ge=0.0, description="Linear backoff unit between attempts")
    coordination_temperature: float = Field(default=0.2, description="Oracle temperature for coordination")
    error_analysis_temperature: float = Field(default=0.3, description="Oracle temperature for error analysis")
    validation_temperature: float = Field(default=0.2, description="Oracle temperature for progress validation")
    question_temperature: float = Field(default=0.4, description="Oracle temperature for question phrasing")
    oracle_max_tokens: int = Field(default=1500, description="Max tokens per oracle reply")
    validation_max_tokens: int = Field(default=1000, description="Max tokens for progress validation")
    identifier_pattern: str = Field(default=r"^[0-9a-fA-F]{24}$", description="Registry identifier format")
    identifier_min_plausible_length: int = Field(
        default=20,
        description="Identifier values at least this long are accepted even if they fail the format",
    )
    result_preview_chars: int = Field(default=1500, description="Prior result text shown to the oracle")
    continue_on_skip: bool = Field(default=True, description="Keep executing the plan after a skipped step")


class ToolRegistryConfig(BaseModel):
    """Tool registry connection configuration."""
    server_url: Optional[str] = Field(default=None, description="JSON-RPC endpoint of the tool server")
    timeout_seconds: float = Field(default=30.0, description="Per-request timeout")


class ObservabilityConfig(BaseModel):
    """Observability and telemetry configuration."""
    enable_telemetry: bool = Field(default=True, description="Enable telemetry collection")
    service_name: str = Field(default="PlanStepExecutor", description="Service name for telemetry")
    service_version: str = Field(default="1.0.0", description="Service version")
    console_exporter_enabled: bool = Field(default=False, description="Enable console exporter")
    otlp_exporter_enabled: bool = Field(default=False, description="Enable OTLP exporter")
    otlp_endpoint: str = Field(default="http://localhost:4317", description="OTLP endpoint")


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # AI Service Configuration
    azure_openai: Optional[AzureOpenAIConfig] = None
    openai: Optional[OpenAIConfig] = None

    # Executor Configuration
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    tool_registry: ToolRegistryConfig = Field(default_factory=ToolRegistryConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    # Environment variables
    azure_openai_endpoint: Optional[str] = None
    azure_openai_api_key: Optional[str] = None
    azure_openai_model_id: str = "gpt-4-turbo"
    azure_openai_api_version: str = "2024-05-01-preview"

    openai_api_key: Optional[str] = None
    openai_model_id: str = "gpt-4-turbo"

    executor_max_attempts: int = 3
    executor_retry_backoff_seconds: float = 1.0

    mcp_server_url: Optional[str] = None
    mcp_timeout_seconds: float = 30.0

    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_exporter_otlp_enabled: bool = False

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._setup_ai_configs()
        self._setup_executor_config()
        self._setup_observability_config()

    def _setup_ai_configs(self):
        """Set up AI service configurations from environment variables."""
        if self.azure_openai_endpoint and self.azure_openai_api_key:
            self.azure_openai = AzureOpenAIConfig(
                endpoint=self.azure_openai_endpoint,
                api_key=self.azure_openai_api_key,
                model_id=self.azure_openai_model_id,
                api_version=self.azure_openai_api_version,
            )

        if self.openai_api_key:
            self.openai = OpenAIConfig(
                api_key=self.openai_api_key,
                model_id=self.openai_model_id
            )

    def _setup_executor_config(self):
        """Set up executor and registry configuration from environment variables."""
        self.executor = self.executor.model_copy(update={
            "max_attempts": self.executor_max_attempts,
            "retry_backoff_seconds": self.executor_retry_backoff_seconds,
        })
        self.tool_registry = ToolRegistryConfig(
            server_url=self.mcp_server_url or self.tool_registry.server_url,
            timeout_seconds=self.mcp_timeout_seconds,
        )

    def _setup_observability_config(self):
        """Set up observability configuration from environment variables."""
        self.observability = self.observability.model_copy(update={
            "otlp_endpoint": self.otel_exporter_otlp_endpoint,
            "otlp_exporter_enabled": self.otel_exporter_otlp_enabled,
        })


# Global settings instance
settings = Settings()
