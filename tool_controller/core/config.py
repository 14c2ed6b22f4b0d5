from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ControllerSettings(BaseModel):
    workers: int = Field(4, ge=1, description="Number of concurrent reconcile workers.")
    max_retries: int = Field(
        8,
        ge=0,
        description="Consecutive failed reconciles tolerated for one key before it is dropped from the queue.",
    )
    base_backoff_seconds: float = Field(0.5, ge=0.0)
    max_backoff_seconds: float = Field(60.0, ge=0.0)
    default_namespace: str = Field("default", min_length=1)
    resync_on_start: bool = Field(True, description="Enqueue every existing tool call when the loop starts.")


class ApprovalSettings(BaseModel):
    enabled: bool = Field(True, description="Expose the inbound approval callback endpoint.")
    conflict_retry_attempts: int = Field(5, ge=1, description="Commit attempts before a callback gives up.")
    conflict_retry_wait_seconds: float = Field(0.05, ge=0.0)


class TracingSettings(BaseModel):
    enabled: bool = Field(True)
    service_name: str = Field("tool-controller", min_length=1)
    console_export: bool = Field(False, description="Print finished spans to stdout (local debugging).")


class CapabilityServerSettings(BaseModel):
    enabled: bool = Field(True, description="Route server__tool names to remote capability servers.")
    timeout_seconds: float = Field(15.0, ge=0.1)
    max_retries: int = Field(2, ge=0, description="Maximum retry attempts for capability server requests.")
    retry_backoff_seconds: float = Field(0.5, ge=0.0)
    retry_jitter_seconds: float = Field(0.25, ge=0.0)
    circuit_breaker_threshold: int = Field(5, ge=1, description="Failures before a server circuit opens.")
    circuit_breaker_reset_seconds: float = Field(30.0, ge=1.0)
    verify_ssl: bool = Field(True)
    extra_headers: dict[str, str] = Field(default_factory=dict)
    invoke_path_template: str = Field(
        "/tools/{tool}/invoke",
        description="Path template for invoking a tool; '{tool}' is replaced with the unqualified tool name.",
    )


class ExternalAPISettings(BaseModel):
    base_url: str = Field("https://api.humanlayer.dev/humanlayer/v1", description="External function-call API.")
    timeout_seconds: float = Field(10.0, ge=0.1)
    approval_tool_name: str = Field(
        "request_human_approval",
        min_length=1,
        description="Tool name that receives a synthesized payload when called without arguments.",
    )


class ObservabilitySettings(BaseModel):
    prometheus_enabled: bool = Field(True)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "console"] = "json"


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")
    api_v1_prefix: str = Field("/api/v1")

    controller: ControllerSettings = Field(default_factory=ControllerSettings)  # type: ignore[arg-type]
    approvals: ApprovalSettings = Field(default_factory=ApprovalSettings)  # type: ignore[arg-type]
    tracing: TracingSettings = Field(default_factory=TracingSettings)  # type: ignore[arg-type]
    capabilities: CapabilityServerSettings = Field(default_factory=CapabilityServerSettings)  # type: ignore[arg-type]
    external_api: ExternalAPISettings = Field(default_factory=ExternalAPISettings)  # type: ignore[arg-type]
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]

    model_config = SettingsConfigDict(
        env_prefix="TOOL_CONTROLLER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        return Settings(**dict(overrides))
    return _get_cached_settings()
