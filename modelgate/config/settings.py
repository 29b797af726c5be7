"""
Pydantic settings schema for modelgate.

Every tunable of the pool, adapters, health tracking and event stream is
declared here with its default, so an empty config file (or none at all)
yields a working gateway.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class ClientPoolSettings(BaseModel):
    """Bounds for the per-vendor SDK client caches."""
    max_size: int = Field(
        100, gt=0, description="Maximum pooled clients per vendor"
    )
    ttl_seconds: float = Field(
        1800.0, gt=0, description="Idle time after which a client is evicted"
    )


class AdapterSettings(BaseModel):
    """Defaults applied when a CompletionRequest leaves a field unset."""
    default_max_tokens: int = Field(4096, gt=0)
    default_temperature: float = Field(0.7, ge=0.0, le=2.0)
    request_timeout_seconds: float = Field(120.0, gt=0)
    azure_api_version: str = "2025-04-01-preview"
    groq_base_url: str = "https://api.groq.com/openai/v1"
    huggingface_base_url: str = Field(
        "https://router.huggingface.co",
        description="OpenAI-compatible chat endpoint root",
    )
    huggingface_text_base_url: str = Field(
        "https://api-inference.huggingface.co",
        description="Text-generation endpoint root",
    )
    anthropic_health_model: str = "claude-3-haiku-20240307"
    huggingface_health_model: str = "gpt2"


class HealthSettings(BaseModel):
    """Failure-rate thresholds for the agent health state machine."""
    degraded_threshold: float = Field(0.2, ge=0.0, le=1.0)
    down_threshold: float = Field(0.5, ge=0.0, le=1.0)
    recompute_on_success: bool = Field(
        False,
        description=(
            "Also recompute status after successful calls. Off by default: "
            "status is recomputed only when a call fails."
        ),
    )

    @model_validator(mode="after")
    def validate_threshold_order(self) -> "HealthSettings":
        if self.degraded_threshold >= self.down_threshold:
            raise ValueError(
                "degraded_threshold must be lower than down_threshold "
                f"(got {self.degraded_threshold} >= {self.down_threshold})"
            )
        return self


class ExecutorSettings(BaseModel):
    """Agent execution defaults."""
    default_history_messages: int = Field(10, ge=0)


class EventSettings(BaseModel):
    """Workflow event stream settings."""
    output_preview_chars: int = Field(
        200, gt=0, description="Step output is truncated to this many characters"
    )


class GatewaySettings(BaseModel):
    """Top-level settings object. Every section is optional."""
    client_pool: ClientPoolSettings = Field(default_factory=ClientPoolSettings)
    adapters: AdapterSettings = Field(default_factory=AdapterSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    events: EventSettings = Field(default_factory=EventSettings)
