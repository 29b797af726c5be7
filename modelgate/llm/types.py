"""
Unified request/response types shared by every provider adapter.

Only these types cross the adapter boundary: each adapter maps its
vendor's SDK objects into them in a single normalization step.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Optional

from modelgate.exceptions import ConfigurationError

UNKNOWN = -1


# ---------------------------------------------------------------------------
# Vendors & Credentials
# ---------------------------------------------------------------------------

class Vendor(str, Enum):
    """Supported LLM vendors."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    AZURE_OPENAI = "azure-openai"
    GROQ = "groq"
    HUGGINGFACE = "huggingface"

    @classmethod
    def parse(cls, name: str | "Vendor") -> "Vendor":
        if isinstance(name, Vendor):
            return name
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            supported = ", ".join(v.value for v in cls)
            raise ConfigurationError(
                f"Unknown provider: {name}. Supported providers: {supported}",
                vendor=str(name),
            ) from None

    @property
    def requires_endpoint(self) -> bool:
        return self is Vendor.AZURE_OPENAI


@dataclass(frozen=True)
class ProviderCredential:
    """
    Everything needed to construct a vendor client.

    Immutable; rotating a key means issuing a new credential, which maps
    to a new pool entry.
    """

    vendor: Vendor
    api_key: str = field(repr=False)
    base_url: Optional[str] = None      # Azure endpoint or custom base URL
    deployment: Optional[str] = None    # Azure deployment name
    api_version: Optional[str] = None   # Azure API version

    def __post_init__(self) -> None:
        object.__setattr__(self, "vendor", Vendor.parse(self.vendor))
        if not self.api_key or not self.api_key.strip():
            raise ConfigurationError(
                f"Missing API key for {self.vendor.value}",
                vendor=self.vendor.value,
                field="api_key",
            )

    @property
    def pool_key(self) -> str:
        """Identity of the client this credential produces."""
        parts = [self.vendor.value, self.api_key, self.base_url or "default"]
        if self.vendor.requires_endpoint:
            parts.append(self.deployment or "")
            parts.append(self.api_version or "")
        return ":".join(parts)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class Message:
    role: Role
    content: str

    def __post_init__(self) -> None:
        self.role = Role(self.role)


@dataclass
class ToolSpec:
    """A function the model may call. `parameters` is a JSON-schema object."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class CompletionRequest:
    model: str
    messages: list[Message]
    system_prompt: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    tools: Optional[list[ToolSpec]] = None

    @property
    def has_tools(self) -> bool:
        return bool(self.tools)


# ---------------------------------------------------------------------------
# Usage & Rate Limits
# ---------------------------------------------------------------------------

@dataclass
class TokenUsage:
    """
    Canonical token accounting.

    Cache-read tokens are billed separately and excluded from the total.
    """

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    reasoning_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_tokens
            + self.reasoning_tokens
        )

    @classmethod
    def empty(cls) -> "TokenUsage":
        return cls()

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_creation_tokens=self.cache_creation_tokens + other.cache_creation_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
            reasoning_tokens=self.reasoning_tokens + other.reasoning_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cache_creation_tokens": self.cache_creation_tokens,
            "cache_read_tokens": self.cache_read_tokens,
            "reasoning_tokens": self.reasoning_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class RateLimitInfo:
    """Request and token quotas reported by the vendor. -1 means unknown."""

    requests_limit: int = UNKNOWN
    requests_remaining: int = UNKNOWN
    requests_reset_ms: int = UNKNOWN
    tokens_limit: int = UNKNOWN
    tokens_remaining: int = UNKNOWN
    tokens_reset_ms: int = UNKNOWN

    @classmethod
    def unknown(cls) -> "RateLimitInfo":
        return cls()

    @property
    def is_known(self) -> bool:
        return any(
            value != UNKNOWN
            for value in (
                self.requests_limit,
                self.requests_remaining,
                self.requests_reset_ms,
                self.tokens_limit,
                self.tokens_remaining,
                self.tokens_reset_ms,
            )
        )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

@dataclass
class CompletionResponse:
    content: str
    model: str                  # As echoed by the vendor
    usage: TokenUsage
    stop_reason: Optional[str] = None
    rate_limit_info: Optional[RateLimitInfo] = None
    raw_response: Any = field(default=None, repr=False)


@dataclass
class StreamChunk:
    """
    One increment of a streamed completion.

    Usage is only attached to the terminal chunk.
    """

    content: str
    finish_reason: Optional[str] = None
    usage: Optional[TokenUsage] = None

    @property
    def is_final(self) -> bool:
        return self.usage is not None


class HealthState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


@dataclass
class ProviderHealthStatus:
    status: HealthState
    latency_ms: float
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 1),
            "checked_at": self.checked_at.isoformat(),
        }
        if self.error:
            data["error"] = self.error
        return data


# ---------------------------------------------------------------------------
# Helper: Collect full stream into text
# ---------------------------------------------------------------------------

async def collect_stream(
    stream: AsyncIterator[StreamChunk],
) -> tuple[str, TokenUsage, Optional[str]]:
    """
    Consume a full stream and return (full_text, usage, finish_reason).

    Usage is empty if the vendor never sent a terminal usage chunk.
    """
    collected = []
    usage = TokenUsage.empty()
    finish_reason: Optional[str] = None

    async for chunk in stream:
        if chunk.content:
            collected.append(chunk.content)
        if chunk.finish_reason:
            finish_reason = chunk.finish_reason
        if chunk.usage is not None:
            usage = chunk.usage

    return "".join(collected), usage, finish_reason
