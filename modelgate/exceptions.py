"""
Custom exception hierarchy for modelgate.

Structured error handling with clear categories:
- Configuration errors (raised before any network call)
- Provider errors (vendor SDK/HTTP failures, normalized)
- Persistence errors (only ever logged inside best-effort side effects)

Usage:
    from modelgate.exceptions import ProviderError

    try:
        response = await adapter.complete(request)
    except ProviderError as e:
        if e.retryable:
            ...
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from modelgate.llm.types import RateLimitInfo


class ModelGateError(Exception):
    """
    Base exception for all modelgate errors.

    Catch `ModelGateError` to handle any library-specific error.
    """

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


# ── Configuration Errors ──────────────────────────────────────────


class ConfigurationError(ModelGateError):
    """
    Raised when a call cannot be attempted because configuration is wrong.

    Examples:
    - Missing API key for a vendor
    - Azure OpenAI requested without endpoint/deployment
    - Unknown vendor name
    - Invalid settings file
    """

    def __init__(
        self,
        message: str,
        *,
        vendor: Optional[str] = None,
        field: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.vendor = vendor
        self.field = field


class UnsupportedCapabilityError(ConfigurationError):
    """
    Raised when a caller uses a feature the adapter's capability flags deny.

    Adapters never degrade silently: passing tools to an adapter without
    function calling is a caller error.
    """

    def __init__(
        self,
        message: str,
        *,
        vendor: Optional[str] = None,
        capability: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, vendor=vendor, field=capability, details=details)
        self.capability = capability


class AgentNotFoundError(ConfigurationError):
    """Raised when no agent definition exists for the requested name."""

    def __init__(self, agent_name: str):
        super().__init__(f'Agent "{agent_name}" not found')
        self.agent_name = agent_name


class AgentDisabledError(ConfigurationError):
    """Raised when the agent definition exists but is disabled."""

    def __init__(self, agent_name: str):
        super().__init__(f'Agent "{agent_name}" is disabled')
        self.agent_name = agent_name


class ModelNotConfiguredError(ConfigurationError):
    """Raised when an agent has no model, or its model record is missing."""

    def __init__(self, message: str, *, agent_name: Optional[str] = None):
        super().__init__(message, field="model_id")
        self.agent_name = agent_name


# ── Provider Errors ───────────────────────────────────────────────


def is_retryable_status(status_code: int) -> bool:
    """429 and every 5xx are retryable; everything else is permanent."""
    return status_code == 429 or status_code >= 500


class ProviderError(ModelGateError):
    """
    A vendor call failed.

    Every adapter maps its SDK's errors into this single shape so callers
    can decide on retries without knowing which vendor they talked to.
    """

    def __init__(
        self,
        message: str,
        *,
        vendor: str,
        status_code: int,
        retry_after_ms: Optional[int] = None,
        original_error: Optional[BaseException] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.vendor = vendor
        self.status_code = status_code
        self.retryable = is_retryable_status(status_code)
        self.retry_after_ms = retry_after_ms
        self.original_error = original_error

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "error": "provider_error",
            "message": str(self),
            "vendor": self.vendor,
            "status_code": self.status_code,
            "retryable": self.retryable,
        }
        if self.retry_after_ms is not None:
            data["retry_after_ms"] = self.retry_after_ms
        return data


class RateLimitError(ProviderError):
    """
    The vendor rejected the call with 429.

    Carries the parsed rate-limit quota so callers can show when the
    limit resets.
    """

    def __init__(
        self,
        vendor: str,
        rate_limit_info: "RateLimitInfo",
        *,
        retry_after_ms: Optional[int] = None,
        original_error: Optional[BaseException] = None,
    ):
        if retry_after_ms is None and rate_limit_info.requests_reset_ms >= 0:
            retry_after_ms = rate_limit_info.requests_reset_ms

        if retry_after_ms is not None and retry_after_ms >= 0:
            reset = f"Resets in {math.ceil(retry_after_ms / 60000)} minutes."
        else:
            reset = "Reset time unknown."

        message = (
            f"Rate limit exceeded for {vendor}. "
            f"{rate_limit_info.requests_remaining} requests remaining. {reset}"
        )
        super().__init__(
            message,
            vendor=vendor,
            status_code=429,
            retry_after_ms=retry_after_ms,
            original_error=original_error,
        )
        self.rate_limit_info = rate_limit_info

    def to_dict(self) -> dict[str, Any]:
        retry_ms = self.retry_after_ms if self.retry_after_ms is not None else -1
        return {
            "error": "rate_limit_exceeded",
            "message": str(self),
            "vendor": self.vendor,
            "requests_remaining": self.rate_limit_info.requests_remaining,
            "requests_limit": self.rate_limit_info.requests_limit,
            "tokens_remaining": self.rate_limit_info.tokens_remaining,
            "tokens_limit": self.rate_limit_info.tokens_limit,
            "retry_after_ms": retry_ms,
            "retry_after_seconds": math.ceil(retry_ms / 1000) if retry_ms >= 0 else -1,
            "retry_after_minutes": math.ceil(retry_ms / 60000) if retry_ms >= 0 else -1,
        }


# ── Persistence Errors ────────────────────────────────────────────


class PersistenceError(ModelGateError):
    """
    Raised by store implementations when a read or write fails.

    The executor treats these as non-fatal inside its side effects.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.operation = operation
