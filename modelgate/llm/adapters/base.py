"""
Provider adapter contract.

An adapter translates the unified CompletionRequest/CompletionResponse
shapes to and from one vendor's SDK. Subclasses implement the vendor
calls (_complete, _stream, _ping); this base class owns the parts every
vendor shares:

- capability checks (tools and streaming are rejected, never degraded)
- acquiring the client from the pool on every call (sliding TTL)
- mapping SDK/HTTP errors to ProviderError / RateLimitError
- remembering the last parsed rate-limit headers
- the never-raising health check wrapper
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, ClassVar, Optional

import anthropic
import httpx
import openai

from modelgate.config.settings import AdapterSettings
from modelgate.exceptions import (
    ModelGateError,
    ProviderError,
    RateLimitError,
    UnsupportedCapabilityError,
)
from modelgate.llm.client_pool import ClientPool
from modelgate.llm.rate_limits import parse_rate_limit_headers, parse_retry_after
from modelgate.llm.types import (
    CompletionRequest,
    CompletionResponse,
    HealthState,
    ProviderCredential,
    ProviderHealthStatus,
    RateLimitInfo,
    StreamChunk,
    Vendor,
)

logger = logging.getLogger(__name__)

# Status reported for failures that never produced an HTTP response
CONNECTION_ERROR_STATUS = 503


def usage_int(obj: Any, name: str) -> int:
    """Integer attribute of a vendor usage object, 0 when absent."""
    value = getattr(obj, name, None) if obj is not None else None
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


def input_schema(parameters: dict[str, Any]) -> dict[str, Any]:
    """Tool parameters as a JSON-schema object; bare properties are wrapped."""
    if "type" in parameters:
        return parameters
    return {"type": "object", "properties": parameters}


class ProviderAdapter(ABC):
    """Base class for all vendor adapters."""

    vendor: ClassVar[Vendor]
    supports_streaming: ClassVar[bool] = True
    supports_function_calling: ClassVar[bool] = False
    supports_vision: ClassVar[bool] = False

    def __init__(
        self,
        client_pool: ClientPool,
        credential: ProviderCredential,
        settings: Optional[AdapterSettings] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._pool = client_pool
        self._credential = credential
        self._settings = settings or AdapterSettings()
        self._clock = clock
        self._last_rate_limit_info: Optional[RateLimitInfo] = None

    @property
    def client(self) -> Any:
        """The pooled SDK client. Re-acquired on each access."""
        return self._pool.acquire(self._credential)

    @property
    def credential(self) -> ProviderCredential:
        return self._credential

    # --- Public API ---

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Single-shot completion."""
        self.check_capabilities(request)
        try:
            return await self._complete(request)
        except Exception as e:
            mapped = self._handle_error(e, request)
            if mapped is e:
                raise
            raise mapped from e

    async def complete_stream(
        self, request: CompletionRequest,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a completion as StreamChunks.

        Content chunks carry no usage; the terminal chunk carries usage.
        Capability errors surface on first iteration.
        """
        self.check_capabilities(request, streaming=True)
        try:
            async for chunk in self._stream(request):
                yield chunk
        except Exception as e:
            mapped = self._handle_error(e, request)
            if mapped is e:
                raise
            raise mapped from e

    async def health_check(self) -> ProviderHealthStatus:
        """Issue a minimal call. Never raises; failures report `down`."""
        start = self._clock()
        try:
            await self._ping()
        except Exception as e:
            latency = (self._clock() - start) * 1000
            logger.warning(
                "provider_health_check_failed",
                extra={"vendor": self.vendor.value, "error": str(e)[:200]},
            )
            return ProviderHealthStatus(
                status=HealthState.DOWN, latency_ms=latency, error=str(e)
            )
        return ProviderHealthStatus(
            status=HealthState.HEALTHY,
            latency_ms=(self._clock() - start) * 1000,
        )

    def get_last_rate_limit_info(self) -> Optional[RateLimitInfo]:
        return self._last_rate_limit_info

    def check_capabilities(
        self, request: CompletionRequest, *, streaming: bool = False,
    ) -> None:
        """Raise UnsupportedCapabilityError for features this adapter lacks."""
        if streaming and not self.supports_streaming:
            raise UnsupportedCapabilityError(
                f"{self.vendor.value} adapter does not support streaming",
                vendor=self.vendor.value,
                capability="streaming",
            )
        if request.has_tools and not self.supports_function_calling:
            raise UnsupportedCapabilityError(
                f"{self.vendor.value} adapter does not support function calling",
                vendor=self.vendor.value,
                capability="function_calling",
            )

    # --- Vendor Hooks ---

    @abstractmethod
    async def _complete(self, request: CompletionRequest) -> CompletionResponse:
        ...

    @abstractmethod
    def _stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        ...

    @abstractmethod
    async def _ping(self) -> None:
        ...

    # --- Shared Helpers ---

    def _max_tokens(self, request: CompletionRequest) -> int:
        return request.max_tokens or self._settings.default_max_tokens

    def _temperature(self, request: CompletionRequest) -> float:
        if request.temperature is not None:
            return request.temperature
        return self._settings.default_temperature

    def _record_rate_limits(self, headers: Any) -> Optional[RateLimitInfo]:
        if headers is None:
            return self._last_rate_limit_info
        self._last_rate_limit_info = parse_rate_limit_headers(self.vendor, headers)
        return self._last_rate_limit_info

    def _handle_error(
        self, error: Exception, request: CompletionRequest,
    ) -> Exception:
        mapped = self.map_error(error)
        if isinstance(mapped, ProviderError):
            logger.warning(
                "adapter_call_failed",
                extra={
                    "vendor": self.vendor.value,
                    "model": request.model,
                    "status": mapped.status_code,
                    "error": str(mapped)[:200],
                },
            )
        return mapped

    def map_error(self, error: Exception) -> Exception:
        """
        Normalize a vendor error.

        HTTP status errors become ProviderError (RateLimitError for 429),
        connection and timeout errors become a retryable 503. modelgate
        errors and anything unrecognized are returned unchanged.
        """
        if isinstance(error, ModelGateError):
            return error

        vendor = self.vendor.value

        if isinstance(error, (anthropic.APIStatusError, openai.APIStatusError)):
            status = error.status_code
            headers = error.response.headers
            message = str(error)
        elif isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            headers = error.response.headers
            message = f"{vendor} API error {status}: {_response_text(error.response)}"
        elif isinstance(
            error,
            (anthropic.APIConnectionError, openai.APIConnectionError, httpx.TransportError),
        ):
            return ProviderError(
                f"{vendor} connection failed: {error}",
                vendor=vendor,
                status_code=CONNECTION_ERROR_STATUS,
                original_error=error,
            )
        else:
            return error

        retry_after_ms = parse_retry_after(headers)
        if status == 429:
            return RateLimitError(
                vendor,
                self._record_rate_limits(headers) or RateLimitInfo.unknown(),
                retry_after_ms=retry_after_ms,
                original_error=error,
            )
        return ProviderError(
            message,
            vendor=vendor,
            status_code=status,
            retry_after_ms=retry_after_ms,
            original_error=error,
        )


def _response_text(response: httpx.Response) -> str:
    try:
        return response.text[:200]
    except httpx.ResponseNotRead:
        return ""
