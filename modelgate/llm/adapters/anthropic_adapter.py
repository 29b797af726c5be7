"""
Anthropic (Claude) adapter.

Claude takes the system instruction in a dedicated `system` field, so any
system-role messages are folded into it. Usage reports cache creation and
cache reads separately from input tokens. Rate-limit headers are read from
the raw HTTP response.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional

from modelgate.llm.adapters.base import ProviderAdapter, input_schema, usage_int
from modelgate.llm.types import (
    CompletionRequest,
    CompletionResponse,
    Role,
    StreamChunk,
    TokenUsage,
    Vendor,
)

logger = logging.getLogger(__name__)


def map_anthropic_usage(usage: Any) -> TokenUsage:
    """Claude usage block -> TokenUsage."""
    return TokenUsage(
        input_tokens=usage_int(usage, "input_tokens"),
        output_tokens=usage_int(usage, "output_tokens"),
        cache_creation_tokens=usage_int(usage, "cache_creation_input_tokens"),
        cache_read_tokens=usage_int(usage, "cache_read_input_tokens"),
        reasoning_tokens=usage_int(usage, "extended_thinking_tokens"),
    )


class AnthropicAdapter(ProviderAdapter):
    """Claude Messages API."""

    vendor = Vendor.ANTHROPIC
    supports_streaming = True
    supports_function_calling = True
    supports_vision = True

    def build_params(self, request: CompletionRequest) -> dict[str, Any]:
        system_parts = [request.system_prompt] if request.system_prompt else []
        messages: list[dict[str, Any]] = []
        for msg in request.messages:
            if msg.role is Role.SYSTEM:
                system_parts.append(msg.content)
            else:
                messages.append({"role": msg.role.value, "content": msg.content})

        params: dict[str, Any] = {
            "model": request.model,
            "max_tokens": self._max_tokens(request),
            "temperature": self._temperature(request),
            "messages": messages,
        }
        if system_parts:
            params["system"] = "\n\n".join(system_parts)
        if request.tools:
            params["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": input_schema(tool.parameters),
                }
                for tool in request.tools
            ]
        return params

    async def _complete(self, request: CompletionRequest) -> CompletionResponse:
        raw = await self.client.messages.with_raw_response.create(
            **self.build_params(request)
        )
        rate_limits = self._record_rate_limits(raw.headers)
        message = raw.parse()

        content = "\n".join(
            block.text
            for block in message.content
            if getattr(block, "type", None) == "text"
        )

        return CompletionResponse(
            content=content,
            model=message.model,
            usage=map_anthropic_usage(message.usage),
            stop_reason=message.stop_reason,
            rate_limit_info=rate_limits,
            raw_response=message,
        )

    async def _stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        stream = await self.client.messages.create(
            **self.build_params(request), stream=True
        )
        response = getattr(stream, "response", None)
        if response is not None:
            self._record_rate_limits(response.headers)

        # message_start carries input/cache usage, message_delta the output
        usage = TokenUsage.empty()
        stop_reason: Optional[str] = None

        async for event in stream:
            event_type = getattr(event, "type", None)

            if event_type == "message_start":
                started = map_anthropic_usage(event.message.usage)
                usage.input_tokens = started.input_tokens
                usage.cache_creation_tokens = started.cache_creation_tokens
                usage.cache_read_tokens = started.cache_read_tokens

            elif event_type == "content_block_delta":
                if getattr(event.delta, "type", None) == "text_delta":
                    yield StreamChunk(content=event.delta.text)

            elif event_type == "message_delta":
                delta_usage = map_anthropic_usage(getattr(event, "usage", None))
                usage.output_tokens = delta_usage.output_tokens
                usage.reasoning_tokens = delta_usage.reasoning_tokens
                # Cumulative counts, when present, supersede message_start
                if delta_usage.input_tokens:
                    usage.input_tokens = delta_usage.input_tokens
                if delta_usage.cache_creation_tokens:
                    usage.cache_creation_tokens = delta_usage.cache_creation_tokens
                if delta_usage.cache_read_tokens:
                    usage.cache_read_tokens = delta_usage.cache_read_tokens
                stop_reason = getattr(event.delta, "stop_reason", None) or stop_reason

            elif event_type == "message_stop":
                yield StreamChunk(
                    content="",
                    finish_reason=stop_reason or "stop",
                    usage=usage,
                )

    async def _ping(self) -> None:
        await self.client.messages.create(
            model=self._settings.anthropic_health_model,
            max_tokens=10,
            messages=[{"role": "user", "content": "ping"}],
        )
