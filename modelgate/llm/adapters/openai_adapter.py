"""
OpenAI-compatible adapters: OpenAI, Groq and Azure OpenAI.

All three speak the Chat Completions protocol through the `openai` SDK.
The system instruction is prepended as the first message. Cached prompt
tokens and reasoning tokens are reported inside the prompt/completion
counts, so they are split out before building TokenUsage.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional

from modelgate.exceptions import ConfigurationError
from modelgate.llm.adapters.base import ProviderAdapter, input_schema, usage_int
from modelgate.llm.types import (
    CompletionRequest,
    CompletionResponse,
    StreamChunk,
    TokenUsage,
    Vendor,
)

logger = logging.getLogger(__name__)


def map_openai_usage(usage: Any) -> TokenUsage:
    """
    Chat Completions usage -> TokenUsage.

    prompt_tokens includes cached tokens and completion_tokens includes
    reasoning tokens; both are moved into their own categories.
    """
    if usage is None:
        return TokenUsage.empty()

    prompt = usage_int(usage, "prompt_tokens")
    completion = usage_int(usage, "completion_tokens")
    cached = usage_int(getattr(usage, "prompt_tokens_details", None), "cached_tokens")
    reasoning = usage_int(
        getattr(usage, "completion_tokens_details", None), "reasoning_tokens"
    )

    return TokenUsage(
        input_tokens=max(prompt - cached, 0),
        output_tokens=max(completion - reasoning, 0),
        cache_read_tokens=cached,
        reasoning_tokens=reasoning,
    )


class OpenAIAdapter(ProviderAdapter):
    """OpenAI Chat Completions API."""

    vendor = Vendor.OPENAI
    supports_streaming = True
    supports_function_calling = True
    supports_vision = True

    def model_name(self, request: CompletionRequest) -> str:
        return request.model

    def build_params(
        self, request: CompletionRequest, *, stream: bool = False,
    ) -> dict[str, Any]:
        messages: list[dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.extend(
            {"role": msg.role.value, "content": msg.content}
            for msg in request.messages
        )

        params: dict[str, Any] = {
            "model": self.model_name(request),
            "messages": messages,
            "max_tokens": self._max_tokens(request),
            "temperature": self._temperature(request),
        }
        if request.tools:
            params["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": input_schema(tool.parameters),
                    },
                }
                for tool in request.tools
            ]
        if stream:
            # Without the opt-in, streamed responses carry no usage at all
            params["stream"] = True
            params["stream_options"] = {"include_usage": True}
        return params

    async def _complete(self, request: CompletionRequest) -> CompletionResponse:
        raw = await self.client.chat.completions.with_raw_response.create(
            **self.build_params(request)
        )
        rate_limits = self._record_rate_limits(raw.headers)
        completion = raw.parse()

        choice = completion.choices[0] if completion.choices else None
        content = choice.message.content if choice and choice.message else None

        return CompletionResponse(
            content=content or "",
            model=completion.model,
            usage=map_openai_usage(completion.usage),
            stop_reason=choice.finish_reason if choice else None,
            rate_limit_info=rate_limits,
            raw_response=completion,
        )

    async def _stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        stream = await self.client.chat.completions.create(
            **self.build_params(request, stream=True)
        )
        response = getattr(stream, "response", None)
        if response is not None:
            self._record_rate_limits(response.headers)

        usage: Optional[TokenUsage] = None
        finish_reason: Optional[str] = None

        async for chunk in stream:
            if chunk.usage is not None:
                usage = map_openai_usage(chunk.usage)

            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            if choice.finish_reason:
                finish_reason = choice.finish_reason
            text = choice.delta.content if choice.delta else None
            if text:
                yield StreamChunk(content=text)

        yield StreamChunk(
            content="",
            finish_reason=finish_reason or "stop",
            usage=usage or TokenUsage.empty(),
        )

    async def _ping(self) -> None:
        await self.client.models.list()


class GroqAdapter(OpenAIAdapter):
    """Groq's OpenAI-compatible endpoint. No vision models."""

    vendor = Vendor.GROQ
    supports_vision = False


class AzureOpenAIAdapter(OpenAIAdapter):
    """
    Azure OpenAI.

    Requests address a deployment, not a model: the deployment name
    replaces CompletionRequest.model on the wire.
    """

    vendor = Vendor.AZURE_OPENAI

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        if not self._credential.base_url or not self._credential.deployment:
            raise ConfigurationError(
                "Azure OpenAI requires both an endpoint and a deployment name",
                vendor=self.vendor.value,
                field="endpoint" if not self._credential.base_url else "deployment",
            )

    @property
    def deployment(self) -> str:
        return self._credential.deployment or ""

    def model_name(self, request: CompletionRequest) -> str:
        return self.deployment

    async def _ping(self) -> None:
        # Azure resources do not reliably expose models.list()
        await self.client.chat.completions.create(
            model=self.deployment,
            messages=[{"role": "user", "content": "ping"}],
            max_tokens=5,
        )
