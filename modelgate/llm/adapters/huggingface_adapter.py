"""
HuggingFace Inference adapter (httpx).

Chat-tuned models go through the OpenAI-compatible router endpoint; plain
text-generation models get a "System:/User:/Assistant:" transcript. When
the API reports no usage, tokens are estimated at four characters each.
HuggingFace rate-limit headers are inconsistent and are not parsed.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, AsyncIterator, Optional

from modelgate.llm.adapters.base import ProviderAdapter
from modelgate.llm.types import (
    CompletionRequest,
    CompletionResponse,
    RateLimitInfo,
    Role,
    StreamChunk,
    TokenUsage,
    Vendor,
)

logger = logging.getLogger(__name__)

CHAT_MODEL_KEYWORDS = ("chat", "instruct", "conversational", "dialogue")
CHARS_PER_TOKEN = 4


def is_chat_model(model: str) -> bool:
    lowered = model.lower()
    return any(keyword in lowered for keyword in CHAT_MODEL_KEYWORDS)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_usage(prompt: str, completion: str) -> TokenUsage:
    return TokenUsage(
        input_tokens=estimate_tokens(prompt),
        output_tokens=estimate_tokens(completion),
    )


def build_transcript(request: CompletionRequest) -> str:
    """Flatten a chat request into a prompt for text-generation models."""
    parts = []
    if request.system_prompt:
        parts.append(f"System: {request.system_prompt}\n\n")
    for msg in request.messages:
        prefix = {Role.USER: "User", Role.SYSTEM: "System"}.get(msg.role, "Assistant")
        parts.append(f"{prefix}: {msg.content}\n\n")
    parts.append("Assistant: ")
    return "".join(parts)


def _sse_data(line: str) -> Optional[str]:
    """Payload of an SSE `data:` line, None for anything else."""
    if not line.startswith("data:"):
        return None
    return line[len("data:"):].strip()


class HuggingFaceAdapter(ProviderAdapter):
    """HuggingFace Inference API. No function calling, no vision."""

    vendor = Vendor.HUGGINGFACE
    supports_streaming = True
    supports_function_calling = False
    supports_vision = False

    def get_last_rate_limit_info(self) -> Optional[RateLimitInfo]:
        return None

    # --- URLs & Payloads ---

    @property
    def chat_url(self) -> str:
        base = self._credential.base_url or self._settings.huggingface_base_url
        return f"{base.rstrip('/')}/v1/chat/completions"

    def text_url(self, model: str) -> str:
        base = self._settings.huggingface_text_base_url
        return f"{base.rstrip('/')}/models/{model}"

    def chat_payload(self, request: CompletionRequest, *, stream: bool = False) -> dict[str, Any]:
        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.extend(
            {"role": msg.role.value, "content": msg.content}
            for msg in request.messages
        )
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "max_tokens": self._max_tokens(request),
            "temperature": self._temperature(request),
        }
        if stream:
            payload["stream"] = True
        return payload

    def text_payload(self, prompt: str, request: CompletionRequest, *, stream: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "inputs": prompt,
            "parameters": {
                "max_new_tokens": self._max_tokens(request),
                "temperature": self._temperature(request),
                "return_full_text": False,
            },
        }
        if stream:
            payload["stream"] = True
        return payload

    # --- Completion ---

    async def _complete(self, request: CompletionRequest) -> CompletionResponse:
        if is_chat_model(request.model):
            return await self._complete_chat(request)
        return await self._complete_text(request)

    async def _complete_chat(self, request: CompletionRequest) -> CompletionResponse:
        resp = await self.client.post(self.chat_url, json=self.chat_payload(request))
        resp.raise_for_status()
        data = resp.json()

        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""

        usage_data = data.get("usage")
        if usage_data:
            usage = TokenUsage(
                input_tokens=usage_data.get("prompt_tokens", 0) or 0,
                output_tokens=usage_data.get("completion_tokens", 0) or 0,
            )
        else:
            usage = estimate_usage(build_transcript(request), content)

        return CompletionResponse(
            content=content,
            model=data.get("model") or request.model,
            usage=usage,
            stop_reason=choices[0].get("finish_reason") or "stop",
            raw_response=data,
        )

    async def _complete_text(self, request: CompletionRequest) -> CompletionResponse:
        prompt = build_transcript(request)
        resp = await self.client.post(
            self.text_url(request.model), json=self.text_payload(prompt, request)
        )
        resp.raise_for_status()
        data = resp.json()

        # The endpoint answers with a list of generations or a single object
        first = data[0] if isinstance(data, list) and data else data
        content = first.get("generated_text", "") if isinstance(first, dict) else ""

        return CompletionResponse(
            content=content,
            model=request.model,
            usage=estimate_usage(prompt, content),
            stop_reason="stop",
            raw_response=data,
        )

    # --- Streaming ---

    async def _stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        if is_chat_model(request.model):
            stream = self._stream_chat(request)
        else:
            stream = self._stream_text(request)
        async for chunk in stream:
            yield chunk

    async def _sse_events(self, url: str, payload: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        async with self.client.stream("POST", url, json=payload) as response:
            if response.status_code >= 400:
                await response.aread()
            response.raise_for_status()

            async for line in response.aiter_lines():
                data = _sse_data(line.strip())
                if not data:
                    continue
                if data == "[DONE]":
                    break
                try:
                    yield json.loads(data)
                except json.JSONDecodeError:
                    logger.debug("huggingface_sse_unparseable", extra={"error": data[:100]})

    async def _stream_chat(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        collected = []
        usage: Optional[TokenUsage] = None
        finish_reason: Optional[str] = None

        async for event in self._sse_events(self.chat_url, self.chat_payload(request, stream=True)):
            usage_data = event.get("usage")
            if usage_data:
                usage = TokenUsage(
                    input_tokens=usage_data.get("prompt_tokens", 0) or 0,
                    output_tokens=usage_data.get("completion_tokens", 0) or 0,
                )
            choices = event.get("choices") or []
            if not choices:
                continue
            finish_reason = choices[0].get("finish_reason") or finish_reason
            text = (choices[0].get("delta") or {}).get("content") or ""
            if text:
                collected.append(text)
                yield StreamChunk(content=text)

        if usage is None:
            usage = estimate_usage(build_transcript(request), "".join(collected))
        yield StreamChunk(content="", finish_reason=finish_reason or "stop", usage=usage)

    async def _stream_text(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        prompt = build_transcript(request)
        collected = []

        async for event in self._sse_events(
            self.text_url(request.model), self.text_payload(prompt, request, stream=True)
        ):
            text = (event.get("token") or {}).get("text") or ""
            if text:
                collected.append(text)
                yield StreamChunk(content=text)

        yield StreamChunk(
            content="",
            finish_reason="stop",
            usage=estimate_usage(prompt, "".join(collected)),
        )

    # --- Health ---

    async def _ping(self) -> None:
        resp = await self.client.post(
            self.text_url(self._settings.huggingface_health_model),
            json={"inputs": "test", "parameters": {"max_new_tokens": 5}},
        )
        resp.raise_for_status()
