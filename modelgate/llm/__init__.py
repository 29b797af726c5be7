"""
LLM provider layer: unified types, pooled SDK clients, vendor adapters,
rate-limit parsing and the adapter registry.
"""

from modelgate.llm.client_pool import ClientPool
from modelgate.llm.registry import ProviderRegistry
from modelgate.llm.types import (
    CompletionRequest,
    CompletionResponse,
    Message,
    ProviderCredential,
    RateLimitInfo,
    StreamChunk,
    TokenUsage,
    Vendor,
)

__all__ = [
    "ClientPool",
    "CompletionRequest",
    "CompletionResponse",
    "Message",
    "ProviderCredential",
    "ProviderRegistry",
    "RateLimitInfo",
    "StreamChunk",
    "TokenUsage",
    "Vendor",
]
