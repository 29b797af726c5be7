from modelgate.llm.adapters.anthropic_adapter import AnthropicAdapter
from modelgate.llm.adapters.base import ProviderAdapter
from modelgate.llm.adapters.huggingface_adapter import HuggingFaceAdapter
from modelgate.llm.adapters.openai_adapter import (
    AzureOpenAIAdapter,
    GroqAdapter,
    OpenAIAdapter,
)

__all__ = [
    "AnthropicAdapter",
    "AzureOpenAIAdapter",
    "GroqAdapter",
    "HuggingFaceAdapter",
    "OpenAIAdapter",
    "ProviderAdapter",
]
