"""
CellClaw - Vendor LLM providers.

Each provider normalizes one vendor protocol into the shared
CompletionRequest / CompletionResponse / StreamEvent contract.
"""

from .anthropic import AnthropicProvider
from .base import (
    Provider,
    ProviderConfig,
    SSEMessage,
    ToolCallAccumulator,
    collect_stream,
    iter_sse_events,
    stream_error_to_exception,
)
from .gemini import GeminiProvider
from .manager import FailoverEvent, ProviderInfo, ProviderManager
from .openai import OpenAIProvider, OpenRouterProvider

__all__ = [
    "Provider",
    "ProviderConfig",
    "SSEMessage",
    "ToolCallAccumulator",
    "collect_stream",
    "iter_sse_events",
    "stream_error_to_exception",
    "AnthropicProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
    "GeminiProvider",
    "ProviderManager",
    "ProviderInfo",
    "FailoverEvent",
]
