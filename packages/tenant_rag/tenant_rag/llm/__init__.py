"""LLM provider capabilities."""

from .base import (
    BatchEmbeddingError,
    ChatMessage,
    CompletionOptions,
    CompletionResponse,
    EmbeddingResponse,
    LLMProvider,
    StreamChunk,
    Usage,
    map_finish_reason,
)
from .openai_provider import OpenAIProvider
from .registry import ProviderRegistry, build_default_registry

__all__ = [
    "BatchEmbeddingError",
    "ChatMessage",
    "CompletionOptions",
    "CompletionResponse",
    "EmbeddingResponse",
    "LLMProvider",
    "OpenAIProvider",
    "ProviderRegistry",
    "StreamChunk",
    "Usage",
    "build_default_registry",
    "map_finish_reason",
]
