"""Provider capability interface."""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Literal, Optional, Sequence, Union

FinishReason = Optional[Literal["stop", "length", "content_filter"]]


@dataclass
class ChatMessage:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass
class CompletionOptions:
    model: Optional[str] = None
    temperature: float = 0.3
    max_tokens: int = 1024
    stop: Optional[List[str]] = None


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class CompletionResponse:
    content: str
    finish_reason: FinishReason = None
    usage: Usage = field(default_factory=Usage)
    model: Optional[str] = None


@dataclass
class StreamChunk:
    content: str = ""
    finish_reason: FinishReason = None
    usage: Optional[Usage] = None


@dataclass
class EmbeddingResponse:
    embedding: List[float]
    tokens: int = 0


class BatchEmbeddingError(Exception):
    """Raised by :meth:`LLMProvider.embed_batch` when some items failed.

    ``results`` keeps the successful siblings in input order (``None`` where an
    item failed) and ``errors`` maps failed indexes to their exception.
    """

    def __init__(self, results: List[Optional[EmbeddingResponse]], errors: Dict[int, BaseException]) -> None:
        super().__init__(f"{len(errors)} of {len(results)} embeddings failed")
        self.results = results
        self.errors = errors


def map_finish_reason(reason: Optional[str]) -> FinishReason:
    if reason == "stop":
        return "stop"
    if reason == "length":
        return "length"
    if reason == "content_filter":
        return "content_filter"
    return None


class LLMProvider(ABC):
    """One completion and one embedding capability.

    Providers without a native batch embedding endpoint inherit
    :meth:`embed_batch`, which fans :meth:`embed` out concurrently.
    """

    name: str = "base"
    max_batch_concurrency: int = 4

    @abstractmethod
    async def complete(self, messages: Sequence[ChatMessage], options: CompletionOptions) -> CompletionResponse:
        raise NotImplementedError

    @abstractmethod
    def stream_complete(self, messages: Sequence[ChatMessage], options: CompletionOptions) -> AsyncIterator[StreamChunk]:
        raise NotImplementedError

    @abstractmethod
    async def embed(self, text: str) -> EmbeddingResponse:
        raise NotImplementedError

    async def embed_batch(self, texts: Sequence[str], *, concurrency: Optional[int] = None) -> List[EmbeddingResponse]:
        semaphore = asyncio.Semaphore(max(1, concurrency or self.max_batch_concurrency))

        async def _one(text: str) -> EmbeddingResponse:
            async with semaphore:
                return await self.embed(text)

        outcomes: List[Union[EmbeddingResponse, BaseException]] = await asyncio.gather(
            *(_one(text) for text in texts), return_exceptions=True
        )
        errors = {index: outcome for index, outcome in enumerate(outcomes) if isinstance(outcome, BaseException)}
        results = [None if isinstance(outcome, BaseException) else outcome for outcome in outcomes]
        if errors:
            raise BatchEmbeddingError(results, errors)
        return results  # type: ignore[return-value]

    async def aclose(self) -> None:
        return None
