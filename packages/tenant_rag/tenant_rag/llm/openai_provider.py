from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from .base import (
    ChatMessage,
    CompletionOptions,
    CompletionResponse,
    EmbeddingResponse,
    LLMProvider,
    StreamChunk,
    Usage,
    map_finish_reason,
)

logger = logging.getLogger(__name__)


def _usage(raw: Any) -> Usage:
    if raw is None:
        return Usage()
    return Usage(
        prompt_tokens=getattr(raw, "prompt_tokens", 0) or 0,
        completion_tokens=getattr(raw, "completion_tokens", 0) or 0,
        total_tokens=getattr(raw, "total_tokens", 0) or 0,
    )


class OpenAIProvider(LLMProvider):
    """Chat completions and embeddings through the OpenAI API."""

    name = "openai"

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o-mini",
        embedding_model: str = "text-embedding-3-small",
        embedding_dimensions: Optional[int] = None,
        base_url: Optional[str] = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        self.model = model
        self.embedding_model = embedding_model
        self.embedding_dimensions = embedding_dimensions
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout_seconds, max_retries=2)

    def _request(self, messages: Sequence[ChatMessage], options: CompletionOptions) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": options.model or self.model,
            "messages": [{"role": message.role, "content": message.content} for message in messages],
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        if options.stop:
            payload["stop"] = options.stop
        return payload

    def _embedding_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"model": self.embedding_model}
        if self.embedding_dimensions and self.embedding_model.startswith("text-embedding-3"):
            kwargs["dimensions"] = self.embedding_dimensions
        return kwargs

    async def complete(self, messages: Sequence[ChatMessage], options: CompletionOptions) -> CompletionResponse:
        response = await self._client.chat.completions.create(**self._request(messages, options))
        choice = response.choices[0]
        return CompletionResponse(
            content=choice.message.content or "",
            finish_reason=map_finish_reason(choice.finish_reason),
            usage=_usage(response.usage),
            model=response.model,
        )

    async def stream_complete(
        self, messages: Sequence[ChatMessage], options: CompletionOptions
    ) -> AsyncIterator[StreamChunk]:
        stream = await self._client.chat.completions.create(
            **self._request(messages, options),
            stream=True,
            stream_options={"include_usage": True},
        )
        try:
            async for chunk in stream:
                usage = _usage(chunk.usage) if chunk.usage else None
                if not chunk.choices:
                    if usage is not None:
                        yield StreamChunk(usage=usage)
                    continue
                choice = chunk.choices[0]
                yield StreamChunk(
                    content=choice.delta.content or "",
                    finish_reason=map_finish_reason(choice.finish_reason),
                    usage=usage,
                )
        finally:
            await stream.close()

    async def embed(self, text: str) -> EmbeddingResponse:
        response = await self._client.embeddings.create(input=text, **self._embedding_kwargs())
        tokens = response.usage.total_tokens if response.usage else 0
        return EmbeddingResponse(embedding=list(response.data[0].embedding), tokens=tokens)

    async def embed_batch(self, texts: Sequence[str], *, concurrency: Optional[int] = None) -> List[EmbeddingResponse]:
        if not texts:
            return []
        response = await self._client.embeddings.create(input=list(texts), **self._embedding_kwargs())
        ordered = sorted(response.data, key=lambda item: item.index)
        tokens = response.usage.total_tokens if response.usage else 0
        per_item = tokens // len(ordered) if ordered else 0
        logger.debug("embedded batch", extra={"count": len(ordered), "tokens": tokens})
        return [EmbeddingResponse(embedding=list(item.embedding), tokens=per_item) for item in ordered]

    async def aclose(self) -> None:
        await self._client.close()
