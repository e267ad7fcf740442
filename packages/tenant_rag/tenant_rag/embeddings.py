from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .errors import ConfigMismatchError, EmbeddingProviderError, ValidationError
from .llm.base import BatchEmbeddingError, EmbeddingResponse, LLMProvider

logger = logging.getLogger(__name__)


@dataclass
class BatchEmbedding:
    """Vectors in input order; ``None`` where ``errors`` has an entry."""

    vectors: List[Optional[List[float]]]
    errors: Dict[int, str] = field(default_factory=dict)
    total_tokens: int = 0

    @property
    def complete(self) -> bool:
        return not self.errors and all(vector is not None for vector in self.vectors)


class EmbeddingClient:
    def __init__(
        self,
        provider: LLMProvider,
        *,
        dimensions: int,
        batch_size: int = 64,
        concurrency: int = 4,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.provider = provider
        self.dimensions = dimensions
        self.batch_size = max(1, batch_size)
        self.concurrency = max(1, concurrency)
        self.timeout_seconds = timeout_seconds

    def _check_dimensions(self, vector: List[float]) -> List[float]:
        if len(vector) != self.dimensions:
            raise ConfigMismatchError(
                f"Embedding dimension mismatch: provider returned {len(vector)}, deployment expects {self.dimensions}"
            )
        return vector

    async def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise ValidationError("Cannot embed empty text")
        try:
            response = await asyncio.wait_for(self.provider.embed(text), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise EmbeddingProviderError(
                f"Embedding request timed out after {self.timeout_seconds}s", timeout=True
            ) from exc
        except Exception as exc:
            logger.warning("embedding request failed", extra={"provider": self.provider.name, "error": str(exc)})
            raise EmbeddingProviderError(f"Embedding provider failed: {exc}") from exc
        return self._check_dimensions(response.embedding)

    async def embed_batch(self, texts: Sequence[str]) -> BatchEmbedding:
        vectors: List[Optional[List[float]]] = [None] * len(texts)
        errors: Dict[int, str] = {}
        total_tokens = 0

        for offset in range(0, len(texts), self.batch_size):
            batch = list(texts[offset : offset + self.batch_size])
            responses: List[Optional[EmbeddingResponse]]
            try:
                responses = await asyncio.wait_for(
                    self.provider.embed_batch(batch, concurrency=self.concurrency), timeout=self.timeout_seconds
                )
            except BatchEmbeddingError as exc:
                responses = exc.results
                for index, error in exc.errors.items():
                    errors[offset + index] = str(error) or error.__class__.__name__
            except asyncio.TimeoutError:
                for index in range(len(batch)):
                    errors[offset + index] = f"timed out after {self.timeout_seconds}s"
                continue
            except Exception as exc:
                logger.warning(
                    "batch embedding request failed",
                    extra={"provider": self.provider.name, "batch_start": offset, "error": str(exc)},
                )
                for index in range(len(batch)):
                    errors[offset + index] = str(exc)
                continue

            if len(responses) != len(batch):
                for index in range(len(batch)):
                    errors.setdefault(offset + index, "provider returned a mismatched number of embeddings")
                continue

            for index, response in enumerate(responses):
                if response is None:
                    continue
                vectors[offset + index] = self._check_dimensions(response.embedding)
                total_tokens += response.tokens

        return BatchEmbedding(vectors=vectors, errors=errors, total_tokens=total_tokens)
