"""Tenant scoped vector store interface."""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..audit import AuditSink, NullAuditSink
from ..errors import ValidationError, VectorStoreError
from ..schemas import Chunk, RetrievedContext

logger = logging.getLogger(__name__)


@dataclass
class ChunkMatch:
    """Raw backend row before tenant verification and thresholding."""

    tenant_id: str
    context: RetrievedContext


def require_tenant(tenant_id: Optional[str]) -> str:
    if not tenant_id or not str(tenant_id).strip():
        raise VectorStoreError("A tenant id is required for every vector store operation")
    return str(tenant_id)


class VectorStore(ABC):
    """Similarity search over one tenant's chunks at a time.

    Subclasses implement the ``_`` prefixed hooks; the public methods validate
    the tenant scope, apply the timeout and post-filter results.
    """

    def __init__(self, *, timeout_seconds: float = 10.0, audit: Optional[AuditSink] = None) -> None:
        self.timeout_seconds = timeout_seconds
        self.audit = audit or NullAuditSink()

    @abstractmethod
    async def _search(self, tenant_id: str, query_vector: Sequence[float], top_k: int, threshold: float) -> List[ChunkMatch]:
        raise NotImplementedError

    @abstractmethod
    async def _upsert(self, tenant_id: str, chunks: Sequence[Chunk]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _delete_document(self, tenant_id: str, doc_id: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def _count_document(self, tenant_id: str, doc_id: str) -> int:
        raise NotImplementedError

    async def _bounded(self, operation: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise VectorStoreError(f"Vector store {operation} timed out after {self.timeout_seconds}s", timeout=True) from exc
        except VectorStoreError:
            raise
        except Exception as exc:
            logger.warning("vector store call failed", extra={"operation": operation, "error": str(exc)})
            raise VectorStoreError(f"Vector store {operation} failed: {exc}") from exc

    async def search(
        self, tenant_id: str, query_vector: Sequence[float], top_k: int, threshold: float
    ) -> List[RetrievedContext]:
        tenant_id = require_tenant(tenant_id)
        if top_k < 1:
            raise ValidationError("top_k must be at least 1")
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError("threshold must be between 0 and 1")

        matches = await self._bounded("search", self._search(tenant_id, query_vector, top_k, threshold))

        contexts: List[RetrievedContext] = []
        for match in matches:
            if match.tenant_id != tenant_id:
                self.audit.emit(
                    "cross_tenant_row_dropped",
                    tenant_id=tenant_id,
                    row_tenant_id=match.tenant_id,
                    chunk_id=match.context.chunk_id,
                )
                continue
            if match.context.similarity < threshold:
                continue
            contexts.append(match.context)
        contexts.sort(key=lambda context: context.similarity, reverse=True)
        return contexts[:top_k]

    async def upsert_chunks(self, tenant_id: str, chunks: Sequence[Chunk]) -> None:
        tenant_id = require_tenant(tenant_id)
        for chunk in chunks:
            if chunk.tenant_id != tenant_id:
                raise VectorStoreError("Chunk tenant does not match the target tenant")
            if chunk.embedding is None:
                raise VectorStoreError(f"Chunk {chunk.id} has no embedding")
        if chunks:
            await self._bounded("upsert", self._upsert(tenant_id, chunks))

    async def delete_document(self, tenant_id: str, doc_id: str) -> int:
        tenant_id = require_tenant(tenant_id)
        return await self._bounded("delete", self._delete_document(tenant_id, doc_id))

    async def count_document_chunks(self, tenant_id: str, doc_id: str) -> int:
        tenant_id = require_tenant(tenant_id)
        return await self._bounded("count", self._count_document(tenant_id, doc_id))

    async def close(self) -> None:
        return None
