from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import numpy as np

from ..audit import AuditSink
from ..schemas import Chunk, RetrievedContext
from .base import ChunkMatch, VectorStore


class InMemoryVectorStore(VectorStore):
    """Exact cosine scan over per-tenant arrays.

    Each tenant has its own dictionary of chunks, so a query can only ever see
    rows written under the same tenant id.
    """

    def __init__(self, *, dim: int, timeout_seconds: float = 10.0, audit: Optional[AuditSink] = None) -> None:
        super().__init__(timeout_seconds=timeout_seconds, audit=audit)
        self.dim = dim
        self._tenants: Dict[str, Dict[str, Chunk]] = {}
        self._vectors: Dict[str, Dict[str, np.ndarray]] = {}

    def _normalized(self, vector: Sequence[float]) -> np.ndarray:
        array = np.asarray(vector, dtype=np.float32)
        if array.shape != (self.dim,):
            raise ValueError(f"vector must have shape ({self.dim},), got {array.shape}")
        norm = float(np.linalg.norm(array))
        return array / norm if norm > 0 else array

    async def _search(self, tenant_id: str, query_vector: Sequence[float], top_k: int, threshold: float) -> List[ChunkMatch]:
        chunks = self._tenants.get(tenant_id)
        if not chunks:
            return []
        ids = list(chunks)
        matrix = np.stack([self._vectors[tenant_id][chunk_id] for chunk_id in ids])
        scores = matrix @ self._normalized(query_vector)
        order = np.argsort(-scores)[:top_k]

        matches: List[ChunkMatch] = []
        for position in order:
            chunk = chunks[ids[int(position)]]
            similarity = float(np.clip(scores[int(position)], 0.0, 1.0))
            matches.append(
                ChunkMatch(
                    tenant_id=chunk.tenant_id,
                    context=RetrievedContext(
                        chunk_id=chunk.id,
                        doc_id=chunk.doc_id,
                        doc_title=chunk.doc_title,
                        content=chunk.content,
                        chunk_index=chunk.chunk_index,
                        similarity=similarity,
                    ),
                )
            )
        return matches

    async def _upsert(self, tenant_id: str, chunks: Sequence[Chunk]) -> None:
        rows = self._tenants.setdefault(tenant_id, {})
        vectors = self._vectors.setdefault(tenant_id, {})
        for chunk in chunks:
            vectors[chunk.id] = self._normalized(chunk.embedding or [])
            rows[chunk.id] = chunk.model_copy(update={"embedding": None})

    async def _delete_document(self, tenant_id: str, doc_id: str) -> int:
        rows = self._tenants.get(tenant_id, {})
        doomed = [chunk_id for chunk_id, chunk in rows.items() if chunk.doc_id == doc_id]
        for chunk_id in doomed:
            rows.pop(chunk_id, None)
            self._vectors[tenant_id].pop(chunk_id, None)
        return len(doomed)

    async def _count_document(self, tenant_id: str, doc_id: str) -> int:
        return sum(1 for chunk in self._tenants.get(tenant_id, {}).values() if chunk.doc_id == doc_id)
