from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Sequence, Set

from weaviate.classes.data import DataObject
from weaviate.classes.query import Filter, MetadataQuery
from weaviate.classes.tenants import Tenant

from ..audit import AuditSink
from ..schemas import Chunk, RetrievedContext
from .base import ChunkMatch, VectorStore

logger = logging.getLogger(__name__)

RETURN_PROPERTIES = ["tenant_id", "doc_id", "doc_title", "content", "chunk_index"]


def _resolve_score(distance: Optional[float], certainty: Optional[float] = None) -> float:
    if distance is not None:
        return max(0.0, min(1.0, 1.0 - float(distance)))
    if certainty is not None:
        return max(0.0, min(1.0, float(certainty)))
    return 0.0


class WeaviateVectorStore(VectorStore):
    """Chunks in one multi-tenant collection, one shard per tenant.

    Every query goes through ``collection.with_tenant(tenant_id)`` and also
    filters on the ``tenant_id`` property.
    """

    def __init__(
        self,
        client: Any,
        collection_name: str,
        *,
        timeout_seconds: float = 10.0,
        audit: Optional[AuditSink] = None,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, audit=audit)
        self._client = client
        self.collection_name = collection_name
        self._known_tenants: Set[str] = set()

    def _collection(self):
        return self._client.collections.get(self.collection_name)

    def _tenant_exists(self, tenant_id: str) -> bool:
        if tenant_id in self._known_tenants:
            return True
        existing = self._collection().tenants.get()
        if tenant_id in existing:
            self._known_tenants.add(tenant_id)
            return True
        return False

    def _ensure_tenant(self, tenant_id: str) -> None:
        if self._tenant_exists(tenant_id):
            return
        self._collection().tenants.create([Tenant(name=tenant_id)])
        self._known_tenants.add(tenant_id)
        logger.info("created vector tenant shard", extra={"tenant_id": tenant_id})

    async def _search(self, tenant_id: str, query_vector: Sequence[float], top_k: int, threshold: float) -> List[ChunkMatch]:
        def _query() -> List[ChunkMatch]:
            if not self._tenant_exists(tenant_id):
                return []
            response = (
                self._collection()
                .with_tenant(tenant_id)
                .query.near_vector(
                    near_vector=list(query_vector),
                    limit=top_k,
                    distance=1.0 - threshold,
                    filters=Filter.by_property("tenant_id").equal(tenant_id),
                    return_properties=RETURN_PROPERTIES,
                    return_metadata=MetadataQuery(distance=True),
                )
            )
            matches: List[ChunkMatch] = []
            for item in response.objects:
                properties = item.properties
                matches.append(
                    ChunkMatch(
                        tenant_id=str(properties.get("tenant_id") or ""),
                        context=RetrievedContext(
                            chunk_id=str(item.uuid),
                            doc_id=str(properties.get("doc_id") or ""),
                            doc_title=str(properties.get("doc_title") or ""),
                            content=str(properties.get("content") or ""),
                            chunk_index=int(properties.get("chunk_index") or 0),
                            similarity=_resolve_score(item.metadata.distance, item.metadata.certainty),
                        ),
                    )
                )
            return matches

        matches = await asyncio.to_thread(_query)
        logger.info("retrieval results", extra={"tenant_id": tenant_id, "count": len(matches), "top_k": top_k})
        return matches

    async def _upsert(self, tenant_id: str, chunks: Sequence[Chunk]) -> None:
        def _insert() -> None:
            self._ensure_tenant(tenant_id)
            objects = [
                DataObject(
                    uuid=chunk.id,
                    vector=list(chunk.embedding or []),
                    properties={
                        "tenant_id": chunk.tenant_id,
                        "doc_id": chunk.doc_id,
                        "doc_title": chunk.doc_title,
                        "content": chunk.content,
                        "chunk_index": chunk.chunk_index,
                        "start_offset": chunk.start_offset,
                        "end_offset": chunk.end_offset,
                    },
                )
                for chunk in chunks
            ]
            result = self._collection().with_tenant(tenant_id).data.insert_many(objects)
            if result.has_errors:
                first = next(iter(result.errors.values()))
                raise RuntimeError(f"{len(result.errors)} chunk inserts failed: {first.message}")

        await asyncio.to_thread(_insert)

    async def _delete_document(self, tenant_id: str, doc_id: str) -> int:
        def _delete() -> int:
            if not self._tenant_exists(tenant_id):
                return 0
            result = (
                self._collection()
                .with_tenant(tenant_id)
                .data.delete_many(where=Filter.by_property("doc_id").equal(doc_id))
            )
            return int(result.successful)

        removed = await asyncio.to_thread(_delete)
        logger.info("removed document chunks", extra={"tenant_id": tenant_id, "doc_id": doc_id, "removed": removed})
        return removed

    async def _count_document(self, tenant_id: str, doc_id: str) -> int:
        def _count() -> int:
            if not self._tenant_exists(tenant_id):
                return 0
            result = (
                self._collection()
                .with_tenant(tenant_id)
                .aggregate.over_all(filters=Filter.by_property("doc_id").equal(doc_id), total_count=True)
            )
            return int(result.total_count or 0)

        return await asyncio.to_thread(_count)
