"""Wires the pipeline's collaborators from settings."""
from __future__ import annotations

import logging
from typing import Any, Optional

import redis.asyncio as redis_async

from .audit import AuditSink, LoggingAuditSink
from .cache import ResponseCache
from .config import Settings
from .crypto import SecretCipher
from .db.repositories import TortoiseTenantDirectory
from .db.session import TortoiseTenantConnector
from .llm.registry import ProviderRegistry, build_default_registry
from .pipeline import RagPipeline
from .repository import TenantConnector, TenantDirectory
from .sanitizer import Sanitizer
from .schemas import RagConfig
from .tenants import CredentialVault, TenantResolver
from .vectorstore.base import VectorStore
from .vectorstore.memory_store import InMemoryVectorStore
from .vectorstore.weaviate_store import WeaviateVectorStore
from .weaviate_client import close_weaviate_client, get_weaviate_client

logger = logging.getLogger(__name__)


def default_rag_config(settings: Settings) -> RagConfig:
    return RagConfig(
        top_k=settings.rag_top_k,
        confidence_threshold=settings.rag_confidence_threshold,
        chunk_size=settings.rag_chunk_size,
        chunk_overlap=settings.rag_chunk_overlap,
    )


def build_vector_store(settings: Settings, audit: AuditSink, weaviate_client: Any = None) -> VectorStore:
    if settings.vector_backend == "memory":
        logger.warning("using in-memory vector store; chunks are lost on restart")
        return InMemoryVectorStore(
            dim=settings.embedding_dim, timeout_seconds=settings.vector_search_timeout_seconds, audit=audit
        )
    return WeaviateVectorStore(
        weaviate_client or get_weaviate_client(),
        settings.weaviate_collection,
        timeout_seconds=settings.vector_search_timeout_seconds,
        audit=audit,
    )


def build_cache(settings: Settings, audit: AuditSink, redis_client: Any = None) -> ResponseCache:
    if redis_client is None and settings.cache_enabled:
        redis_client = redis_async.from_url(settings.redis_url, decode_responses=True)
    return ResponseCache(
        redis_client,
        ttl_seconds=settings.cache_ttl_seconds,
        key_prefix=settings.cache_key_prefix,
        enabled=settings.cache_enabled,
        audit=audit,
    )


def build_pipeline(
    settings: Settings,
    *,
    directory: Optional[TenantDirectory] = None,
    connector: Optional[TenantConnector] = None,
    registry: Optional[ProviderRegistry] = None,
    vector_store: Optional[VectorStore] = None,
    redis_client: Any = None,
    weaviate_client: Any = None,
    audit: Optional[AuditSink] = None,
) -> RagPipeline:
    audit = audit or LoggingAuditSink()
    cipher = SecretCipher.from_base64(settings.master_key) if settings.master_key else None
    if cipher is None:
        logger.warning("MASTER_KEY is not configured; tenant secrets cannot be decrypted")

    vault = CredentialVault(
        directory or TortoiseTenantDirectory(default_rag_config(settings)),
        cipher,
        timeout_seconds=settings.decrypt_timeout_seconds,
        audit=audit,
    )
    resolver = TenantResolver(
        vault,
        connector or TortoiseTenantConnector(),
        registry or build_default_registry(settings),
        default_llm_api_key=settings.openai_api_key,
    )
    return RagPipeline(
        settings=settings,
        resolver=resolver,
        vector_store=vector_store or build_vector_store(settings, audit, weaviate_client),
        cache=build_cache(settings, audit, redis_client),
        sanitizer=Sanitizer(audit=audit),
        audit=audit,
    )


async def close_pipeline(pipeline: RagPipeline) -> None:
    await pipeline.resolver.connector.close()
    await pipeline.vector_store.close()
    if isinstance(pipeline.vector_store, WeaviateVectorStore):
        close_weaviate_client()
    redis_client = pipeline.cache.redis
    if redis_client is not None and hasattr(redis_client, "aclose"):
        await redis_client.aclose()
