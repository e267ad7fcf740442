from __future__ import annotations

import fakeredis
from fakeredis import aioredis
import pytest

from tenant_rag import Settings, build_pipeline
from tenant_rag.vectorstore.memory_store import InMemoryVectorStore

from fakes import DIM, FakeProvider, RecordingAuditSink, TenantWorld, fake_registry


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def world() -> TenantWorld:
    return TenantWorld()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def redis_client():
    return aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def settings(world: TenantWorld) -> Settings:
    return Settings(
        _env_file=None,
        vector_backend="memory",
        embedding_dim=DIM,
        master_key=world.master_key,
        llm_provider="fake",
        cache_enabled=True,
        cache_ttl_seconds=600,
        generation_timeout_seconds=5.0,
        stream_idle_timeout_seconds=2.0,
    )


@pytest.fixture
def vector_store(audit: RecordingAuditSink) -> InMemoryVectorStore:
    return InMemoryVectorStore(dim=DIM, audit=audit)


@pytest.fixture
def pipeline(settings, world, provider, redis_client, vector_store, audit):
    return build_pipeline(
        settings,
        directory=world.directory,
        connector=world.connector,
        registry=fake_registry(provider),
        vector_store=vector_store,
        redis_client=redis_client,
        audit=audit,
    )
