import math

import pytest

from tenant_rag.audit import StageTimer
from tenant_rag.chunking import chunk_document
from tenant_rag.embeddings import EmbeddingClient
from tenant_rag.errors import GenerationCancelled
from tenant_rag.generation import AnswerGenerator, GenerationState
from tenant_rag.llm.base import CompletionOptions
from tenant_rag.prompts import FALLBACK_ANSWER
from tenant_rag.sanitizer import Sanitizer
from tenant_rag.schemas import RagConfig
from tenant_rag.streaming import AnswerChannel, CancellationToken, NullChannel
from tenant_rag.vectorstore.memory_store import InMemoryVectorStore

from fakes import DIM, FakeProvider, RecordingAuditSink, keyword_vector

TENANT = "tenant-a"


async def _seed(store: InMemoryVectorStore, content: str, doc_id: str = "q3-report") -> None:
    chunks = chunk_document(content, doc_id=doc_id, tenant_id=TENANT, doc_title="Q3 Report", chunk_size=500, chunk_overlap=50)
    for chunk in chunks:
        chunk.embedding = keyword_vector(chunk.content)
    await store.upsert_chunks(TENANT, chunks)


def _generator(provider: FakeProvider, store: InMemoryVectorStore, audit=None, **overrides) -> AnswerGenerator:
    options = dict(
        sanitizer=Sanitizer(),
        embedder=EmbeddingClient(provider, dimensions=DIM),
        vector_store=store,
        provider=provider,
        rag_config=RagConfig(top_k=3, confidence_threshold=0.6),
        completion_options=CompletionOptions(),
        generation_timeout_seconds=2.0,
        stream_idle_timeout_seconds=1.0,
        audit=audit or RecordingAuditSink(),
        timer=StageTimer(),
    )
    options.update(overrides)
    return AnswerGenerator(**options)


@pytest.mark.asyncio
async def test_happy_path_walks_every_state():
    store = InMemoryVectorStore(dim=DIM)
    await _seed(store, "Q3 revenue was $5M.")
    provider = FakeProvider()
    channel = AnswerChannel()
    generator = _generator(provider, store)

    outcome = await generator.run(TENANT, "What was Q3 revenue?", channel=channel, token=CancellationToken(), trace_id="t1")
    await channel.close()
    streamed = "".join([event.content async for event in channel if event.event == "chunk"])

    assert outcome.state is GenerationState.DONE
    assert outcome.transitions == [
        GenerationState.SANITIZING,
        GenerationState.EMBEDDING,
        GenerationState.RETRIEVING,
        GenerationState.CONFIDENCE_GATE,
        GenerationState.PROMPT_BUILDING,
        GenerationState.GENERATING,
        GenerationState.CITATION_EXTRACTION,
        GenerationState.DONE,
    ]
    assert outcome.answer.answer == "Based on the documents, Q3 revenue was $5M. [1]"
    assert streamed == outcome.answer.answer
    assert outcome.answer.citations[0].doc_id == "q3-report"
    assert outcome.answer.confidence_label == "high"
    assert outcome.usage.total_tokens == 15
    assert {"embedding_ms", "retrieval_ms", "generation_ms"} <= set(generator.timer.timings)


@pytest.mark.asyncio
async def test_low_similarity_falls_back_without_generation():
    store = InMemoryVectorStore(dim=DIM)
    await _seed(store, "Q3 revenue was $5M.")
    provider = FakeProvider()

    outcome = await _generator(provider, store).run(
        TENANT, "How is the weather on Mars?", channel=NullChannel(), token=CancellationToken(), trace_id="t2"
    )

    assert outcome.state is GenerationState.FALLBACK
    assert outcome.answer.answer == FALLBACK_ANSWER
    assert outcome.answer.fallback
    assert outcome.answer.confidence == 0.0
    assert provider.completions == []


@pytest.mark.asyncio
async def test_empty_generation_is_an_error():
    store = InMemoryVectorStore(dim=DIM)
    await _seed(store, "Q3 revenue was $5M.")
    provider = FakeProvider(answer=lambda messages: "   ")

    outcome = await _generator(provider, store).run(
        TENANT, "What was Q3 revenue?", channel=NullChannel(), token=CancellationToken(), trace_id="t3"
    )

    assert outcome.state is GenerationState.ERROR
    assert outcome.error.code == "GENERATION_PROVIDER_ERROR"


@pytest.mark.asyncio
async def test_stalled_stream_times_out():
    store = InMemoryVectorStore(dim=DIM)
    await _seed(store, "Q3 revenue was $5M.")
    provider = FakeProvider(stream_delay=0.5)

    outcome = await _generator(provider, store, stream_idle_timeout_seconds=0.05).run(
        TENANT, "What was Q3 revenue?", channel=NullChannel(), token=CancellationToken(), trace_id="t4"
    )

    assert outcome.state is GenerationState.ERROR
    assert outcome.error.timeout
    assert provider.streams_closed == 1


@pytest.mark.asyncio
async def test_cancelled_token_stops_generation():
    store = InMemoryVectorStore(dim=DIM)
    token = CancellationToken()
    token.cancel()

    with pytest.raises(GenerationCancelled):
        await _generator(FakeProvider(), store).run(
            TENANT, "What was Q3 revenue?", channel=NullChannel(), token=token, trace_id="t5"
        )


@pytest.mark.asyncio
async def test_low_confidence_answers_are_audited():
    store = InMemoryVectorStore(dim=DIM)
    await _seed(store, "Q3 revenue was $5M.")
    audit = RecordingAuditSink()
    provider = FakeProvider(answer=lambda messages: "I could not find a cited figure.")

    outcome = await _generator(provider, store, audit=audit).run(
        TENANT, "What was Q3 revenue?", channel=NullChannel(), token=CancellationToken(), trace_id="t6"
    )

    assert outcome.state is GenerationState.DONE
    assert outcome.answer.citations == []
    assert outcome.answer.confidence == 0.0
    assert audit.of("low_confidence")[0]["trace_id"] == "t6"


@pytest.mark.asyncio
async def test_retrieved_chunks_are_reranked_before_prompting():
    store = InMemoryVectorStore(dim=DIM)
    await _seed(store, "Q3 revenue was $5M.")
    generator = _generator(FakeProvider(), store)
    question = "What was Q3 revenue and pricing?"
    query, chunk = keyword_vector(question), keyword_vector("Q3 revenue was $5M.")
    raw = sum(a * b for a, b in zip(query, chunk)) / (
        math.sqrt(sum(a * a for a in query)) * math.sqrt(sum(b * b for b in chunk))
    )

    outcome = await generator.run(TENANT, question, channel=NullChannel(), token=CancellationToken(), trace_id="t7")

    # "was" and "revenue" overlap, plus the lead-chunk boost
    assert outcome.contexts[0].similarity == pytest.approx(raw + 0.05)
