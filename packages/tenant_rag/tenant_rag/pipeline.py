"""Ingestion and question answering orchestration.

Every public method returns a result value. Recoverable failures are carried in
``result.error``; only :class:`~tenant_rag.errors.ConfigMismatchError`, which
means the deployment itself is wrong, is raised to the caller.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Optional

from .audit import AuditSink, LoggingAuditSink, StageTimer
from .cache import ResponseCache
from .chunking import chunk_document
from .citations import confidence_label
from .config import Settings
from .embeddings import EmbeddingClient
from .errors import (
    ConfigMismatchError,
    DocumentNotFound,
    EmbeddingProviderError,
    EmptyContentError,
    GenerationCancelled,
    RagError,
    ValidationError,
    VectorStoreError,
)
from .generation import AnswerGenerator, GenerationState
from .llm.base import CompletionOptions, LLMProvider
from .logging import truncate_for_log
from .prompts import CAPABILITY_ANSWER, is_conversational
from .repository import TenantRepository
from .sanitizer import SanitizeKind, Sanitizer
from .schemas import (
    Answer,
    AnswerChunk,
    AskResult,
    DeleteResult,
    Document,
    DocumentInput,
    DocumentStatus,
    IngestResult,
    PipelineError,
    QALog,
    RagConfig,
    RetrievedContext,
    TokenUsage,
)
from .streaming import AnswerChannel, AnswerStream, CancellationToken, NullChannel
from .tenants import TenantResolver
from .vectorstore.base import VectorStore

logger = logging.getLogger(__name__)


def new_trace_id() -> str:
    return uuid.uuid4().hex


def _unexpected(operation: str, exc: Exception) -> RagError:
    logger.error(
        "unexpected failure", exc_info=exc, extra={"operation": operation, "error_type": exc.__class__.__name__}
    )
    return RagError(f"Document {operation} failed unexpectedly")


class RagPipeline:
    def __init__(
        self,
        *,
        settings: Settings,
        resolver: TenantResolver,
        vector_store: VectorStore,
        cache: ResponseCache,
        sanitizer: Optional[Sanitizer] = None,
        audit: Optional[AuditSink] = None,
    ) -> None:
        self.settings = settings
        self.resolver = resolver
        self.vector_store = vector_store
        self.cache = cache
        self.audit = audit or LoggingAuditSink()
        self.sanitizer = sanitizer or Sanitizer(audit=self.audit)

    def _embedder(self, provider: LLMProvider) -> EmbeddingClient:
        return EmbeddingClient(
            provider,
            dimensions=self.settings.embedding_dim,
            batch_size=self.settings.embed_batch_size,
            concurrency=self.settings.embed_concurrency,
            timeout_seconds=self.settings.embedding_timeout_seconds,
        )

    def _completion_options(self) -> CompletionOptions:
        return CompletionOptions(
            temperature=self.settings.llm_temperature,
            max_tokens=self.settings.llm_max_tokens,
        )

    # Ingestion

    async def register_document(self, tenant_slug: str, document: DocumentInput) -> IngestResult:
        """Persist a sanitized document in ``pending`` state without chunking it."""

        try:
            title = self.sanitizer.sanitize(document.title, SanitizeKind.DOCUMENT_TITLE)
            if not title.sanitized:
                raise ValidationError("Document title must not be empty")
            content = self.sanitizer.sanitize(document.content, SanitizeKind.DOCUMENT_CONTENT)
            if content.truncated:
                logger.warning("document content truncated", extra={"title": title.sanitized})
            cleaned = document.model_copy(update={"title": title.sanitized, "content": content.sanitized})

            bundle = await self.resolver.resolve_secrets(tenant_slug)
            async with self.resolver.session(bundle, with_provider=False) as session:
                created = await session.repository.create_document(cleaned)
        except ConfigMismatchError:
            raise
        except RagError as exc:
            return IngestResult(error=PipelineError.from_exception(exc))
        except Exception as exc:
            return IngestResult(error=PipelineError.from_exception(_unexpected("register", exc)))
        logger.info(
            "registered document",
            extra={"tenant_id": created.tenant_id, "document_id": created.id, "doc_type": created.doc_type},
        )
        return IngestResult(document=created)

    async def process_document(self, tenant_slug: str, document_id: str) -> IngestResult:
        """Chunk, embed and index a registered document, replacing any earlier chunks."""

        try:
            bundle = await self.resolver.resolve_secrets(tenant_slug)
            async with self.resolver.session(bundle) as session:
                repository = session.repository
                document = await repository.get_document(document_id)
                if document is None:
                    raise DocumentNotFound(f"Document '{document_id}' not found")
                await repository.update_document(document_id, status=DocumentStatus.PROCESSING, error_detail=None)
                try:
                    chunk_count = await self._index_document(
                        session.tenant_id, document, session.provider, session.rag_config
                    )
                    ready = await repository.update_document(
                        document_id, status=DocumentStatus.READY, chunk_count=chunk_count, error_detail=None
                    )
                except Exception as exc:
                    error = exc if isinstance(exc, RagError) else _unexpected("processing", exc)
                    failed = await self._mark_failed(repository, session.tenant_id, document_id, error)
                    if isinstance(error, ConfigMismatchError):
                        raise
                    return IngestResult(document=failed, error=PipelineError.from_exception(error))
        except ConfigMismatchError:
            raise
        except RagError as exc:
            return IngestResult(error=PipelineError.from_exception(exc))
        except Exception as exc:
            return IngestResult(error=PipelineError.from_exception(_unexpected("processing", exc)))

        await self.cache.invalidate_tenant(bundle.tenant_id)
        self.audit.emit(
            "document_ingested",
            tenant_id=bundle.tenant_id,
            document_id=document_id,
            chunk_count=ready.chunk_count if ready else 0,
        )
        return IngestResult(document=ready)

    async def ingest_document(self, tenant_slug: str, document: DocumentInput) -> IngestResult:
        registered = await self.register_document(tenant_slug, document)
        if not registered.ok or registered.document is None:
            return registered
        return await self.process_document(tenant_slug, registered.document.id)

    async def _index_document(
        self, tenant_id: str, document: Document, provider: LLMProvider, rag_config: RagConfig
    ) -> int:
        chunks = chunk_document(
            document.raw_content,
            doc_id=document.id,
            tenant_id=tenant_id,
            doc_title=document.title,
            chunk_size=rag_config.chunk_size,
            chunk_overlap=rag_config.chunk_overlap,
        )
        if not chunks:
            raise EmptyContentError("Document has no content to index")

        batch = await self._embedder(provider).embed_batch([chunk.content for chunk in chunks])
        if not batch.complete:
            first_index = min(batch.errors)
            raise EmbeddingProviderError(
                f"{len(batch.errors)} of {len(chunks)} chunks failed to embed "
                f"(chunk {first_index}: {batch.errors[first_index]})"
            )
        for chunk, vector in zip(chunks, batch.vectors):
            chunk.embedding = vector

        await self.vector_store.delete_document(tenant_id, document.id)
        await self.vector_store.upsert_chunks(tenant_id, chunks)
        live = await self.vector_store.count_document_chunks(tenant_id, document.id)
        if live != len(chunks):
            raise VectorStoreError(f"Indexed {live} chunks but expected {len(chunks)}")
        logger.info(
            "indexed document",
            extra={
                "tenant_id": tenant_id,
                "document_id": document.id,
                "chunks": len(chunks),
                "tokens": batch.total_tokens,
            },
        )
        return len(chunks)

    async def _mark_failed(
        self, repository: TenantRepository, tenant_id: str, document_id: str, exc: RagError
    ) -> Optional[Document]:
        try:
            await self.vector_store.delete_document(tenant_id, document_id)
        except RagError as cleanup_exc:
            logger.error(
                "failed to remove partial chunks",
                extra={"tenant_id": tenant_id, "document_id": document_id, "error": cleanup_exc.message},
            )
        self.audit.emit("document_failed", tenant_id=tenant_id, document_id=document_id, code=exc.code)
        try:
            return await repository.update_document(
                document_id, status=DocumentStatus.ERROR, chunk_count=0, error_detail=exc.message
            )
        except Exception as update_exc:
            logger.error(
                "failed to mark document as errored",
                extra={"tenant_id": tenant_id, "document_id": document_id, "error": str(update_exc)},
            )
            return None

    async def delete_document(self, tenant_slug: str, document_id: str) -> DeleteResult:
        """Remove a document's chunks, then its row.

        If the row delete fails after the chunks are gone, the error is returned
        and the cache is still invalidated; repeating the call finishes the job.
        """

        removed: Optional[int] = None
        try:
            bundle = await self.resolver.resolve_secrets(tenant_slug)
            async with self.resolver.session(bundle, with_provider=False) as session:
                if await session.repository.get_document(document_id) is None:
                    raise DocumentNotFound(f"Document '{document_id}' not found")
                removed = await self.vector_store.delete_document(session.tenant_id, document_id)
                await session.repository.delete_document(document_id)
        except ConfigMismatchError:
            raise
        except Exception as exc:
            error = exc if isinstance(exc, RagError) else _unexpected("delete", exc)
            if removed is not None:
                await self.cache.invalidate_tenant(bundle.tenant_id)
            return DeleteResult(
                document_id=document_id, chunks_removed=removed or 0, error=PipelineError.from_exception(error)
            )

        await self.cache.invalidate_tenant(bundle.tenant_id)
        self.audit.emit("document_deleted", tenant_id=bundle.tenant_id, document_id=document_id, chunks=removed)
        return DeleteResult(document_id=document_id, chunks_removed=removed)

    # Question answering

    async def ask(self, tenant_slug: str, question: str, *, trace_id: Optional[str] = None) -> AskResult:
        trace_id = trace_id or new_trace_id()
        try:
            return await self._answer(tenant_slug, question, NullChannel(), CancellationToken(), trace_id)
        except GenerationCancelled as exc:
            return AskResult(trace_id=trace_id, error=PipelineError.from_exception(exc))

    def ask_stream(self, tenant_slug: str, question: str, *, trace_id: Optional[str] = None) -> AnswerStream:
        """Start answering in a background task and return the consumer handle.

        Must be called from a running event loop.
        """

        trace_id = trace_id or new_trace_id()
        channel = AnswerChannel()
        token = CancellationToken()
        stream = AnswerStream(trace_id, channel, token)
        stream.attach(asyncio.create_task(self._stream_answer(tenant_slug, question, channel, token, trace_id)))
        return stream

    async def _stream_answer(
        self,
        tenant_slug: str,
        question: str,
        channel: AnswerChannel,
        token: CancellationToken,
        trace_id: str,
    ) -> None:
        try:
            await channel.send(AnswerChunk(event="start", trace_id=trace_id))
            result = await self._answer(tenant_slug, question, channel, token, trace_id)
            if result.error is not None:
                await channel.send(AnswerChunk(event="error", trace_id=trace_id, error=result.error))
            elif result.answer is not None:
                await channel.send(AnswerChunk(event="citations", trace_id=trace_id, citations=result.answer.citations))
                await channel.send(AnswerChunk(event="complete", trace_id=trace_id, answer=result.answer))
        except GenerationCancelled:
            logger.info("answer stream cancelled", extra={"trace_id": trace_id})
        except ConfigMismatchError as exc:
            logger.error("deployment configuration mismatch", extra={"trace_id": trace_id, "error": exc.message})
            await channel.send(AnswerChunk(event="error", trace_id=trace_id, error=PipelineError.from_exception(exc)))
        except Exception:
            logger.exception("answer stream failed", extra={"trace_id": trace_id})
            await channel.send(
                AnswerChunk(
                    event="error",
                    trace_id=trace_id,
                    error=PipelineError(code="INTERNAL_ERROR", message="An unexpected error occurred"),
                )
            )
        finally:
            if token.cancelled:
                channel.abort()
            else:
                await channel.close()

    async def _answer(
        self,
        tenant_slug: str,
        question: str,
        channel: AnswerChannel,
        token: CancellationToken,
        trace_id: str,
    ) -> AskResult:
        decision = self.sanitizer.should_block(question)
        if decision.block:
            logger.info("question blocked", extra={"trace_id": trace_id, "reason": decision.reason})
            return AskResult(
                trace_id=trace_id,
                error=PipelineError(code=ValidationError.code, message=decision.reason or "Invalid question"),
            )

        try:
            bundle = await self.resolver.resolve_secrets(tenant_slug)
        except RagError as exc:
            return AskResult(trace_id=trace_id, error=PipelineError.from_exception(exc))
        tenant_id = bundle.tenant_id

        if is_conversational(question):
            answer = Answer(answer=CAPABILITY_ANSWER, confidence=0.0, confidence_label="low")
            await channel.send(AnswerChunk(event="chunk", trace_id=trace_id, content=answer.answer))
            return AskResult(trace_id=trace_id, answer=answer)

        cached = await self.cache.get(tenant_id, question)
        if cached is not None:
            answer = Answer(
                answer=cached.answer,
                citations=cached.citations,
                confidence=cached.confidence,
                confidence_label=confidence_label(cached.confidence),
                fallback=cached.fallback,
                cached=True,
            )
            await channel.send(AnswerChunk(event="chunk", trace_id=trace_id, content=answer.answer))
            return AskResult(trace_id=trace_id, answer=answer)

        timer = StageTimer()
        try:
            async with self.resolver.session(bundle) as session:
                generator = AnswerGenerator(
                    sanitizer=self.sanitizer,
                    embedder=self._embedder(session.provider),
                    vector_store=self.vector_store,
                    provider=session.provider,
                    rag_config=session.rag_config,
                    completion_options=self._completion_options(),
                    similarity_floor=self.settings.retrieval_similarity_floor,
                    generation_timeout_seconds=self.settings.generation_timeout_seconds,
                    stream_idle_timeout_seconds=self.settings.stream_idle_timeout_seconds,
                    audit=self.audit,
                    timer=timer,
                )
                outcome = await generator.run(tenant_id, question, channel=channel, token=token, trace_id=trace_id)
                if outcome.state is GenerationState.ERROR or outcome.answer is None:
                    error = outcome.error or RagError("Answer generation failed")
                    return AskResult(trace_id=trace_id, error=PipelineError.from_exception(error))
                await self._record_qa_log(
                    session.repository,
                    tenant_id=tenant_id,
                    question=question,
                    answer=outcome.answer,
                    contexts=outcome.contexts,
                    usage=outcome.usage,
                    state=outcome.state,
                    timer=timer,
                    trace_id=trace_id,
                )
        except (ConfigMismatchError, GenerationCancelled):
            raise
        except RagError as exc:
            return AskResult(trace_id=trace_id, error=PipelineError.from_exception(exc))

        answer = outcome.answer
        await self.cache.put(
            tenant_id,
            question,
            answer=answer.answer,
            citations=answer.citations,
            confidence=answer.confidence,
            fallback=answer.fallback,
        )
        self.audit.emit(
            "qa_completed",
            tenant_id=tenant_id,
            trace_id=trace_id,
            state=outcome.state.value,
            confidence=answer.confidence,
            citations=len(answer.citations),
            **timer.as_dict(),
        )
        return AskResult(trace_id=trace_id, answer=answer)

    async def _record_qa_log(
        self,
        repository: TenantRepository,
        *,
        tenant_id: str,
        question: str,
        answer: Answer,
        contexts: list[RetrievedContext],
        usage: TokenUsage,
        state: GenerationState,
        timer: StageTimer,
        trace_id: str,
    ) -> None:
        entry = QALog(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            question=self.sanitizer.sanitize(question, SanitizeKind.USER_QUESTION).sanitized,
            answer=answer.answer,
            citations=answer.citations,
            confidence=answer.confidence,
            debug_info={
                "trace_id": trace_id,
                "state": state.value,
                "timings": timer.as_dict(),
                "retrieved": [
                    {"chunk_id": context.chunk_id, "doc_id": context.doc_id, "similarity": context.similarity}
                    for context in contexts
                ],
                "usage": usage.model_dump(),
            },
        )
        try:
            await repository.record_qa_log(entry)
        except Exception as exc:
            logger.warning(
                "failed to record qa log",
                extra={"tenant_id": tenant_id, "trace_id": trace_id, "question": truncate_for_log(question), "error": str(exc)},
            )
