"""Answer generation as an explicit state machine.

``idle -> sanitizing -> embedding -> retrieving -> confidence_gate ->
prompt_building -> generating -> citation_extraction -> done``, with
``fallback`` reachable from the confidence gate and ``error`` from any stage.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .audit import AuditSink, NullAuditSink, StageTimer
from .citations import confidence_label, extract_citations, overall_confidence
from .embeddings import EmbeddingClient
from .errors import ConfigMismatchError, GenerationCancelled, GenerationProviderError, RagError, ValidationError
from .llm.base import ChatMessage, CompletionOptions, LLMProvider
from .prompts import FALLBACK_ANSWER, build_messages
from .reranking import rerank_contexts
from .sanitizer import SanitizeKind, Sanitizer
from .schemas import Answer, AnswerChunk, RagConfig, RetrievedContext, TokenUsage
from .streaming import AnswerChannel, CancellationToken
from .vectorstore.base import VectorStore

logger = logging.getLogger(__name__)

LOW_CONFIDENCE = 0.5


class GenerationState(str, Enum):
    IDLE = "idle"
    SANITIZING = "sanitizing"
    EMBEDDING = "embedding"
    RETRIEVING = "retrieving"
    CONFIDENCE_GATE = "confidence_gate"
    PROMPT_BUILDING = "prompt_building"
    GENERATING = "generating"
    CITATION_EXTRACTION = "citation_extraction"
    DONE = "done"
    FALLBACK = "fallback"
    ERROR = "error"


TERMINAL_STATES = frozenset({GenerationState.DONE, GenerationState.FALLBACK, GenerationState.ERROR})


@dataclass
class GenerationOutcome:
    state: GenerationState
    answer: Optional[Answer] = None
    error: Optional[RagError] = None
    contexts: List[RetrievedContext] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    transitions: List[GenerationState] = field(default_factory=list)


class AnswerGenerator:
    def __init__(
        self,
        *,
        sanitizer: Sanitizer,
        embedder: EmbeddingClient,
        vector_store: VectorStore,
        provider: LLMProvider,
        rag_config: RagConfig,
        completion_options: CompletionOptions,
        similarity_floor: float = 0.3,
        generation_timeout_seconds: float = 120.0,
        stream_idle_timeout_seconds: float = 30.0,
        audit: Optional[AuditSink] = None,
        timer: Optional[StageTimer] = None,
    ) -> None:
        self.sanitizer = sanitizer
        self.embedder = embedder
        self.vector_store = vector_store
        self.provider = provider
        self.rag_config = rag_config
        self.completion_options = completion_options
        self.similarity_floor = similarity_floor
        self.generation_timeout_seconds = generation_timeout_seconds
        self.stream_idle_timeout_seconds = stream_idle_timeout_seconds
        self.audit = audit or NullAuditSink()
        self.timer = timer or StageTimer()
        self.state = GenerationState.IDLE
        self._transitions: List[GenerationState] = []

    def _transition(self, state: GenerationState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"cannot leave terminal state {self.state.value}")
        self.state = state
        self._transitions.append(state)

    async def run(
        self,
        tenant_id: str,
        question: str,
        *,
        channel: AnswerChannel,
        token: CancellationToken,
        trace_id: str,
    ) -> GenerationOutcome:
        contexts: List[RetrievedContext] = []
        try:
            return await self._run(tenant_id, question, channel, token, trace_id, contexts)
        except (ConfigMismatchError, GenerationCancelled):
            raise
        except RagError as exc:
            self._transition(GenerationState.ERROR)
            logger.warning(
                "answer generation failed",
                extra={"tenant_id": tenant_id, "trace_id": trace_id, "code": exc.code, "error": exc.message},
            )
            return GenerationOutcome(
                state=GenerationState.ERROR,
                error=exc,
                contexts=contexts,
                transitions=list(self._transitions),
            )

    async def _run(
        self,
        tenant_id: str,
        question: str,
        channel: AnswerChannel,
        token: CancellationToken,
        trace_id: str,
        contexts: List[RetrievedContext],
    ) -> GenerationOutcome:
        self._transition(GenerationState.SANITIZING)
        sanitized = self.sanitizer.sanitize(question, SanitizeKind.USER_QUESTION)
        if not sanitized.sanitized:
            raise ValidationError("Question is empty after sanitization")
        token.raise_if_cancelled()

        self._transition(GenerationState.EMBEDDING)
        with self.timer.stage("embedding", tenant_id=tenant_id):
            query_vector = await self.embedder.embed(sanitized.sanitized)
        token.raise_if_cancelled()

        self._transition(GenerationState.RETRIEVING)
        floor = min(self.similarity_floor, self.rag_config.confidence_threshold)
        with self.timer.stage("retrieval", tenant_id=tenant_id):
            contexts.extend(
                await self.vector_store.search(tenant_id, query_vector, self.rag_config.top_k, floor)
            )
        token.raise_if_cancelled()

        self._transition(GenerationState.CONFIDENCE_GATE)
        top_similarity = contexts[0].similarity if contexts else 0.0
        if not contexts or top_similarity < self.rag_config.confidence_threshold:
            self._transition(GenerationState.FALLBACK)
            logger.info(
                "confidence gate rejected retrieval",
                extra={"tenant_id": tenant_id, "trace_id": trace_id, "top_similarity": top_similarity},
            )
            await channel.send(AnswerChunk(event="chunk", trace_id=trace_id, content=FALLBACK_ANSWER))
            return GenerationOutcome(
                state=GenerationState.FALLBACK,
                answer=Answer(answer=FALLBACK_ANSWER, confidence=0.0, confidence_label="low", fallback=True),
                contexts=list(contexts),
                transitions=list(self._transitions),
            )

        self._transition(GenerationState.PROMPT_BUILDING)
        contexts[:] = rerank_contexts(contexts, sanitized.sanitized)
        messages = build_messages(sanitized.sanitized, contexts, self.sanitizer)

        self._transition(GenerationState.GENERATING)
        with self.timer.stage("generation", tenant_id=tenant_id):
            text, usage = await self._generate(messages, channel, token, trace_id)
        if not text.strip():
            raise GenerationProviderError("Generation provider returned an empty answer")

        self._transition(GenerationState.CITATION_EXTRACTION)
        extraction = extract_citations(text.strip(), contexts)
        confidence = overall_confidence(extraction.citations)
        if extraction.unknown_references:
            logger.info(
                "answer referenced unknown sources",
                extra={"trace_id": trace_id, "references": extraction.unknown_references},
            )
        if confidence < LOW_CONFIDENCE:
            self.audit.emit("low_confidence", tenant_id=tenant_id, trace_id=trace_id, confidence=confidence)

        self._transition(GenerationState.DONE)
        return GenerationOutcome(
            state=GenerationState.DONE,
            answer=Answer(
                answer=extraction.text,
                citations=extraction.citations,
                confidence=confidence,
                confidence_label=confidence_label(confidence),
            ),
            contexts=list(contexts),
            usage=usage,
            transitions=list(self._transitions),
        )

    async def _generate(
        self,
        messages: Sequence[ChatMessage],
        channel: AnswerChannel,
        token: CancellationToken,
        trace_id: str,
    ) -> Tuple[str, TokenUsage]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.generation_timeout_seconds
        parts: List[str] = []
        usage = TokenUsage()

        stream = self.provider.stream_complete(messages, self.completion_options)
        iterator = stream.__aiter__()
        try:
            while True:
                token.raise_if_cancelled()
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise GenerationProviderError(
                        f"Generation exceeded {self.generation_timeout_seconds}s", timeout=True
                    )
                try:
                    chunk = await asyncio.wait_for(
                        iterator.__anext__(), timeout=min(self.stream_idle_timeout_seconds, remaining)
                    )
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError as exc:
                    raise GenerationProviderError("Generation stream timed out", timeout=True) from exc
                except RagError:
                    raise
                except Exception as exc:
                    logger.warning(
                        "generation stream failed",
                        extra={"provider": self.provider.name, "trace_id": trace_id, "error": str(exc)},
                    )
                    raise GenerationProviderError(f"Generation provider failed: {exc}") from exc

                if chunk.usage is not None:
                    usage = TokenUsage(
                        prompt_tokens=chunk.usage.prompt_tokens,
                        completion_tokens=chunk.usage.completion_tokens,
                        total_tokens=chunk.usage.total_tokens,
                    )
                if chunk.content:
                    parts.append(chunk.content)
                    await channel.send(AnswerChunk(event="chunk", trace_id=trace_id, content=chunk.content))
                if chunk.finish_reason == "content_filter":
                    logger.warning("generation stopped by content filter", extra={"trace_id": trace_id})
                elif chunk.finish_reason == "length":
                    logger.info("generation hit max tokens", extra={"trace_id": trace_id})
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
        return "".join(parts), usage
