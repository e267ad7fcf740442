"""Shared Pydantic schemas."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from .errors import RagError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class RagConfig(BaseModel):
    """Per-tenant retrieval and chunking parameters."""

    top_k: int = Field(5, ge=1, le=50)
    confidence_threshold: float = Field(0.6, ge=0.0, le=1.0)
    chunk_size: int = Field(500, ge=1)
    chunk_overlap: int = Field(50, ge=0)


class FileMetadata(BaseModel):
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = Field(None, ge=0)


class DocumentInput(BaseModel):
    """A document handed to the ingestion pipeline."""

    title: str
    content: str
    doc_type: str = "text"
    file_metadata: FileMetadata = Field(default_factory=FileMetadata)
    storage_ref: Optional[str] = None


class Document(BaseModel):
    id: str
    tenant_id: str
    title: str
    raw_content: str
    doc_type: str = "text"
    file_metadata: FileMetadata = Field(default_factory=FileMetadata)
    storage_ref: Optional[str] = None
    status: DocumentStatus = DocumentStatus.PENDING
    chunk_count: int = 0
    error_detail: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Chunk(BaseModel):
    """Chunk of a document stored in the vector index."""

    id: str
    doc_id: str
    tenant_id: str
    content: str
    chunk_index: int
    start_offset: int
    end_offset: int
    doc_title: str
    embedding: Optional[List[float]] = None

    @model_validator(mode="after")
    def check_offsets(self) -> "Chunk":
        if self.start_offset < 0 or self.end_offset < self.start_offset:
            raise ValueError("chunk offsets must satisfy 0 <= start_offset <= end_offset")
        return self


class RetrievedContext(BaseModel):
    chunk_id: str
    doc_id: str
    doc_title: str
    content: str
    chunk_index: int
    similarity: float


class Citation(BaseModel):
    index: int
    chunk_id: str
    doc_id: str
    doc_title: str
    snippet: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    source_url: Optional[str] = None


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class Answer(BaseModel):
    answer: str
    citations: List[Citation] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    confidence_label: Literal["high", "medium", "low"] = "low"
    fallback: bool = False
    cached: bool = False


class QALog(BaseModel):
    """Append-only record of one answered question."""

    id: str
    tenant_id: str
    question: str
    answer: str
    citations: List[Citation] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    flagged: bool = False
    reviewed: bool = False
    debug_info: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class TenantCredentialBundle(BaseModel):
    """Tenant routing data with its secrets still encrypted."""

    tenant_id: str
    slug: str
    name: str = ""
    encrypted_connection_secret: str
    llm_api_key_encrypted: Optional[str] = None
    llm_provider: str = "openai"
    rag_config: RagConfig = Field(default_factory=RagConfig)


class CacheEntry(BaseModel):
    tenant_id: str
    question_fingerprint: str
    answer: str
    citations: List[Citation] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    fallback: bool = False
    cached_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    cache_version: str


class PipelineError(BaseModel):
    code: str
    message: str
    retryable: bool = False
    timeout: bool = False

    @classmethod
    def from_exception(cls, exc: RagError) -> "PipelineError":
        return cls(code=exc.code, message=exc.message, retryable=exc.is_retryable, timeout=exc.timeout)


class IngestResult(BaseModel):
    document: Optional[Document] = None
    error: Optional[PipelineError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DeleteResult(BaseModel):
    document_id: str
    chunks_removed: int = 0
    error: Optional[PipelineError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AskResult(BaseModel):
    trace_id: str
    answer: Optional[Answer] = None
    error: Optional[PipelineError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AnswerChunk(BaseModel):
    """One event on an answer stream."""

    event: Literal["start", "chunk", "citations", "complete", "error"]
    trace_id: str
    content: Optional[str] = None
    citations: List[Citation] = Field(default_factory=list)
    answer: Optional[Answer] = None
    error: Optional[PipelineError] = None
