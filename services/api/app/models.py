from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from tenant_rag.schemas import Citation, Document, FileMetadata, PipelineError


class AskRequest(BaseModel):
    tenant_slug: str = Field(..., min_length=1, max_length=128, description="Tenant identifier")
    question: str = Field(..., description="Natural language question")
    stream: bool = Field(False, description="Stream the answer as server-sent events")


class AskResponse(BaseModel):
    trace_id: str
    answer: str
    citations: List[Citation]
    confidence: float
    confidence_label: str
    fallback: bool = False
    cached: bool = False


class DocumentIngestRequest(BaseModel):
    tenant_slug: str = Field(..., min_length=1, max_length=128)
    title: str = Field(..., description="Document title")
    content: str = Field(..., description="Extracted plain text of the document")
    doc_type: str = Field("text", description="Source document type e.g. pdf, docx, text")
    file_metadata: FileMetadata = Field(default_factory=FileMetadata)
    storage_ref: Optional[str] = Field(None, description="Object storage reference of the original file")
    process_async: bool = Field(True, description="Queue chunking and embedding on the worker")


class DocumentSummary(BaseModel):
    id: str
    title: str
    doc_type: str
    status: str
    chunk_count: int
    error_detail: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_document(cls, document: Document) -> "DocumentSummary":
        return cls(
            id=document.id,
            title=document.title,
            doc_type=document.doc_type,
            status=document.status.value,
            chunk_count=document.chunk_count,
            error_detail=document.error_detail,
            created_at=document.created_at,
            updated_at=document.updated_at,
        )


class DocumentIngestResponse(BaseModel):
    document_id: str
    task_id: Optional[str] = None
    status: str = "pending"
    document: Optional[DocumentSummary] = None
    error: Optional[PipelineError] = None


class DocumentIngestStatusResponse(BaseModel):
    task_id: str
    state: str
    stage: Optional[str] = None
    document_id: Optional[str] = None
    detail: Optional[str] = None


class DocumentDeleteResponse(BaseModel):
    document_id: str
    chunks_removed: int
    status: str = "deleted"
