from __future__ import annotations

import logging

from celery import states
from fastapi import APIRouter, Depends, Response, status

from tenant_rag import RagPipeline
from tenant_rag.schemas import DocumentInput, IngestResult

from ..dependencies import get_pipeline, get_trace_id
from ..errors import raise_pipeline_error
from ..models import (
    DocumentDeleteResponse,
    DocumentIngestRequest,
    DocumentIngestResponse,
    DocumentIngestStatusResponse,
    DocumentSummary,
)
from ..security import require_admin_key
from ..services import ingestion as ingestion_service
from ..services.taskqueue import get_celery_app

router = APIRouter(prefix="/v1/documents", tags=["documents"], dependencies=[Depends(require_admin_key)])
logger = logging.getLogger(__name__)


def _processed_response(result: IngestResult, document_id: str, response: Response) -> DocumentIngestResponse:
    document = result.document
    if result.error is not None:
        # The row exists in error state; report both the document and the failure.
        response.status_code = status.HTTP_207_MULTI_STATUS
    return DocumentIngestResponse(
        document_id=document_id,
        status=document.status.value if document else "error",
        document=DocumentSummary.from_document(document) if document else None,
        error=result.error,
    )


@router.post("", response_model=DocumentIngestResponse, status_code=status.HTTP_202_ACCEPTED)
async def ingest_document(
    payload: DocumentIngestRequest,
    response: Response,
    pipeline: RagPipeline = Depends(get_pipeline),
    trace_id: str = Depends(get_trace_id),
) -> DocumentIngestResponse:
    document = DocumentInput(
        title=payload.title,
        content=payload.content,
        doc_type=payload.doc_type,
        file_metadata=payload.file_metadata,
        storage_ref=payload.storage_ref,
    )
    registered = await pipeline.register_document(payload.tenant_slug, document)
    if registered.error is not None or registered.document is None:
        raise_pipeline_error(registered.error, trace_id)
    document_id = registered.document.id
    logger.info(
        "document registered",
        extra={"tenant_slug": payload.tenant_slug, "document_id": document_id, "trace_id": trace_id},
    )

    if payload.process_async:
        queued = ingestion_service.enqueue_process_document(tenant_slug=payload.tenant_slug, document_id=document_id)
        return DocumentIngestResponse(document_id=document_id, task_id=queued["task_id"], status="queued")

    response.status_code = status.HTTP_201_CREATED
    result = await pipeline.process_document(payload.tenant_slug, document_id)
    return _processed_response(result, document_id, response)


@router.get(
    "/status/{task_id}",
    response_model=DocumentIngestStatusResponse,
    dependencies=[Depends(get_trace_id)],
)
async def get_document_status(task_id: str) -> DocumentIngestStatusResponse:
    celery_app = get_celery_app()
    async_result = celery_app.AsyncResult(task_id)

    state = async_result.state or states.PENDING
    info = async_result.info

    document_id: str | None = None
    stage: str | None = None
    detail: str | None = None

    if isinstance(info, dict):
        document_id = info.get("document_id")
        stage = info.get("stage")
        detail = info.get("detail")
    elif info is not None:
        detail = str(info)

    if state == states.FAILURE and detail is None:
        detail = "Document processing failed."

    return DocumentIngestStatusResponse(
        task_id=task_id,
        state=state,
        stage=stage,
        document_id=document_id,
        detail=detail,
    )


@router.post(
    "/{tenant_slug}/{document_id}/reprocess",
    response_model=DocumentIngestResponse,
    status_code=status.HTTP_200_OK,
)
async def reprocess_document(
    tenant_slug: str,
    document_id: str,
    response: Response,
    process_async: bool = False,
    pipeline: RagPipeline = Depends(get_pipeline),
    trace_id: str = Depends(get_trace_id),
) -> DocumentIngestResponse:
    if process_async:
        queued = ingestion_service.enqueue_process_document(tenant_slug=tenant_slug, document_id=document_id)
        response.status_code = status.HTTP_202_ACCEPTED
        return DocumentIngestResponse(document_id=document_id, task_id=queued["task_id"], status="queued")

    result = await pipeline.process_document(tenant_slug, document_id)
    if result.document is None:
        raise_pipeline_error(result.error, trace_id)
    return _processed_response(result, document_id, response)


@router.delete("/{tenant_slug}/{document_id}", response_model=DocumentDeleteResponse)
async def delete_document(
    tenant_slug: str,
    document_id: str,
    pipeline: RagPipeline = Depends(get_pipeline),
    trace_id: str = Depends(get_trace_id),
) -> DocumentDeleteResponse:
    result = await pipeline.delete_document(tenant_slug, document_id)
    if result.error is not None:
        raise_pipeline_error(result.error, trace_id)
    return DocumentDeleteResponse(document_id=document_id, chunks_removed=result.chunks_removed)
