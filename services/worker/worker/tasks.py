from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from tenant_rag import Settings, build_pipeline, close_pipeline, configure_logging, get_settings
from tenant_rag.db import close_db, init_db
from tenant_rag.schemas import IngestResult

from . import celery_app

logger = logging.getLogger(__name__)

configure_logging("worker")


class RetryableProcessingError(Exception):
    """Raised so Celery retries a processing run that failed transiently."""


async def _run_process_document(
    settings: Settings,
    tenant_slug: str,
    document_id: str,
    on_stage: Callable[[str], None],
) -> IngestResult:
    await init_db(settings)
    pipeline = build_pipeline(settings)
    try:
        on_stage("indexing")
        return await pipeline.process_document(tenant_slug, document_id)
    finally:
        await close_pipeline(pipeline)
        await close_db()


@celery_app.task(
    bind=True,
    name="worker.tasks.process_document",
    autoretry_for=(RetryableProcessingError,),
    retry_backoff=True,
    max_retries=3,
)
def process_document(self, *, tenant_slug: str, document_id: str) -> Dict[str, Any]:
    settings = get_settings()
    logger.info("processing document", extra={"tenant_slug": tenant_slug, "document_id": document_id})

    def on_stage(stage: str) -> None:
        self.update_state(state="PROCESSING", meta={"stage": stage, "document_id": document_id})

    result = asyncio.run(_run_process_document(settings, tenant_slug, document_id, on_stage))

    if result.error is not None:
        logger.warning(
            "document processing failed",
            extra={"document_id": document_id, "code": result.error.code, "error": result.error.message},
        )
        if result.error.retryable:
            raise RetryableProcessingError(f"{result.error.code}: {result.error.message}")
        return _summary(document_id, "failed", result.error.message)

    chunk_count: Optional[int] = result.document.chunk_count if result.document else None
    logger.info("document processed", extra={"document_id": document_id, "chunks": chunk_count})
    return {**_summary(document_id, "completed"), "chunks": chunk_count}


def _summary(document_id: str, stage: str, detail: Optional[str] = None) -> Dict[str, Any]:
    return {"document_id": document_id, "stage": stage, "detail": detail}
