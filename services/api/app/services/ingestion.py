"""Queueing helpers for document processing."""
from __future__ import annotations

import logging
from typing import Dict

from tenant_rag.tasks import INGESTION_QUEUE, PROCESS_DOCUMENT_TASK

from .taskqueue import get_celery_app

logger = logging.getLogger(__name__)


def enqueue_process_document(*, tenant_slug: str, document_id: str) -> Dict[str, str]:
    """Queue chunking and embedding of a registered document."""

    celery_app = get_celery_app()
    task = celery_app.send_task(
        PROCESS_DOCUMENT_TASK,
        kwargs={"tenant_slug": tenant_slug, "document_id": document_id},
        queue=INGESTION_QUEUE,
    )
    logger.info(
        "queued document processing",
        extra={"tenant_slug": tenant_slug, "document_id": document_id, "task_id": task.id},
    )
    return {"document_id": document_id, "task_id": task.id}
