"""Celery app factory and shared task utilities."""
from celery import Celery

from .config import get_settings

INGESTION_QUEUE = "ingestion"
PROCESS_DOCUMENT_TASK = "worker.tasks.process_document"


def create_celery_app() -> Celery:
    """Instantiate Celery configured from settings."""

    settings = get_settings()
    app = Celery(
        "tenant_rag.worker",
        broker=settings.redis_url,
        backend=settings.redis_url,
        include=["worker.tasks"],
    )
    app.conf.update(
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        task_track_started=True,
        task_time_limit=900,
        task_default_queue=INGESTION_QUEUE,
    )
    return app
