"""Celery client used by the API to hand documents to the worker."""
from functools import lru_cache

from celery import Celery

from tenant_rag import Settings, get_settings
from tenant_rag.tasks import INGESTION_QUEUE


@lru_cache(maxsize=1)
def get_celery_app() -> Celery:
    settings: Settings = get_settings()
    app = Celery(
        "tenant_rag.api",
        broker=settings.redis_url,
        backend=settings.redis_url,
    )
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        task_default_queue=INGESTION_QUEUE,
    )
    return app
