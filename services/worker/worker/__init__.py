"""Celery worker for document processing."""
from tenant_rag.tasks import create_celery_app

celery_app = create_celery_app()

__all__ = ["celery_app"]
