"""Multi-tenant retrieval augmented generation engine."""

from .config import Settings, get_settings
from .factory import build_pipeline, close_pipeline
from .logging import configure_logging
from .pipeline import RagPipeline
from .schemas import Answer, AskResult, Citation, DocumentInput, IngestResult, RetrievedContext

__all__ = [
    "Answer",
    "AskResult",
    "Citation",
    "DocumentInput",
    "IngestResult",
    "RagPipeline",
    "RetrievedContext",
    "Settings",
    "build_pipeline",
    "close_pipeline",
    "configure_logging",
    "get_settings",
]
