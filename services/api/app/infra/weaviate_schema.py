"""Utilities for managing the Weaviate chunk collection."""
import logging
from typing import Optional

from weaviate.classes.config import Configure, DataType, Property, Tokenization, VectorDistances

from tenant_rag import Settings, get_settings
from tenant_rag.weaviate_client import get_weaviate_client

logger = logging.getLogger(__name__)


_COLLECTION_DESCRIPTION = "Tenant document chunks powering retrieval"
_PROPERTIES = [
    Property(name="tenant_id", data_type=DataType.TEXT, tokenization=Tokenization.FIELD, description="Owning tenant"),
    Property(name="doc_id", data_type=DataType.TEXT, tokenization=Tokenization.FIELD, description="Parent document"),
    Property(name="doc_title", data_type=DataType.TEXT, description="Parent document title"),
    Property(name="content", data_type=DataType.TEXT, tokenization=Tokenization.LOWERCASE, description="Chunk content"),
    Property(name="chunk_index", data_type=DataType.INT, description="Position within the document"),
    Property(name="start_offset", data_type=DataType.INT, description="Start offset in the document"),
    Property(name="end_offset", data_type=DataType.INT, description="End offset in the document"),
]


def ensure_vector_schema(settings: Optional[Settings] = None) -> None:
    """Ensure the multi-tenant chunk collection exists."""

    settings = settings or get_settings()
    client = get_weaviate_client()

    if client.collections.exists(settings.weaviate_collection):
        logger.info("Weaviate collection already exists", extra={"collection": settings.weaviate_collection})
        return

    client.collections.create(
        name=settings.weaviate_collection,
        description=_COLLECTION_DESCRIPTION,
        properties=_PROPERTIES,
        vectorizer_config=Configure.Vectorizer.none(),
        vector_index_config=Configure.VectorIndex.hnsw(
            distance_metric=VectorDistances.COSINE,
            ef_construction=128,
            max_connections=64,
        ),
        multi_tenancy_config=Configure.multi_tenancy(enabled=True),
    )
    logger.info("Created Weaviate collection", extra={"collection": settings.weaviate_collection})
