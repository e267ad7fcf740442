from .base import ChunkMatch, VectorStore, require_tenant
from .memory_store import InMemoryVectorStore
from .weaviate_store import WeaviateVectorStore

__all__ = ["ChunkMatch", "InMemoryVectorStore", "VectorStore", "WeaviateVectorStore", "require_tenant"]
