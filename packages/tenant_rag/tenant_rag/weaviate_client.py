"""Weaviate client helpers."""
from typing import Optional
from urllib.parse import urlparse

import weaviate
from weaviate.classes.init import AdditionalConfig, Auth, Timeout

from .config import Settings, get_settings


_client: Optional[weaviate.WeaviateClient] = None


def create_weaviate_client(settings: Settings) -> weaviate.WeaviateClient:
    """Open a new connection using the HTTP URL and gRPC port from settings."""

    parsed = urlparse(settings.weaviate_url)
    secure = parsed.scheme == "https"
    host = parsed.hostname or "localhost"
    auth = Auth.api_key(settings.weaviate_api_key) if settings.weaviate_api_key else None

    return weaviate.connect_to_custom(
        http_host=host,
        http_port=parsed.port or (443 if secure else 80),
        http_secure=secure,
        grpc_host=host,
        grpc_port=settings.weaviate_grpc_port,
        grpc_secure=secure,
        auth_credentials=auth,
        additional_config=AdditionalConfig(timeout=Timeout(init=5, query=60, insert=120)),
    )


def get_weaviate_client() -> weaviate.WeaviateClient:
    """Return a process wide Weaviate client."""

    global _client
    if _client is not None:
        return _client
    _client = create_weaviate_client(get_settings())
    return _client


def close_weaviate_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
