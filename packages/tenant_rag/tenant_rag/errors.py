"""Error taxonomy raised by pipeline components.

Components raise these; :mod:`tenant_rag.pipeline` turns every recoverable one
into a :class:`~tenant_rag.schemas.PipelineError` result. ``ConfigMismatchError``
is the exception: a wrong embedding dimension means the deployment itself is
misconfigured, so it propagates.
"""
from __future__ import annotations


class RagError(Exception):
    """Base class for pipeline errors."""

    code = "INTERNAL_ERROR"
    retryable = False

    def __init__(self, message: str, *, timeout: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.timeout = timeout

    @property
    def is_retryable(self) -> bool:
        return self.retryable or self.timeout


class ValidationError(RagError):
    code = "INVALID_INPUT"


class TenantNotFound(RagError):
    code = "TENANT_NOT_FOUND"


class DocumentNotFound(RagError):
    code = "DOCUMENT_NOT_FOUND"


class SecretsDecryptionError(RagError):
    code = "SECRETS_DECRYPTION_FAILED"

    def __init__(self, message: str = "Unable to decrypt tenant secrets", *, timeout: bool = False) -> None:
        super().__init__(message, timeout=timeout)


class TenantConnectionError(RagError):
    code = "TENANT_CONNECTION_FAILED"
    retryable = True


class EmbeddingProviderError(RagError):
    code = "EMBEDDING_PROVIDER_ERROR"
    retryable = True


class GenerationProviderError(RagError):
    code = "GENERATION_PROVIDER_ERROR"
    retryable = True


class VectorStoreError(RagError):
    code = "VECTOR_STORE_ERROR"
    retryable = True


class RepositoryError(RagError):
    code = "REPOSITORY_ERROR"
    retryable = True


class EmptyContentError(RagError):
    code = "EMPTY_CONTENT"


class ConfigMismatchError(RagError):
    code = "CONFIG_MISMATCH"


class GenerationCancelled(RagError):
    code = "CANCELLED"
