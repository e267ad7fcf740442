"""Storage interfaces for tenant routing data and tenant-owned records."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from .schemas import Document, DocumentInput, DocumentStatus, QALog, TenantCredentialBundle


class TenantDirectory(ABC):
    """Looks tenants up in the main database."""

    @abstractmethod
    async def get_by_slug(self, slug: str) -> Optional[TenantCredentialBundle]:
        raise NotImplementedError


class TenantRepository(ABC):
    """Document and Q&A log access bound to one tenant's database."""

    tenant_id: str

    @abstractmethod
    async def create_document(self, document: DocumentInput, *, document_id: Optional[str] = None) -> Document:
        raise NotImplementedError

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[Document]:
        raise NotImplementedError

    @abstractmethod
    async def update_document(
        self,
        document_id: str,
        *,
        status: DocumentStatus,
        chunk_count: Optional[int] = None,
        error_detail: Optional[str] = None,
        **fields: Any,
    ) -> Optional[Document]:
        raise NotImplementedError

    @abstractmethod
    async def delete_document(self, document_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def record_qa_log(self, entry: QALog) -> None:
        raise NotImplementedError


class TenantConnector(ABC):
    """Opens (or reuses) a repository for a tenant's decrypted connection string."""

    @abstractmethod
    async def connect(self, tenant_id: str, database_url: str) -> TenantRepository:
        raise NotImplementedError

    async def close(self) -> None:
        return None
