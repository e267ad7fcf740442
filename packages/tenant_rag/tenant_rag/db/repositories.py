from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.exceptions import BaseORMException

from ..errors import RepositoryError
from ..repository import TenantDirectory, TenantRepository
from ..schemas import (
    Document,
    DocumentInput,
    DocumentStatus,
    FileMetadata,
    QALog,
    RagConfig,
    TenantCredentialBundle,
)
from . import models

logger = logging.getLogger(__name__)


@contextmanager
def _translate(operation: str, **context: str) -> Iterator[None]:
    try:
        yield
    except (BaseORMException, OSError) as exc:
        logger.warning(
            "tenant database call failed",
            extra={"operation": operation, "error": str(exc), **context},
        )
        raise RepositoryError(f"Tenant database {operation} failed") from exc


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _document(row: models.Document) -> Document:
    return Document(
        id=str(row.id),
        tenant_id=row.tenant_id,
        title=row.title,
        raw_content=row.raw_content,
        doc_type=row.doc_type,
        file_metadata=FileMetadata.model_validate(row.file_metadata or {}),
        storage_ref=row.storage_ref,
        status=DocumentStatus(row.status),
        chunk_count=row.chunk_count,
        error_detail=row.error_detail,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class TortoiseTenantDirectory(TenantDirectory):
    """Reads active tenants from the main database."""

    def __init__(self, defaults: Optional[RagConfig] = None) -> None:
        self.defaults = defaults or RagConfig()

    async def get_by_slug(self, slug: str) -> Optional[TenantCredentialBundle]:
        with _translate("tenant lookup", tenant_slug=slug):
            row = await models.Tenant.get_or_none(slug=slug, status="active")
        if row is None:
            return None
        rag_config = self.defaults.model_copy(update=dict(row.rag_config or {}))
        return TenantCredentialBundle(
            tenant_id=str(row.id),
            slug=row.slug,
            name=row.name,
            encrypted_connection_secret=row.encrypted_database_url,
            llm_api_key_encrypted=row.encrypted_llm_api_key,
            llm_provider=row.llm_provider,
            rag_config=RagConfig.model_validate(rag_config.model_dump()),
        )


class TortoiseTenantRepository(TenantRepository):
    """Document and Q&A log queries bound to one tenant's database client."""

    def __init__(self, tenant_id: str, client: BaseDBAsyncClient) -> None:
        self.tenant_id = tenant_id
        self._client = client

    def _documents(self):
        return models.Document.filter(tenant_id=self.tenant_id).using_db(self._client)

    async def create_document(self, document: DocumentInput, *, document_id: Optional[str] = None) -> Document:
        fields: dict[str, Any] = {
            "tenant_id": self.tenant_id,
            "title": document.title,
            "raw_content": document.content,
            "doc_type": document.doc_type,
            "file_metadata": document.file_metadata.model_dump(),
            "storage_ref": document.storage_ref,
            "status": DocumentStatus.PENDING.value,
        }
        if document_id:
            fields["id"] = document_id
        with _translate("insert", tenant_id=self.tenant_id):
            row = await models.Document.create(using_db=self._client, **fields)
        return _document(row)

    async def get_document(self, document_id: str) -> Optional[Document]:
        if not _is_uuid(document_id):
            return None
        with _translate("read", tenant_id=self.tenant_id):
            row = await self._documents().filter(id=document_id).first()
        return _document(row) if row else None

    async def update_document(
        self,
        document_id: str,
        *,
        status: DocumentStatus,
        chunk_count: Optional[int] = None,
        error_detail: Optional[str] = None,
        **fields: Any,
    ) -> Optional[Document]:
        changes: dict[str, Any] = {"status": status.value, "error_detail": error_detail, **fields}
        if chunk_count is not None:
            changes["chunk_count"] = chunk_count
        with _translate("update", tenant_id=self.tenant_id):
            await self._documents().filter(id=document_id).update(**changes)
        return await self.get_document(document_id)

    async def delete_document(self, document_id: str) -> bool:
        if not _is_uuid(document_id):
            return False
        with _translate("delete", tenant_id=self.tenant_id):
            deleted = await self._documents().filter(id=document_id).delete()
        return deleted > 0

    async def record_qa_log(self, entry: QALog) -> None:
        with _translate("qa log insert", tenant_id=self.tenant_id):
            await models.QALog.create(
                using_db=self._client,
                id=entry.id,
                tenant_id=self.tenant_id,
                question=entry.question,
                answer=entry.answer,
                citations=[citation.model_dump() for citation in entry.citations],
                confidence=entry.confidence,
                flagged=entry.flagged,
                reviewed=entry.reviewed,
                debug_info=entry.debug_info,
            )
