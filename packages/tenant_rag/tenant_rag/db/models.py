from __future__ import annotations

import uuid

from tortoise import fields
from tortoise.models import Model


class Tenant(Model):
    """Routing row in the main database; secrets are stored encrypted."""

    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    slug = fields.CharField(max_length=128, unique=True)
    name = fields.CharField(max_length=255)
    status = fields.CharField(max_length=32, default="active")
    encrypted_database_url = fields.TextField()
    encrypted_llm_api_key = fields.TextField(null=True)
    llm_provider = fields.CharField(max_length=64, default="openai")
    rag_config = fields.JSONField(default=dict)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "tenants"


class Document(Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    tenant_id = fields.CharField(max_length=64, index=True)
    title = fields.CharField(max_length=500)
    raw_content = fields.TextField()
    doc_type = fields.CharField(max_length=64, default="text")
    file_metadata = fields.JSONField(default=dict)
    storage_ref = fields.CharField(max_length=1024, null=True)
    status = fields.CharField(max_length=16, default="pending")
    chunk_count = fields.IntField(default=0)
    error_detail = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "documents"


class QALog(Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    tenant_id = fields.CharField(max_length=64, index=True)
    question = fields.TextField()
    answer = fields.TextField()
    citations = fields.JSONField(default=list)
    confidence = fields.FloatField(default=0.0)
    flagged = fields.BooleanField(default=False)
    reviewed = fields.BooleanField(default=False)
    debug_info = fields.JSONField(default=dict)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "qa_logs"
