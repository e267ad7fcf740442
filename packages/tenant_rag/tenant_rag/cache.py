"""Per-tenant answer cache on Redis.

A cache problem never fails a request: reads degrade to misses and writes or
invalidations to no-ops, with a warning in the log.
"""
from __future__ import annotations

import hashlib
import logging
import re
from datetime import timedelta
from typing import Any, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .audit import AuditSink, NullAuditSink
from .schemas import CacheEntry, Citation, utcnow

logger = logging.getLogger(__name__)

CACHE_VERSION = "1.0.0"

_TRAILING_PUNCTUATION = re.compile(r"[?!.]+$")
_WHITESPACE = re.compile(r"\s+")


def normalize_question(question: str) -> str:
    normalized = question.lower().strip()
    normalized = _TRAILING_PUNCTUATION.sub("", normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


def question_fingerprint(tenant_id: str, question: str) -> str:
    digest = hashlib.sha256(f"{tenant_id}\x00{normalize_question(question)}".encode("utf-8"))
    return digest.hexdigest()[:32]


class ResponseCache:
    def __init__(
        self,
        redis_client: Any,
        *,
        ttl_seconds: int = 3600,
        key_prefix: str = "rag:qa:",
        enabled: bool = True,
        audit: Optional[AuditSink] = None,
    ) -> None:
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self.enabled = enabled and redis_client is not None
        self.audit = audit or NullAuditSink()

    def key_for(self, tenant_id: str, question: str) -> str:
        return f"{self.key_prefix}{tenant_id}:{question_fingerprint(tenant_id, question)}"

    def tenant_pattern(self, tenant_id: str) -> str:
        return f"{self.key_prefix}{tenant_id}:*"

    async def get(self, tenant_id: str, question: str) -> Optional[CacheEntry]:
        if not self.enabled or not tenant_id:
            return None
        key = self.key_for(tenant_id, question)
        try:
            raw = await self.redis.get(key)
            if raw is None:
                self.audit.emit("cache_miss", tenant_id=tenant_id)
                return None
            try:
                entry = CacheEntry.model_validate_json(raw)
            except PydanticValidationError:
                logger.warning("discarding unreadable cache entry", extra={"tenant_id": tenant_id})
                await self.redis.delete(key)
                return None
            if entry.cache_version != CACHE_VERSION or entry.expires_at <= utcnow():
                await self.redis.delete(key)
                self.audit.emit("cache_miss", tenant_id=tenant_id, reason="stale")
                return None
            if entry.tenant_id != tenant_id:
                logger.error("cache entry tenant mismatch", extra={"tenant_id": tenant_id})
                return None
            self.audit.emit("cache_hit", tenant_id=tenant_id)
            return entry
        except Exception as exc:
            logger.warning("cache read failed", extra={"tenant_id": tenant_id, "error": str(exc)})
            return None

    async def put(
        self,
        tenant_id: str,
        question: str,
        *,
        answer: str,
        citations: List[Citation],
        confidence: float,
        fallback: bool = False,
    ) -> bool:
        if not self.enabled or not tenant_id:
            return False
        now = utcnow()
        entry = CacheEntry(
            tenant_id=tenant_id,
            question_fingerprint=question_fingerprint(tenant_id, question),
            answer=answer,
            citations=citations,
            confidence=confidence,
            fallback=fallback,
            cached_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
            cache_version=CACHE_VERSION,
        )
        try:
            await self.redis.set(self.key_for(tenant_id, question), entry.model_dump_json(), ex=self.ttl_seconds)
            return True
        except Exception as exc:
            logger.warning("cache write failed", extra={"tenant_id": tenant_id, "error": str(exc)})
            return False

    async def invalidate_tenant(self, tenant_id: str) -> int:
        """Remove every cached answer for ``tenant_id``; returns the number of keys deleted."""

        if not self.enabled or not tenant_id:
            return 0
        deleted = 0
        try:
            batch: List[Any] = []
            async for key in self.redis.scan_iter(match=self.tenant_pattern(tenant_id), count=100):
                batch.append(key)
                if len(batch) >= 100:
                    deleted += await self.redis.delete(*batch)
                    batch = []
            if batch:
                deleted += await self.redis.delete(*batch)
        except Exception as exc:
            logger.warning("cache invalidation failed", extra={"tenant_id": tenant_id, "error": str(exc)})
            return deleted
        logger.info("invalidated tenant cache", extra={"tenant_id": tenant_id, "deleted": deleted})
        return deleted
