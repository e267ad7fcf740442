from __future__ import annotations

import asyncio
import hashlib
import importlib
import logging
from typing import Dict, Tuple

from tortoise import Tortoise
from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.backends.base.config_generator import expand_db_url

from ..config import Settings
from ..crypto import secure_compare
from ..repository import TenantConnector, TenantRepository
from .repositories import TortoiseTenantRepository

logger = logging.getLogger(__name__)

MODELS_MODULE = "tenant_rag.db.models"


async def init_db(settings: Settings) -> None:
    db_url = _normalize_dsn(settings.postgres_dsn)
    await Tortoise.init(
        db_url=db_url,
        modules={"models": [MODELS_MODULE]},
    )
    if settings.db_generate_schemas:
        await Tortoise.generate_schemas()


async def close_db() -> None:
    await Tortoise.close_connections()


def _normalize_dsn(dsn: str) -> str:
    if dsn.startswith("postgresql+asyncpg://"):
        return dsn.replace("postgresql+asyncpg://", "postgres://", 1)
    if dsn.startswith("postgresql://"):
        return dsn.replace("postgresql://", "postgres://", 1)
    return dsn


def _fingerprint(database_url: str) -> str:
    return hashlib.sha256(database_url.encode("utf-8")).hexdigest()


async def open_client(alias: str, database_url: str) -> BaseDBAsyncClient:
    """Create a standalone tortoise client for one tenant database."""

    db_info = expand_db_url(_normalize_dsn(database_url))
    engine = importlib.import_module(db_info["engine"])
    client = engine.client_class(connection_name=alias, **db_info["credentials"])
    await client.create_connection(with_db=True)
    return client


class TortoiseTenantConnector(TenantConnector):
    """Pools one database client per tenant.

    A pooled client is reused only while the tenant's connection string is
    unchanged; a rotated secret closes the old client and opens a new one.
    """

    def __init__(self) -> None:
        self._clients: Dict[str, Tuple[str, BaseDBAsyncClient]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def connect(self, tenant_id: str, database_url: str) -> TenantRepository:
        fingerprint = _fingerprint(database_url)
        cached = self._clients.get(tenant_id)
        if cached is not None and secure_compare(cached[0], fingerprint):
            return TortoiseTenantRepository(tenant_id, cached[1])

        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        async with lock:
            cached = self._clients.get(tenant_id)
            if cached is not None and secure_compare(cached[0], fingerprint):
                return TortoiseTenantRepository(tenant_id, cached[1])
            if cached is not None:
                logger.info("tenant credentials rotated, reconnecting", extra={"tenant_id": tenant_id})
                await cached[1].close()
            client = await open_client(f"tenant_{tenant_id}", database_url)
            self._clients[tenant_id] = (fingerprint, client)
        return TortoiseTenantRepository(tenant_id, client)

    async def close(self) -> None:
        for _fingerprint_value, client in self._clients.values():
            await client.close()
        self._clients.clear()
