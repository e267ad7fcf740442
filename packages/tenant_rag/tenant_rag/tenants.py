"""Tenant resolution and credential decryption.

The vault hands out decrypted secrets only inside an ``async with`` block and
blanks them when the block exits, so plaintext credentials live exactly as long
as the request that needed them.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from .audit import AuditSink, NullAuditSink
from .crypto import SecretCipher
from .errors import GenerationProviderError, RagError, SecretsDecryptionError, TenantConnectionError, TenantNotFound
from .llm.base import LLMProvider
from .llm.registry import ProviderRegistry
from .repository import TenantConnector, TenantDirectory, TenantRepository
from .schemas import RagConfig, TenantCredentialBundle

logger = logging.getLogger(__name__)


class DecryptedSecrets:
    __slots__ = ("tenant_id", "database_url", "llm_api_key", "scrubbed")

    def __init__(self, tenant_id: str, database_url: str, llm_api_key: Optional[str]) -> None:
        self.tenant_id = tenant_id
        self.database_url = database_url
        self.llm_api_key = llm_api_key
        self.scrubbed = False

    def scrub(self) -> None:
        self.database_url = ""
        self.llm_api_key = None
        self.scrubbed = True

    def __repr__(self) -> str:
        return f"DecryptedSecrets(tenant_id={self.tenant_id!r}, scrubbed={self.scrubbed})"


def _scrub_late_result(future: asyncio.Future[DecryptedSecrets]) -> None:
    if future.cancelled() or future.exception() is not None:
        return
    future.result().scrub()


@dataclass
class ConnectionHandle:
    tenant_id: str
    slug: str
    repository: TenantRepository
    rag_config: RagConfig


@dataclass
class TenantSession:
    connection: ConnectionHandle
    provider: Optional[LLMProvider]

    @property
    def tenant_id(self) -> str:
        return self.connection.tenant_id

    @property
    def repository(self) -> TenantRepository:
        return self.connection.repository

    @property
    def rag_config(self) -> RagConfig:
        return self.connection.rag_config


class CredentialVault:
    def __init__(
        self,
        directory: TenantDirectory,
        cipher: Optional[SecretCipher],
        *,
        timeout_seconds: float = 5.0,
        audit: Optional[AuditSink] = None,
    ) -> None:
        self.directory = directory
        self.cipher = cipher
        self.timeout_seconds = timeout_seconds
        self.audit = audit or NullAuditSink()

    async def resolve_secrets(self, slug: str) -> TenantCredentialBundle:
        if not slug or not slug.strip():
            raise TenantNotFound("Tenant slug is required")
        bundle = await self.directory.get_by_slug(slug.strip())
        if bundle is None:
            raise TenantNotFound(f"Tenant '{slug}' not found")
        return bundle

    def _decrypt(self, bundle: TenantCredentialBundle) -> DecryptedSecrets:
        if self.cipher is None:
            raise SecretsDecryptionError()
        database_url = self.cipher.decrypt(bundle.encrypted_connection_secret)
        llm_api_key = self.cipher.decrypt(bundle.llm_api_key_encrypted) if bundle.llm_api_key_encrypted else None
        return DecryptedSecrets(bundle.tenant_id, database_url, llm_api_key)

    @asynccontextmanager
    async def unlock(self, bundle: TenantCredentialBundle) -> AsyncIterator[DecryptedSecrets]:
        decrypting = asyncio.ensure_future(asyncio.to_thread(self._decrypt, bundle))
        try:
            secrets = await asyncio.wait_for(asyncio.shield(decrypting), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            # The worker thread cannot be interrupted; blank whatever it returns late.
            decrypting.add_done_callback(_scrub_late_result)
            self.audit.emit("secrets_decryption_failed", tenant_id=bundle.tenant_id, timeout=True)
            raise SecretsDecryptionError(timeout=True) from exc
        except asyncio.CancelledError:
            decrypting.add_done_callback(_scrub_late_result)
            raise
        except SecretsDecryptionError:
            self.audit.emit("secrets_decryption_failed", tenant_id=bundle.tenant_id, timeout=False)
            raise
        try:
            yield secrets
        finally:
            secrets.scrub()


class TenantResolver:
    def __init__(
        self,
        vault: CredentialVault,
        connector: TenantConnector,
        registry: ProviderRegistry,
        *,
        default_llm_api_key: Optional[str] = None,
    ) -> None:
        self.vault = vault
        self.connector = connector
        self.registry = registry
        self._default_llm_api_key = default_llm_api_key

    async def resolve_secrets(self, slug: str) -> TenantCredentialBundle:
        return await self.vault.resolve_secrets(slug)

    async def _connect(self, bundle: TenantCredentialBundle, secrets: DecryptedSecrets) -> ConnectionHandle:
        try:
            repository = await self.connector.connect(bundle.tenant_id, secrets.database_url)
        except RagError:
            raise
        except Exception as exc:
            logger.warning(
                "tenant database connection failed",
                extra={"tenant_id": bundle.tenant_id, "error_type": exc.__class__.__name__},
            )
            raise TenantConnectionError("Unable to connect to the tenant database") from exc
        return ConnectionHandle(
            tenant_id=bundle.tenant_id,
            slug=bundle.slug,
            repository=repository,
            rag_config=bundle.rag_config,
        )

    async def resolve_connection(self, slug: str) -> ConnectionHandle:
        bundle = await self.vault.resolve_secrets(slug)
        async with self.vault.unlock(bundle) as secrets:
            return await self._connect(bundle, secrets)

    @asynccontextmanager
    async def session(
        self, bundle: TenantCredentialBundle, *, with_provider: bool = True
    ) -> AsyncIterator[TenantSession]:
        """Connection plus an LLM provider keyed with the tenant's own API key."""

        async with self.vault.unlock(bundle) as secrets:
            connection = await self._connect(bundle, secrets)
            provider: Optional[LLMProvider] = None
            if with_provider:
                try:
                    provider = self.registry.create(
                        bundle.llm_provider,
                        api_key=secrets.llm_api_key or self._default_llm_api_key,
                    )
                except ValueError as exc:
                    raise GenerationProviderError(str(exc)) from exc
            try:
                yield TenantSession(connection=connection, provider=provider)
            finally:
                if provider is not None:
                    await provider.aclose()
