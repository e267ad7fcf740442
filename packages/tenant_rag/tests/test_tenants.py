import asyncio
import threading

import pytest

from tenant_rag.errors import GenerationProviderError, SecretsDecryptionError, TenantConnectionError, TenantNotFound
from tenant_rag.llm.registry import ProviderRegistry
from tenant_rag.schemas import RagConfig
from tenant_rag.tenants import CredentialVault, TenantResolver

from fakes import FakeProvider, RecordingAuditSink, TenantWorld, fake_registry


def _resolver(world: TenantWorld, provider: FakeProvider, audit=None, registry=None) -> TenantResolver:
    vault = CredentialVault(world.directory, world.cipher, audit=audit)
    return TenantResolver(vault, world.connector, registry or fake_registry(provider))


@pytest.mark.asyncio
async def test_unknown_or_blank_slug_is_not_found(world, provider):
    resolver = _resolver(world, provider)

    with pytest.raises(TenantNotFound):
        await resolver.resolve_secrets("missing")
    with pytest.raises(TenantNotFound):
        await resolver.resolve_secrets("  ")


@pytest.mark.asyncio
async def test_unlock_scrubs_secrets_on_exit(world, provider):
    acme = world.add_tenant("acme")
    vault = CredentialVault(world.directory, world.cipher)
    bundle = await vault.resolve_secrets("acme")

    async with vault.unlock(bundle) as secrets:
        assert secrets.database_url == acme.database_url
        assert secrets.llm_api_key == acme.llm_api_key

    assert secrets.scrubbed
    assert secrets.database_url == ""
    assert secrets.llm_api_key is None
    assert acme.database_url not in repr(secrets)


@pytest.mark.asyncio
async def test_decryption_failure_is_audited(world, provider):
    world.add_tenant("broken", connection_secret="garbage")
    audit = RecordingAuditSink()
    vault = CredentialVault(world.directory, world.cipher, audit=audit)
    bundle = await vault.resolve_secrets("broken")

    with pytest.raises(SecretsDecryptionError):
        async with vault.unlock(bundle):
            pass

    assert audit.of("secrets_decryption_failed")[0]["tenant_id"] == bundle.tenant_id


@pytest.mark.asyncio
async def test_missing_master_key_fails_decryption(world, provider):
    world.add_tenant("acme")
    vault = CredentialVault(world.directory, None)
    bundle = await vault.resolve_secrets("acme")

    with pytest.raises(SecretsDecryptionError):
        async with vault.unlock(bundle):
            pass


@pytest.mark.asyncio
async def test_session_uses_tenant_key_and_closes_provider(world, provider):
    acme = world.add_tenant("acme", rag_config=RagConfig(top_k=2))
    resolver = _resolver(world, provider)
    bundle = await resolver.resolve_secrets("acme")

    async with resolver.session(bundle) as session:
        assert session.tenant_id == acme.tenant_id
        assert session.repository is acme.repository
        assert session.rag_config.top_k == 2
        assert session.provider is provider

    assert provider.api_keys == ["sk-acme"]
    assert provider.closed == 1
    assert world.connector.connected == [(acme.tenant_id, acme.database_url)]


@pytest.mark.asyncio
async def test_resolve_connection(world, provider):
    acme = world.add_tenant("acme")
    handle = await _resolver(world, provider).resolve_connection("acme")

    assert handle.slug == "acme"
    assert handle.repository is acme.repository


@pytest.mark.asyncio
async def test_connection_failure_is_wrapped(world, provider):
    acme = world.add_tenant("acme")
    world.connector.repositories.pop(acme.database_url)
    resolver = _resolver(world, provider)
    bundle = await resolver.resolve_secrets("acme")

    with pytest.raises(TenantConnectionError) as excinfo:
        async with resolver.session(bundle):
            pass

    assert acme.database_url not in excinfo.value.message


@pytest.mark.asyncio
async def test_unsupported_provider_is_a_generation_error(world, provider):
    world.add_tenant("acme")
    resolver = _resolver(world, provider, registry=ProviderRegistry())
    bundle = await resolver.resolve_secrets("acme")

    with pytest.raises(GenerationProviderError):
        async with resolver.session(bundle):
            pass

    async with resolver.session(bundle, with_provider=False) as session:
        assert session.provider is None


class SlowVault(CredentialVault):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.release = threading.Event()
        self.late: list = []

    def _decrypt(self, bundle):
        self.release.wait(timeout=5)
        secrets = super()._decrypt(bundle)
        self.late.append(secrets)
        return secrets


@pytest.mark.asyncio
async def test_decryption_timeout_scrubs_the_late_result(world, provider):
    world.add_tenant("acme")
    audit = RecordingAuditSink()
    vault = SlowVault(world.directory, world.cipher, timeout_seconds=0.05, audit=audit)
    bundle = await vault.resolve_secrets("acme")

    with pytest.raises(SecretsDecryptionError) as excinfo:
        async with vault.unlock(bundle):
            pass
    assert excinfo.value.timeout
    assert audit.of("secrets_decryption_failed")[0]["timeout"] is True

    vault.release.set()
    for _ in range(200):
        if vault.late and vault.late[0].scrubbed:
            break
        await asyncio.sleep(0.01)

    assert vault.late[0].scrubbed
    assert vault.late[0].database_url == ""
    assert vault.late[0].llm_api_key is None
