import pytest

from tenant_rag import Settings
from tenant_rag.llm import OpenAIProvider
from tenant_rag.llm.registry import ProviderRegistry, build_default_registry

from fakes import FakeProvider


def test_create_requires_known_provider_and_key():
    registry = ProviderRegistry()
    registry.register("Fake", lambda api_key: FakeProvider())

    assert "fake" in registry
    assert registry.supported() == ["fake"]
    assert isinstance(registry.create("FAKE", api_key="sk-test"), FakeProvider)
    with pytest.raises(ValueError, match="Unsupported LLM provider"):
        registry.create("anthropic", api_key="sk-test")
    with pytest.raises(ValueError, match="No API key"):
        registry.create("fake", api_key=None)


def test_default_registry_builds_openai():
    settings = Settings(_env_file=None, openai_model="gpt-4o-mini", embedding_dim=256)
    provider = build_default_registry(settings).create("openai", api_key="sk-test")

    assert isinstance(provider, OpenAIProvider)
    assert provider.embedding_dimensions == 256
    assert provider._embedding_kwargs() == {"model": "text-embedding-3-small", "dimensions": 256}
