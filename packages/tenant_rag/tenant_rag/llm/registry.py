from __future__ import annotations

from typing import Callable, Dict, List, Optional

from ..config import Settings
from .base import LLMProvider
from .openai_provider import OpenAIProvider

ProviderFactory = Callable[[str], LLMProvider]


class ProviderRegistry:
    """Maps provider names to factories taking an API key.

    Built once at startup and handed to the pipeline.
    """

    def __init__(self) -> None:
        self._factories: Dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        self._factories[name.lower()] = factory

    def supported(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._factories

    def create(self, name: str, *, api_key: Optional[str]) -> LLMProvider:
        factory = self._factories.get(name.lower())
        if factory is None:
            raise ValueError(f"Unsupported LLM provider: {name}. Supported: {', '.join(self.supported())}")
        if not api_key:
            raise ValueError(f"No API key available for provider {name}")
        return factory(api_key)


def build_default_registry(settings: Settings) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register(
        "openai",
        lambda api_key: OpenAIProvider(
            api_key=api_key,
            model=settings.openai_model,
            embedding_model=settings.embedding_model,
            embedding_dimensions=settings.embedding_dim,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.generation_timeout_seconds,
        ),
    )
    return registry
