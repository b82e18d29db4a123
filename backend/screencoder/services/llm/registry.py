"""
Provider Registry

Maps provider ids to adapter factories.
Used by the orchestrator to build the adapter for the user's selection and by
the settings UI to list every backend with its live model list.
"""

from typing import Callable
import asyncio
import logging

from pydantic import BaseModel

from screencoder.core.errors import ConfigurationError
from screencoder.services.llm.base import LLMProvider
from screencoder.services.llm.models import ModelInfo, ProviderConfig, ProviderDescriptor

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ProviderConfig], LLMProvider]


class ProviderDetails(BaseModel):
    id: str
    descriptor: ProviderDescriptor
    models: list[ModelInfo]


# ── Built-in factories (lazy imports keep SDKs off the import path) ───────────


def _create_ollama(config: ProviderConfig) -> LLMProvider:
    from screencoder.services.llm.ollama import OllamaProvider
    return OllamaProvider(config)


def _create_openai(config: ProviderConfig) -> LLMProvider:
    from screencoder.services.llm.openai_chat import OpenAIChatProvider
    return OpenAIChatProvider(config)


def _create_openrouter(config: ProviderConfig) -> LLMProvider:
    from screencoder.services.llm.openrouter import OpenRouterProvider
    return OpenRouterProvider(config)


def _create_gemini(config: ProviderConfig) -> LLMProvider:
    from screencoder.services.llm.gemini import GeminiProvider
    return GeminiProvider(config)


def _create_anthropic(config: ProviderConfig) -> LLMProvider:
    from screencoder.services.llm.anthropic import AnthropicProvider
    return AnthropicProvider(config)


BUILTIN_PROVIDERS: dict[str, ProviderFactory] = {
    "ollama": _create_ollama,
    "openai": _create_openai,
    "openrouter": _create_openrouter,
    "gemini": _create_gemini,
    "anthropic": _create_anthropic,
}


# ── Registry ──────────────────────────────────────────────────────────────────


class ProviderRegistry:
    """Provider id → factory mapping with runtime registration."""

    def __init__(self, factories: dict[str, ProviderFactory] | None = None):
        self._factories: dict[str, ProviderFactory] = dict(factories or {})

    def register_provider(self, provider_id: str, factory: ProviderFactory) -> None:
        """Add or replace the factory for a provider id."""
        self._factories[provider_id] = factory

    def list_provider_ids(self) -> list[str]:
        return list(self._factories)

    def create_provider(self, provider_id: str, config: ProviderConfig) -> LLMProvider:
        """
        Instantiate the adapter for a provider id.

        Raises:
            ConfigurationError: If the provider id is not registered
        """
        factory = self._factories.get(provider_id)
        if factory is None:
            raise ConfigurationError(
                f"Unknown provider: {provider_id}. "
                f"Available providers: {', '.join(self._factories)}"
            )
        return factory(config)

    async def get_all_providers_with_details(self) -> list[ProviderDetails]:
        """
        Describe every registered provider with its model list.

        Model lists are fetched concurrently with an empty config. A provider
        whose listing fails is reported with no models; one that cannot even be
        instantiated is left out.
        """
        results = await asyncio.gather(
            *(self._describe(provider_id) for provider_id in self._factories)
        )
        return [details for details in results if details is not None]

    async def _describe(self, provider_id: str) -> ProviderDetails | None:
        try:
            provider = self.create_provider(provider_id, ProviderConfig())
            descriptor = provider.get_provider_descriptor()
        except Exception as e:
            logger.warning("[LLM] Failed to instantiate provider %s: %s", provider_id, e)
            return None

        try:
            models = await provider.get_available_models()
        except Exception as e:
            logger.warning("[LLM] Failed to load models for %s: %s", provider_id, e)
            models = []
        finally:
            await provider.aclose()
        return ProviderDetails(id=provider_id, descriptor=descriptor, models=models)


# ── Default registry ──────────────────────────────────────────────────────────

_registry = ProviderRegistry(BUILTIN_PROVIDERS)


def get_registry() -> ProviderRegistry:
    return _registry


def create_provider(provider_id: str, config: ProviderConfig) -> LLMProvider:
    return _registry.create_provider(provider_id, config)


def register_provider(provider_id: str, factory: ProviderFactory) -> None:
    _registry.register_provider(provider_id, factory)


def list_provider_ids() -> list[str]:
    return _registry.list_provider_ids()


async def get_all_providers_with_details() -> list[ProviderDetails]:
    return await _registry.get_all_providers_with_details()
