"""Factory for creating AI providers based on configuration.

Implements Factory Pattern for provider selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22
"""

import logging

from services.ai.base import AIProvider, DisabledAIProvider
from services.ai.ollama_provider import OllamaProvider
from services.ai.openai_provider import OpenAIProvider
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of available AI providers.

    Maintains a mapping of provider names to their implementation classes.
    Supports runtime registration of new providers.
    """

    _providers: dict[str, type[AIProvider]] = {
        "openai": OpenAIProvider,
        "ollama": OllamaProvider,
        "disabled": DisabledAIProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[AIProvider]) -> None:
        """Register a new provider.

        Args:
            name: Provider identifier (must match Settings.ai_provider)
            provider_class: Provider class implementing AIProvider interface
        """
        cls._providers[name] = provider_class
        logger.info(f"Registered AI provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[AIProvider]:
        """Get provider class by name.

        Raises:
            ValueError: If provider not found in registry
        """
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(f"Unknown AI provider: '{name}'. Available providers: {available}")
        return cls._providers[name]

    @classmethod
    def list_providers(cls) -> list[str]:
        return list(cls._providers.keys())


def create_ai_provider(settings: Settings) -> AIProvider:
    """Create the AI provider named by settings.ai_provider.

    Logs a warning if the provider is not available (e.g., missing API key);
    calls made through it will then fail with ExtractionServiceFailure.

    Raises:
        ValueError: If configured provider is unknown

    Example:
        >>> settings = Settings(ai_provider="ollama")
        >>> provider = create_ai_provider(settings)
        >>> vector = await provider.embed("Acme Corp")
    """
    provider_name = settings.ai_provider
    provider = ProviderRegistry.get_provider_class(provider_name)(settings)

    if not provider.is_available():
        logger.warning(
            f"AI provider '{provider_name}' is not fully available. "
            f"Check configuration (e.g., API keys, server URL)."
        )

    logger.info(f"Created AI provider: {provider_name}")
    return provider
