"""Provider factory: returns the configured provider or falls back to mock."""

from __future__ import annotations

import logging

from repairmargin.core.config import get_settings

from .base import BaseProvider, ProviderResult
from .mock import MockProvider

logger = logging.getLogger(__name__)

__all__ = ["get_provider", "BaseProvider", "ProviderResult", "MockProvider"]

_KEY_ATTRS = {
    "openai": ("openai_api_key", "OPENAI_API_KEY"),
    "claude": ("anthropic_api_key", "ANTHROPIC_API_KEY"),
    "groq": ("groq_api_key", "GROQ_API_KEY"),
}


def get_provider(provider_name: str) -> BaseProvider:
    """Return a provider instance for *provider_name*.

    Providers outside the allowlist, without an API key, or unknown fall back
    to ``MockProvider`` with a warning.
    """
    settings = get_settings()
    name = provider_name.lower().strip()

    if name not in settings.ai_allowed_providers:
        logger.warning("Provider %r not in allowlist – falling back to mock", name)
        return MockProvider()

    if name == "mock":
        return MockProvider()

    if name not in _KEY_ATTRS:
        logger.warning("Unknown provider %r – falling back to mock", name)
        return MockProvider()

    attr, env_name = _KEY_ATTRS[name]
    api_key = getattr(settings, attr)
    if not api_key:
        logger.warning("%s not set – falling back to mock", env_name)
        return MockProvider()

    if name == "claude":
        from .claude import ClaudeProvider

        return ClaudeProvider(api_key=api_key)

    if name == "groq":
        from .groq import GroqProvider

        return GroqProvider(api_key=api_key)

    from .openai import OpenAIProvider

    return OpenAIProvider(api_key=api_key)
