"""AI router: resolves provider + model with override > ENV > mock chain."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from repairmargin.core.config import get_settings

from .providers import BaseProvider, get_provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedConfig:
    """Final resolved provider + model after the override chain."""

    provider: BaseProvider
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: float


def resolve(
    scope: str,
    *,
    override_provider: str | None = None,
    override_model: str | None = None,
) -> ResolvedConfig:
    """Resolve provider + model for a given *scope*.

    Resolution chain (first non-empty wins):
      1. ``override_provider`` / ``override_model``, only when
         ``enable_ai_overrides=True``.
      2. ENV for the scope: ``AI_EXTRACTION_PROVIDER`` / ``AI_EXTRACTION_MODEL``.
      3. ``"mock"`` with empty model.

    A model outside the provider's allowlist is replaced by the first allowed one.
    """
    settings = get_settings()

    provider_name = ""
    if settings.enable_ai_overrides and override_provider:
        provider_name = override_provider.lower().strip()
    if not provider_name and scope == "valuation_extract":
        provider_name = settings.ai_extraction_provider.lower().strip()
    if not provider_name:
        provider_name = "mock"

    model = ""
    if settings.enable_ai_overrides and override_model:
        model = override_model.strip()
    if not model and scope == "valuation_extract":
        model = settings.ai_extraction_model.strip()

    allowed_models = settings.ai_allowed_models.get(provider_name, [])
    if allowed_models and model and model not in allowed_models:
        logger.warning(
            "Model %r not in allowlist for %r, using first allowed: %r",
            model,
            provider_name,
            allowed_models[0],
        )
        model = allowed_models[0]
    if allowed_models and not model:
        model = allowed_models[0]

    provider = get_provider(provider_name)
    if provider.name == "mock":
        model = model if provider_name == "mock" else ""

    return ResolvedConfig(
        provider=provider,
        model=model,
        temperature=settings.ai_temperature,
        max_tokens=settings.ai_max_tokens,
        timeout_seconds=settings.ai_timeout_seconds,
    )
