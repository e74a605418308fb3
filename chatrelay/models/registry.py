"""
Provider registry: creates the right adapter based on config.

Every supported provider speaks the OpenAI `chat/completions` streaming
dialect, so they all map to OpenAICompatAdapter:
  groq       → api.groq.com/openai/v1
  openai     → api.openai.com/v1
  openrouter → openrouter.ai/api/v1
  together   → api.together.xyz/v1
  ollama     → localhost:11434/v1 (no key needed)
  <any>      → base_url from chatrelay.json
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from chatrelay.config import ChatRelayConfig, get_config, get_settings
from chatrelay.models.base import BaseModelAdapter, ProviderUnavailableError
from chatrelay.models.openai_compat import OpenAICompatAdapter

logger = logging.getLogger(__name__)

# Well-known base URLs for providers that don't require base_url in config
_PROVIDER_DEFAULTS: dict[str, str] = {
    "groq":        "https://api.groq.com/openai/v1",
    "openai":      "https://api.openai.com/v1",
    "openrouter":  "https://openrouter.ai/api/v1",
    "together":    "https://api.together.xyz/v1",
    "mistral":     "https://api.mistral.ai/v1",
    "ollama":      "http://localhost:11434/v1",
}


def available_providers(config: ChatRelayConfig | None = None) -> list[str]:
    """Names of configured providers that have credentials."""
    cfg = config or get_config()
    return [
        p.name for p in cfg.providers
        if p.name == "ollama" or cfg.get_provider_api_key(p)
    ]


def get_adapter(
    provider: str | None = None,
    model_name: str | None = None,
    config: ChatRelayConfig | None = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseModelAdapter:
    cfg = config or get_config()
    name = provider or cfg.default_provider
    provider_cfg = cfg.get_provider(name)
    if provider_cfg is None:
        raise ProviderUnavailableError(f"Provider {name} not available")

    api_key = cfg.get_provider_api_key(provider_cfg) or ""
    if not api_key:
        if name != "ollama":
            raise ProviderUnavailableError(
                f"API key not set for provider '{name}'. Set {provider_cfg.api_key_env} in .env"
            )
        api_key = "ollama"

    base_url = provider_cfg.base_url or _PROVIDER_DEFAULTS.get(name)
    if not base_url:
        raise ProviderUnavailableError(f"No base_url configured for provider '{name}'")

    model = cfg.resolve_model(provider_cfg, model_name)
    if not model:
        raise ProviderUnavailableError(f"No model configured for provider '{name}'")

    return OpenAICompatAdapter(
        provider=name,
        model_name=model,
        base_url=base_url,
        api_key=api_key,
        temperature=cfg.agent.temperature,
        max_tokens=cfg.agent.max_tokens,
        timeout=get_settings().upstream_timeout,
        transport=transport,
    )


async def check_providers(
    config: ChatRelayConfig | None = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict[str, bool]:
    """Health of every provider that has credentials, keyed by provider name."""
    cfg = config or get_config()

    async def check(name: str) -> bool:
        try:
            adapter = get_adapter(name, config=cfg, transport=transport)
        except ProviderUnavailableError as e:
            logger.warning("Cannot check provider %s: %s", name, e)
            return False
        return await adapter.health_check()

    names = available_providers(cfg)
    results = await asyncio.gather(*(check(name) for name in names))
    return dict(zip(names, results))
