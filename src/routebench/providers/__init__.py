"""Model provider clients used by the sweep."""

from __future__ import annotations

from collections.abc import Sequence

from routebench.config import Settings
from routebench.errors import ConfigurationError
from routebench.providers.base import ProviderClient, ProviderReply, estimate_tokens
from routebench.providers.claude import ClaudeClient
from routebench.providers.cohere import CohereClient
from routebench.providers.deepseek import DeepSeekClient

# Provider ids accepted in scenarios, mapped to a client kind
PROVIDER_KINDS = {
    "cohere": "cohere",
    "claude": "claude",
    "anthropic": "claude",
    "deepseek": "deepseek",
}


def create_client(provider_id: str, settings: Settings) -> ProviderClient:
    """Build the client for a configured provider id.

    Raises:
        ConfigurationError: Unknown provider id or missing API key.
    """
    kind = PROVIDER_KINDS.get(provider_id.lower())
    common = {
        "name": provider_id,
        "temperature": settings.temperature,
        "max_tokens": settings.max_tokens,
        "timeout": settings.request_timeout,
        "max_retries": settings.max_retries,
        "retry_base_delay": settings.retry_base_delay,
    }

    if kind == "cohere":
        if settings.cohere_api_key is None:
            raise ConfigurationError("COHERE_API_KEY is required for provider 'cohere'")
        return CohereClient(
            settings.cohere_api_key.get_secret_value(),
            settings.cohere_model,
            base_url=settings.cohere_base_url,
            **common,
        )
    if kind == "claude":
        if settings.anthropic_api_key is None:
            raise ConfigurationError(
                f"ANTHROPIC_API_KEY (or CLAUDE_API_KEY) is required for provider '{provider_id}'"
            )
        return ClaudeClient(
            settings.anthropic_api_key.get_secret_value(),
            settings.claude_model,
            **common,
        )
    if kind == "deepseek":
        if settings.deepseek_api_key is None:
            raise ConfigurationError("DEEPSEEK_API_KEY is required for provider 'deepseek'")
        return DeepSeekClient(
            settings.deepseek_api_key.get_secret_value(),
            settings.deepseek_model,
            base_url=settings.deepseek_base_url,
            **common,
        )
    raise ConfigurationError(
        f"unknown provider {provider_id!r}; known providers: {sorted(PROVIDER_KINDS)}"
    )


def create_clients(
    provider_ids: Sequence[str], settings: Settings
) -> dict[str, ProviderClient]:
    return {provider_id: create_client(provider_id, settings) for provider_id in provider_ids}


__all__ = [
    "PROVIDER_KINDS",
    "ClaudeClient",
    "CohereClient",
    "DeepSeekClient",
    "ProviderClient",
    "ProviderReply",
    "create_client",
    "create_clients",
    "estimate_tokens",
]
