"""Provider registry: endpoints, probe models and SDK client construction.

Every supported backend exposes an OpenAI-compatible chat completions API.
Groq is reached through its own SDK; the others through the OpenAI SDK
pointed at the provider's base URL.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from groq import AsyncGroq
from openai import AsyncOpenAI

from stockmeta.domain.errors import ConfigurationError
from stockmeta.domain.models.credentials import Provider, provider_key

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT_S = 60.0

OPENROUTER_HEADERS = {
    "HTTP-Referer": "https://stockmeta.local",
    "X-Title": "StockMeta Pro",
}


@dataclass(frozen=True)
class ProviderSpec:
    """Static description of one provider."""
    provider: Provider
    base_url: Optional[str]   # None: SDK default (Groq)
    probe_model: str
    default_model: str
    extra_headers: Dict[str, str] = field(default_factory=dict)


PROVIDER_SPECS: Dict[str, ProviderSpec] = {
    spec.provider.value: spec
    for spec in (
        ProviderSpec(Provider.OPENAI, "https://api.openai.com/v1", "gpt-4o-mini", "gpt-4o-mini"),
        ProviderSpec(Provider.GITHUB, "https://models.inference.ai.azure.com", "gpt-4o-mini", "gpt-4o-mini"),
        ProviderSpec(Provider.GROQ, None, "llama-3.3-70b-versatile", "meta-llama/llama-4-scout-17b-16e-instruct"),
        ProviderSpec(Provider.MISTRAL, "https://api.mistral.ai/v1", "pixtral-12b-2409", "pixtral-12b-2409"),
        ProviderSpec(Provider.DEEPSEEK, "https://api.deepseek.com", "deepseek-chat", "deepseek-chat"),
        ProviderSpec(
            Provider.OPENROUTER,
            "https://openrouter.ai/api/v1",
            "google/gemini-2.0-flash-001",
            "google/gemini-2.0-flash-001",
            extra_headers=OPENROUTER_HEADERS,
        ),
        ProviderSpec(
            Provider.GEMINI,
            "https://generativelanguage.googleapis.com/v1beta/openai/",
            "gemini-2.0-flash",
            "gemini-2.0-flash",
        ),
    )
}


def get_provider_spec(provider: Union[Provider, str]) -> ProviderSpec:
    """Looks up a provider by enum member or name (case-insensitive).

    Raises:
        ConfigurationError: If the provider is unknown.
    """
    name = provider_key(provider)
    spec = PROVIDER_SPECS.get(name)
    if spec is None:
        for key, candidate in PROVIDER_SPECS.items():
            if key.lower() == name.lower():
                return candidate
        raise ConfigurationError(f"Unknown provider: '{name}'")
    return spec


def create_async_client(
    provider: Union[Provider, str],
    api_key: str,
    timeout: float = DEFAULT_REQUEST_TIMEOUT_S,
) -> Any:
    """Creates an async SDK client for ``provider`` authenticated with ``api_key``.

    SDK-level retries are disabled; retries and credential rotation belong to
    the dispatch layer.
    """
    spec = get_provider_spec(provider)
    if spec.provider is Provider.GROQ:
        return AsyncGroq(api_key=api_key, timeout=timeout, max_retries=0)
    return AsyncOpenAI(
        api_key=api_key,
        base_url=spec.base_url,
        timeout=timeout,
        max_retries=0,
        default_headers=spec.extra_headers or None,
    )
