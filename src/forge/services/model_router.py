"""Provider lookup and credential resolution.

The router does not couple directly to concrete SDK clients; it returns a
provider configuration that :mod:`llm_clients` turns into a streaming client.
Credential checks happen here so a request with no usable key is rejected
before any upstream call is made.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from ..domain.errors import ApiKeyMissing
from ..domain.models import ModelSelector

# Providers that cannot be called without a credential, and the server-side
# env var that may supply it. Anything not listed (self-hosted, local) skips
# the credential check.
PROVIDER_KEY_ENV: Dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "google": "GOOGLE_AI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "togetherai": "TOGETHER_API_KEY",
    "fireworks": "FIREWORKS_API_KEY",
    "xai": "XAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
}


@dataclass(frozen=True)
class ProviderSelection:
    """Returned details about the provider that should handle a request."""

    name: str
    api_style: str
    base_url: str
    api_key_env: Optional[str]
    requires_api_key: bool = True


@dataclass(frozen=True)
class Credential:
    provider_id: str
    api_key: Optional[str]
    source: str  # "request", "server" or "none"
    env_name: Optional[str] = None


class ModelRouter:
    """Static provider table: API style and endpoint per provider id."""

    PROVIDER_CONFIG: Dict[str, Dict[str, str]] = {
        "openai": {"api_style": "openai", "base_url_env": "OPENAI_BASE_URL", "default_base_url": "https://api.openai.com/v1"},
        "google": {
            "api_style": "openai",
            "base_url_env": "GOOGLE_AI_BASE_URL",
            "default_base_url": "https://generativelanguage.googleapis.com/v1beta/openai",
        },
        "mistral": {"api_style": "openai", "base_url_env": "MISTRAL_BASE_URL", "default_base_url": "https://api.mistral.ai/v1"},
        "groq": {"api_style": "openai", "base_url_env": "GROQ_BASE_URL", "default_base_url": "https://api.groq.com/openai/v1"},
        "togetherai": {"api_style": "openai", "base_url_env": "TOGETHER_BASE_URL", "default_base_url": "https://api.together.xyz/v1"},
        "fireworks": {
            "api_style": "openai",
            "base_url_env": "FIREWORKS_BASE_URL",
            "default_base_url": "https://api.fireworks.ai/inference/v1",
        },
        "xai": {"api_style": "openai", "base_url_env": "XAI_BASE_URL", "default_base_url": "https://api.x.ai/v1"},
        "deepseek": {"api_style": "openai", "base_url_env": "DEEPSEEK_BASE_URL", "default_base_url": "https://api.deepseek.com/v1"},
        "anthropic": {"api_style": "anthropic", "base_url_env": "ANTHROPIC_BASE_URL", "default_base_url": "https://api.anthropic.com/v1"},
        "ollama": {"api_style": "ollama", "base_url_env": "OLLAMA_BASE_URL", "default_base_url": "http://127.0.0.1:11434"},
    }

    def __init__(self, env: Optional[Mapping[str, str]] = None) -> None:
        self._env = os.environ if env is None else env

    def resolve_provider(self, provider_id: str, base_url_override: Optional[str] = None) -> ProviderSelection:
        cfg = self.PROVIDER_CONFIG.get(provider_id)
        if cfg is None:
            raise KeyError(provider_id)
        base_url = base_url_override or self._env.get(cfg["base_url_env"]) or cfg["default_base_url"]
        return ProviderSelection(
            name=provider_id,
            api_style=cfg["api_style"],
            base_url=base_url.rstrip("/"),
            api_key_env=PROVIDER_KEY_ENV.get(provider_id),
            requires_api_key=provider_id in PROVIDER_KEY_ENV,
        )

    def provider_available(self, provider_id: str) -> bool:
        """True when the server alone can serve this provider (no user key needed)."""

        env_name = PROVIDER_KEY_ENV.get(provider_id)
        if env_name is None:
            return provider_id in self.PROVIDER_CONFIG
        return bool(self._env.get(env_name))


class ProviderKeyResolver:
    def __init__(self, env: Optional[Mapping[str, str]] = None, required: Optional[Mapping[str, str]] = None) -> None:
        self._env = os.environ if env is None else env
        self._required = dict(PROVIDER_KEY_ENV if required is None else required)

    def requires_key(self, provider_id: str) -> bool:
        return provider_id in self._required

    def resolve(self, model: ModelSelector, request_api_key: Optional[str] = None) -> Credential:
        provider_id = model.provider_id
        env_name = self._required.get(provider_id)
        if env_name is None:
            return Credential(provider_id=provider_id, api_key=request_api_key or None, source="request" if request_api_key else "none")
        if request_api_key:
            return Credential(provider_id=provider_id, api_key=request_api_key, source="request", env_name=env_name)
        server_key = self._env.get(env_name)
        if server_key:
            return Credential(provider_id=provider_id, api_key=server_key, source="server", env_name=env_name)
        raise ApiKeyMissing(model.provider or provider_id, env_name)
