from __future__ import annotations

from typing import Optional

from ..config import ForgeConfig
from ..security.rate_limit import RateLimiter, build_counter_store
from ..services.generation import GenerationGateway
from ..services.model_router import ModelRouter, ProviderKeyResolver

_config: Optional[ForgeConfig] = None
_gateway: Optional[GenerationGateway] = None
_router: Optional[ModelRouter] = None


def get_config() -> ForgeConfig:
    global _config
    if _config is None:
        _config = ForgeConfig.from_env()
    return _config


def get_model_router() -> ModelRouter:
    global _router
    if _router is None:
        _router = ModelRouter()
    return _router


def get_gateway() -> GenerationGateway:
    global _gateway
    if _gateway is not None:
        return _gateway
    config = get_config()
    limiter = RateLimiter(build_counter_store(config.redis_url), enabled=not config.rate_limit_disabled)
    _gateway = GenerationGateway(config, limiter, ProviderKeyResolver(), router=get_model_router())
    return _gateway


def reset_singletons() -> None:
    """Drop cached config and gateway so the next request rebuilds them from env."""
    global _config, _gateway, _router
    _config = None
    _gateway = None
    _router = None
