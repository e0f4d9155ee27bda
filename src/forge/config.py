from __future__ import annotations

"""Runtime configuration for the Forge gateway and client helpers.

Env vars:
- RATE_LIMIT_MAX_REQUESTS (default 60)
- RATE_LIMIT_WINDOW (default "10m"; accepts ms, s, m, h, d suffixes)
- FORGE_RATE_LIMIT_DISABLED (1/true/yes/on disables the limiter)
- REDIS_URL (optional shared counter store)
- FORGE_SANDBOX_URL (sandbox materialization endpoint)
- FORGE_PREVIEW_MIN_MS / FORGE_PREVIEW_TICK_MS
- FORGE_LLM_CONNECT_TIMEOUT / FORGE_LLM_READ_TIMEOUT (seconds)
- FORGE_CORS_ORIGINS (comma separated)
"""

import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

DEFAULT_MAX_REQUESTS = 60
DEFAULT_WINDOW = "10m"

_DURATION_RE = re.compile(r"^\s*(\d+)\s*(ms|s|m|h|d)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400}
_TRUTHY = {"1", "true", "yes", "on"}


def parse_duration(raw: str) -> int:
    """Convert a duration string such as ``"10m"`` or ``"30 s"`` to whole seconds.

    A bare number is read as seconds. Sub-second results round up to one
    second so a window can never be empty.
    """

    match = _DURATION_RE.match(raw or "")
    if not match:
        raise ValueError(f"Invalid duration: {raw!r}")
    amount = int(match.group(1))
    unit = match.group(2) or "s"
    seconds = amount * _DURATION_UNITS[unit]
    if seconds <= 0:
        raise ValueError(f"Duration must be positive: {raw!r}")
    return max(1, int(round(seconds)))


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
        return value if value > 0 else default
    except ValueError:
        return default


def _env_flag(env: Mapping[str, str], name: str) -> bool:
    return (env.get(name) or "").strip().lower() in _TRUTHY


@dataclass(frozen=True)
class ForgeConfig:
    max_requests: int = DEFAULT_MAX_REQUESTS
    window_seconds: int = 600
    rate_limit_disabled: bool = False
    redis_url: Optional[str] = None
    sandbox_url: str = "http://127.0.0.1:3000/api/sandbox"
    preview_min_ms: int = 3000
    preview_tick_ms: int = 800
    llm_timeout: Tuple[int, int] = (5, 120)
    cors_origins: Tuple[str, ...] = field(default=("http://localhost:3000", "http://127.0.0.1:3000"))

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "ForgeConfig":
        env = os.environ if env is None else env
        try:
            window_seconds = parse_duration(env.get("RATE_LIMIT_WINDOW") or DEFAULT_WINDOW)
        except ValueError:
            window_seconds = parse_duration(DEFAULT_WINDOW)
        origins_raw = env.get("FORGE_CORS_ORIGINS") or ""
        origins = tuple(o.strip() for o in origins_raw.split(",") if o.strip())
        return ForgeConfig(
            max_requests=_env_int(env, "RATE_LIMIT_MAX_REQUESTS", DEFAULT_MAX_REQUESTS),
            window_seconds=window_seconds,
            rate_limit_disabled=_env_flag(env, "FORGE_RATE_LIMIT_DISABLED"),
            redis_url=(env.get("REDIS_URL") or None),
            sandbox_url=env.get("FORGE_SANDBOX_URL") or ForgeConfig.sandbox_url,
            preview_min_ms=_env_int(env, "FORGE_PREVIEW_MIN_MS", 3000),
            preview_tick_ms=_env_int(env, "FORGE_PREVIEW_TICK_MS", 800),
            llm_timeout=(
                _env_int(env, "FORGE_LLM_CONNECT_TIMEOUT", 5),
                _env_int(env, "FORGE_LLM_READ_TIMEOUT", 120),
            ),
            cors_origins=origins or ForgeConfig().cors_origins,
        )
