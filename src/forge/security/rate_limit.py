from __future__ import annotations

"""Fixed-window rate limiting keyed by client identity.

The counters live in an injected :class:`CounterStore` so several workers can
share one budget (see ``infrastructure/counter_store_redis.py``). The limiter
itself holds no global state.
"""

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Protocol

from ..domain.models import RateLimitDecision
from ..observability.metrics import RATE_LIMIT_DEGRADED

logger = logging.getLogger("forge.rate_limit")


class CounterStoreUnavailable(Exception):
    """The backing counter store could not be reached."""


@dataclass(frozen=True)
class CounterWindow:
    count: int
    reset: int


class CounterStore(Protocol):
    def increment(self, key: str, window_seconds: int) -> CounterWindow:
        """Atomically bump the counter for ``key`` and return the new value.

        The first touch of a window starts it at zero with
        ``reset = now + window_seconds``.
        """
        ...


@dataclass
class _Entry:
    count: int
    reset_at: float


class InMemoryCounterStore:
    """Process-local counters guarded by a single lock."""

    def __init__(self, clock: Callable[[], float] = time.time, sweep_every: int = 512) -> None:
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = Lock()
        self._sweep_every = sweep_every
        self._touches = 0

    def increment(self, key: str, window_seconds: int) -> CounterWindow:
        with self._lock:
            now = self._clock()
            self._touches += 1
            if self._touches % self._sweep_every == 0:
                self._evict_expired(now)
            entry = self._entries.get(key)
            if entry is None or entry.reset_at <= now:
                entry = _Entry(count=0, reset_at=now + window_seconds)
                self._entries[key] = entry
            entry.count += 1
            return CounterWindow(count=entry.count, reset=int(entry.reset_at))

    def _evict_expired(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if e.reset_at <= now]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def reset(self) -> None:
        """Clear all counters (useful for tests)."""

        with self._lock:
            self._entries.clear()


class RateLimiter:
    def __init__(self, store: CounterStore, *, enabled: bool = True, namespace: str = "ratelimit") -> None:
        self._store = store
        self._enabled = enabled
        self._namespace = namespace

    def check(self, identity: str, max_requests: int, window_seconds: int) -> RateLimitDecision:
        if not self._enabled:
            return RateLimitDecision(allowed=True, limit=max_requests, remaining=max_requests, reset=0)

        key = f"{self._namespace}:{identity}"
        try:
            window = self._store.increment(key, window_seconds)
        except CounterStoreUnavailable as exc:
            # Fail open: availability over strict enforcement while the store is down.
            logger.warning("rate_limit_store_unavailable", extra={"identity": identity, "err": str(exc)})
            RATE_LIMIT_DEGRADED.inc()
            return RateLimitDecision(
                allowed=True,
                limit=max_requests,
                remaining=max_requests,
                reset=int(time.time()) + window_seconds,
            )

        return RateLimitDecision(
            allowed=window.count <= max_requests,
            limit=max_requests,
            remaining=max(0, max_requests - window.count),
            reset=window.reset,
        )


def build_counter_store(redis_url: str | None = None) -> CounterStore:
    if redis_url:
        from ..infrastructure.counter_store_redis import RedisCounterStore

        logger.info("Using Redis counter store for rate limiting")
        return RedisCounterStore(redis_url)
    return InMemoryCounterStore()
