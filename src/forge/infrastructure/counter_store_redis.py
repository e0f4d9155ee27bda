from __future__ import annotations

import math
import time
from typing import Callable, Optional

import redis

from ..security.rate_limit import CounterStoreUnavailable, CounterWindow


class RedisCounterStore:
    """Shared fixed-window counters backed by Redis.

    Opening a window writes two keys with ``SET NX EX``: the counter and its
    reset epoch. ``INCR`` is atomic on the server and the reset epoch is read
    back rather than recomputed, so every caller in one window sees the same
    value. All of it runs in one MULTI/EXEC.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        client: Optional["redis.Redis"] = None,
        socket_timeout: float = 0.5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if client is None:
            if not url:
                raise ValueError("RedisCounterStore needs a url or a client")
            client = redis.Redis.from_url(url, socket_timeout=socket_timeout)
        self._client = client
        self._clock = clock

    def increment(self, key: str, window_seconds: int) -> CounterWindow:
        reset_key = f"{key}:reset"
        candidate = int(math.ceil(self._clock())) + window_seconds
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.set(key, 0, ex=window_seconds, nx=True)
            pipe.set(reset_key, candidate, ex=window_seconds, nx=True)
            pipe.incr(key)
            pipe.get(reset_key)
            _, _, count, stored_reset = pipe.execute()
        except redis.RedisError as exc:
            raise CounterStoreUnavailable(str(exc)) from exc
        reset = int(stored_reset) if stored_reset is not None else candidate
        return CounterWindow(count=int(count), reset=reset)
