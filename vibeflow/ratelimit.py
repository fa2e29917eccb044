from __future__ import annotations

import asyncio
import random
import time
from urllib.parse import urlparse


_MAX_TRACKED_HOSTS = 1024


def _host_of(url: str) -> str:
    return (urlparse(url).netloc or url).lower()


class HostRateLimiter:
    """Spaces page fetches to the same host by a minimum interval plus random jitter.

    Users paste links from anywhere, so one slow or strict site must not delay
    fetches from every other host.
    """

    def __init__(self, min_interval_seconds: float, jitter_seconds: float) -> None:
        self._min_interval = float(max(0, min_interval_seconds))
        self._jitter = float(max(0, jitter_seconds))
        self._next_allowed: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def next_allowed_in_seconds(self, url: str | None = None) -> float:
        now = time.monotonic()
        if url is not None:
            return max(0.0, self._next_allowed.get(_host_of(url), 0.0) - now)
        return max(0.0, max(self._next_allowed.values(), default=now) - now)

    def _forget_idle_hosts(self, now: float) -> None:
        if len(self._next_allowed) <= _MAX_TRACKED_HOSTS:
            return
        for host in [h for h, t in self._next_allowed.items() if t <= now and not self._locks[h].locked()]:
            self._next_allowed.pop(host, None)
            self._locks.pop(host, None)

    async def acquire(self, url: str) -> None:
        host = _host_of(url)
        lock = self._locks.setdefault(host, asyncio.Lock())
        async with lock:
            wait_s = self._next_allowed.get(host, 0.0) - time.monotonic()
            if wait_s > 0:
                await asyncio.sleep(wait_s)
            jitter = random.uniform(0.0, self._jitter) if self._jitter else 0.0
            now = time.monotonic()
            self._next_allowed[host] = now + self._min_interval + jitter
        self._forget_idle_hosts(now)
