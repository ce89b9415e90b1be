"""
Per-host request pacing for lookup APIs using asyncio semaphores.

Reads host policies from ``config/host_policies.yaml`` to bound concurrency
and request spacing per API host, so a burst of entity clicks does not trip
the upstream rate limiter.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog

from tracegraph.config import get_settings

logger = structlog.get_logger()

_DEFAULT_POLICY = {"requests_per_second": 2.0, "concurrent_limit": 4}


class HostRateLimiter:
    """Per-host rate limiting using asyncio semaphores and a minimum request interval."""

    def __init__(self, policies: dict[str, Any] | None = None) -> None:
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._last_request: dict[str, float] = {}
        self._policies: dict[str, dict[str, Any]] = {}
        self._defaults: dict[str, Any] = dict(_DEFAULT_POLICY)
        self._loaded = False
        if policies is not None:
            self._apply(policies)

    def _apply(self, config: dict[str, Any]) -> None:
        self._loaded = True
        self._defaults = {**_DEFAULT_POLICY, **(config.get("defaults") or {})}
        for host, policy in (config.get("hosts") or {}).items():
            self._policies[host.lower()] = policy or {}

    def _load_policies(self) -> None:
        """Load host policies from config (lazy)."""
        if not self._loaded:
            self._apply(get_settings().host_policies)

    def policy(self, host: str) -> dict[str, Any]:
        self._load_policies()
        return {**self._defaults, **self._policies.get(host.lower(), {})}

    def _get_semaphore(self, host: str) -> asyncio.Semaphore:
        if host not in self._semaphores:
            limit = int(self.policy(host)["concurrent_limit"])
            self._semaphores[host] = asyncio.Semaphore(max(limit, 1))
        return self._semaphores[host]

    @asynccontextmanager
    async def acquire(self, host: str) -> AsyncIterator[None]:
        """Hold a slot for ``host``, sleeping first if the previous request was too recent."""
        host = host.lower()
        rps = float(self.policy(host)["requests_per_second"])
        min_interval = 1.0 / rps if rps > 0 else 0.0

        async with self._get_semaphore(host):
            wait_time = min_interval - (time.monotonic() - self._last_request.get(host, 0.0))
            if wait_time > 0:
                logger.debug("lookup_throttled", host=host, wait_s=round(wait_time, 3))
                await asyncio.sleep(wait_time)
            self._last_request[host] = time.monotonic()
            yield
