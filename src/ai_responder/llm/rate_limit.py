from __future__ import annotations

import asyncio
from dataclasses import dataclass


@dataclass
class ConcurrencyLimiter:
    """Caps in-flight calls to the generative backend across all requests."""

    max_inflight: int

    def __post_init__(self):
        self._sem = asyncio.Semaphore(self.max_inflight)
        self.inflight = 0

    async def __aenter__(self):
        await self._sem.acquire()
        self.inflight += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.inflight -= 1
        self._sem.release()
        return False
