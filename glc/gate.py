"""Bounded permit pool shared by every request of one top-level query."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

DEFAULT_JOB_CONCURRENCY = 30
DEFAULT_RUNNER_JOB_CONCURRENCY = 10


class ConcurrencyGate:
    """Async semaphore wrapper that also records in-flight/peak counts.

    Hold a slot only while sending a request and reading its body; release it
    before decoding so the next page can go out.
    """

    def __init__(self, capacity: int = DEFAULT_JOB_CONCURRENCY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._in_flight = 0
        self._peak = 0
        self._acquired_total = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def peak(self) -> int:
        return self._peak

    @property
    def acquired_total(self) -> int:
        return self._acquired_total

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self._semaphore.acquire()
        self._in_flight += 1
        self._acquired_total += 1
        self._peak = max(self._peak, self._in_flight)
        try:
            yield
        finally:
            self._in_flight -= 1
            self._semaphore.release()
