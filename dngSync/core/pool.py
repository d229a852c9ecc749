from __future__ import annotations

"""Counting admission pool bounding in-flight fetches."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict


class AdmissionPool:
    """Hand out at most ``size`` permits at a time.

    ``acquire`` returns a release callback; calling it more than once is a
    no-op. Prefer :meth:`permit`, which releases on every exit path.
    """

    def __init__(self, size: int) -> None:
        if size < 1:
            raise ValueError("pool size must be at least 1")
        self.size = int(size)
        self._sem = asyncio.Semaphore(self.size)
        self._holders: Dict[int, str] = {}
        self._seq = 0

    @property
    def in_flight(self) -> int:
        return len(self._holders)

    def holders(self) -> list[str]:
        return list(self._holders.values())

    async def acquire(self, key: str) -> Callable[[], None]:
        await self._sem.acquire()
        self._seq += 1
        token = self._seq
        self._holders[token] = key
        released = False

        def release() -> None:
            nonlocal released
            if released:
                return
            released = True
            self._holders.pop(token, None)
            self._sem.release()

        return release

    @asynccontextmanager
    async def permit(self, key: str) -> AsyncIterator[Callable[[], None]]:
        release = await self.acquire(key)
        try:
            yield release
        finally:
            release()


__all__ = ["AdmissionPool"]
