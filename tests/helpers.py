"""Shared test helpers."""

import asyncio
from typing import Any, AsyncIterator, Callable, Optional


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Wait until predicate() holds, polling every 10 ms."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


async def receive(stream: AsyncIterator[Any], count: int = 1, timeout: float = 2.0) -> list[Any]:
    """Read count items from an async iterator."""
    received = []
    async with asyncio.timeout(timeout):
        while len(received) < count:
            received.append(await anext(stream))
    return received


class RecordingMediaSource:
    """Media source that counts acquisitions and can fail."""

    def __init__(self, tracks: list[Any], error: Optional[Exception] = None) -> None:
        self.tracks = tracks
        self.error = error
        self.acquired = 0
        self.released = False

    async def acquire(self) -> list[Any]:
        self.acquired += 1
        if self.error is not None:
            raise self.error
        return list(self.tracks)

    async def release(self) -> None:
        self.released = True
