"""Async reader/writer lock guarding record-store writes."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class AsyncRWLock:
    """Many concurrent readers or a single writer.

    A pending writer blocks new readers so that a steady stream of reads
    cannot starve a checkpoint or upsert batch.

    Example:
        lock = AsyncRWLock()

        async with lock.read_lock():
            rows = await store.scan(RecordKind.MEDIA_ITEM)

        async with lock.write_lock():
            await store.upsert(record)
    """

    def __init__(self) -> None:
        self._readers: int = 0
        self._reader_lock: asyncio.Lock = asyncio.Lock()
        self._write_lock: asyncio.Lock = asyncio.Lock()
        self._no_readers: asyncio.Condition = asyncio.Condition(self._reader_lock)
        # Cleared while a writer holds or waits for the lock.
        self._write_available: asyncio.Event = asyncio.Event()
        self._write_available.set()

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def writer_active(self) -> bool:
        return self._write_lock.locked()

    async def acquire_read(self) -> None:
        await self._write_available.wait()
        async with self._reader_lock:
            self._readers += 1

    async def release_read(self) -> None:
        async with self._no_readers:
            self._readers -= 1
            if self._readers == 0:
                self._no_readers.notify_all()

    async def acquire_write(self) -> None:
        """Take the exclusive lock, waiting for active readers to drain."""
        await self._write_lock.acquire()
        self._write_available.clear()
        try:
            async with self._no_readers:
                while self._readers > 0:
                    await self._no_readers.wait()
        except BaseException:
            # Cancelled while draining readers: give the lock back.
            await self.release_write()
            raise

    async def release_write(self) -> None:
        self._write_available.set()
        self._write_lock.release()

    @asynccontextmanager
    async def read_lock(self) -> AsyncIterator[None]:
        await self.acquire_read()
        try:
            yield
        finally:
            await self.release_read()

    @asynccontextmanager
    async def write_lock(self) -> AsyncIterator[None]:
        await self.acquire_write()
        try:
            yield
        finally:
            await self.release_write()
