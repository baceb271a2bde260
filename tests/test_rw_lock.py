"""Unit tests for the record store's AsyncRWLock."""

from __future__ import annotations

import asyncio
import unittest

from favmirror.db.rw_lock import AsyncRWLock


class TestAsyncRWLock(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.lock = AsyncRWLock()

    async def test_multiple_readers_concurrent(self) -> None:
        """Readers share the lock."""
        active = 0
        max_active = 0

        async def reader() -> None:
            nonlocal active, max_active
            async with self.lock.read_lock():
                active += 1
                max_active = max(max_active, active)
                await asyncio.sleep(0.02)
                active -= 1

        await asyncio.gather(*(reader() for _ in range(4)))

        assert max_active == 4
        assert self.lock.readers == 0

    async def test_writer_excludes_readers(self) -> None:
        results: list[str] = []

        async def writer() -> None:
            async with self.lock.write_lock():
                results.append("upsert_start")
                await asyncio.sleep(0.03)
                results.append("upsert_end")

        async def reader() -> None:
            await asyncio.sleep(0.005)
            async with self.lock.read_lock():
                results.append("scan")

        await asyncio.gather(writer(), reader())

        assert results == ["upsert_start", "upsert_end", "scan"]

    async def test_writers_are_serialized(self) -> None:
        active = False
        overlap = False

        async def writer() -> None:
            nonlocal active, overlap
            async with self.lock.write_lock():
                overlap = overlap or active
                active = True
                await asyncio.sleep(0.01)
                active = False

        await asyncio.gather(*(writer() for _ in range(3)))

        assert not overlap

    async def test_writer_waits_for_active_readers(self) -> None:
        results: list[str] = []

        async def reader(name: str) -> None:
            async with self.lock.read_lock():
                results.append(f"{name}_start")
                await asyncio.sleep(0.03)
                results.append(f"{name}_end")

        async def writer() -> None:
            await asyncio.sleep(0.01)
            async with self.lock.write_lock():
                results.append("checkpoint")

        await asyncio.gather(reader("r1"), reader("r2"), writer())

        assert results[-1] == "checkpoint"
        assert set(results[:4]) == {"r1_start", "r2_start", "r1_end", "r2_end"}

    async def test_pending_writer_is_not_starved(self) -> None:
        results: list[str] = []

        async def busy_reader(name: str) -> None:
            for i in range(10):
                async with self.lock.read_lock():
                    results.append(f"{name}_{i}")
                    await asyncio.sleep(0.001)
                await asyncio.sleep(0.001)

        async def writer() -> None:
            await asyncio.sleep(0.005)
            async with self.lock.write_lock():
                results.append("write")

        await asyncio.gather(busy_reader("a"), busy_reader("b"), writer())

        assert "write" in results
        assert results.index("write") < len(results) - 1

    async def test_lock_released_after_exception(self) -> None:
        with self.assertRaises(RuntimeError):
            async with self.lock.write_lock():
                raise RuntimeError("boom")

        assert not self.lock.writer_active

        with self.assertRaises(RuntimeError):
            async with self.lock.read_lock():
                raise RuntimeError("boom")

        assert self.lock.readers == 0

    async def test_cancelled_writer_gives_the_lock_back(self) -> None:
        await self.lock.acquire_read()
        writer = asyncio.create_task(self.lock.acquire_write())
        await asyncio.sleep(0.01)
        assert self.lock.writer_active

        writer.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await writer
        await self.lock.release_read()

        assert not self.lock.writer_active
        async with self.lock.read_lock():
            assert self.lock.readers == 1

    async def test_manual_acquire_release(self) -> None:
        await self.lock.acquire_read()
        assert self.lock.readers == 1
        await self.lock.release_read()

        await self.lock.acquire_write()
        assert self.lock.writer_active
        await self.lock.release_write()
        assert not self.lock.writer_active


if __name__ == "__main__":
    unittest.main()
