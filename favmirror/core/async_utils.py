"""Async helper utilities."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, TypeVar

from favmirror.domain.exceptions import SyncCancelledError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterable

T = TypeVar("T")


def raise_if_stopped(stop_event: asyncio.Event | None, *, where: str = "") -> None:
    """Raise ``SyncCancelledError`` once the process-wide stop signal is set."""
    if stop_event is not None and stop_event.is_set():
        msg = f"Sync cancelled{f' at {where}' if where else ''}"
        raise SyncCancelledError(msg)


async def gather_or_cancel(aws: Iterable[Awaitable[T]]) -> list[T]:
    """Like ``asyncio.gather`` but the first failure cancels the siblings.

    The original exception propagates unchanged once every sibling has
    finished unwinding, so no task keeps writing after the caller gave up.
    """
    tasks: list[asyncio.Future[Any]] = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return []
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
