"""Bulk refresh of source tag metadata for every tag in use."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from favmirror.core.async_utils import gather_or_cancel, raise_if_stopped
from favmirror.domain.exceptions import SourceError
from favmirror.domain.records import RecordKind, TagRecord

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from favmirror.domain.records import MediaItemRecord
    from favmirror.protocols import RecordStore, SourceClientProtocol

logger = logging.getLogger(__name__)

TAG_BATCH_SIZE = 50
MAX_CONCURRENT_BATCHES = 6
GROUP_INTERVAL_SECONDS = 1.5


class TagRefreshResult(BaseModel):
    distinct_tags: int = 0
    batches: int = 0
    batches_failed: int = 0
    tags_stored: int = 0
    duration_seconds: float = 0.0


def distinct_tag_names(items: Iterable[MediaItemRecord]) -> list[str]:
    """Case-insensitively distinct tag names across items; first casing wins."""
    seen: dict[str, str] = {}
    for item in items:
        for tag in item.tags:
            name = tag.strip()
            if name:
                seen.setdefault(name.casefold(), name)
    return list(seen.values())


def chunked(values: list[str], size: int) -> list[list[str]]:
    return [values[start : start + size] for start in range(0, len(values), size)]


class TagRefreshService:
    def __init__(
        self,
        store: RecordStore,
        client: SourceClientProtocol,
        *,
        batch_size: int = TAG_BATCH_SIZE,
        max_concurrent_batches: int = MAX_CONCURRENT_BATCHES,
        group_interval: float = GROUP_INTERVAL_SECONDS,
        stop_event: asyncio.Event | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._client = client
        self._batch_size = max(1, batch_size)
        self._group_size = max(1, max_concurrent_batches)
        self._group_interval = group_interval
        self._stop_event = stop_event
        self._sleep = sleep
        self._clock = clock

    async def refresh(self, *, correlation_id: str | None = None) -> TagRefreshResult:
        """Fetch type info for every tag referenced by a stored item and overwrite Tag records.

        Batches run in groups; successive group starts are at least
        ``group_interval`` seconds apart. A failed batch is skipped.
        """
        start_time = time.time()
        items: list[MediaItemRecord] = await self._store.scan(RecordKind.MEDIA_ITEM)  # type: ignore[assignment]
        names = distinct_tag_names(items)
        batches = chunked(names, self._batch_size)
        result = TagRefreshResult(distinct_tags=len(names), batches=len(batches))
        logger.info(
            "tag_refresh_start",
            extra={"correlation_id": correlation_id, "tags": len(names), "batches": len(batches)},
        )

        groups = [batches[i : i + self._group_size] for i in range(0, len(batches), self._group_size)]
        for index, group in enumerate(groups):
            raise_if_stopped(self._stop_event, where="tag_refresh")
            group_start = self._clock()
            fetched = await gather_or_cancel(self._fetch_batch(batch, correlation_id) for batch in group)

            records: list[TagRecord] = []
            for tags in fetched:
                if tags is None:
                    result.batches_failed += 1
                    continue
                records.extend(
                    TagRecord(name=tag.name, tag_id=tag.id, count=tag.count, type=tag.type)
                    for tag in tags
                )
            if records:
                result.tags_stored += await self._store.upsert_many(records)

            elapsed = self._clock() - group_start
            if index < len(groups) - 1 and elapsed < self._group_interval:
                await self._sleep(self._group_interval - elapsed)

        result.duration_seconds = time.time() - start_time
        logger.info(
            "tag_refresh_complete",
            extra={
                "correlation_id": correlation_id,
                "stored": result.tags_stored,
                "failed": result.batches_failed,
                "duration": result.duration_seconds,
            },
        )
        return result

    async def _fetch_batch(self, batch: list[str], correlation_id: str | None) -> list[Any] | None:
        try:
            return await self._client.get_tags(batch)
        except SourceError as exc:
            logger.warning(
                "tag_refresh_batch_failed",
                extra={
                    "correlation_id": correlation_id,
                    "first_tags": batch[:3],
                    "error": str(exc),
                },
            )
            return None
