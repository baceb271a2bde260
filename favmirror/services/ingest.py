"""Discovered posts -> versioned media item records."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from pydantic import BaseModel, ValidationError

from favmirror.adapters.gelbooru.normalizer import normalize_post, reconcile_version
from favmirror.core.async_utils import gather_or_cancel, raise_if_stopped
from favmirror.core.time_utils import utc_now
from favmirror.domain.records import CHECKPOINT_ID, RecordKind, SyncCheckpointRecord

if TYPE_CHECKING:
    from collections.abc import Iterable

    from favmirror.adapters.gelbooru.models import GelbooruPost
    from favmirror.domain.records import MediaItemRecord
    from favmirror.protocols import RecordStore
    from favmirror.services.media_cache import MediaCache

logger = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_CONCURRENCY = 5


class IngestResult(BaseModel):
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    downloads_failed: int = 0
    duration_seconds: float = 0.0

    @property
    def changed(self) -> int:
        return self.created + self.updated


class IngestService:
    """Normalizes posts, bumps versions on change and caches new media files."""

    def __init__(
        self,
        store: RecordStore,
        media_cache: MediaCache,
        *,
        download_concurrency: int = DEFAULT_DOWNLOAD_CONCURRENCY,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self._store = store
        self._media = media_cache
        self._concurrency = max(1, download_concurrency)
        self._stop_event = stop_event

    async def ingest(
        self,
        posts: Iterable[GelbooruPost],
        *,
        favorites_count: int | None = None,
        correlation_id: str | None = None,
    ) -> IngestResult:
        """Store every post that is new or changed, then replace the checkpoint.

        A media file that fails to download does not block storing the
        record; reconciliation retries the download before uploading.
        """
        start_time = time.time()
        result = IngestResult()
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _ingest_one(post: GelbooruPost) -> None:
            async with semaphore:
                raise_if_stopped(self._stop_event, where="ingest")
                try:
                    fresh = normalize_post(post)
                except ValidationError as exc:
                    result.failed += 1
                    logger.warning(
                        "ingest_normalize_failed",
                        extra={"correlation_id": correlation_id, "post_id": post.id, "error": str(exc)},
                    )
                    return

                stored: MediaItemRecord | None = await self._store.get(  # type: ignore[assignment]
                    RecordKind.MEDIA_ITEM, fresh.id
                )
                record = reconcile_version(stored, fresh)
                if record is None:
                    result.unchanged += 1
                    return

                if stored is None and await self._media.ensure(record) is None:
                    result.downloads_failed += 1

                await self._store.upsert(record)
                if stored is None:
                    result.created += 1
                    logger.debug("ingest_item_created", extra={"item_id": record.id})
                else:
                    result.updated += 1
                    logger.debug(
                        "ingest_item_updated",
                        extra={"item_id": record.id, "version": record.version},
                    )

        await gather_or_cancel(_ingest_one(post) for post in posts)

        await self._replace_checkpoint(favorites_count)
        await self._store.checkpoint()

        result.duration_seconds = time.time() - start_time
        logger.info(
            "ingest_complete",
            extra={
                "correlation_id": correlation_id,
                "items_created": result.created,
                "items_updated": result.updated,
                "unchanged": result.unchanged,
                "failed": result.failed,
                "downloads_failed": result.downloads_failed,
                "duration": result.duration_seconds,
            },
        )
        return result

    async def _replace_checkpoint(self, favorites_count: int | None) -> None:
        previous: SyncCheckpointRecord | None = await self._store.get(  # type: ignore[assignment]
            RecordKind.CHECKPOINT, CHECKPOINT_ID
        )
        if favorites_count is None:
            favorites_count = await self._store.count(RecordKind.MEDIA_ITEM)
        await self._store.upsert(
            SyncCheckpointRecord(
                id=CHECKPOINT_ID,
                favorites_count=favorites_count,
                last_synced_at=utc_now(),
                last_full_sync_at=previous.last_full_sync_at if previous else None,
            )
        )
