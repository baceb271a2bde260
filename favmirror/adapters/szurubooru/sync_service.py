"""Local store -> Szurubooru reconciliation.

Each media item is driven by its destination marker:

* no marker: upload the file and record a marker at the item's version
* marker at an older version: fetch the post's current version, PUT the
  new metadata with it and move the marker forward
* marker at the current version: nothing to do

A failed item or tag is logged and left unmarked, so the next run retries
it. Markers are written only after the destination accepted the change.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

import httpx

from favmirror.adapters.gelbooru.client import post_view_url
from favmirror.adapters.szurubooru.models import ReconciliationPlan, SyncResult
from favmirror.core.async_utils import gather_or_cancel, raise_if_stopped
from favmirror.domain.exceptions import DestinationError, SourceError
from favmirror.domain.mappings import DEFAULT_TAG_CATEGORIES, rating_to_safety, tag_category
from favmirror.domain.records import (
    ItemMarkerRecord,
    MediaItemRecord,
    RecordKind,
    TagMarkerRecord,
    TagRecord,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from favmirror.protocols import DestinationClientProtocol, RecordStore
    from favmirror.services.media_cache import MediaCache

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_CONCURRENCY = 10
DEFAULT_TAG_CONCURRENCY = 15

# Failures that skip one item or tag; anything else propagates.
_ITEM_ERRORS = (DestinationError, SourceError, httpx.HTTPError, OSError)


def plan_items(
    items: Iterable[MediaItemRecord],
    markers: Mapping[int, ItemMarkerRecord],
) -> ReconciliationPlan:
    """Partition items into create / update / unchanged without network access."""
    plan = ReconciliationPlan()
    for item in items:
        marker = markers.get(item.id)
        if marker is None:
            plan.to_create.append(item.id)
        elif marker.version != item.version:
            plan.to_update.append(item.id)
        else:
            plan.unchanged.append(item.id)
    return plan


def clean_tags(tags: Iterable[str]) -> list[str]:
    return [tag.strip() for tag in tags if tag and tag.strip()]


class SzurubooruSyncService:
    """Pushes tags and media items from the record store to Szurubooru."""

    def __init__(
        self,
        store: RecordStore,
        media_cache: MediaCache,
        *,
        upload_concurrency: int = DEFAULT_UPLOAD_CONCURRENCY,
        tag_concurrency: int = DEFAULT_TAG_CONCURRENCY,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self._store = store
        self._media = media_cache
        self._upload_concurrency = max(1, upload_concurrency)
        self._tag_concurrency = max(1, tag_concurrency)
        self._stop_event = stop_event

    # -- planning ----------------------------------------------------------

    async def load_plan(
        self,
    ) -> tuple[ReconciliationPlan, dict[int, MediaItemRecord], dict[int, ItemMarkerRecord]]:
        items = {item.id: item for item in await self._store.scan(RecordKind.MEDIA_ITEM)}
        markers = {
            marker.item_id: marker for marker in await self._store.scan(RecordKind.ITEM_MARKER)
        }
        return plan_items(items.values(), markers), items, markers  # type: ignore[arg-type]

    async def pending_tags(self) -> list[TagRecord]:
        """Stored tags that have no destination marker yet."""
        marked = await self._store.keys(RecordKind.TAG_MARKER)
        tags: list[TagRecord] = await self._store.scan(RecordKind.TAG)  # type: ignore[assignment]
        return [tag for tag in tags if tag.name not in marked]

    # -- categories and tags -----------------------------------------------

    async def ensure_categories(self, client: DestinationClientProtocol) -> int:
        """Create the default tag categories; existing ones count as success.

        Returns the number of categories created by this call.
        """
        created = 0
        for category in DEFAULT_TAG_CATEGORIES:
            try:
                await client.create_tag_category(category.name, category.color, category.order)
                created += 1
            except DestinationError as exc:
                if not exc.already_exists:
                    self._log_category_failure(category.name, exc)
            except _ITEM_ERRORS as exc:
                self._log_category_failure(category.name, exc)
        logger.info("szurubooru_categories_ensured", extra={"categories_created": created})
        return created

    @staticmethod
    def _log_category_failure(name: str, exc: Exception) -> None:
        logger.warning("szurubooru_category_failed", extra={"category": name, "error": str(exc)})

    async def push_tags(
        self,
        client: DestinationClientProtocol,
        *,
        correlation_id: str | None = None,
    ) -> SyncResult:
        """Create every stored tag that is not yet marked synced."""
        start_time = time.time()
        result = SyncResult(phase="tags")
        pending = await self.pending_tags()
        semaphore = asyncio.Semaphore(self._tag_concurrency)

        async def _push(tag: TagRecord) -> None:
            async with semaphore:
                raise_if_stopped(self._stop_event, where="push_tags")
                category = tag_category(tag.type)
                try:
                    await self._create_or_update_tag(client, tag.name, category)
                except _ITEM_ERRORS as exc:
                    result.items_failed += 1
                    result.errors.append(f"Tag {tag.name}: {exc}")
                    logger.warning(
                        "szurubooru_tag_failed",
                        extra={"correlation_id": correlation_id, "tag": tag.name, "error": str(exc)},
                    )
                    return
                await self._store.upsert(TagMarkerRecord(name=tag.name))
                result.items_synced += 1

        try:
            await gather_or_cancel(_push(tag) for tag in pending)
        finally:
            # Flush markers written so far, even when the pool was cut short.
            if result.items_synced:
                await self._store.checkpoint()

        result.duration_seconds = time.time() - start_time
        logger.info(
            "szurubooru_tags_pushed",
            extra={
                "correlation_id": correlation_id,
                "synced": result.items_synced,
                "failed": result.items_failed,
                "duration": result.duration_seconds,
            },
        )
        return result

    @staticmethod
    async def _create_or_update_tag(
        client: DestinationClientProtocol, name: str, category: str
    ) -> None:
        try:
            await client.create_tag(name, category)
        except DestinationError as exc:
            if not exc.already_exists:
                raise
            # Bring the existing tag's category in line using its current version.
            current = await client.get_tag(name)
            if current.version is None:
                raise
            await client.update_tag(
                name,
                version=current.version,
                category=category,
                names=current.names or [name],
            )

    # -- items -------------------------------------------------------------

    async def reconcile_items(
        self,
        client: DestinationClientProtocol,
        *,
        correlation_id: str | None = None,
    ) -> SyncResult:
        start_time = time.time()
        result = SyncResult(phase="items")
        plan, items, markers = await self.load_plan()
        result.items_unchanged = len(plan.unchanged)
        semaphore = asyncio.Semaphore(self._upload_concurrency)

        async def _create(item: MediaItemRecord) -> None:
            async with semaphore:
                raise_if_stopped(self._stop_event, where="create_post")
                path = await self._media.ensure(item)
                if path is None:
                    result.items_skipped += 1
                    result.errors.append(f"Item {item.id}: media file unavailable")
                    return
                try:
                    post = await client.create_post(
                        path,
                        safety=rating_to_safety(item.rating),
                        source=post_view_url(item.id),
                        tags=clean_tags(item.tags),
                    )
                except _ITEM_ERRORS as exc:
                    self._record_item_failure(result, item.id, "create", exc, correlation_id)
                    return
                await self._store.upsert(
                    ItemMarkerRecord(item_id=item.id, destination_id=post.id, version=item.version)
                )
                result.items_created += 1

        async def _update(item: MediaItemRecord, marker: ItemMarkerRecord) -> None:
            async with semaphore:
                raise_if_stopped(self._stop_event, where="update_post")
                try:
                    # The version is fetched right before the PUT and never cached.
                    current = await client.get_post(marker.destination_id)
                    if current.version is None:
                        raise DestinationError(
                            f"Post {marker.destination_id} has no version",
                            status_code=200,
                        )
                    await client.update_post(
                        marker.destination_id,
                        version=current.version,
                        safety=rating_to_safety(item.rating),
                        source=post_view_url(item.id),
                        tags=clean_tags(item.tags),
                    )
                except _ITEM_ERRORS as exc:
                    self._record_item_failure(result, item.id, "update", exc, correlation_id)
                    return
                await self._store.upsert(marker.model_copy(update={"version": item.version}))
                result.items_updated += 1

        try:
            await gather_or_cancel(
                [
                    *(_create(items[item_id]) for item_id in plan.to_create),
                    *(_update(items[item_id], markers[item_id]) for item_id in plan.to_update),
                ]
            )
        finally:
            result.items_synced = result.items_created + result.items_updated
            if result.items_synced:
                await self._store.checkpoint()

        result.duration_seconds = time.time() - start_time
        logger.info(
            "szurubooru_items_reconciled",
            extra={
                "correlation_id": correlation_id,
                "items_created": result.items_created,
                "items_updated": result.items_updated,
                "unchanged": result.items_unchanged,
                "skipped": result.items_skipped,
                "failed": result.items_failed,
                "duration": result.duration_seconds,
            },
        )
        return result

    @staticmethod
    def _record_item_failure(
        result: SyncResult,
        item_id: int,
        action: str,
        exc: Exception,
        correlation_id: str | None,
    ) -> None:
        result.items_failed += 1
        result.errors.append(f"Item {item_id} ({action}): {exc}")
        logger.warning(
            "szurubooru_item_failed",
            extra={
                "correlation_id": correlation_id,
                "item_id": item_id,
                "action": action,
                "error": str(exc),
            },
        )
