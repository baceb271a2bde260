"""One sync tick: discovery -> ingest -> tag refresh -> destination reconciliation.

Full vs incremental is decided from the persisted last full-sync time. A
full pass always reconciles; an incremental pass reconciles only when it
stored new favorites.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from favmirror.adapters.szurubooru.models import SyncResult  # noqa: TC001 - Pydantic needs this at runtime
from favmirror.core.async_utils import raise_if_stopped
from favmirror.core.logging_utils import generate_correlation_id
from favmirror.core.time_utils import ensure_utc, utc_now
from favmirror.domain.exceptions import DestinationAuthError, SourceError, SyncCancelledError
from favmirror.domain.records import CHECKPOINT_ID, RecordKind, SyncCheckpointRecord
from favmirror.services.ingest import IngestResult  # noqa: TC001 - Pydantic needs this at runtime
from favmirror.services.tag_refresh import TagRefreshResult  # noqa: TC001 - Pydantic needs this at runtime

if TYPE_CHECKING:
    from collections.abc import Callable

    from favmirror.adapters.gelbooru.discovery import DiscoveryResult, FavoriteDiscovery
    from favmirror.adapters.szurubooru.auth import SzurubooruAuth
    from favmirror.adapters.szurubooru.sync_service import SzurubooruSyncService
    from favmirror.protocols import DestinationClientFactory, RecordStore, SourceClientProtocol
    from favmirror.services.ingest import IngestService
    from favmirror.services.tag_refresh import TagRefreshService

logger = logging.getLogger(__name__)

MODE_FULL = "full"
MODE_INCREMENTAL = "incremental"


def compute_next_delay(
    now: datetime,
    last_full: datetime | None,
    full_interval: float,
    short_interval: float,
) -> float:
    """Seconds until the next tick: ``max(0, min(until_next_full, short_interval))``."""
    if last_full is None:
        remaining = 0.0
    else:
        remaining = (ensure_utc(last_full) + timedelta(seconds=full_interval) - now).total_seconds()
    return max(0.0, min(remaining, float(short_interval)))


def is_full_due(now: datetime, last_full: datetime | None, full_interval: float) -> bool:
    """A never-completed full pass is always due."""
    if last_full is None:
        return True
    return (now - ensure_utc(last_full)).total_seconds() >= full_interval


class TickResult(BaseModel):
    correlation_id: str
    mode: str
    discovered: int = 0
    new_favorites: int = 0
    pages_failed: int = 0
    ingest: IngestResult | None = None
    tag_refresh: TagRefreshResult | None = None
    tag_sync: SyncResult | None = None
    item_sync: SyncResult | None = None
    reconciled: bool = False
    destination_error: str | None = None
    cancelled: bool = False
    next_delay_seconds: float = 0.0
    duration_seconds: float = 0.0


class PreviewResult(BaseModel):
    """What the next reconciliation would do, computed from the local store only."""

    items_total: int = 0
    to_create: list[int] = Field(default_factory=list)
    to_update: list[int] = Field(default_factory=list)
    unchanged: int = 0
    pending_tags: list[str] = Field(default_factory=list)
    favorites_count: int | None = None
    last_synced_at: datetime | None = None
    last_full_sync_at: datetime | None = None
    full_due: bool = True


class SyncOrchestrator:
    def __init__(
        self,
        *,
        store: RecordStore,
        source: SourceClientProtocol,
        discovery: FavoriteDiscovery,
        ingest: IngestService,
        tag_refresh: TagRefreshService,
        sync_service: SzurubooruSyncService,
        auth: SzurubooruAuth,
        destination_factory: DestinationClientFactory,
        destination_url: str,
        destination_user: str,
        destination_password: str,
        full_interval: float,
        short_interval: float,
        stop_event: asyncio.Event | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._source = source
        self._discovery = discovery
        self._ingest = ingest
        self._tag_refresh = tag_refresh
        self._sync = sync_service
        self._auth = auth
        self._destination_factory = destination_factory
        self._destination_url = destination_url
        self._destination_user = destination_user
        self._destination_password = destination_password
        self.full_interval = full_interval
        self.short_interval = short_interval
        self._stop_event = stop_event
        self._clock = clock
        self._logged_in = False

    async def _load_checkpoint(self) -> SyncCheckpointRecord | None:
        return await self._store.get(RecordKind.CHECKPOINT, CHECKPOINT_ID)  # type: ignore[return-value]

    async def run_tick(self, force_full: bool | None = None) -> TickResult:
        """Run one tick; ``force_full`` overrides the elapsed-time decision.

        Raises:
            RecordStoreError: The store failed; nothing after the failure ran
        """
        start_time = time.time()
        correlation_id = generate_correlation_id()
        now = self._clock()
        checkpoint = await self._load_checkpoint()
        last_full = ensure_utc(checkpoint.last_full_sync_at) if checkpoint else None
        full = force_full if force_full is not None else is_full_due(now, last_full, self.full_interval)
        result = TickResult(
            correlation_id=correlation_id, mode=MODE_FULL if full else MODE_INCREMENTAL
        )
        logger.info(
            "sync_tick_start",
            extra={
                "correlation_id": correlation_id,
                "mode": result.mode,
                "last_full_sync_at": last_full,
            },
        )

        try:
            await self._ensure_login(correlation_id)
            favorites_count = await self._fetch_favorite_count(correlation_id)

            discovery = await self._discover(full)
            result.discovered = len(discovery.posts)
            result.pages_failed = discovery.pages_failed

            raise_if_stopped(self._stop_event, where="ingest")
            result.ingest = await self._ingest.ingest(
                discovery.posts,
                favorites_count=favorites_count,
                correlation_id=correlation_id,
            )
            result.new_favorites = result.ingest.created

            if full or result.new_favorites > 0:
                raise_if_stopped(self._stop_event, where="tag_refresh")
                result.tag_refresh = await self._tag_refresh.refresh(correlation_id=correlation_id)
                raise_if_stopped(self._stop_event, where="destination")
                try:
                    await self._destination_phase(result)
                except DestinationAuthError as exc:
                    result.destination_error = exc.message
                    logger.error(
                        "sync_destination_auth_failed",
                        extra={"correlation_id": correlation_id, "error": exc.message},
                    )
            else:
                logger.info(
                    "sync_reconciliation_skipped",
                    extra={"correlation_id": correlation_id, "reason": "no_new_favorites"},
                )

            if full:
                last_full = now
                await self._mark_full_sync(now)
        except SyncCancelledError as exc:
            result.cancelled = True
            logger.info(
                "sync_tick_cancelled",
                extra={"correlation_id": correlation_id, "where": exc.message},
            )

        result.next_delay_seconds = compute_next_delay(
            self._clock(), last_full, self.full_interval, self.short_interval
        )
        result.duration_seconds = time.time() - start_time
        logger.info(
            "sync_tick_complete",
            extra={
                "correlation_id": correlation_id,
                "mode": result.mode,
                "discovered": result.discovered,
                "new_favorites": result.new_favorites,
                "reconciled": result.reconciled,
                "cancelled": result.cancelled,
                "next_delay_seconds": result.next_delay_seconds,
                "duration": result.duration_seconds,
            },
        )
        return result

    async def _ensure_login(self, correlation_id: str) -> None:
        if self._logged_in:
            return
        try:
            self._logged_in = await self._source.login()
        except SourceError as exc:
            logger.warning(
                "gelbooru_login_failed",
                extra={"correlation_id": correlation_id, "error": str(exc)},
            )

    async def _fetch_favorite_count(self, correlation_id: str) -> int | None:
        try:
            return await self._source.get_favorite_count()
        except SourceError as exc:
            logger.warning(
                "gelbooru_favorite_count_failed",
                extra={"correlation_id": correlation_id, "error": str(exc)},
            )
            return None

    async def _discover(self, full: bool) -> DiscoveryResult:
        if full:
            return await self._discovery.full_walk()
        known_ids: set[int] = await self._store.keys(RecordKind.MEDIA_ITEM)
        return await self._discovery.incremental_walk(known_ids)

    async def _destination_phase(self, result: TickResult) -> None:
        """Bootstrap auth and push pending tags and items.

        Skipped without any destination request when nothing is pending.
        """
        correlation_id = result.correlation_id
        pending_tags = await self._sync.pending_tags()
        plan, _, _ = await self._sync.load_plan()
        if not pending_tags and plan.pending == 0:
            logger.info(
                "sync_destination_up_to_date",
                extra={"correlation_id": correlation_id, "unchanged": len(plan.unchanged)},
            )
            return

        await self._auth.ensure_first_user(self._destination_user, self._destination_password)
        token = await self._auth.get_or_create_token(
            self._destination_user, self._destination_password
        )
        async with self._destination_factory(
            self._destination_url, self._destination_user, token
        ) as client:
            if pending_tags:
                await self._sync.ensure_categories(client)
                result.tag_sync = await self._sync.push_tags(client, correlation_id=correlation_id)
            raise_if_stopped(self._stop_event, where="reconcile_items")
            result.item_sync = await self._sync.reconcile_items(client, correlation_id=correlation_id)
        result.reconciled = True

    async def _mark_full_sync(self, when: datetime) -> None:
        checkpoint = await self._load_checkpoint() or SyncCheckpointRecord(id=CHECKPOINT_ID)
        await self._store.upsert(checkpoint.model_copy(update={"last_full_sync_at": when}))
        await self._store.checkpoint()

    async def preview(self) -> PreviewResult:
        """Plan reconciliation from the local store without any network access."""
        checkpoint = await self._load_checkpoint()
        plan, items, _ = await self._sync.load_plan()
        pending_tags = await self._sync.pending_tags()
        last_full = ensure_utc(checkpoint.last_full_sync_at) if checkpoint else None
        return PreviewResult(
            items_total=len(items),
            to_create=sorted(plan.to_create),
            to_update=sorted(plan.to_update),
            unchanged=len(plan.unchanged),
            pending_tags=sorted(tag.name for tag in pending_tags),
            favorites_count=checkpoint.favorites_count if checkpoint else None,
            last_synced_at=ensure_utc(checkpoint.last_synced_at) if checkpoint else None,
            last_full_sync_at=last_full,
            full_due=is_full_due(self._clock(), last_full, self.full_interval),
        )
