"""Dependency injection container for wiring the sync pipeline.

The container owns the long-lived resources (database session and the
source HTTP client) and builds every service on top of them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

from favmirror.adapters.gelbooru.client import GelbooruClient
from favmirror.adapters.gelbooru.discovery import FavoriteDiscovery
from favmirror.adapters.gelbooru.fetcher import RateLimitedFetcher
from favmirror.adapters.szurubooru.auth import SzurubooruAuth
from favmirror.adapters.szurubooru.client import SzurubooruClient
from favmirror.adapters.szurubooru.sync_service import SzurubooruSyncService
from favmirror.db.session import DatabaseSessionManager
from favmirror.infrastructure.persistence.sqlite.repositories.record_store import (
    SqliteRecordStore,
)
from favmirror.services.ingest import IngestService
from favmirror.services.media_cache import MediaCache
from favmirror.services.orchestrator import SyncOrchestrator
from favmirror.services.scheduler import SchedulerService
from favmirror.services.tag_refresh import TagRefreshService

if TYPE_CHECKING:
    from favmirror.config import AppConfig
    from favmirror.protocols import DestinationClientFactory

logger = logging.getLogger(__name__)

USER_AGENT = "favmirror/0.1"


class Container:
    """Builds the sync pipeline from an ``AppConfig``.

    Example:
        ```python
        container = Container(load_config())
        try:
            result = await container.orchestrator().run_tick()
        finally:
            await container.aclose()
        ```
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        stop_event: asyncio.Event | None = None,
        source_transport: httpx.AsyncBaseTransport | None = None,
        destination_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cfg = cfg
        self.stop_event = stop_event or asyncio.Event()
        self._source_transport = source_transport
        self._destination_transport = destination_transport

        self._db: DatabaseSessionManager | None = None
        self._store: SqliteRecordStore | None = None
        self._http: httpx.AsyncClient | None = None
        self._source: GelbooruClient | None = None
        self._media: MediaCache | None = None
        self._orchestrator: SyncOrchestrator | None = None

    # -- persistence -------------------------------------------------------

    def database(self) -> DatabaseSessionManager:
        if self._db is None:
            runtime = self.cfg.runtime
            runtime.files_dir.mkdir(parents=True, exist_ok=True)
            self._db = DatabaseSessionManager(str(runtime.db_path))
            self._db.migrate()
        return self._db

    def record_store(self) -> SqliteRecordStore:
        if self._store is None:
            self._store = SqliteRecordStore(self.database())
        return self._store

    # -- source ------------------------------------------------------------

    def http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=float(self.cfg.gelbooru.request_timeout_sec),
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
                transport=self._source_transport,
            )
        return self._http

    def source_client(self) -> GelbooruClient:
        if self._source is None:
            gb = self.cfg.gelbooru
            fetcher = RateLimitedFetcher(
                self.http_client(),
                max_concurrent=gb.max_concurrent_requests,
                min_interval=gb.min_request_interval,
                max_attempts=gb.max_attempts,
                stop_event=self.stop_event,
            )
            self._source = GelbooruClient(
                fetcher,
                api_key=gb.api_key,
                user_id=gb.user_id,
                owner_id=gb.owner_id,
                username=gb.username,
                password=gb.password,
                base_url=gb.base_url,
            )
        return self._source

    def media_cache(self) -> MediaCache:
        if self._media is None:
            self._media = MediaCache(self.cfg.runtime.files_dir, self.source_client())
        return self._media

    # -- destination -------------------------------------------------------

    def destination_factory(self) -> DestinationClientFactory:
        transport = self._destination_transport

        def _factory(api_url: str, username: str, token: str) -> Any:
            return SzurubooruClient(api_url, username, token, transport=transport)

        return _factory

    # -- services ----------------------------------------------------------

    def orchestrator(self) -> SyncOrchestrator:
        if self._orchestrator is not None:
            return self._orchestrator

        gb = self.cfg.gelbooru
        szuru = self.cfg.szurubooru
        store = self.record_store()
        source = self.source_client()
        media = self.media_cache()

        self._orchestrator = SyncOrchestrator(
            store=store,
            source=source,
            discovery=FavoriteDiscovery(
                source,
                fetch_concurrency=gb.max_concurrent_requests,
                stop_event=self.stop_event,
            ),
            ingest=IngestService(
                store,
                media,
                download_concurrency=gb.download_concurrency,
                stop_event=self.stop_event,
            ),
            tag_refresh=TagRefreshService(store, source, stop_event=self.stop_event),
            sync_service=SzurubooruSyncService(
                store,
                media,
                upload_concurrency=szuru.upload_concurrency,
                tag_concurrency=szuru.tag_concurrency,
                stop_event=self.stop_event,
            ),
            auth=SzurubooruAuth(szuru.api_url, transport=self._destination_transport),
            destination_factory=self.destination_factory(),
            destination_url=szuru.api_url,
            destination_user=szuru.user_name,
            destination_password=szuru.user_password,
            full_interval=self.cfg.schedule.full_sync_timeout,
            short_interval=self.cfg.schedule.short_sync_timeout,
            stop_event=self.stop_event,
        )
        return self._orchestrator

    def scheduler(self) -> SchedulerService:
        return SchedulerService(
            self.orchestrator(),
            short_interval=self.cfg.schedule.short_sync_timeout,
            stop_event=self.stop_event,
        )

    async def aclose(self) -> None:
        """Release the HTTP client and the database connection."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
        if self._db is not None:
            self._db.close()
            self._db = None
        logger.info("container_closed")
