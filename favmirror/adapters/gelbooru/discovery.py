"""Favorite discovery against Gelbooru.

Two walks produce the posts that the ingest step normalizes:

* ``incremental_walk`` pages through the HTML favorites listing (newest
  first) and stops at the first page with nothing new.
* ``full_walk`` bisects the post-ID range so that every range it actually
  fetches holds no more favorites than one safe fetch budget.

Per-page and per-post failures are logged and skipped. Only the stop
signal (``SyncCancelledError``) escapes a walk.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from favmirror.adapters.gelbooru.client import PAGE_SIZE, extract_post_ids, id_range_tags
from favmirror.adapters.gelbooru.models import GelbooruPost  # noqa: TC001 - Pydantic needs this at runtime
from favmirror.core.async_utils import gather_or_cancel, raise_if_stopped
from favmirror.domain.exceptions import SourceError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from favmirror.protocols import SourceClientProtocol

logger = logging.getLogger(__name__)

FALLBACK_MAX_POST_ID = 20_000_000
DEFAULT_MAX_PAGES = 100
DEFAULT_FETCH_CONCURRENCY = 5


class DiscoveryResult(BaseModel):
    """Outcome of one discovery walk."""

    mode: str
    posts: list[GelbooruPost] = Field(default_factory=list)
    new_ids: list[int] = Field(default_factory=list)
    pages_fetched: int = 0
    pages_failed: int = 0
    ranges_fetched: list[tuple[int, int]] = Field(default_factory=list)
    max_post_id: int | None = None


class PostCollector:
    """De-duplicating sink for posts found by concurrent tasks.

    Tasks share one event loop and ``add`` never awaits, so the membership
    check and the insert cannot interleave.
    """

    def __init__(self) -> None:
        self._posts: dict[int, GelbooruPost] = {}

    def add(self, post: GelbooruPost) -> bool:
        if post.id in self._posts:
            return False
        self._posts[post.id] = post
        return True

    def extend(self, posts: Iterable[GelbooruPost]) -> int:
        return sum(1 for post in posts if self.add(post))

    def __len__(self) -> int:
        return len(self._posts)

    @property
    def posts(self) -> list[GelbooruPost]:
        return list(self._posts.values())


class FavoriteDiscovery:
    def __init__(
        self,
        client: SourceClientProtocol,
        *,
        fetch_concurrency: int = DEFAULT_FETCH_CONCURRENCY,
        page_size: int = PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
        fallback_max_post_id: int = FALLBACK_MAX_POST_ID,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self._client = client
        self._concurrency = max(1, fetch_concurrency)
        self._page_size = page_size
        self._max_pages = max_pages
        self._fallback_max_post_id = fallback_max_post_id
        self._stop_event = stop_event

    @property
    def safe_budget(self) -> int:
        """Largest result count fetched directly without splitting the range."""
        return self._max_pages * self._page_size

    # -- incremental -------------------------------------------------------

    async def incremental_walk(self, known_ids: set[int]) -> DiscoveryResult:
        """Walk the HTML listing from offset 0 until a page adds nothing new.

        An ID counts as new when it is neither stored locally nor already
        seen earlier in this walk, so a listing that keeps repeating itself
        terminates. The offset advances by the number of IDs on each page.
        """
        result = DiscoveryResult(mode="incremental")
        collector = PostCollector()
        seen: set[int] = set()
        pid = 0

        while True:
            raise_if_stopped(self._stop_event, where="incremental_walk")
            try:
                html = await self._client.get_favorites_page_html(pid)
            except SourceError as exc:
                result.pages_failed += 1
                logger.warning(
                    "discovery_listing_page_failed",
                    extra={"pid": pid, "error": str(exc), "collected": len(collector)},
                )
                break

            result.pages_fetched += 1
            page_ids = extract_post_ids(html)
            fresh = [post_id for post_id in page_ids if post_id not in known_ids and post_id not in seen]
            seen.update(page_ids)
            logger.debug(
                "discovery_listing_page",
                extra={"pid": pid, "ids": len(page_ids), "new": len(fresh)},
            )
            if not fresh:
                break

            result.new_ids.extend(fresh)
            collector.extend(await self.fetch_posts(fresh))
            pid += len(page_ids)

        result.posts = collector.posts
        logger.info(
            "discovery_incremental_done",
            extra={
                "new_ids": len(result.new_ids),
                "posts": len(result.posts),
                "pages": result.pages_fetched,
                "pages_failed": result.pages_failed,
            },
        )
        return result

    async def fetch_posts(self, post_ids: list[int]) -> list[GelbooruPost]:
        """Fetch full attributes for each ID; missing or failed posts are skipped."""
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _fetch_one(post_id: int) -> GelbooruPost | None:
            async with semaphore:
                raise_if_stopped(self._stop_event, where="fetch_post")
                try:
                    post = await self._client.get_post(post_id)
                except SourceError as exc:
                    logger.warning(
                        "discovery_post_fetch_failed",
                        extra={"post_id": post_id, "error": str(exc)},
                    )
                    return None
                if post is None:
                    logger.warning("discovery_post_missing", extra={"post_id": post_id})
                return post

        fetched = await gather_or_cancel(_fetch_one(post_id) for post_id in post_ids)
        return [post for post in fetched if post is not None]

    # -- full --------------------------------------------------------------

    async def full_walk(self) -> DiscoveryResult:
        """Enumerate every favorite by bisecting ``[0, max_post_id]``.

        Ranges are processed as a work-list in waves: each wave runs its
        ranges through a bounded pool and yields the split halves for the
        next wave.
        """
        result = DiscoveryResult(mode="full")
        collector = PostCollector()

        try:
            max_post_id = await self._client.get_max_post_id()
        except SourceError as exc:
            max_post_id = self._fallback_max_post_id
            logger.warning(
                "discovery_max_id_lookup_failed",
                extra={"error": str(exc), "fallback": max_post_id},
            )
        result.max_post_id = max_post_id

        semaphore = asyncio.Semaphore(self._concurrency)
        pending: list[tuple[int, int]] = [(0, max_post_id)]

        async def _process(low: int, high: int) -> list[tuple[int, int]]:
            async with semaphore:
                raise_if_stopped(self._stop_event, where="full_walk")
                return await self._process_range(low, high, collector, result)

        while pending:
            waves = await gather_or_cancel(_process(low, high) for low, high in pending)
            pending = [child for children in waves for child in children]

        result.posts = collector.posts
        logger.info(
            "discovery_full_done",
            extra={
                "posts": len(result.posts),
                "ranges": len(result.ranges_fetched),
                "pages": result.pages_fetched,
                "pages_failed": result.pages_failed,
                "max_post_id": max_post_id,
            },
        )
        return result

    async def _process_range(
        self,
        low: int,
        high: int,
        collector: PostCollector,
        result: DiscoveryResult,
    ) -> list[tuple[int, int]]:
        """Count one range and either fetch it or return its two halves."""
        tags = id_range_tags(self._client.owner_id, low, high)
        try:
            count = await self._client.count_posts(tags)
        except SourceError as exc:
            result.pages_failed += 1
            logger.warning(
                "discovery_range_count_failed",
                extra={"low": low, "high": high, "error": str(exc)},
            )
            return []

        if count == 0:
            return []
        if count > self.safe_budget and low < high:
            mid = (low + high) // 2
            logger.debug(
                "discovery_range_split",
                extra={"low": low, "high": high, "count": count, "mid": mid},
            )
            return [(low, mid), (mid + 1, high)]

        result.ranges_fetched.append((low, high))
        pages = min(math.ceil(count / self._page_size), self._max_pages)
        for pid in range(pages):
            raise_if_stopped(self._stop_event, where="full_walk_page")
            try:
                page = await self._client.get_posts_page(tags, pid=pid, limit=self._page_size)
            except SourceError as exc:
                result.pages_failed += 1
                logger.warning(
                    "discovery_range_page_failed",
                    extra={"low": low, "high": high, "pid": pid, "error": str(exc)},
                )
                continue
            result.pages_fetched += 1
            collector.extend(page.posts)
            if len(page.posts) < self._page_size:
                break
        return []
