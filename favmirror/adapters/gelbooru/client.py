"""Typed Gelbooru endpoints on top of the rate-limited fetcher."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from favmirror.adapters.gelbooru.models import (
    GelbooruPost,
    GelbooruPostPage,
    GelbooruTag,
    GelbooruTagPage,
)
from favmirror.domain.exceptions import SourceError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from favmirror.adapters.gelbooru.fetcher import RateLimitedFetcher

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://gelbooru.com/index.php"
PAGE_SIZE = 100

_POST_ID_PATTERN = re.compile(r"posts\[(\d+)\]")


def extract_post_ids(html: str) -> list[int]:
    """Return the ``posts[<id>]`` markers of a listing page, de-duplicated in page order."""
    seen: dict[int, None] = {}
    for match in _POST_ID_PATTERN.finditer(html or ""):
        seen.setdefault(int(match.group(1)), None)
    return list(seen)


def favorites_tag(owner_id: str) -> str:
    return f"fav:{owner_id}"


def id_range_tags(owner_id: str, low: int, high: int) -> str:
    """Tag expression selecting the owner's favorites with ``low <= id <= high``."""
    return f"{favorites_tag(owner_id)} id:>={low} id:<={high}"


def post_view_url(post_id: int) -> str:
    """Public page of a post, used as the provenance link on the destination."""
    return f"https://gelbooru.com/index.php?page=post&s=view&id={post_id}"


class GelbooruClient:
    """Gelbooru DAPI and HTML listing client.

    Every call goes through the shared ``RateLimitedFetcher`` so concurrency
    and pacing hold across discovery, tag refresh and downloads.
    """

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        *,
        api_key: str,
        user_id: str,
        owner_id: str | None = None,
        username: str | None = None,
        password: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
    ) -> None:
        self._fetcher = fetcher
        self.api_key = api_key
        self.user_id = user_id
        self.owner_id = owner_id or user_id
        self._username = username
        self._password = password
        self.base_url = base_url.rstrip("/")

    def _api_params(self, resource: str, **extra: Any) -> dict[str, Any]:
        params: dict[str, Any] = {
            "page": "dapi",
            "s": resource,
            "q": "index",
            "json": 1,
            "api_key": self.api_key,
            "user_id": self.user_id,
        }
        params.update({key: value for key, value in extra.items() if value is not None})
        return params

    async def login(self) -> bool:
        """Establish the cookie session used by the HTML listing.

        Returns False without a request when no credentials are configured;
        public favorites are readable anonymously.
        """
        if not self._username or not self._password:
            logger.debug("gelbooru_login_skipped")
            return False
        await self._fetcher.fetch_text(
            self.base_url,
            method="POST",
            params={"page": "account", "s": "login", "code": "00"},
            data={"user": self._username, "pass": self._password, "submit": "Log in"},
        )
        logged_in = "pass_hash" in self._fetcher.client.cookies
        logger.info("gelbooru_login", extra={"success": logged_in})
        return logged_in

    async def get_posts_page(
        self, tags: str, *, pid: int = 0, limit: int = PAGE_SIZE
    ) -> GelbooruPostPage:
        data = await self._fetcher.fetch_json(
            self.base_url, params=self._api_params("post", tags=tags, pid=pid, limit=limit)
        )
        return GelbooruPostPage.model_validate(data or {})

    async def count_posts(self, tags: str) -> int:
        """Total result count for ``tags`` as reported in ``@attributes``."""
        page = await self.get_posts_page(tags, pid=0, limit=1)
        return page.attributes.count

    async def get_favorite_count(self) -> int:
        return await self.count_posts(favorites_tag(self.owner_id))

    async def get_post(self, post_id: int) -> GelbooruPost | None:
        data = await self._fetcher.fetch_json(
            self.base_url, params=self._api_params("post", id=post_id)
        )
        page = GelbooruPostPage.model_validate(data or {})
        return page.posts[0] if page.posts else None

    async def get_max_post_id(self) -> int:
        """Highest post ID currently on the site."""
        page = await self.get_posts_page("sort:id:desc", limit=1)
        if not page.posts:
            raise SourceError("Max post ID lookup returned no posts")
        return page.posts[0].id

    async def get_favorites_page_html(self, pid: int) -> str:
        """HTML favorites listing starting at offset ``pid``."""
        return await self._fetcher.fetch_text(
            self.base_url,
            params={"page": "favorites", "s": "view", "id": self.owner_id, "pid": pid},
        )

    async def get_tags(self, names: Iterable[str]) -> list[GelbooruTag]:
        batch = [name for name in names if name]
        if not batch:
            return []
        data = await self._fetcher.fetch_json(
            self.base_url,
            params=self._api_params("tag", names=" ".join(batch), limit=len(batch)),
        )
        return GelbooruTagPage.model_validate(data or {}).tags

    async def download_file(self, url: str, dest: Path) -> Path:
        return await self._fetcher.download(url, dest)
