"""Pytest configuration and shared fixtures.

In-memory stand-ins for the source and destination services plus helpers
for building configs and temp-file record stores.
"""

from __future__ import annotations

import re
import tempfile
from pathlib import Path
from typing import Any

from favmirror.adapters.gelbooru.models import (
    GelbooruAttributes,
    GelbooruPost,
    GelbooruPostPage,
    GelbooruTag,
)
from favmirror.adapters.szurubooru.models import SzurubooruPost, SzurubooruTag
from favmirror.config import AppConfig, load_config
from favmirror.db.session import DatabaseSessionManager
from favmirror.domain.exceptions import DestinationError, PageUnavailableError
from favmirror.infrastructure.persistence.sqlite.repositories.record_store import (
    SqliteRecordStore,
)

_RANGE_PATTERN = re.compile(r"id:>=(\d+) id:<=(\d+)")


def make_test_app_config(**overrides: Any) -> AppConfig:
    """Build an AppConfig without touching the process environment."""
    sections: dict[str, dict[str, Any]] = {
        "gelbooru": {"GELBOORU_API_KEY": "key", "GELBOORU_USER_ID": "42"},
        "szurubooru": {
            "SZURUBOORU_URL": "http://szuru.test/api",
            "SZURUBOORU_USER_NAME": "mirror",
            "SZURUBOORU_USER_PASSWORD": "secret",
        },
    }
    for section, values in overrides.items():
        sections.setdefault(section, {}).update(values)
    return load_config(**sections)


def make_post(post_id: int, tags: str = "tag_a tag_b", **fields: Any) -> GelbooruPost:
    data: dict[str, Any] = {
        "id": post_id,
        "tags": tags,
        "rating": "general",
        "file_url": f"https://img.test/images/{post_id}.jpg",
        "width": 800,
        "height": 600,
        "owner": "uploader",
        "source": "",
        "created_at": "Mon Jan 01 00:00:00 -0500 2024",
        "md5": f"md5-{post_id}",
        "status": "active",
        "has_comments": "false",
        "has_notes": "false",
    }
    data.update(fields)
    return GelbooruPost.model_validate(data)


class TempRecordStore:
    """File-backed store in a temp directory; ``:memory:`` does not survive worker threads."""

    def __init__(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.session = DatabaseSessionManager(str(self.root / "mirror.db"))
        self.session.migrate()
        self.store = SqliteRecordStore(self.session)

    def close(self) -> None:
        self.session.close()
        self._tmp.cleanup()


class FakeSourceClient:
    """Gelbooru stand-in driven by a dict of favorites.

    The HTML listing returns favorites newest-first, ``page_size`` per page.
    """

    def __init__(
        self,
        posts: list[GelbooruPost] | None = None,
        *,
        owner_id: str = "42",
        page_size: int = 100,
        max_post_id: int | None = None,
        tag_types: dict[str, int] | None = None,
    ) -> None:
        self.owner_id = owner_id
        self.favorites: dict[int, GelbooruPost] = {post.id: post for post in posts or []}
        self.page_size = page_size
        self.max_post_id = max_post_id
        self.tag_types = tag_types or {}
        self.failing_pids: set[int] = set()
        self.failing_posts: set[int] = set()
        self.calls: list[tuple[str, Any]] = []
        self.downloaded: list[str] = []

    def set_post(self, post: GelbooruPost) -> None:
        self.favorites[post.id] = post

    def _ordered_ids(self) -> list[int]:
        return sorted(self.favorites, reverse=True)

    def _in_range(self, tags: str) -> list[GelbooruPost]:
        match = _RANGE_PATTERN.search(tags)
        if match is None:
            return [self.favorites[post_id] for post_id in self._ordered_ids()]
        low, high = int(match.group(1)), int(match.group(2))
        return [self.favorites[i] for i in self._ordered_ids() if low <= i <= high]

    async def login(self) -> bool:
        self.calls.append(("login", None))
        return False

    async def get_favorite_count(self) -> int:
        self.calls.append(("get_favorite_count", None))
        return len(self.favorites)

    async def get_posts_page(self, tags: str, *, pid: int = 0, limit: int = 100) -> GelbooruPostPage:
        self.calls.append(("get_posts_page", (tags, pid)))
        matching = self._in_range(tags)
        chunk = matching[pid * limit : (pid + 1) * limit]
        return GelbooruPostPage(
            attributes=GelbooruAttributes(limit=limit, offset=pid * limit, count=len(matching)),
            posts=chunk,
        )

    async def count_posts(self, tags: str) -> int:
        self.calls.append(("count_posts", tags))
        return len(self._in_range(tags))

    async def get_post(self, post_id: int) -> GelbooruPost | None:
        self.calls.append(("get_post", post_id))
        if post_id in self.failing_posts:
            raise PageUnavailableError("post unavailable", attempts=3)
        return self.favorites.get(post_id)

    async def get_max_post_id(self) -> int:
        if self.max_post_id is not None:
            return self.max_post_id
        return max(self.favorites, default=0)

    async def get_favorites_page_html(self, pid: int) -> str:
        self.calls.append(("get_favorites_page_html", pid))
        if pid in self.failing_pids:
            raise PageUnavailableError("listing unavailable", attempts=3)
        ids = self._ordered_ids()[pid : pid + self.page_size]
        spans = "".join(f'<span id="s{i}"><script>posts[{i}] = {{}};</script></span>' for i in ids)
        return f"<html><body>{spans}</body></html>"

    async def get_tags(self, names: Any) -> list[GelbooruTag]:
        batch = list(names)
        self.calls.append(("get_tags", batch))
        return [
            GelbooruTag(id=index, name=name, count=1, type=self.tag_types.get(name, 0))
            for index, name in enumerate(batch, start=1)
        ]

    async def download_file(self, url: str, dest: Path) -> Path:
        self.downloaded.append(url)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(b"image-bytes")
        return dest


class FakeDestinationClient:
    """In-memory Szurubooru with optimistic versioning on tags and posts."""

    def __init__(self) -> None:
        self.categories: dict[str, str] = {}
        self.tags: dict[str, SzurubooruTag] = {}
        self.posts: dict[int, dict[str, Any]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.failing_uploads: set[str] = set()
        self._next_post_id = 1

    async def __aenter__(self) -> FakeDestinationClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        return None

    def writes(self) -> list[tuple[str, Any]]:
        return [call for call in self.calls if not call[0].startswith("get_")]

    async def create_tag_category(self, name: str, color: str, order: int) -> dict[str, Any]:
        self.calls.append(("create_tag_category", name))
        if name in self.categories:
            raise DestinationError(
                "exists", status_code=400, error_name="TagCategoryAlreadyExistsError"
            )
        self.categories[name] = color
        return {"name": name, "color": color, "order": order}

    async def create_tag(self, name: str, category: str) -> SzurubooruTag:
        self.calls.append(("create_tag", name))
        if name in self.tags:
            raise DestinationError("exists", status_code=400, error_name="TagAlreadyExistsError")
        tag = SzurubooruTag(names=[name], category=category, version=1)
        self.tags[name] = tag
        return tag

    async def get_tag(self, name: str) -> SzurubooruTag:
        self.calls.append(("get_tag", name))
        return self.tags[name]

    async def update_tag(
        self, name: str, *, version: int, category: str, names: list[str] | None = None
    ) -> SzurubooruTag:
        self.calls.append(("update_tag", name))
        current = self.tags[name]
        if current.version != version:
            raise DestinationError("stale", status_code=409, error_name="IntegrityError")
        tag = SzurubooruTag(names=names or [name], category=category, version=version + 1)
        self.tags[name] = tag
        return tag

    async def create_post(
        self, file_path: Path, *, safety: str, source: str, tags: list[str]
    ) -> SzurubooruPost:
        self.calls.append(("create_post", Path(file_path).name))
        if Path(file_path).name in self.failing_uploads:
            raise DestinationError("upload rejected", status_code=500, error_name="ProcessingError")
        post_id = self._next_post_id
        self._next_post_id += 1
        self.posts[post_id] = {"version": 1, "safety": safety, "source": source, "tags": list(tags)}
        return SzurubooruPost(id=post_id, version=1, safety=safety, source=source)

    async def get_post(self, post_id: int) -> SzurubooruPost:
        self.calls.append(("get_post", post_id))
        post = self.posts[post_id]
        return SzurubooruPost(
            id=post_id, version=post["version"], safety=post["safety"], source=post["source"]
        )

    async def update_post(
        self,
        post_id: int,
        *,
        version: int,
        safety: str | None = None,
        source: str | None = None,
        tags: list[str] | None = None,
    ) -> SzurubooruPost:
        self.calls.append(("update_post", post_id))
        post = self.posts[post_id]
        if post["version"] != version:
            raise DestinationError("stale", status_code=409, error_name="IntegrityError")
        post.update(version=version + 1, safety=safety, source=source, tags=list(tags or []))
        return SzurubooruPost(id=post_id, version=post["version"], safety=safety, source=source)
