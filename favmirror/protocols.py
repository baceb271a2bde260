"""Protocol definitions (ports) for the sync engine.

Services depend on these rather than on the concrete SQLite repository and
HTTP clients so tests can substitute fakes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from contextlib import AbstractAsyncContextManager
    from pathlib import Path

    from favmirror.adapters.gelbooru.models import GelbooruPost, GelbooruPostPage, GelbooruTag
    from favmirror.adapters.szurubooru.models import SzurubooruPost, SzurubooruTag
    from favmirror.domain.records import Record, RecordKind


class RecordStore(Protocol):
    """Keyed storage for every record kind; writes are serialized internally."""

    async def get(self, kind: RecordKind, key: Any) -> Record | None: ...

    async def upsert(self, record: Record) -> None: ...

    async def upsert_many(self, records: Iterable[Record]) -> int: ...

    async def scan(self, kind: RecordKind) -> list[Record]: ...

    async def keys(self, kind: RecordKind) -> set[Any]: ...

    async def count(self, kind: RecordKind) -> int: ...

    async def exists(self, kind: RecordKind, predicate: Callable[[Record], bool]) -> bool: ...

    async def checkpoint(self) -> None: ...


class SourceClientProtocol(Protocol):
    owner_id: str

    async def login(self) -> bool: ...

    async def get_favorite_count(self) -> int: ...

    async def get_posts_page(
        self, tags: str, *, pid: int = 0, limit: int = 100
    ) -> GelbooruPostPage: ...

    async def count_posts(self, tags: str) -> int: ...

    async def get_post(self, post_id: int) -> GelbooruPost | None: ...

    async def get_max_post_id(self) -> int: ...

    async def get_favorites_page_html(self, pid: int) -> str: ...

    async def get_tags(self, names: Iterable[str]) -> list[GelbooruTag]: ...

    async def download_file(self, url: str, dest: Path) -> Path: ...


class DestinationClientProtocol(Protocol):
    async def create_tag_category(self, name: str, color: str, order: int) -> dict[str, Any]: ...

    async def create_tag(self, name: str, category: str) -> SzurubooruTag: ...

    async def get_tag(self, name: str) -> SzurubooruTag: ...

    async def update_tag(
        self, name: str, *, version: int, category: str, names: list[str] | None = None
    ) -> SzurubooruTag: ...

    async def create_post(
        self, file_path: Path, *, safety: str, source: str, tags: list[str]
    ) -> SzurubooruPost: ...

    async def get_post(self, post_id: int) -> SzurubooruPost: ...

    async def update_post(
        self, post_id: int, *, version: int, safety: str, source: str, tags: list[str]
    ) -> SzurubooruPost: ...


class DestinationClientFactory(Protocol):
    def __call__(
        self, api_url: str, username: str, token: str
    ) -> AbstractAsyncContextManager[DestinationClientProtocol]: ...
