"""Raw Gelbooru post -> ``MediaItemRecord`` plus the change/version policy."""

from __future__ import annotations

import posixpath
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from favmirror.domain.records import MediaItemRecord

if TYPE_CHECKING:
    from favmirror.adapters.gelbooru.models import GelbooruPost

DEFAULT_EXTENSION = ".bin"

# Everything except identity, version and the local file path.
COMPARED_FIELDS: tuple[str, ...] = (
    "tags",
    "rating",
    "file_url",
    "width",
    "height",
    "owner",
    "source",
    "created_at",
    "md5",
    "status",
    "has_comments",
    "has_notes",
)


def split_tags(raw: str | None) -> list[str]:
    return [token for token in (raw or "").split(" ") if token]


def parse_flag(raw: str | None) -> bool:
    return raw == "true"


def file_extension(url: str | None) -> str:
    """Suffix of the URL path (``.jpg``), or ``.bin`` when there is none."""
    if not url:
        return DEFAULT_EXTENSION
    _, ext = posixpath.splitext(urlsplit(url).path)
    return ext if ext and ext != "." else DEFAULT_EXTENSION


def local_file_name(post_id: int, url: str | None) -> str:
    return f"{post_id}{file_extension(url)}"


def normalize_post(post: GelbooruPost) -> MediaItemRecord:
    """Build a version-1 record from a fetched post."""
    return MediaItemRecord(
        id=post.id,
        tags=split_tags(post.tags),
        rating=post.rating,
        file_url=post.file_url,
        local_path=local_file_name(post.id, post.file_url),
        width=post.width,
        height=post.height,
        owner=post.owner,
        source=post.source,
        created_at=post.created_at,
        md5=post.md5,
        status=post.status,
        has_comments=parse_flag(post.has_comments),
        has_notes=parse_flag(post.has_notes),
        version=1,
    )


def items_equal(a: MediaItemRecord, b: MediaItemRecord) -> bool:
    """Compare two snapshots of an item; tag order matters."""
    return all(getattr(a, name) == getattr(b, name) for name in COMPARED_FIELDS)


def reconcile_version(
    stored: MediaItemRecord | None, fresh: MediaItemRecord
) -> MediaItemRecord | None:
    """Return the record to persist, or None when nothing changed.

    New items keep version 1; changed items get ``stored.version + 1``.
    """
    if stored is None:
        return fresh.model_copy(update={"version": 1})
    if items_equal(stored, fresh):
        return None
    return fresh.model_copy(update={"version": stored.version + 1})
