"""Record shapes persisted by the record store.

These are the only shapes that cross the store boundary; peewee rows never
leave the repository.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

CHECKPOINT_ID = "sync_metadata"


class RecordKind(StrEnum):
    MEDIA_ITEM = "media_item"
    TAG = "tag"
    CHECKPOINT = "checkpoint"
    ITEM_MARKER = "item_marker"
    TAG_MARKER = "tag_marker"


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class MediaItemRecord(_Record):
    """A mirrored favorite as last observed on the source."""

    id: int
    tags: list[str] = Field(default_factory=list)
    rating: str | None = None
    file_url: str | None = None
    local_path: str
    width: int = 0
    height: int = 0
    owner: str | None = None
    source: str | None = None
    created_at: str | None = None
    md5: str | None = None
    status: str | None = None
    has_comments: bool = False
    has_notes: bool = False
    version: int = 1

    @property
    def key(self) -> int:
        return self.id


class TagRecord(_Record):
    """Source tag metadata, refreshed wholesale."""

    name: str
    tag_id: int = 0
    count: int = 0
    type: int = 0

    @property
    def key(self) -> str:
        return self.name


class SyncCheckpointRecord(_Record):
    """Singleton holding the favorite count and the last full-sync time."""

    id: str = CHECKPOINT_ID
    favorites_count: int = 0
    last_synced_at: datetime | None = None
    last_full_sync_at: datetime | None = None

    @property
    def key(self) -> str:
        return self.id


class ItemMarkerRecord(_Record):
    """Proof that a media item was pushed to the destination at ``version``."""

    item_id: int
    destination_id: int
    version: int

    @property
    def key(self) -> int:
        return self.item_id


class TagMarkerRecord(_Record):
    """Presence means the tag already exists on the destination."""

    name: str

    @property
    def key(self) -> str:
        return self.name


Record = MediaItemRecord | TagRecord | SyncCheckpointRecord | ItemMarkerRecord | TagMarkerRecord

RECORD_TYPES: dict[RecordKind, type[_Record]] = {
    RecordKind.MEDIA_ITEM: MediaItemRecord,
    RecordKind.TAG: TagRecord,
    RecordKind.CHECKPOINT: SyncCheckpointRecord,
    RecordKind.ITEM_MARKER: ItemMarkerRecord,
    RecordKind.TAG_MARKER: TagMarkerRecord,
}
