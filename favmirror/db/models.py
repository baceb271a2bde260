"""Peewee ORM models for the local mirror database."""

from __future__ import annotations

from typing import Any

import peewee
from playhouse.sqlite_ext import JSONField

from favmirror.domain.records import RecordKind

# A proxy that will be initialised with the concrete database instance at runtime.
database_proxy: peewee.Database = peewee.DatabaseProxy()


class BaseModel(peewee.Model):
    """Base Peewee model bound to the lazily initialised database proxy."""

    class Meta:
        database = database_proxy
        legacy_table_names = False


class MediaItem(BaseModel):
    id = peewee.BigIntegerField(primary_key=True)
    tags = JSONField(default=list)
    rating = peewee.TextField(null=True)
    file_url = peewee.TextField(null=True)
    local_path = peewee.TextField()
    width = peewee.IntegerField(default=0)
    height = peewee.IntegerField(default=0)
    owner = peewee.TextField(null=True)
    source = peewee.TextField(null=True)
    created_at = peewee.TextField(null=True)  # source-defined format, kept verbatim
    md5 = peewee.TextField(null=True)
    status = peewee.TextField(null=True)
    has_comments = peewee.BooleanField(default=False)
    has_notes = peewee.BooleanField(default=False)
    version = peewee.IntegerField(default=1)

    class Meta:
        table_name = "media_items"


class Tag(BaseModel):
    name = peewee.TextField(primary_key=True)
    tag_id = peewee.BigIntegerField(default=0)
    count = peewee.IntegerField(default=0)
    type = peewee.IntegerField(default=0)

    class Meta:
        table_name = "tags"


class SyncCheckpoint(BaseModel):
    id = peewee.TextField(primary_key=True)
    favorites_count = peewee.IntegerField(default=0)
    last_synced_at = peewee.TextField(null=True)  # ISO-8601 UTC
    last_full_sync_at = peewee.TextField(null=True)  # ISO-8601 UTC

    class Meta:
        table_name = "sync_checkpoints"


class ItemMarker(BaseModel):
    item_id = peewee.BigIntegerField(primary_key=True)
    destination_id = peewee.BigIntegerField()
    version = peewee.IntegerField()

    class Meta:
        table_name = "synced_items"


class TagMarker(BaseModel):
    name = peewee.TextField(primary_key=True)

    class Meta:
        table_name = "synced_tags"


ALL_MODELS: tuple[type[BaseModel], ...] = (
    MediaItem,
    Tag,
    SyncCheckpoint,
    ItemMarker,
    TagMarker,
)

MODELS_BY_KIND: dict[RecordKind, type[BaseModel]] = {
    RecordKind.MEDIA_ITEM: MediaItem,
    RecordKind.TAG: Tag,
    RecordKind.CHECKPOINT: SyncCheckpoint,
    RecordKind.ITEM_MARKER: ItemMarker,
    RecordKind.TAG_MARKER: TagMarker,
}


def model_to_dict(model: BaseModel | None) -> dict[str, Any] | None:
    """Convert a Peewee model instance to a plain dictionary."""
    if model is None:
        return None
    return {field_name: getattr(model, field_name) for field_name in model._meta.fields}
