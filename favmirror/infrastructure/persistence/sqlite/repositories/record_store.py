"""SQLite implementation of the record store.

One repository serves all five record kinds. Rows are translated to frozen
domain records on the way out, so peewee models never leave this module.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from favmirror.db.models import MODELS_BY_KIND, model_to_dict
from favmirror.domain.records import RECORD_TYPES, RecordKind
from favmirror.infrastructure.persistence.sqlite.base import SqliteBaseRepository

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from favmirror.domain.records import Record

# SQLite caps bound variables per statement; 15 columns x 60 rows stays well below it.
UPSERT_CHUNK_SIZE = 60


def _primary_key_field(kind: RecordKind) -> Any:
    model = MODELS_BY_KIND[kind]
    return model._meta.primary_key


def _to_row(record: Record) -> dict[str, Any]:
    return record.model_dump(mode="json")


def _to_record(kind: RecordKind, row: Any) -> Record:
    return RECORD_TYPES[kind].model_validate(model_to_dict(row))  # type: ignore[return-value]


def _kind_of(record: Record) -> RecordKind:
    for kind, record_type in RECORD_TYPES.items():
        if type(record) is record_type:
            return kind
    msg = f"Unsupported record type: {type(record).__name__}"
    raise TypeError(msg)


class SqliteRecordStore(SqliteBaseRepository):
    """Keyed storage for media items, tags, the sync checkpoint and markers."""

    async def get(self, kind: RecordKind, key: Any) -> Record | None:
        model = MODELS_BY_KIND[kind]

        def _get() -> Record | None:
            row = model.get_or_none(_primary_key_field(kind) == key)
            return None if row is None else _to_record(kind, row)

        return await self._execute(_get, operation_name=f"get_{kind}", read_only=True)

    async def upsert(self, record: Record) -> None:
        """Insert ``record`` or replace the row sharing its key."""
        kind = _kind_of(record)
        model = MODELS_BY_KIND[kind]
        row = _to_row(record)

        def _upsert() -> None:
            model.insert(**row).on_conflict_replace().execute()

        await self._execute(_upsert, operation_name=f"upsert_{kind}")

    async def upsert_many(self, records: Iterable[Record]) -> int:
        """Upsert records of one or more kinds in a single transaction."""
        grouped: dict[RecordKind, list[dict[str, Any]]] = {}
        for record in records:
            grouped.setdefault(_kind_of(record), []).append(_to_row(record))
        if not grouped:
            return 0

        database = self._session.database

        def _upsert_many() -> int:
            written = 0
            with database.atomic():
                for kind, rows in grouped.items():
                    model = MODELS_BY_KIND[kind]
                    for start in range(0, len(rows), UPSERT_CHUNK_SIZE):
                        chunk = rows[start : start + UPSERT_CHUNK_SIZE]
                        model.insert_many(chunk).on_conflict_replace().execute()
                        written += len(chunk)
            return written

        return await self._execute(_upsert_many, operation_name="upsert_many")

    async def scan(self, kind: RecordKind) -> list[Record]:
        model = MODELS_BY_KIND[kind]

        def _scan() -> list[Record]:
            return [_to_record(kind, row) for row in model.select()]

        return await self._execute(_scan, operation_name=f"scan_{kind}", read_only=True)

    async def keys(self, kind: RecordKind) -> set[Any]:
        """Return the key of every stored record of ``kind``."""
        pk = _primary_key_field(kind)
        model = MODELS_BY_KIND[kind]

        def _keys() -> set[Any]:
            return {getattr(row, pk.name) for row in model.select(pk)}

        return await self._execute(_keys, operation_name=f"keys_{kind}", read_only=True)

    async def count(self, kind: RecordKind) -> int:
        model = MODELS_BY_KIND[kind]
        return await self._execute(
            lambda: model.select().count(), operation_name=f"count_{kind}", read_only=True
        )

    async def exists(self, kind: RecordKind, predicate: Callable[[Record], bool]) -> bool:
        """Return True when any record of ``kind`` satisfies ``predicate``."""
        model = MODELS_BY_KIND[kind]

        def _exists() -> bool:
            return any(predicate(_to_record(kind, row)) for row in model.select().iterator())

        return await self._execute(_exists, operation_name=f"exists_{kind}", read_only=True)

    async def checkpoint(self) -> None:
        """Flush the WAL into the main database file."""
        database = self._session.database

        def _checkpoint() -> None:
            database.execute_sql("PRAGMA wal_checkpoint(FULL)")

        await self._execute(_checkpoint, operation_name="checkpoint")
