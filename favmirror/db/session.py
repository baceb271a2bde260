"""Database session management for the local mirror database.

DatabaseSessionManager owns the SQLite connection, the reader/writer lock and the
async wrappers repositories go through. Failures surface as
``RecordStoreError``; the store does not retry on its own.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import peewee
from playhouse.sqlite_ext import SqliteExtDatabase

from favmirror.db.models import ALL_MODELS, database_proxy
from favmirror.db.rw_lock import AsyncRWLock
from favmirror.domain.exceptions import RecordStoreError

DB_OPERATION_TIMEOUT = 30.0


@dataclass
class DatabaseSessionManager:
    """Peewee-backed session manager.

    Attributes:
        path: Path to the SQLite database file
        operation_timeout: Default timeout for one store operation in seconds
    """

    path: str
    operation_timeout: float = field(default=DB_OPERATION_TIMEOUT)
    _logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    _database: peewee.SqliteDatabase = field(init=False)
    _rw_lock: AsyncRWLock = field(init=False)

    def __post_init__(self) -> None:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._database = SqliteExtDatabase(
            self.path,
            pragmas={
                "journal_mode": "wal",
                "synchronous": "normal",
            },
            check_same_thread=False,
        )
        database_proxy.initialize(self._database)
        self._rw_lock = AsyncRWLock()

    @property
    def database(self) -> peewee.SqliteDatabase:
        return self._database

    @property
    def rw_lock(self) -> AsyncRWLock:
        return self._rw_lock

    def connection_context(self) -> Any:
        return self._database.connection_context()

    def migrate(self) -> None:
        """Create tables if they do not exist yet."""
        try:
            with self._database.connection_context(), self._database.bind_ctx(ALL_MODELS):
                self._database.create_tables(ALL_MODELS, safe=True)
        except (peewee.PeeweeException, sqlite3.Error, OSError) as exc:
            raise RecordStoreError(
                "Failed to initialise record store",
                details={"path": self._mask_path(self.path), "error": str(exc)},
            ) from exc
        self._logger.info("db_migrated", extra={"path": self._mask_path(self.path)})

    async def _safe_db_operation(
        self,
        operation: Any,
        *args: Any,
        timeout: float | None = None,
        operation_name: str = "database_operation",
        read_only: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Run ``operation`` in a worker thread inside a connection context.

        Reads share the lock; writes take it exclusively, so a WAL
        checkpoint never runs while a scan is still reading.

        Raises:
            RecordStoreError: On timeout or any database/filesystem failure
        """
        if timeout is None:
            timeout = self.operation_timeout

        def _op_wrapper() -> Any:
            with self._database.connection_context():
                return operation(*args, **kwargs)

        async def _run_with_lock() -> Any:
            if read_only:
                async with self._rw_lock.read_lock():
                    return await asyncio.to_thread(_op_wrapper)
            async with self._rw_lock.write_lock():
                return await asyncio.to_thread(_op_wrapper)

        try:
            return await asyncio.wait_for(_run_with_lock(), timeout=timeout)
        except TimeoutError as exc:
            self._logger.error(
                "db_operation_timeout",
                extra={"operation": operation_name, "timeout": timeout},
            )
            raise RecordStoreError(
                f"Record store operation {operation_name} timed out",
                details={"operation": operation_name, "timeout": timeout},
            ) from exc
        except (peewee.PeeweeException, sqlite3.Error, OSError) as exc:
            self._logger.error(
                "db_operation_failed",
                extra={
                    "operation": operation_name,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            raise RecordStoreError(
                f"Record store operation {operation_name} failed: {exc}",
                details={"operation": operation_name},
            ) from exc

    def close(self) -> None:
        if not self._database.is_closed():
            self._database.close()

    @staticmethod
    def _mask_path(path: str) -> str:
        """Mask a path for logging (show only parent/filename)."""
        try:
            p = Path(path)
            if not p.name:
                return str(p)
            parent = p.parent.name
            if parent:
                return f".../{parent}/{p.name}"
            return p.name
        except (OSError, ValueError, AttributeError):
            return "..."
