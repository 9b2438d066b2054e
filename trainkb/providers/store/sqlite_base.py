"""Shared connection handling for the aiosqlite-backed stores.

Each operation opens its own short-lived connection (the stores are used
from many concurrent requests, and SQLite connections are cheap).  Every
connection gets ``foreign_keys = ON`` and ``aiosqlite.Row`` rows; the
database file is switched to WAL journaling once at initialization so
readers don't block the single writer.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

# Seconds a connection waits on a locked database before raising.
_BUSY_TIMEOUT = 30.0


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string (sortable as text)."""
    return datetime.now(tz=timezone.utc).isoformat(timespec="microseconds")  # noqa: UP017


class SQLiteStoreBase:
    """Base class holding the database path and the connection helper."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(str(self._db_path), timeout=_BUSY_TIMEOUT) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys = ON")
            yield db

    async def _create_schema(self, statements: list[str]) -> None:
        """Create the database file's directory and run schema statements."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect() as db:
            await db.execute("PRAGMA journal_mode=WAL")
            for statement in statements:
                await db.execute(statement)
            await db.commit()
