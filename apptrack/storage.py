"""Shared aiosqlite plumbing for the apptrack repositories.

Every repository owns one connection to the same database file. Several
worker processes may open the file at once, so the database runs in WAL
mode with a busy timeout, and state changes are written as conditional
updates by the repositories themselves.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

BUSY_TIMEOUT_SECONDS = 10.0


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def new_id() -> str:
    """Generate a record id."""
    return uuid.uuid4().hex


def to_db_datetime(value: datetime | None) -> str | None:
    """Serialize a datetime as a fixed-width UTC ISO string.

    Fixed width keeps lexical order equal to chronological order, which the
    deadline and reminder range queries rely on. Naive values are treated
    as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db_datetime(value: str | None) -> datetime | None:
    """Parse a datetime written by ``to_db_datetime``."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def dump_json(value: Any) -> str:
    return json.dumps(value, default=str, sort_keys=True)


def load_json(value: str | None, default: Any = None) -> Any:
    if value is None or value == "":
        return default
    return json.loads(value)


class SQLiteRepository:
    """Base class for async SQLite repositories.

    Subclasses set ``SCHEMA_SQL`` to an idempotent DDL script.
    """

    SCHEMA_SQL = ""

    def __init__(self, db_path: Path | str):
        """Initialize the repository.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._connection: aiosqlite.Connection | None = None
        self._connect_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    @asynccontextmanager
    async def _get_connection(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Get the repository's database connection, opening it on first use.

        Yields:
            An aiosqlite connection.
        """
        if self._connection is None:
            async with self._connect_lock:
                if self._connection is None:
                    conn = await aiosqlite.connect(self.db_path, timeout=BUSY_TIMEOUT_SECONDS)
                    conn.row_factory = aiosqlite.Row
                    await conn.execute("PRAGMA foreign_keys = ON")
                    self._connection = conn
        yield self._connection

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Run write statements as one commit, rolling back on error.

        Coroutines sharing this repository share its connection, so
        transactions are serialized: a rollback only ever discards the
        statements of the transaction that failed. A failed statement leaves
        SQLite's implicit transaction open, so it is rolled back before
        re-raising.

        Not re-entrant; do not open a transaction inside another.
        """
        async with self._write_lock, self._get_connection() as conn:
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    async def initialize(self) -> None:
        """Initialize the database, creating tables if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with self._get_connection() as conn:
            await conn.execute("PRAGMA journal_mode = WAL")
            await conn.executescript(self.SCHEMA_SQL)
            await conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def __aenter__(self) -> SQLiteRepository:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
