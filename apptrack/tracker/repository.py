"""Database repository for the import pipeline.

Stores import events, the job fingerprint index and platform links.
Uniqueness of (user_id, event_fingerprint) and (user_id, job_fingerprint)
is enforced by UNIQUE constraints, not by the callers' lookups.
"""

from __future__ import annotations

from datetime import datetime

import aiosqlite

from apptrack.storage import (
    SQLiteRepository,
    dump_json,
    from_db_datetime,
    load_json,
    new_id,
    to_db_datetime,
    utcnow,
)
from apptrack.tracker.models import (
    Communication,
    ImportEvent,
    PlatformEntry,
    PlatformLink,
)

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS import_events (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    platform TEXT NOT NULL,
    source_type TEXT NOT NULL,
    applied_at TEXT NOT NULL,
    timezone TEXT NOT NULL,
    job_title TEXT NOT NULL,
    company TEXT NOT NULL,
    location TEXT NOT NULL DEFAULT '',
    job_fingerprint TEXT NOT NULL,
    event_fingerprint TEXT NOT NULL,
    job_id TEXT,
    schedule_id TEXT,
    message_id TEXT,
    external_id TEXT,
    raw TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    UNIQUE (user_id, event_fingerprint)
);
CREATE INDEX IF NOT EXISTS idx_import_events_job ON import_events(user_id, job_id);
CREATE INDEX IF NOT EXISTS idx_import_events_created ON import_events(user_id, created_at);

CREATE TABLE IF NOT EXISTS job_fingerprints (
    user_id TEXT NOT NULL,
    job_fingerprint TEXT NOT NULL,
    job_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (user_id, job_fingerprint)
);

CREATE TABLE IF NOT EXISTS platform_entries (
    user_id TEXT NOT NULL,
    job_id TEXT NOT NULL,
    platform TEXT NOT NULL,
    source_type TEXT NOT NULL,
    job_url TEXT NOT NULL DEFAULT '',
    external_id TEXT NOT NULL DEFAULT '',
    first_seen_at TEXT NOT NULL,
    UNIQUE (user_id, job_id, platform, source_type, job_url, external_id)
);

CREATE TABLE IF NOT EXISTS platform_communications (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    job_id TEXT NOT NULL,
    platform TEXT NOT NULL,
    source_type TEXT NOT NULL,
    message_id TEXT,
    subject TEXT,
    sender TEXT,
    snippet TEXT,
    received_at TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_platform_comms_job
    ON platform_communications(user_id, job_id, created_at);
"""


class TrackerRepository(SQLiteRepository):
    """Async SQLite repository for import events and platform links."""

    SCHEMA_SQL = CREATE_TABLES_SQL

    async def get_event(
        self, user_id: str, event_fingerprint: str
    ) -> ImportEvent | None:
        """Get an import event by its dedup key.

        Args:
            user_id: Owning user.
            event_fingerprint: The event fingerprint.

        Returns:
            The stored event, or None.
        """
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM import_events WHERE user_id = ? AND event_fingerprint = ?",
                (user_id, event_fingerprint),
            )
            row = await cursor.fetchone()

        return self._row_to_event(row) if row is not None else None

    async def insert_event(self, event: ImportEvent) -> None:
        """Insert a new import event.

        Raises:
            sqlite3.IntegrityError: If the user already has an event with the
                same fingerprint.
        """
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO import_events (
                    id, user_id, platform, source_type, applied_at, timezone,
                    job_title, company, location, job_fingerprint,
                    event_fingerprint, job_id, schedule_id, message_id,
                    external_id, raw, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.user_id,
                    event.platform,
                    event.source_type,
                    to_db_datetime(event.applied_at),
                    event.timezone,
                    event.job_title,
                    event.company,
                    event.location,
                    event.job_fingerprint,
                    event.event_fingerprint,
                    event.job_id,
                    event.schedule_id,
                    event.message_id,
                    event.external_id,
                    dump_json(event.raw),
                    to_db_datetime(event.created_at),
                ),
            )

    async def list_events(self, user_id: str, limit: int = 50) -> list[ImportEvent]:
        """List a user's import events, newest first."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM import_events WHERE user_id = ?
                ORDER BY created_at DESC LIMIT ?
                """,
                (user_id, limit),
            )
            rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def get_job_for_fingerprint(
        self, user_id: str, job_fingerprint: str
    ) -> str | None:
        """Look up the job id indexed under a job fingerprint."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT job_id FROM job_fingerprints WHERE user_id = ? AND job_fingerprint = ?",
                (user_id, job_fingerprint),
            )
            row = await cursor.fetchone()
        return row["job_id"] if row is not None else None

    async def index_job_fingerprint(
        self, user_id: str, job_fingerprint: str, job_id: str
    ) -> str:
        """Map a job fingerprint to a job unless a mapping already exists.

        Returns:
            The job id the fingerprint maps to after the call. The first
            writer wins, so this may differ from ``job_id``.
        """
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO job_fingerprints (user_id, job_fingerprint, job_id, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (user_id, job_fingerprint) DO NOTHING
                """,
                (user_id, job_fingerprint, job_id, to_db_datetime(utcnow())),
            )

        indexed = await self.get_job_for_fingerprint(user_id, job_fingerprint)
        return indexed or job_id

    async def add_platform_entry(
        self,
        user_id: str,
        job_id: str,
        *,
        platform: str,
        source_type: str,
        job_url: str | None,
        external_id: str | None,
    ) -> bool:
        """Add a platform entry to the job's set of sources.

        Returns:
            True if the entry was new.
        """
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO platform_entries (
                    user_id, job_id, platform, source_type, job_url,
                    external_id, first_seen_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT DO NOTHING
                """,
                (
                    user_id,
                    job_id,
                    platform,
                    source_type,
                    job_url or "",
                    external_id or "",
                    to_db_datetime(utcnow()),
                ),
            )
        return cursor.rowcount > 0

    async def append_communication(
        self,
        user_id: str,
        job_id: str,
        *,
        platform: str,
        source_type: str,
        message_id: str | None,
        subject: str | None,
        sender: str | None,
        snippet: str | None,
        received_at: datetime,
    ) -> None:
        """Append a raw communication to the job's log."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO platform_communications (
                    id, user_id, job_id, platform, source_type, message_id,
                    subject, sender, snippet, received_at, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    new_id(),
                    user_id,
                    job_id,
                    platform,
                    source_type,
                    message_id,
                    subject,
                    sender,
                    snippet,
                    to_db_datetime(received_at),
                    to_db_datetime(utcnow()),
                ),
            )

    async def get_platform_link(self, user_id: str, job_id: str) -> PlatformLink | None:
        """Get the platform link aggregate for a job, or None if never linked."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM platform_entries WHERE user_id = ? AND job_id = ?
                ORDER BY first_seen_at ASC, rowid ASC
                """,
                (user_id, job_id),
            )
            entry_rows = await cursor.fetchall()
            cursor = await conn.execute(
                """
                SELECT * FROM platform_communications WHERE user_id = ? AND job_id = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (user_id, job_id),
            )
            comm_rows = await cursor.fetchall()

        if not entry_rows and not comm_rows:
            return None

        return PlatformLink(
            user_id=user_id,
            job_id=job_id,
            platforms=[
                PlatformEntry(
                    platform=row["platform"],
                    source_type=row["source_type"],
                    job_url=row["job_url"] or None,
                    external_id=row["external_id"] or None,
                    first_seen_at=from_db_datetime(row["first_seen_at"]),
                )
                for row in entry_rows
            ],
            communications=[
                Communication(
                    platform=row["platform"],
                    source_type=row["source_type"],
                    message_id=row["message_id"],
                    subject=row["subject"],
                    sender=row["sender"],
                    snippet=row["snippet"],
                    received_at=from_db_datetime(row["received_at"]),
                    created_at=from_db_datetime(row["created_at"]),
                )
                for row in comm_rows
            ],
        )

    def _row_to_event(self, row: aiosqlite.Row) -> ImportEvent:
        return ImportEvent(
            id=row["id"],
            user_id=row["user_id"],
            platform=row["platform"],
            source_type=row["source_type"],
            applied_at=from_db_datetime(row["applied_at"]),
            timezone=row["timezone"],
            job_title=row["job_title"],
            company=row["company"],
            location=row["location"],
            job_fingerprint=row["job_fingerprint"],
            event_fingerprint=row["event_fingerprint"],
            created_at=from_db_datetime(row["created_at"]),
            job_id=row["job_id"],
            schedule_id=row["schedule_id"],
            message_id=row["message_id"],
            external_id=row["external_id"],
            raw=load_json(row["raw"], {}),
        )
