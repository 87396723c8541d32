"""SQLite-backed job store.

The import pipeline and the scheduler treat this as an external
collaborator; only the operations they call are provided.
"""

from __future__ import annotations

from datetime import datetime

import aiosqlite

from apptrack.errors import EnumRejectedError, NotFoundError
from apptrack.jobs.models import (
    ApplicationMethod,
    ApplicationSource,
    Job,
    JobCreate,
    JobStatus,
    StatusChange,
)
from apptrack.storage import (
    SQLiteRepository,
    dump_json,
    from_db_datetime,
    load_json,
    new_id,
    to_db_datetime,
    utcnow,
)

CREATE_JOBS_SQL = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    company TEXT NOT NULL,
    location TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL,
    application_method TEXT NOT NULL,
    application_source TEXT NOT NULL,
    posting_url TEXT NOT NULL DEFAULT '',
    deadline_at TEXT,
    archived INTEGER NOT NULL DEFAULT 0,
    status_history TEXT NOT NULL DEFAULT '[]',
    history TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_jobs_user_status ON jobs(user_id, status);
CREATE INDEX IF NOT EXISTS idx_jobs_user_title ON jobs(user_id, title COLLATE NOCASE);
"""

_METHODS = {item.value for item in ApplicationMethod}
_SOURCES = {item.value for item in ApplicationSource}
_STATUSES = {item.value for item in JobStatus}


def _check_enum(field: str, value: str, allowed: set[str]) -> None:
    if value not in allowed:
        raise EnumRejectedError(field, value)


class JobRepository(SQLiteRepository):
    """Async SQLite job store."""

    SCHEMA_SQL = CREATE_JOBS_SQL

    async def create(self, user_id: str, data: JobCreate) -> Job:
        """Create a job for a user.

        Raises:
            EnumRejectedError: If status, application method or application
                source is outside its enum.
        """
        _check_enum("status", data.status, _STATUSES)
        _check_enum("application_method", data.application_method, _METHODS)
        _check_enum("application_source", data.application_source, _SOURCES)

        now = utcnow()
        job = Job(
            id=new_id(),
            user_id=user_id,
            title=data.title,
            company=data.company,
            status=data.status,
            created_at=now,
            updated_at=now,
            location=data.location or "",
            application_method=data.application_method,
            application_source=data.application_source,
            posting_url=data.posting_url or "",
            deadline_at=data.deadline_at,
            status_history=list(data.status_history),
        )

        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO jobs (
                    id, user_id, title, company, location, status,
                    application_method, application_source, posting_url,
                    deadline_at, archived, status_history, history,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, '[]', ?, ?)
                """,
                (
                    job.id,
                    user_id,
                    job.title,
                    job.company,
                    job.location,
                    job.status,
                    job.application_method,
                    job.application_source,
                    job.posting_url,
                    to_db_datetime(job.deadline_at),
                    dump_json([entry.to_dict() for entry in job.status_history]),
                    to_db_datetime(now),
                    to_db_datetime(now),
                ),
            )
        return job

    async def get(self, user_id: str, job_id: str) -> Job | None:
        """Get one of the user's jobs, or None."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM jobs WHERE id = ? AND user_id = ?",
                (job_id, user_id),
            )
            row = await cursor.fetchone()
        return self._row_to_job(row) if row is not None else None

    async def find(
        self,
        user_id: str,
        *,
        title: str | None = None,
        company: str | None = None,
        location: str | None = None,
        status: str | None = None,
        ids: list[str] | None = None,
    ) -> list[Job]:
        """Find the user's jobs.

        Title, company and location compare case-insensitively and exactly.
        """
        clauses = ["user_id = ?"]
        params: list[object] = [user_id]
        for column, value in (
            ("title", title),
            ("company", company),
            ("location", location),
        ):
            if value is not None:
                clauses.append(f"lower({column}) = lower(?)")
                params.append(value)
        if status is not None:
            clauses.append("lower(status) = lower(?)")
            params.append(status)
        if ids is not None:
            if not ids:
                return []
            clauses.append(f"id IN ({', '.join('?' for _ in ids)})")
            params.extend(ids)

        async with self._get_connection() as conn:
            cursor = await conn.execute(
                f"SELECT * FROM jobs WHERE {' AND '.join(clauses)} "
                "ORDER BY created_at ASC",
                params,
            )
            rows = await cursor.fetchall()
        return [self._row_to_job(row) for row in rows]

    async def list_interested(self, user_id: str) -> list[Job]:
        """Non-archived 'interested' jobs, most recently updated first."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM jobs
                WHERE user_id = ? AND archived = 0 AND lower(status) = ?
                ORDER BY updated_at DESC
                """,
                (user_id, JobStatus.INTERESTED.value),
            )
            rows = await cursor.fetchall()
        return [self._row_to_job(row) for row in rows]

    async def update_status(
        self, user_id: str, job_id: str, status: str, note: str | None = None
    ) -> Job:
        """Set a job's status and record it in the status history.

        Raises:
            EnumRejectedError: If the status is unknown.
            NotFoundError: If the job does not exist for the user.
        """
        _check_enum("status", status, _STATUSES)
        job = await self.get(user_id, job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")

        now = utcnow()
        job.status = status
        job.updated_at = now
        job.status_history.append(StatusChange(status=status, timestamp=now, note=note))

        async with self._transaction() as conn:
            await conn.execute(
                """
                UPDATE jobs SET status = ?, status_history = ?, updated_at = ?
                WHERE id = ? AND user_id = ?
                """,
                (
                    status,
                    dump_json([entry.to_dict() for entry in job.status_history]),
                    to_db_datetime(now),
                    job_id,
                    user_id,
                ),
            )
        return job

    async def append_history(self, user_id: str, job_id: str, action: str) -> None:
        """Append a free-text line to the job's application history."""
        job = await self.get(user_id, job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")

        now = utcnow()
        job.history.append({"action": action, "at": now.isoformat()})
        async with self._transaction() as conn:
            await conn.execute(
                "UPDATE jobs SET history = ?, updated_at = ? WHERE id = ? AND user_id = ?",
                (dump_json(job.history), to_db_datetime(now), job_id, user_id),
            )

    async def set_posting_url_if_empty(
        self, user_id: str, job_id: str, url: str
    ) -> bool:
        """Fill in the posting URL unless one is already stored.

        Returns:
            True if the URL was written.
        """
        if not url:
            return False
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE jobs SET posting_url = ?
                WHERE id = ? AND user_id = ? AND posting_url = ''
                """,
                (url, job_id, user_id),
            )
        return cursor.rowcount > 0

    def _row_to_job(self, row: aiosqlite.Row) -> Job:
        status_history = [
            StatusChange(
                status=entry["status"],
                timestamp=datetime.fromisoformat(entry["timestamp"]),
                note=entry.get("note"),
            )
            for entry in load_json(row["status_history"], [])
        ]
        return Job(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            company=row["company"],
            status=row["status"],
            created_at=from_db_datetime(row["created_at"]),
            updated_at=from_db_datetime(row["updated_at"]),
            location=row["location"],
            application_method=row["application_method"],
            application_source=row["application_source"],
            posting_url=row["posting_url"],
            deadline_at=from_db_datetime(row["deadline_at"]),
            archived=bool(row["archived"]),
            status_history=status_history,
            history=load_json(row["history"], []),
        )
