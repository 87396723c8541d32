"""Database repository for schedules, reminders and scheduler settings.

Status changes go through ``transition``, an UPDATE guarded by the expected
prior status. The affected row count tells the caller whether it won; a
read followed by an unconditional write is never used for a status change.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import aiosqlite

from apptrack.scheduler.models import (
    AuditEntry,
    ReminderEntry,
    Schedule,
    SchedulerSettings,
    ScheduleStatus,
)
from apptrack.storage import (
    SQLiteRepository,
    dump_json,
    from_db_datetime,
    load_json,
    new_id,
    to_db_datetime,
)

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schedules (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    job_id TEXT NOT NULL,
    scheduled_at TEXT NOT NULL,
    deadline_at TEXT,
    timezone TEXT NOT NULL,
    notification_email TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL,
    submitted_at TEXT,
    expired_at TEXT,
    last_processed_at TEXT,
    calendar_event_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_schedules_user_time ON schedules(user_id, scheduled_at);
CREATE INDEX IF NOT EXISTS idx_schedules_status_deadline ON schedules(status, deadline_at);
CREATE INDEX IF NOT EXISTS idx_schedules_user_job ON schedules(user_id, job_id, status);
CREATE UNIQUE INDEX IF NOT EXISTS uq_schedules_active_job
    ON schedules(user_id, job_id) WHERE status = 'scheduled';

CREATE TABLE IF NOT EXISTS schedule_reminders (
    id TEXT PRIMARY KEY,
    schedule_id TEXT NOT NULL REFERENCES schedules(id),
    kind TEXT NOT NULL,
    offset_minutes INTEGER NOT NULL,
    remind_at TEXT NOT NULL,
    sent_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_reminders_due ON schedule_reminders(sent_at, remind_at);
CREATE INDEX IF NOT EXISTS idx_reminders_schedule ON schedule_reminders(schedule_id);

CREATE TABLE IF NOT EXISTS schedule_audit (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    schedule_id TEXT NOT NULL REFERENCES schedules(id),
    at TEXT NOT NULL,
    action TEXT NOT NULL,
    meta TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_audit_schedule ON schedule_audit(schedule_id);

CREATE TABLE IF NOT EXISTS scheduler_settings (
    user_id TEXT PRIMARY KEY,
    default_notification_email TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

# Columns a transition may set besides status/updated_at
_TRANSITION_FIELDS = {"submitted_at", "expired_at", "last_processed_at"}

_INSERT_AUDIT_SQL = (
    "INSERT INTO schedule_audit (schedule_id, at, action, meta) VALUES (?, ?, ?, ?)"
)


class ScheduleRepository(SQLiteRepository):
    """Async SQLite repository for schedules."""

    SCHEMA_SQL = CREATE_TABLES_SQL

    async def insert(self, schedule: Schedule) -> None:
        """Insert a schedule with its reminders and audit trail.

        Raises:
            sqlite3.IntegrityError: If the user already has an active
                (``scheduled``) schedule for the job.
        """
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO schedules (
                    id, user_id, job_id, scheduled_at, deadline_at, timezone,
                    notification_email, status, submitted_at, expired_at,
                    last_processed_at, calendar_event_id, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    schedule.id,
                    schedule.user_id,
                    schedule.job_id,
                    to_db_datetime(schedule.scheduled_at),
                    to_db_datetime(schedule.deadline_at),
                    schedule.timezone,
                    schedule.notification_email,
                    schedule.status.value,
                    to_db_datetime(schedule.submitted_at),
                    to_db_datetime(schedule.expired_at),
                    to_db_datetime(schedule.last_processed_at),
                    schedule.calendar_event_id,
                    to_db_datetime(schedule.created_at),
                    to_db_datetime(schedule.updated_at),
                ),
            )
            for reminder in schedule.reminders:
                reminder.id = reminder.id or new_id()
                await conn.execute(
                    """
                    INSERT INTO schedule_reminders (
                        id, schedule_id, kind, offset_minutes, remind_at, sent_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        reminder.id,
                        schedule.id,
                        reminder.kind,
                        reminder.offset_minutes,
                        to_db_datetime(reminder.remind_at),
                        to_db_datetime(reminder.sent_at),
                    ),
                )
            for entry in schedule.audit:
                await conn.execute(
                    _INSERT_AUDIT_SQL,
                    (schedule.id, to_db_datetime(entry.at), entry.action, dump_json(entry.meta)),
                )

    async def get(self, schedule_id: str, user_id: str | None = None) -> Schedule | None:
        """Get a schedule, optionally scoped to its owner."""
        query = "SELECT * FROM schedules WHERE id = ?"
        params: list[Any] = [schedule_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)

        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params)
            row = await cursor.fetchone()
        if row is None:
            return None
        return (await self._hydrate([row]))[0]

    async def find_by_job(
        self, user_id: str, job_id: str, status: ScheduleStatus
    ) -> Schedule | None:
        """Get the oldest of the user's schedules for a job in a status."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM schedules
                WHERE user_id = ? AND job_id = ? AND status = ?
                ORDER BY created_at ASC LIMIT 1
                """,
                (user_id, job_id, status.value),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return (await self._hydrate([row]))[0]

    async def list_for_user(
        self,
        user_id: str,
        *,
        status: ScheduleStatus | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Schedule]:
        """List a user's schedules, latest scheduled_at first."""
        clauses = ["user_id = ?"]
        params: list[Any] = [user_id]
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if start is not None:
            clauses.append("scheduled_at >= ?")
            params.append(to_db_datetime(start))
        if end is not None:
            clauses.append("scheduled_at <= ?")
            params.append(to_db_datetime(end))

        async with self._get_connection() as conn:
            cursor = await conn.execute(
                f"SELECT * FROM schedules WHERE {' AND '.join(clauses)} "
                "ORDER BY scheduled_at DESC",
                params,
            )
            rows = await cursor.fetchall()
        return await self._hydrate(rows)

    async def active_job_ids(self, user_id: str) -> set[str]:
        """Job ids that have a ``scheduled`` schedule for the user."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT job_id FROM schedules WHERE user_id = ? AND status = ?",
                (user_id, ScheduleStatus.SCHEDULED.value),
            )
            rows = await cursor.fetchall()
        return {row["job_id"] for row in rows}

    async def transition(
        self,
        schedule_id: str,
        *,
        expected: ScheduleStatus,
        target: ScheduleStatus,
        at: datetime,
        action: str,
        meta: dict[str, Any] | None = None,
        user_id: str | None = None,
        **fields: datetime | None,
    ) -> bool:
        """Move a schedule from ``expected`` to ``target`` if it is still there.

        The audit entry is written in the same transaction as the update and
        only when the update matched.

        Args:
            schedule_id: Schedule to update.
            expected: Status the schedule must currently have.
            target: New status.
            at: Timestamp for updated_at and the audit entry.
            action: Audit action.
            meta: Audit metadata.
            user_id: Restrict the update to this owner.
            **fields: Extra timestamp columns (submitted_at, expired_at,
                last_processed_at).

        Returns:
            True if this call performed the transition.
        """
        unknown = set(fields) - _TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Unsupported transition fields: {sorted(unknown)}")

        assignments = ["status = ?", "updated_at = ?"]
        params: list[Any] = [target.value, to_db_datetime(at)]
        for column, value in fields.items():
            assignments.append(f"{column} = ?")
            params.append(to_db_datetime(value))

        where = "id = ? AND status = ?"
        params.extend([schedule_id, expected.value])
        if user_id is not None:
            where += " AND user_id = ?"
            params.append(user_id)

        async with self._transaction() as conn:
            cursor = await conn.execute(
                f"UPDATE schedules SET {', '.join(assignments)} WHERE {where}",
                params,
            )
            claimed = cursor.rowcount == 1
            if claimed:
                await conn.execute(
                    _INSERT_AUDIT_SQL,
                    (schedule_id, to_db_datetime(at), action, dump_json(meta or {})),
                )
        return claimed

    async def update_scheduled_time(
        self,
        schedule_id: str,
        user_id: str,
        *,
        scheduled_at: datetime,
        timezone: str | None,
        at: datetime,
    ) -> bool:
        """Change scheduled_at (and timezone) of a still-scheduled schedule.

        Returns:
            True if the schedule was still ``scheduled`` and was updated.
        """
        assignments = ["scheduled_at = ?", "updated_at = ?"]
        params: list[Any] = [to_db_datetime(scheduled_at), to_db_datetime(at)]
        if timezone:
            assignments.append("timezone = ?")
            params.append(timezone)
        params.extend([schedule_id, user_id, ScheduleStatus.SCHEDULED.value])

        async with self._transaction() as conn:
            cursor = await conn.execute(
                f"UPDATE schedules SET {', '.join(assignments)} "
                "WHERE id = ? AND user_id = ? AND status = ?",
                params,
            )
            updated = cursor.rowcount == 1
            if updated:
                await conn.execute(
                    _INSERT_AUDIT_SQL,
                    (
                        schedule_id,
                        to_db_datetime(at),
                        "rescheduled",
                        dump_json(
                            {"scheduled_at": scheduled_at.isoformat(), "timezone": timezone}
                        ),
                    ),
                )
        return updated

    async def set_calendar_event_id(self, schedule_id: str, event_id: str | None) -> None:
        """Store the id of the mirrored calendar event."""
        async with self._transaction() as conn:
            await conn.execute(
                "UPDATE schedules SET calendar_event_id = ? WHERE id = ?",
                (event_id, schedule_id),
            )

    async def find_overdue(
        self,
        now: datetime,
        *,
        limit: int,
        user_id: str | None = None,
    ) -> list[Schedule]:
        """Page of ``scheduled`` schedules whose deadline is at or before now.

        Without ``user_id`` the query spans every user.
        """
        query = """
            SELECT * FROM schedules
            WHERE status = ? AND deadline_at IS NOT NULL AND deadline_at <= ?
        """
        params: list[Any] = [ScheduleStatus.SCHEDULED.value, to_db_datetime(now)]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        query += " ORDER BY deadline_at ASC, id ASC LIMIT ?"
        params.append(limit)

        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
        return await self._hydrate(rows, with_audit=False)

    async def find_with_due_reminders(self, now: datetime, *, limit: int) -> list[Schedule]:
        """Schedules still ``scheduled`` with an unsent reminder due by now."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM schedules s
                WHERE s.status = ? AND EXISTS (
                    SELECT 1 FROM schedule_reminders r
                    WHERE r.schedule_id = s.id
                      AND r.sent_at IS NULL
                      AND r.remind_at <= ?
                )
                ORDER BY s.deadline_at ASC, s.id ASC
                LIMIT ?
                """,
                (ScheduleStatus.SCHEDULED.value, to_db_datetime(now), limit),
            )
            rows = await cursor.fetchall()
        return await self._hydrate(rows, with_audit=False)

    async def mark_reminder_sent(self, reminder_id: str, sent_at: datetime) -> bool:
        """Record a reminder as sent unless it already is.

        Returns:
            True if this call set sent_at.
        """
        async with self._transaction() as conn:
            cursor = await conn.execute(
                "UPDATE schedule_reminders SET sent_at = ? WHERE id = ? AND sent_at IS NULL",
                (to_db_datetime(sent_at), reminder_id),
            )
        return cursor.rowcount == 1

    async def get_settings(self, user_id: str) -> SchedulerSettings | None:
        """Get a user's scheduler settings, or None."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM scheduler_settings WHERE user_id = ?", (user_id,)
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return SchedulerSettings(
            user_id=row["user_id"],
            default_notification_email=row["default_notification_email"],
            updated_at=from_db_datetime(row["updated_at"]),
        )

    async def upsert_default_email(self, user_id: str, email: str, at: datetime) -> None:
        """Create or update the user's default notification email."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO scheduler_settings (
                    user_id, default_notification_email, created_at, updated_at
                ) VALUES (?, ?, ?, ?)
                ON CONFLICT (user_id) DO UPDATE SET
                    default_notification_email = excluded.default_notification_email,
                    updated_at = excluded.updated_at
                """,
                (user_id, email, to_db_datetime(at), to_db_datetime(at)),
            )

    async def _hydrate(
        self, rows: list[aiosqlite.Row], *, with_audit: bool = True
    ) -> list[Schedule]:
        """Build schedules from rows, loading reminders (and audit)."""
        if not rows:
            return []

        ids = [row["id"] for row in rows]
        placeholders = ", ".join("?" for _ in ids)
        reminders: dict[str, list[ReminderEntry]] = {schedule_id: [] for schedule_id in ids}
        audit: dict[str, list[AuditEntry]] = {schedule_id: [] for schedule_id in ids}

        async with self._get_connection() as conn:
            cursor = await conn.execute(
                f"""
                SELECT * FROM schedule_reminders WHERE schedule_id IN ({placeholders})
                ORDER BY remind_at ASC
                """,
                ids,
            )
            for row in await cursor.fetchall():
                reminders[row["schedule_id"]].append(
                    ReminderEntry(
                        id=row["id"],
                        kind=row["kind"],
                        offset_minutes=row["offset_minutes"],
                        remind_at=from_db_datetime(row["remind_at"]),
                        sent_at=from_db_datetime(row["sent_at"]),
                    )
                )
            if with_audit:
                cursor = await conn.execute(
                    f"""
                    SELECT * FROM schedule_audit WHERE schedule_id IN ({placeholders})
                    ORDER BY id ASC
                    """,
                    ids,
                )
                for row in await cursor.fetchall():
                    audit[row["schedule_id"]].append(
                        AuditEntry(
                            at=from_db_datetime(row["at"]),
                            action=row["action"],
                            meta=load_json(row["meta"], {}),
                        )
                    )

        return [
            Schedule(
                id=row["id"],
                user_id=row["user_id"],
                job_id=row["job_id"],
                scheduled_at=from_db_datetime(row["scheduled_at"]),
                timezone=row["timezone"],
                notification_email=row["notification_email"],
                status=ScheduleStatus(row["status"]),
                created_at=from_db_datetime(row["created_at"]),
                updated_at=from_db_datetime(row["updated_at"]),
                deadline_at=from_db_datetime(row["deadline_at"]),
                submitted_at=from_db_datetime(row["submitted_at"]),
                expired_at=from_db_datetime(row["expired_at"]),
                last_processed_at=from_db_datetime(row["last_processed_at"]),
                calendar_event_id=row["calendar_event_id"],
                reminders=reminders[row["id"]],
                audit=audit[row["id"]],
            )
            for row in rows
        ]
