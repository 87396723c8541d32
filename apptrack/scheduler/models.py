"""Data models for scheduled submissions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class ScheduleStatus(str, Enum):
    """Lifecycle state of a schedule.

    ``scheduled`` moves to exactly one of the other three, which are terminal.
    """

    SCHEDULED = "scheduled"
    SUBMITTED = "submitted"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset(
    {ScheduleStatus.SUBMITTED, ScheduleStatus.CANCELLED, ScheduleStatus.EXPIRED}
)


class AuditAction(str, Enum):
    """Actions recorded in a schedule's audit trail."""

    CREATED = "created"
    IMPORTED_SUBMITTED = "imported_submitted"
    RESCHEDULED = "rescheduled"
    SUBMITTED = "submitted"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


@dataclass
class ReminderEntry:
    """A reminder attached to a schedule.

    ``sent_at`` only ever moves from None to a timestamp.
    """

    kind: str
    offset_minutes: int
    remind_at: datetime
    sent_at: datetime | None = None
    id: str | None = None

    def is_due(self, now: datetime) -> bool:
        return self.sent_at is None and self.remind_at <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "offset_minutes": self.offset_minutes,
            "remind_at": _iso(self.remind_at),
            "sent_at": _iso(self.sent_at),
        }


@dataclass(frozen=True)
class AuditEntry:
    """One append-only audit record."""

    at: datetime
    action: str
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"at": _iso(self.at), "action": self.action, "meta": dict(self.meta)}


@dataclass
class Schedule:
    """A planned (or recorded) submission of one job application.

    Attributes:
        id: Record id.
        user_id: Owning user.
        job_id: The job being applied to.
        scheduled_at: When the submission is planned (or happened, for
            imported submissions).
        timezone: IANA timezone name the user scheduled in.
        notification_email: Where reminders and outcome emails go.
        status: Lifecycle state.
        deadline_at: Application deadline, if any.
        submitted_at: When the schedule reached ``submitted``.
        expired_at: When the schedule reached ``expired``.
        last_processed_at: Last time a background sweep changed this record.
        calendar_event_id: Id of the mirrored calendar event.
        reminders: Deadline reminders.
        audit: Append-only audit trail.
    """

    id: str
    user_id: str
    job_id: str
    scheduled_at: datetime
    timezone: str
    notification_email: str
    status: ScheduleStatus
    created_at: datetime
    updated_at: datetime
    deadline_at: datetime | None = None
    submitted_at: datetime | None = None
    expired_at: datetime | None = None
    last_processed_at: datetime | None = None
    calendar_event_id: str | None = None
    reminders: list[ReminderEntry] = field(default_factory=list)
    audit: list[AuditEntry] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def deadline_passed(self, now: datetime) -> bool:
        return self.deadline_at is not None and self.deadline_at <= now

    def to_dict(self) -> dict[str, Any]:
        """Serialize the schedule to a JSON-friendly dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "job_id": self.job_id,
            "scheduled_at": _iso(self.scheduled_at),
            "deadline_at": _iso(self.deadline_at),
            "timezone": self.timezone,
            "notification_email": self.notification_email,
            "status": self.status.value,
            "submitted_at": _iso(self.submitted_at),
            "expired_at": _iso(self.expired_at),
            "last_processed_at": _iso(self.last_processed_at),
            "calendar_event_id": self.calendar_event_id,
            "reminders": [reminder.to_dict() for reminder in self.reminders],
            "audit": [entry.to_dict() for entry in self.audit],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class SchedulerSettings:
    """Per-user scheduler preferences."""

    user_id: str
    default_notification_email: str | None
    updated_at: datetime


@dataclass
class ScheduleListItem:
    """A schedule together with a summary of its job."""

    schedule: Schedule
    job: dict[str, Any] | None

    def to_dict(self) -> dict[str, Any]:
        data = self.schedule.to_dict()
        data["job"] = self.job
        return data


@dataclass
class ReminderRunResult:
    """Summary of one reminder dispatch run."""

    schedules: int = 0
    sent: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"schedules": self.schedules, "sent": self.sent, "failed": self.failed}


@dataclass
class SweepResult:
    """Summary of one expiration sweep.

    ``processed`` counts schedules this run moved to ``expired``; rows
    claimed by a concurrent sweep are counted in ``skipped``.
    """

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    expired_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "expired_ids": list(self.expired_ids),
        }
