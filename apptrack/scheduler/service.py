"""Business logic for scheduled application submissions.

This module provides the ScheduleService class which handles:
- Creating, rescheduling, submitting and cancelling schedules
- Resolving and remembering the user's notification email
- Recording imported applications as already-submitted schedules

Every status change is a conditional update on the expected prior status,
so a background sweep racing a user action can never both win.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from apptrack.errors import ConflictError, NotFoundError, ValidationError, best_effort
from apptrack.jobs import Job, JobRepository, JobStatus
from apptrack.notifications import (
    NotificationSender,
    missed_deadline,
    scheduled_confirmation,
    submitted_confirmation,
)
from apptrack.profiles import ProfileDirectory
from apptrack.scheduler.calendar import CalendarSync, NullCalendarSync
from apptrack.scheduler.models import (
    AuditAction,
    AuditEntry,
    Schedule,
    ScheduleListItem,
    ScheduleStatus,
)
from apptrack.scheduler.reminders import DEFAULT_REMINDER_OFFSETS, build_default_reminders
from apptrack.scheduler.repository import ScheduleRepository
from apptrack.scheduler.sweeper import ExpirationSweeper
from apptrack.storage import new_id, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/New_York"
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

REASON_PAST_DEADLINE_ON_SUBMIT = "past-deadline-on-submit"
REASON_PAST_DEADLINE_ON_LIST = "past-deadline-on-list"


def normalize_email(value: str | None) -> str:
    """Trim and lower-case an email address.

    Returns:
        The normalized address, or "" for a blank value.

    Raises:
        ValidationError: If a non-blank value does not look like an email.
    """
    email = (value or "").strip().lower()
    if not email:
        return ""
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Notification email looks invalid.")
    return email


def resolve_notification_email(
    explicit: str | None, stored: str | None, profile: str | None
) -> str | None:
    """Pick the effective notification email: explicit, then stored, then profile."""
    for candidate in (explicit, stored, profile):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


def _parse_status(value: ScheduleStatus | str | None) -> ScheduleStatus | None:
    if not value:
        return None
    try:
        return ScheduleStatus(value)
    except ValueError as e:
        raise ValidationError(f"Unknown schedule status: {value!r}") from e


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class ScheduleService:
    """State machine for scheduled submissions.

    Args:
        repository: Schedule storage.
        job_store: The user's jobs.
        sender: Where reminders and outcome notifications go.
        calendar: Calendar mirror; mirroring is best-effort.
        profiles: Fallback source of notification emails.
        default_timezone: Timezone recorded when the caller gives none.
        reminder_offsets: Minutes before the deadline for reminders.
        clock: Returns the current UTC time.
        sweeper: Used to expire overdue rows when listing; built from the
            other collaborators when omitted.
    """

    def __init__(
        self,
        repository: ScheduleRepository,
        job_store: JobRepository,
        sender: NotificationSender,
        calendar: CalendarSync | None = None,
        profiles: ProfileDirectory | None = None,
        *,
        default_timezone: str = DEFAULT_TIMEZONE,
        reminder_offsets: Sequence[int] = DEFAULT_REMINDER_OFFSETS,
        clock: Callable[[], datetime] = utcnow,
        sweeper: ExpirationSweeper | None = None,
    ):
        self.repository = repository
        self.job_store = job_store
        self.sender = sender
        self.calendar = calendar or NullCalendarSync()
        self.profiles = profiles
        self.default_timezone = default_timezone
        self.reminder_offsets = tuple(reminder_offsets)
        self.clock = clock
        self.sweeper = sweeper or ExpirationSweeper(
            repository, job_store, sender, self.calendar, clock=clock
        )

    # Notification email

    async def get_default_email(self, user_id: str) -> str | None:
        """Effective default email: stored setting, else the profile email.

        Raises:
            ValidationError: If the profile supplies a malformed email.
        """
        settings = await self.repository.get_settings(user_id)
        stored = settings.default_notification_email if settings else None
        profile = None if stored else await self._profile_email(user_id)
        resolved = resolve_notification_email(None, stored, profile)
        return normalize_email(resolved) or None

    async def set_default_email(self, user_id: str, email: str) -> str:
        """Store a user's default notification email.

        Raises:
            ValidationError: If the email is blank or malformed.
        """
        normalized = normalize_email(email)
        if not normalized:
            raise ValidationError("Notification email is required.")
        await self.repository.upsert_default_email(user_id, normalized, self.clock())
        return normalized

    async def _profile_email(self, user_id: str) -> str | None:
        if self.profiles is None:
            return None
        return await self.profiles.get_default_email(user_id)

    async def _resolve_email_for_create(self, user_id: str, explicit: str | None) -> str:
        explicit = normalize_email(explicit) or None
        settings = await self.repository.get_settings(user_id)
        stored = settings.default_notification_email if settings else None

        profile = None
        if not explicit and not stored:
            profile = await self._profile_email(user_id)

        resolved = resolve_notification_email(explicit, stored, profile)
        if not resolved:
            raise ValidationError(
                "No notification email is available. Please enter one and try again."
            )

        email = normalize_email(resolved)
        if email != stored:
            await self.repository.upsert_default_email(user_id, email, self.clock())
        return email

    # Lifecycle

    async def create_schedule(
        self,
        user_id: str,
        job_id: str,
        scheduled_at: datetime,
        deadline_at: datetime | None = None,
        notification_email: str | None = None,
        timezone: str | None = None,
    ) -> Schedule:
        """Schedule the submission of an 'interested' job.

        Raises:
            NotFoundError: If the job does not exist for the user.
            ValidationError: If the job is not 'interested' or no valid
                notification email can be resolved.
            ConflictError: If the job already has a scheduled submission.
        """
        job = await self.job_store.get(user_id, job_id)
        if job is None:
            raise NotFoundError("Job not found or access denied.")

        if job.status and job.status.lower() != JobStatus.INTERESTED.value:
            raise ValidationError(
                f'This job is currently marked as "{job.status}". '
                'Only "interested" jobs can be scheduled.'
            )

        existing = await self.repository.find_by_job(
            user_id, job_id, ScheduleStatus.SCHEDULED
        )
        if existing is not None:
            raise ConflictError(
                "A schedule already exists for this job. "
                "Please reschedule the existing item."
            )

        email = await self._resolve_email_for_create(user_id, notification_email)

        now = self.clock()
        scheduled_at = _as_utc(scheduled_at)
        deadline = _as_utc(deadline_at) or job.deadline_at
        tz = timezone or self.default_timezone
        reminders = (
            build_default_reminders(deadline, now, self.reminder_offsets) if deadline else []
        )

        schedule = Schedule(
            id=new_id(),
            user_id=user_id,
            job_id=job_id,
            scheduled_at=scheduled_at,
            timezone=tz,
            notification_email=email,
            status=ScheduleStatus.SCHEDULED,
            created_at=now,
            updated_at=now,
            deadline_at=deadline,
            reminders=reminders,
            audit=[
                AuditEntry(
                    at=now,
                    action=AuditAction.CREATED.value,
                    meta={"scheduled_at": scheduled_at.isoformat(), "timezone": tz},
                )
            ],
        )

        try:
            await self.repository.insert(schedule)
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                "A schedule already exists for this job. "
                "Please reschedule the existing item."
            ) from e

        logger.info("Scheduled job %s for user %s at %s", job_id, user_id, scheduled_at)

        await self._mirror(schedule, job)
        await best_effort(
            f"confirmation for schedule {schedule.id}",
            self.sender.send(
                scheduled_confirmation(email, job, scheduled_at, deadline, tz)
            ),
        )
        return schedule

    async def reschedule(
        self,
        user_id: str,
        schedule_id: str,
        scheduled_at: datetime,
        timezone: str | None = None,
    ) -> Schedule:
        """Move a scheduled submission to a new time.

        Raises:
            NotFoundError: If the schedule does not exist for the user.
            ConflictError: If the schedule is no longer 'scheduled'.
            ValidationError: If the new time is after the deadline.
        """
        schedule = await self._get_scheduled(user_id, schedule_id, "rescheduled")
        new_time = _as_utc(scheduled_at)

        if schedule.deadline_at and new_time > schedule.deadline_at:
            raise ValidationError("Scheduled time must be on/before the deadline")

        updated = await self.repository.update_scheduled_time(
            schedule_id,
            user_id,
            scheduled_at=new_time,
            timezone=timezone,
            at=self.clock(),
        )
        if not updated:
            raise ConflictError("Only scheduled items can be rescheduled")

        schedule = await self._reload(schedule_id)
        job = await best_effort(
            f"load job {schedule.job_id}", self.job_store.get(user_id, schedule.job_id)
        )
        await self._mirror(schedule, job)
        return schedule

    async def submit_now(
        self, user_id: str, schedule_id: str, source: str = "manual"
    ) -> Schedule:
        """Record a scheduled submission as submitted now.

        A schedule whose deadline already passed is expired instead, and the
        user is told about the missed deadline.

        Raises:
            NotFoundError: If the schedule does not exist for the user.
            ConflictError: If the schedule is no longer 'scheduled', including
                when a concurrent sweep or request got there first.
        """
        schedule = await self._get_scheduled(user_id, schedule_id, "submitted")
        now = self.clock()
        job = await self.job_store.get(user_id, schedule.job_id)

        if schedule.deadline_passed(now):
            claimed = await self.repository.transition(
                schedule_id,
                expected=ScheduleStatus.SCHEDULED,
                target=ScheduleStatus.EXPIRED,
                at=now,
                action=AuditAction.EXPIRED.value,
                meta={"reason": REASON_PAST_DEADLINE_ON_SUBMIT},
                user_id=user_id,
                expired_at=now,
            )
            if not claimed:
                raise ConflictError("Only scheduled items can be submitted")

            logger.info("Schedule %s missed its deadline on submit", schedule_id)
            if schedule.notification_email:
                await best_effort(
                    f"missed-deadline notification for schedule {schedule_id}",
                    self.sender.send(
                        missed_deadline(
                            schedule.notification_email,
                            job,
                            schedule.deadline_at,
                            schedule.scheduled_at,
                        )
                    ),
                )
        else:
            await self.job_store.update_status(
                user_id,
                schedule.job_id,
                JobStatus.APPLIED.value,
                note=f"Scheduled submission ({source})",
            )
            claimed = await self.repository.transition(
                schedule_id,
                expected=ScheduleStatus.SCHEDULED,
                target=ScheduleStatus.SUBMITTED,
                at=now,
                action=AuditAction.SUBMITTED.value,
                meta={"source": source},
                user_id=user_id,
                submitted_at=now,
            )
            if not claimed:
                raise ConflictError("Only scheduled items can be submitted")

            logger.info("Schedule %s submitted (%s)", schedule_id, source)
            if schedule.notification_email:
                await best_effort(
                    f"submitted notification for schedule {schedule_id}",
                    self.sender.send(
                        submitted_confirmation(schedule.notification_email, job, now)
                    ),
                )

        schedule = await self._reload(schedule_id)
        await self._mirror(schedule, job)
        return schedule

    async def cancel(self, user_id: str, schedule_id: str) -> Schedule:
        """Cancel a scheduled submission.

        Raises:
            NotFoundError: If the schedule does not exist for the user.
            ConflictError: If the schedule is no longer 'scheduled'.
        """
        await self._get_scheduled(user_id, schedule_id, "cancelled")
        claimed = await self.repository.transition(
            schedule_id,
            expected=ScheduleStatus.SCHEDULED,
            target=ScheduleStatus.CANCELLED,
            at=self.clock(),
            action=AuditAction.CANCELLED.value,
            user_id=user_id,
        )
        if not claimed:
            raise ConflictError("Only scheduled items can be cancelled")

        schedule = await self._reload(schedule_id)
        await best_effort(
            f"calendar delete for schedule {schedule_id}",
            self.calendar.delete_event(schedule),
        )
        return schedule

    # Queries

    async def list_schedules(
        self,
        user_id: str,
        status: ScheduleStatus | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[ScheduleListItem]:
        """List a user's schedules, newest scheduled time first.

        Overdue 'scheduled' rows are expired first so the listing never shows
        a schedule whose deadline already passed as still pending.
        """
        status_filter = _parse_status(status)
        await self.sweeper.process_expired_schedules(
            now=self.clock(), user_id=user_id, reason=REASON_PAST_DEADLINE_ON_LIST
        )

        schedules = await self.repository.list_for_user(
            user_id,
            status=status_filter,
            start=_as_utc(start),
            end=_as_utc(end),
        )
        job_ids = sorted({schedule.job_id for schedule in schedules})
        jobs = {job.id: job for job in await self.job_store.find(user_id, ids=job_ids)}

        return [
            ScheduleListItem(
                schedule=schedule, job=_job_summary(jobs.get(schedule.job_id))
            )
            for schedule in schedules
        ]

    async def list_eligible_jobs(self, user_id: str) -> list[Job]:
        """Interested, non-archived jobs that have no scheduled submission."""
        jobs = await self.job_store.list_interested(user_id)
        active = await self.repository.active_job_ids(user_id)
        return [job for job in jobs if job.id not in active]

    # Imports

    async def ensure_submitted_schedule(
        self,
        user_id: str,
        job_id: str,
        submitted_at: datetime,
        timezone: str | None = None,
        source: str = "import",
    ) -> tuple[Schedule, bool]:
        """Make sure an imported application has a 'submitted' schedule.

        Returns:
            The submitted schedule and whether this call created it.
        """
        existing = await self.repository.find_by_job(
            user_id, job_id, ScheduleStatus.SUBMITTED
        )
        if existing is not None:
            return existing, False

        now = self.clock()
        at = _as_utc(submitted_at) or now
        schedule = Schedule(
            id=new_id(),
            user_id=user_id,
            job_id=job_id,
            scheduled_at=at,
            timezone=timezone or self.default_timezone,
            notification_email="",
            status=ScheduleStatus.SUBMITTED,
            created_at=now,
            updated_at=now,
            submitted_at=at,
            audit=[
                AuditEntry(
                    at=now,
                    action=AuditAction.IMPORTED_SUBMITTED.value,
                    meta={"source": source},
                )
            ],
        )
        await self.repository.insert(schedule)
        logger.debug("Recorded imported submission %s for job %s", schedule.id, job_id)
        return schedule, True

    # Helpers

    async def _get_scheduled(self, user_id: str, schedule_id: str, verb: str) -> Schedule:
        schedule = await self.repository.get(schedule_id, user_id=user_id)
        if schedule is None:
            raise NotFoundError("Schedule not found")
        if schedule.status is not ScheduleStatus.SCHEDULED:
            raise ConflictError(f"Only scheduled items can be {verb}")
        return schedule

    async def _reload(self, schedule_id: str) -> Schedule:
        schedule = await self.repository.get(schedule_id)
        if schedule is None:
            raise NotFoundError("Schedule not found")
        return schedule

    async def _mirror(self, schedule: Schedule, job: Job | None) -> None:
        event_id = await best_effort(
            f"calendar sync for schedule {schedule.id}",
            self.calendar.upsert_event(schedule, job),
        )
        if event_id and event_id != schedule.calendar_event_id:
            schedule.calendar_event_id = event_id
            await best_effort(
                f"store calendar event for schedule {schedule.id}",
                self.repository.set_calendar_event_id(schedule.id, event_id),
            )


def _job_summary(job: Job | None) -> dict[str, Any] | None:
    if job is None:
        return None
    return {
        "id": job.id,
        "title": job.title,
        "company": job.company,
        "status": job.status,
    }
