"""Calendar mirroring contract for schedules.

Only the contract and the provider-neutral event body live here; talking to
an actual calendar provider is up to the implementation passed in.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any

from apptrack.jobs import Job
from apptrack.scheduler.models import Schedule, ScheduleStatus

EVENT_DURATION = timedelta(minutes=30)

# Google Calendar colorId values
STATUS_COLORS = {
    ScheduleStatus.SCHEDULED: "9",
    ScheduleStatus.SUBMITTED: "10",
    ScheduleStatus.CANCELLED: "8",
    ScheduleStatus.EXPIRED: "11",
}


class CalendarSync(ABC):
    """Mirrors schedules to an external calendar."""

    @abstractmethod
    async def upsert_event(self, schedule: Schedule, job: Job | None) -> str | None:
        """Create or update the schedule's event and return its id."""
        ...

    @abstractmethod
    async def delete_event(self, schedule: Schedule) -> None:
        """Remove the schedule's event, if it has one."""
        ...


class NullCalendarSync(CalendarSync):
    """Calendar sync that mirrors nothing."""

    async def upsert_event(self, schedule: Schedule, job: Job | None) -> str | None:
        return schedule.calendar_event_id

    async def delete_event(self, schedule: Schedule) -> None:
        return None


def compute_schedule_color(status: ScheduleStatus) -> str:
    return STATUS_COLORS.get(status, STATUS_COLORS[ScheduleStatus.SCHEDULED])


def build_calendar_event(schedule: Schedule, job: Job | None) -> dict[str, Any]:
    """Build the event body for a schedule.

    Args:
        schedule: The schedule being mirrored.
        job: The schedule's job, when it could be loaded.

    Returns:
        A dict with title, description, start, end, timezone and color.
    """
    title = job.title if job else "Job"
    summary = f"Apply: {title}"
    if job and job.company:
        summary += f" @ {job.company}"
    if schedule.status is not ScheduleStatus.SCHEDULED:
        summary = f"[{schedule.status.value}] {summary}"

    description = [f"Status: {schedule.status.value}"]
    if schedule.deadline_at:
        description.append(f"Deadline: {schedule.deadline_at.isoformat()}")
    if job and job.posting_url:
        description.append(f"Posting: {job.posting_url}")

    return {
        "title": summary,
        "description": "\n".join(description),
        "start": schedule.scheduled_at.isoformat(),
        "end": (schedule.scheduled_at + EVENT_DURATION).isoformat(),
        "timezone": schedule.timezone,
        "color": compute_schedule_color(schedule.status),
    }
