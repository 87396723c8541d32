"""Scheduled application submissions.

Public API:
- ScheduleService: create/reschedule/submit/cancel/list schedules
- ReminderDispatcher: send due deadline reminders
- ExpirationSweeper: expire schedules whose deadline passed
- ScheduleRepository: storage for schedules, reminders, audit and settings
"""

from apptrack.scheduler.calendar import CalendarSync, NullCalendarSync, build_calendar_event
from apptrack.scheduler.models import (
    AuditAction,
    ReminderEntry,
    ReminderRunResult,
    Schedule,
    ScheduleListItem,
    ScheduleStatus,
    SweepResult,
)
from apptrack.scheduler.reminders import ReminderDispatcher, build_default_reminders
from apptrack.scheduler.repository import ScheduleRepository
from apptrack.scheduler.service import (
    ScheduleService,
    normalize_email,
    resolve_notification_email,
)
from apptrack.scheduler.sweeper import ExpirationSweeper

__all__ = [
    "ScheduleService",
    "ScheduleRepository",
    "ReminderDispatcher",
    "ExpirationSweeper",
    "CalendarSync",
    "NullCalendarSync",
    "build_calendar_event",
    "build_default_reminders",
    "normalize_email",
    "resolve_notification_email",
    "Schedule",
    "ScheduleStatus",
    "ScheduleListItem",
    "ReminderEntry",
    "ReminderRunResult",
    "SweepResult",
    "AuditAction",
]
