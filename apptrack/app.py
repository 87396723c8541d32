"""Wiring of repositories and services from settings."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from apptrack.config import Settings, get_settings
from apptrack.jobs import JobRepository
from apptrack.notifications import (
    LoggingNotificationSender,
    NotificationSender,
    OutboxNotificationSender,
)
from apptrack.profiles import ProfileDirectory
from apptrack.scheduler import (
    CalendarSync,
    ExpirationSweeper,
    NullCalendarSync,
    ReminderDispatcher,
    ScheduleRepository,
    ScheduleService,
)
from apptrack.storage import utcnow
from apptrack.tracker import ImportService, TrackerRepository

logger = logging.getLogger(__name__)


@dataclass
class App:
    """Everything a command needs, bound to one database file."""

    settings: Settings
    jobs: JobRepository
    tracker_repository: TrackerRepository
    schedule_repository: ScheduleRepository
    schedules: ScheduleService
    imports: ImportService
    reminders: ReminderDispatcher
    sweeper: ExpirationSweeper


def build_sender(settings: Settings) -> NotificationSender:
    if settings.outbox_path is not None:
        return OutboxNotificationSender(settings.outbox_path)
    return LoggingNotificationSender()


@asynccontextmanager
async def open_app(
    settings: Settings | None = None,
    *,
    db_path: Path | str | None = None,
    sender: NotificationSender | None = None,
    calendar: CalendarSync | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> AsyncGenerator[App, None]:
    """Open the repositories and build the services.

    Args:
        settings: Settings to use; defaults to the settings singleton.
        db_path: Overrides ``settings.db_path``.
        sender: Notification sender; built from settings when omitted.
        calendar: Calendar sync; mirrors nothing when omitted.
        clock: Returns the current UTC time.

    Yields:
        The wired ``App``. Connections are closed on exit.
    """
    settings = settings or get_settings()
    path = Path(db_path) if db_path is not None else settings.db_path
    sender = sender or build_sender(settings)
    calendar = calendar or NullCalendarSync()

    jobs = JobRepository(path)
    tracker_repository = TrackerRepository(path)
    schedule_repository = ScheduleRepository(path)
    repositories = (jobs, tracker_repository, schedule_repository)

    try:
        for repository in repositories:
            await repository.initialize()

        sweeper = ExpirationSweeper(
            schedule_repository,
            jobs,
            sender,
            calendar,
            batch_size=settings.expiration_batch_size,
            clock=clock,
        )
        schedules = ScheduleService(
            schedule_repository,
            jobs,
            sender,
            calendar,
            ProfileDirectory(settings.profiles_path),
            default_timezone=settings.default_timezone,
            reminder_offsets=settings.reminder_offsets_minutes,
            clock=clock,
            sweeper=sweeper,
        )
        imports = ImportService(
            tracker_repository,
            jobs,
            schedules,
            default_timezone=settings.default_timezone,
            clock=clock,
        )
        reminders = ReminderDispatcher(
            schedule_repository,
            sender,
            batch_size=settings.reminder_batch_size,
            clock=clock,
        )
        logger.debug("Opened apptrack database at %s", path)

        yield App(
            settings=settings,
            jobs=jobs,
            tracker_repository=tracker_repository,
            schedule_repository=schedule_repository,
            schedules=schedules,
            imports=imports,
            reminders=reminders,
            sweeper=sweeper,
        )
    finally:
        for repository in repositories:
            await repository.close()
