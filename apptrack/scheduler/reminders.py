"""Deadline reminders for scheduled submissions."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from apptrack.notifications import NotificationSender, deadline_reminder
from apptrack.scheduler.models import ReminderEntry, ReminderRunResult
from apptrack.scheduler.repository import ScheduleRepository
from apptrack.storage import utcnow

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_OFFSETS = (1440, 180, 60)
DEADLINE_REMINDER = "deadline"


def build_default_reminders(
    deadline_at: datetime,
    now: datetime,
    offsets: Sequence[int] = DEFAULT_REMINDER_OFFSETS,
) -> list[ReminderEntry]:
    """Build deadline reminders, dropping any that would fire in the past."""
    reminders = [
        ReminderEntry(
            kind=DEADLINE_REMINDER,
            offset_minutes=minutes,
            remind_at=deadline_at - timedelta(minutes=minutes),
        )
        for minutes in offsets
    ]
    return [reminder for reminder in reminders if reminder.remind_at > now]


class ReminderDispatcher:
    """Sends due reminders for still-scheduled submissions.

    Delivery is at-least-once: a reminder is marked sent only after the
    sender returns, so a failed send is retried on the next run, and two
    overlapping runs may both send it. ``sent_at`` is only ever set once.
    There is no timer here; something external calls
    ``process_due_reminders`` periodically.
    """

    def __init__(
        self,
        repository: ScheduleRepository,
        sender: NotificationSender,
        *,
        batch_size: int = 50,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.sender = sender
        self.batch_size = batch_size
        self.clock = clock

    async def process_due_reminders(self, now: datetime | None = None) -> ReminderRunResult:
        """Send every unsent reminder due at or before ``now``.

        Args:
            now: Evaluation time; defaults to the clock.

        Returns:
            Counts of schedules scanned, reminders sent and sends that failed.
        """
        now = now or self.clock()
        result = ReminderRunResult()

        schedules = await self.repository.find_with_due_reminders(
            now, limit=self.batch_size
        )
        for schedule in schedules:
            result.schedules += 1
            for reminder in schedule.reminders:
                if not reminder.is_due(now):
                    continue
                notification = deadline_reminder(
                    schedule.notification_email,
                    schedule.job_id,
                    schedule.deadline_at,
                    reminder.offset_minutes,
                )
                try:
                    await self.sender.send(notification)
                except Exception:
                    result.failed += 1
                    logger.warning(
                        "Reminder %s for schedule %s failed; will retry",
                        reminder.id,
                        schedule.id,
                        exc_info=True,
                    )
                    continue

                result.sent += 1
                if not await self.repository.mark_reminder_sent(reminder.id, now):
                    logger.debug("Reminder %s was already marked sent", reminder.id)

        if result.schedules:
            logger.info(
                "Reminder run: %d schedules, %d sent, %d failed",
                result.schedules,
                result.sent,
                result.failed,
            )
        return result
