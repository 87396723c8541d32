"""Expiration sweep for schedules whose deadline passed."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from apptrack.errors import best_effort
from apptrack.jobs import JobRepository
from apptrack.notifications import NotificationSender, missed_deadline
from apptrack.scheduler.calendar import CalendarSync, NullCalendarSync
from apptrack.scheduler.models import AuditAction, Schedule, ScheduleStatus, SweepResult
from apptrack.scheduler.repository import ScheduleRepository
from apptrack.storage import utcnow

logger = logging.getLogger(__name__)


class ExpirationSweeper:
    """Moves overdue ``scheduled`` schedules to ``expired``.

    Several sweepers (in one process or many) may run at once. Each row is
    claimed with a conditional update, so only one of them expires it and
    only the winner sends the missed-deadline notification.
    """

    def __init__(
        self,
        repository: ScheduleRepository,
        job_store: JobRepository,
        sender: NotificationSender,
        calendar: CalendarSync | None = None,
        *,
        batch_size: int = 200,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.job_store = job_store
        self.sender = sender
        self.calendar = calendar or NullCalendarSync()
        self.batch_size = batch_size
        self.clock = clock

    async def process_expired_schedules(
        self,
        batch_size: int | None = None,
        now: datetime | None = None,
        *,
        user_id: str | None = None,
        reason: str | None = None,
    ) -> SweepResult:
        """Expire every ``scheduled`` schedule with ``deadline_at <= now``.

        Pages through overdue rows until a page holds nothing this run has
        not already tried. Rows that fail stay ``scheduled`` and are picked
        up by a later run.

        Args:
            batch_size: Page size; defaults to the configured batch size.
            now: Evaluation time; defaults to the clock.
            user_id: Only sweep this user's schedules.
            reason: Recorded in the audit entry's meta.

        Returns:
            Counts of expired, skipped (claimed elsewhere) and failed rows.
        """
        now = now or self.clock()
        limit = batch_size or self.batch_size
        result = SweepResult()
        seen: set[str] = set()

        while True:
            page = await self.repository.find_overdue(now, limit=limit, user_id=user_id)
            fresh = [schedule for schedule in page if schedule.id not in seen]
            if not fresh:
                break

            for schedule in fresh:
                seen.add(schedule.id)
                try:
                    claimed = await self._expire(schedule, now, reason)
                except Exception:
                    result.failed += 1
                    logger.exception("Failed to expire schedule %s", schedule.id)
                    continue

                if not claimed:
                    result.skipped += 1
                    continue

                result.processed += 1
                result.expired_ids.append(schedule.id)
                await self._after_expire(schedule)

        if result.processed or result.failed:
            logger.info(
                "Expiration sweep: %d expired, %d skipped, %d failed",
                result.processed,
                result.skipped,
                result.failed,
            )
        return result

    async def _expire(self, schedule: Schedule, now: datetime, reason: str | None) -> bool:
        meta = {
            "deadline_at": schedule.deadline_at.isoformat() if schedule.deadline_at else None
        }
        if reason:
            meta["reason"] = reason

        claimed = await self.repository.transition(
            schedule.id,
            expected=ScheduleStatus.SCHEDULED,
            target=ScheduleStatus.EXPIRED,
            at=now,
            action=AuditAction.EXPIRED.value,
            meta=meta,
            expired_at=now,
            last_processed_at=now,
        )
        if claimed:
            schedule.status = ScheduleStatus.EXPIRED
            schedule.expired_at = now
            schedule.last_processed_at = now
            schedule.updated_at = now
        return claimed

    async def _after_expire(self, schedule: Schedule) -> None:
        job = await best_effort(
            f"load job {schedule.job_id}",
            self.job_store.get(schedule.user_id, schedule.job_id),
        )
        await best_effort(
            f"calendar sync for schedule {schedule.id}",
            self.calendar.upsert_event(schedule, job),
        )
        if schedule.notification_email:
            await best_effort(
                f"missed-deadline notification for schedule {schedule.id}",
                self.sender.send(
                    missed_deadline(
                        schedule.notification_email,
                        job,
                        schedule.deadline_at,
                        schedule.scheduled_at,
                    )
                ),
            )
