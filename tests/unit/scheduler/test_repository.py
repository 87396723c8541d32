"""Tests for the ScheduleRepository database layer."""

import asyncio
import sqlite3
from datetime import UTC, datetime, timedelta

import pytest

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def _schedule(**overrides):
    from apptrack.scheduler.models import AuditEntry, ReminderEntry, Schedule, ScheduleStatus

    data = {
        "id": "sch-1",
        "user_id": "u1",
        "job_id": "job-1",
        "scheduled_at": NOW + timedelta(days=1),
        "timezone": "America/New_York",
        "notification_email": "me@example.com",
        "status": ScheduleStatus.SCHEDULED,
        "created_at": NOW,
        "updated_at": NOW,
        "deadline_at": NOW + timedelta(days=2),
        "reminders": [
            ReminderEntry(kind="deadline", offset_minutes=60, remind_at=NOW + timedelta(hours=47))
        ],
        "audit": [AuditEntry(at=NOW, action="created", meta={"timezone": "America/New_York"})],
    }
    data.update(overrides)
    return Schedule(**data)


class TestInsertAndGet:
    """Test schedule insertion and lookup."""

    @pytest.mark.asyncio
    async def test_insert_and_get(self, schedule_repo):
        await schedule_repo.insert(_schedule())

        stored = await schedule_repo.get("sch-1")

        assert stored.status.value == "scheduled"
        assert stored.deadline_at == NOW + timedelta(days=2)
        assert len(stored.reminders) == 1
        assert stored.reminders[0].id is not None
        assert stored.reminders[0].sent_at is None
        assert [entry.action for entry in stored.audit] == ["created"]
        assert stored.audit[0].meta == {"timezone": "America/New_York"}

    @pytest.mark.asyncio
    async def test_get_scoped_to_user(self, schedule_repo):
        await schedule_repo.insert(_schedule())

        assert await schedule_repo.get("sch-1", user_id="u2") is None
        assert await schedule_repo.get("sch-1", user_id="u1") is not None

    @pytest.mark.asyncio
    async def test_second_active_schedule_for_job_is_rejected(self, schedule_repo):
        """Only one 'scheduled' row may exist per (user, job)."""
        await schedule_repo.insert(_schedule())

        with pytest.raises(sqlite3.IntegrityError):
            await schedule_repo.insert(_schedule(id="sch-2", reminders=[], audit=[]))

        assert await schedule_repo.get("sch-2") is None

    @pytest.mark.asyncio
    async def test_terminal_rows_do_not_block_a_new_schedule(self, schedule_repo):
        from apptrack.scheduler.models import ScheduleStatus

        await schedule_repo.insert(_schedule())
        await schedule_repo.transition(
            "sch-1",
            expected=ScheduleStatus.SCHEDULED,
            target=ScheduleStatus.CANCELLED,
            at=NOW,
            action="cancelled",
        )

        await schedule_repo.insert(_schedule(id="sch-2", reminders=[], audit=[]))

        assert await schedule_repo.active_job_ids("u1") == {"job-1"}

    @pytest.mark.asyncio
    async def test_find_by_job(self, schedule_repo):
        from apptrack.scheduler.models import ScheduleStatus

        await schedule_repo.insert(_schedule())

        found = await schedule_repo.find_by_job("u1", "job-1", ScheduleStatus.SCHEDULED)
        missing = await schedule_repo.find_by_job("u1", "job-1", ScheduleStatus.SUBMITTED)

        assert found.id == "sch-1"
        assert missing is None

    @pytest.mark.asyncio
    async def test_list_for_user_filters_and_orders(self, schedule_repo):
        from apptrack.scheduler.models import ScheduleStatus

        await schedule_repo.insert(_schedule(id="early", job_id="job-1"))
        await schedule_repo.insert(
            _schedule(id="late", job_id="job-2", scheduled_at=NOW + timedelta(days=5))
        )
        await schedule_repo.insert(
            _schedule(id="done", job_id="job-3", status=ScheduleStatus.SUBMITTED)
        )

        everything = await schedule_repo.list_for_user("u1")
        scheduled = await schedule_repo.list_for_user("u1", status=ScheduleStatus.SCHEDULED)
        windowed = await schedule_repo.list_for_user("u1", start=NOW + timedelta(days=3))

        assert [item.id for item in everything][0] == "late"
        assert {item.id for item in scheduled} == {"early", "late"}
        assert [item.id for item in windowed] == ["late"]


class TestTransition:
    """Test conditional status changes."""

    @pytest.mark.asyncio
    async def test_transition_claims_and_audits(self, schedule_repo):
        from apptrack.scheduler.models import ScheduleStatus

        await schedule_repo.insert(_schedule())
        later = NOW + timedelta(hours=1)

        claimed = await schedule_repo.transition(
            "sch-1",
            expected=ScheduleStatus.SCHEDULED,
            target=ScheduleStatus.SUBMITTED,
            at=later,
            action="submitted",
            meta={"source": "manual"},
            submitted_at=later,
        )

        stored = await schedule_repo.get("sch-1")
        assert claimed is True
        assert stored.status is ScheduleStatus.SUBMITTED
        assert stored.submitted_at == later
        assert stored.updated_at == later
        assert [entry.action for entry in stored.audit] == ["created", "submitted"]
        assert stored.audit[-1].meta == {"source": "manual"}

    @pytest.mark.asyncio
    async def test_transition_from_wrong_status_changes_nothing(self, schedule_repo):
        """A lost compare-and-swap must not write an audit entry."""
        from apptrack.scheduler.models import ScheduleStatus

        await schedule_repo.insert(_schedule(status=ScheduleStatus.CANCELLED))

        claimed = await schedule_repo.transition(
            "sch-1",
            expected=ScheduleStatus.SCHEDULED,
            target=ScheduleStatus.EXPIRED,
            at=NOW,
            action="expired",
            expired_at=NOW,
        )

        stored = await schedule_repo.get("sch-1")
        assert claimed is False
        assert stored.status is ScheduleStatus.CANCELLED
        assert stored.expired_at is None
        assert [entry.action for entry in stored.audit] == ["created"]

    @pytest.mark.asyncio
    async def test_transition_respects_owner(self, schedule_repo):
        from apptrack.scheduler.models import ScheduleStatus

        await schedule_repo.insert(_schedule())

        claimed = await schedule_repo.transition(
            "sch-1",
            expected=ScheduleStatus.SCHEDULED,
            target=ScheduleStatus.CANCELLED,
            at=NOW,
            action="cancelled",
            user_id="u2",
        )

        assert claimed is False

    @pytest.mark.asyncio
    async def test_transition_rejects_unknown_fields(self, schedule_repo):
        from apptrack.scheduler.models import ScheduleStatus

        with pytest.raises(ValueError, match="notification_email"):
            await schedule_repo.transition(
                "sch-1",
                expected=ScheduleStatus.SCHEDULED,
                target=ScheduleStatus.CANCELLED,
                at=NOW,
                action="cancelled",
                notification_email=None,
            )

    @pytest.mark.asyncio
    async def test_racing_transitions_have_one_winner(self, db_path, schedule_repo):
        """Two connections racing on one row: exactly one claims it."""
        from apptrack.scheduler.models import ScheduleStatus
        from apptrack.scheduler.repository import ScheduleRepository

        await schedule_repo.insert(_schedule())
        other = ScheduleRepository(db_path)
        await other.initialize()
        try:
            results = await asyncio.gather(
                schedule_repo.transition(
                    "sch-1",
                    expected=ScheduleStatus.SCHEDULED,
                    target=ScheduleStatus.SUBMITTED,
                    at=NOW,
                    action="submitted",
                    submitted_at=NOW,
                ),
                other.transition(
                    "sch-1",
                    expected=ScheduleStatus.SCHEDULED,
                    target=ScheduleStatus.EXPIRED,
                    at=NOW,
                    action="expired",
                    expired_at=NOW,
                ),
            )
        finally:
            await other.close()

        stored = await schedule_repo.get("sch-1")
        assert sorted(results) == [False, True]
        assert len(stored.audit) == 2
        assert stored.audit[-1].action == stored.status.value

    @pytest.mark.asyncio
    async def test_failed_write_does_not_roll_back_open_transaction(self, schedule_repo):
        """A failing insert waits for an open transaction instead of undoing it."""
        await schedule_repo.insert(_schedule())
        started = asyncio.Event()
        release = asyncio.Event()

        async def claim():
            async with schedule_repo._transaction() as conn:
                cursor = await conn.execute(
                    "UPDATE schedules SET status = 'submitted' WHERE id = 'sch-1'"
                )
                started.set()
                await release.wait()
            return cursor.rowcount

        claimer = asyncio.create_task(claim())
        await started.wait()
        duplicate = asyncio.create_task(schedule_repo.insert(_schedule(job_id="job-2")))
        await asyncio.sleep(0.05)
        assert not duplicate.done()

        release.set()
        assert await claimer == 1
        with pytest.raises(sqlite3.IntegrityError):
            await duplicate

        stored = await schedule_repo.get("sch-1")
        assert stored.status.value == "submitted"

    @pytest.mark.asyncio
    async def test_update_scheduled_time(self, schedule_repo):
        await schedule_repo.insert(_schedule())
        new_time = NOW + timedelta(hours=30)

        updated = await schedule_repo.update_scheduled_time(
            "sch-1", "u1", scheduled_at=new_time, timezone="Europe/London", at=NOW
        )

        stored = await schedule_repo.get("sch-1")
        assert updated is True
        assert stored.scheduled_at == new_time
        assert stored.timezone == "Europe/London"
        assert stored.audit[-1].action == "rescheduled"

    @pytest.mark.asyncio
    async def test_update_scheduled_time_requires_scheduled(self, schedule_repo):
        from apptrack.scheduler.models import ScheduleStatus

        await schedule_repo.insert(_schedule(status=ScheduleStatus.EXPIRED))

        updated = await schedule_repo.update_scheduled_time(
            "sch-1", "u1", scheduled_at=NOW, timezone=None, at=NOW
        )

        assert updated is False


class TestOverdueAndReminders:
    """Test the queries used by the background jobs."""

    @pytest.mark.asyncio
    async def test_find_overdue_includes_deadline_equal_to_now(self, schedule_repo):
        await schedule_repo.insert(_schedule(id="due", job_id="job-1", deadline_at=NOW))
        await schedule_repo.insert(
            _schedule(id="future", job_id="job-2", deadline_at=NOW + timedelta(seconds=1))
        )
        await schedule_repo.insert(_schedule(id="none", job_id="job-3", deadline_at=None))

        overdue = await schedule_repo.find_overdue(NOW, limit=10)

        assert [item.id for item in overdue] == ["due"]

    @pytest.mark.asyncio
    async def test_find_overdue_scoped_to_user(self, schedule_repo):
        await schedule_repo.insert(_schedule(id="a", deadline_at=NOW))
        await schedule_repo.insert(_schedule(id="b", user_id="u2", deadline_at=NOW))

        overdue = await schedule_repo.find_overdue(NOW, limit=10, user_id="u2")

        assert [item.id for item in overdue] == ["b"]

    @pytest.mark.asyncio
    async def test_find_with_due_reminders(self, schedule_repo):
        await schedule_repo.insert(_schedule())

        before = await schedule_repo.find_with_due_reminders(NOW, limit=10)
        after = await schedule_repo.find_with_due_reminders(NOW + timedelta(hours=47), limit=10)

        assert before == []
        assert [item.id for item in after] == ["sch-1"]

    @pytest.mark.asyncio
    async def test_mark_reminder_sent_only_once(self, schedule_repo):
        """sent_at moves from None to a timestamp exactly once."""
        schedule = _schedule()
        await schedule_repo.insert(schedule)
        reminder_id = schedule.reminders[0].id
        first_at = NOW + timedelta(hours=47)

        assert await schedule_repo.mark_reminder_sent(reminder_id, first_at) is True
        assert await schedule_repo.mark_reminder_sent(reminder_id, first_at + timedelta(hours=1)) is False

        stored = await schedule_repo.get("sch-1")
        assert stored.reminders[0].sent_at == first_at
        assert await schedule_repo.find_with_due_reminders(first_at, limit=10) == []


class TestSettings:
    """Test per-user scheduler settings."""

    @pytest.mark.asyncio
    async def test_no_settings(self, schedule_repo):
        assert await schedule_repo.get_settings("u1") is None

    @pytest.mark.asyncio
    async def test_upsert_default_email(self, schedule_repo):
        await schedule_repo.upsert_default_email("u1", "a@example.com", NOW)
        await schedule_repo.upsert_default_email("u1", "b@example.com", NOW + timedelta(days=1))

        settings = await schedule_repo.get_settings("u1")

        assert settings.default_notification_email == "b@example.com"
        assert settings.updated_at == NOW + timedelta(days=1)
