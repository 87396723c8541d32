"""Pytest configuration and shared fixtures."""

from datetime import UTC, datetime, timedelta

import pytest


class FakeClock:
    """Callable clock whose time only moves when a test says so."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSender:
    """Notification sender that keeps what it was asked to send."""

    def __init__(self):
        self.sent = []

    async def send(self, notification) -> None:
        self.sent.append(notification)

    def subjects(self) -> list[str]:
        return [notification.subject for notification in self.sent]


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at 2024-01-01 12:00 UTC."""
    return FakeClock(datetime(2024, 1, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "apptrack.db"


@pytest.fixture
async def job_repo(db_path):
    from apptrack.jobs import JobRepository

    repo = JobRepository(db_path)
    await repo.initialize()
    yield repo
    await repo.close()


@pytest.fixture
async def tracker_repo(db_path):
    from apptrack.tracker.repository import TrackerRepository

    repo = TrackerRepository(db_path)
    await repo.initialize()
    yield repo
    await repo.close()


@pytest.fixture
async def schedule_repo(db_path):
    from apptrack.scheduler.repository import ScheduleRepository

    repo = ScheduleRepository(db_path)
    await repo.initialize()
    yield repo
    await repo.close()
