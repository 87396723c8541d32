"""Notification sender contract and local implementations.

Rendering and delivering real email is somebody else's job; the scheduler
only hands a ``Notification`` to whatever sender it was given.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from apptrack.storage import utcnow

logger = logging.getLogger(__name__)

DEFAULT_JOB_TITLE = "Job"


@dataclass(frozen=True)
class Notification:
    """A plain-text message for one recipient."""

    to: str
    subject: str
    text: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class NotificationSender(ABC):
    """Delivers a ``Notification``."""

    @abstractmethod
    async def send(self, notification: Notification) -> None:
        """Deliver one notification."""
        ...


class LoggingNotificationSender(NotificationSender):
    """Sender that only writes notifications to the log."""

    async def send(self, notification: Notification) -> None:
        logger.info(
            "Notification to %s: %s", notification.to, notification.subject
        )


class OutboxNotificationSender(NotificationSender):
    """Sender that appends each notification to a JSON Lines outbox file.

    The outbox is append-only; another process may pick messages up from it.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def send(self, notification: Notification) -> None:
        record = {"queued_at": utcnow().isoformat(), **notification.to_dict()}
        async with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
        logger.debug("Queued notification to %s in %s", notification.to, self.path)

    def read_all(self) -> list[dict[str, Any]]:
        """Read every queued notification, oldest first."""
        if not self.path.exists():
            return []
        with open(self.path, encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]


def _fmt(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M %Z").strip() if value else "N/A"


def _job_label(job: Any) -> tuple[str, str]:
    title = getattr(job, "title", None) or DEFAULT_JOB_TITLE
    company = getattr(job, "company", None) or ""
    return title, company


def scheduled_confirmation(
    to: str,
    job: Any,
    scheduled_at: datetime,
    deadline_at: datetime | None,
    timezone: str,
) -> Notification:
    title, _ = _job_label(job)
    lines = [f"Scheduled submission: {_fmt(scheduled_at)}"]
    if deadline_at:
        lines.append(f"Deadline: {_fmt(deadline_at)}")
    lines.append(f"Timezone: {timezone}")
    return Notification(
        to=to, subject=f"Application scheduled: {title}", text="\n".join(lines) + "\n"
    )


def submitted_confirmation(to: str, job: Any, submitted_at: datetime) -> Notification:
    title, _ = _job_label(job)
    return Notification(
        to=to,
        subject=f"Application submitted (scheduled): {title}",
        text=(
            "Your scheduled submission was recorded as submitted at "
            f"{_fmt(submitted_at)}."
        ),
    )


def missed_deadline(
    to: str,
    job: Any,
    deadline_at: datetime | None,
    scheduled_at: datetime | None,
) -> Notification:
    title, company = _job_label(job)
    subject = f"Missed deadline: {title}"
    if company:
        subject += f" ({company})"
    return Notification(
        to=to,
        subject=subject,
        text=(
            "This scheduled application was marked expired because the deadline passed.\n"
            f"Deadline: {_fmt(deadline_at)}\n"
            f"Scheduled time: {_fmt(scheduled_at)}\n"
        ),
    )


def deadline_reminder(
    to: str, job_id: str, deadline_at: datetime | None, offset_minutes: int
) -> Notification:
    return Notification(
        to=to,
        subject="Application reminder",
        text=(
            f"Reminder: your application for job {job_id} is due soon "
            f"({_fmt(deadline_at)}, {offset_minutes} minutes before the deadline)."
        ),
    )
