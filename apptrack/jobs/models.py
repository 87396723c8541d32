"""Data models for the job store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Pipeline status of a job."""

    INTERESTED = "interested"
    APPLIED = "applied"
    PHONE_SCREEN = "phone_screen"
    INTERVIEW = "interview"
    OFFER = "offer"
    REJECTED = "rejected"


class ApplicationMethod(str, Enum):
    """How the application was sent."""

    ONLINE_FORM = "Online Form"
    EASY_APPLY = "Easy Apply"
    EMAIL = "Email"
    REFERRAL = "Referral"
    OTHER = "Other"


class ApplicationSource(str, Enum):
    """Where the job was found."""

    LINKEDIN = "LinkedIn"
    INDEED = "Indeed"
    GLASSDOOR = "Glassdoor"
    COMPANY_SITE = "Company Site"
    REFERRAL = "Referral"
    OTHER = "Other"


@dataclass
class StatusChange:
    """One entry of a job's status history."""

    status: str
    timestamp: datetime
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "note": self.note,
        }


@dataclass
class Job:
    """A job tracked for one user.

    Attributes:
        id: Record id.
        user_id: Owning user.
        title: Job title as entered or imported.
        company: Company name.
        status: Current pipeline status.
        location: Job location, empty when unknown.
        application_method: Enum-constrained application method label.
        application_source: Enum-constrained application source label.
        posting_url: URL of the posting, empty when unknown.
        deadline_at: Application deadline, if the posting has one.
        archived: Hidden from scheduling when True.
        status_history: Ordered status changes.
        history: Free-text application history lines.
    """

    id: str
    user_id: str
    title: str
    company: str
    status: str
    created_at: datetime
    updated_at: datetime
    location: str = ""
    application_method: str = ApplicationMethod.OTHER.value
    application_source: str = ApplicationSource.OTHER.value
    posting_url: str = ""
    deadline_at: datetime | None = None
    archived: bool = False
    status_history: list[StatusChange] = field(default_factory=list)
    history: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the job to a JSON-friendly dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "company": self.company,
            "status": self.status,
            "location": self.location,
            "application_method": self.application_method,
            "application_source": self.application_source,
            "posting_url": self.posting_url,
            "deadline_at": self.deadline_at.isoformat() if self.deadline_at else None,
            "archived": self.archived,
            "status_history": [entry.to_dict() for entry in self.status_history],
            "history": list(self.history),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class JobCreate:
    """Fields accepted when creating a job."""

    title: str
    company: str
    status: str = JobStatus.INTERESTED.value
    location: str = ""
    application_method: str = ApplicationMethod.OTHER.value
    application_source: str = ApplicationSource.OTHER.value
    posting_url: str = ""
    deadline_at: datetime | None = None
    status_history: list[StatusChange] = field(default_factory=list)
