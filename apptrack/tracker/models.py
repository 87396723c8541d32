"""Data models for the import pipeline.

``ImportPayload`` is the single boundary between loosely-shaped external
records (email scans, browser imports, manual entry) and the strict
``NormalizedEvent`` the pipeline works with. Historical field-name aliases
are resolved here and nowhere else.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from apptrack.errors import ValidationError
from apptrack.tracker.extraction import extract_job_details_from_email
from apptrack.tracker.fingerprint import normalize_url

UNKNOWN = "unknown"


def parse_datetime_maybe(value: Any) -> datetime | None:
    """Parse a date or datetime, returning None for anything unparseable.

    Date-only strings become midnight UTC; naive datetimes are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class MatchVia(str, Enum):
    """How the job identity resolver found (or did not find) a job."""

    FINGERPRINT_MAP = "fingerprint_map"
    LOOSE_JOB_MATCH = "loose_job_match"
    NONE = "none"


class ImportPayload(BaseModel):
    """Free-form import payload as received from a source."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    job_title: str | None = Field(
        default=None, validation_alias=AliasChoices("jobTitle", "title", "job_title")
    )
    company: str | None = Field(
        default=None,
        validation_alias=AliasChoices("company", "companyName", "company_name"),
    )
    location: str | None = Field(
        default=None, validation_alias=AliasChoices("location", "jobLocation")
    )
    platform: str | None = None
    source_type: str | None = Field(
        default=None, validation_alias=AliasChoices("sourceType", "source_type")
    )
    applied_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("appliedAt", "applied_at")
    )
    timezone: str | None = None
    job_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("jobUrl", "url", "jobPostingUrl", "job_url"),
    )
    external_id: str | None = Field(
        default=None, validation_alias=AliasChoices("externalId", "external_id")
    )
    message_id: str | None = Field(
        default=None, validation_alias=AliasChoices("messageId", "message_id")
    )
    email_subject: str | None = Field(
        default=None, validation_alias=AliasChoices("emailSubject", "email_subject")
    )
    email_from: str | None = Field(
        default=None, validation_alias=AliasChoices("emailFrom", "email_from")
    )
    email_body_text: str | None = Field(
        default=None,
        validation_alias=AliasChoices("emailBodyText", "email_body_text"),
    )
    email_snippet: str | None = Field(
        default=None, validation_alias=AliasChoices("emailSnippet", "email_snippet")
    )
    email_received_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("emailReceivedAt", "email_received_at"),
    )
    extracted: dict[str, Any] | None = None

    @field_validator(
        "job_title",
        "company",
        "location",
        "platform",
        "source_type",
        "timezone",
        "job_url",
        "external_id",
        "message_id",
        "email_subject",
        "email_from",
        "email_body_text",
        "email_snippet",
        mode="before",
    )
    @classmethod
    def clean_text(cls, v: Any) -> str | None:
        """Coerce scalars to stripped strings; blanks become None."""
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @field_validator("applied_at", "email_received_at", mode="before")
    @classmethod
    def lenient_datetime(cls, v: Any) -> datetime | None:
        """Unparseable dates are dropped rather than rejected."""
        return parse_datetime_maybe(v)

    @field_validator("extracted", mode="before")
    @classmethod
    def mapping_only(cls, v: Any) -> dict[str, Any] | None:
        return dict(v) if isinstance(v, Mapping) else None


@dataclass(frozen=True)
class EmailMeta:
    """The email an event was scanned from."""

    subject: str
    sender: str | None
    snippet: str | None
    received_at: datetime


@dataclass(frozen=True)
class NormalizedEvent:
    """A validated application event ready for the pipeline."""

    job_title: str
    company: str
    location: str
    platform: str
    source_type: str
    applied_at: datetime
    timezone: str
    job_url: str
    external_id: str | None = None
    message_id: str | None = None
    email: EmailMeta | None = None


def normalize_payload(
    payload: Mapping[str, Any] | ImportPayload,
    *,
    default_timezone: str,
    now: datetime,
) -> NormalizedEvent:
    """Map a loosely-typed import payload into a ``NormalizedEvent``.

    Direct fields win over ``extracted`` hints, which win over details
    scraped from the email fields.

    Raises:
        ValidationError: If the payload is not a mapping or no job title and
            company can be resolved.
    """
    if isinstance(payload, ImportPayload):
        raw = payload
    elif isinstance(payload, Mapping):
        try:
            raw = ImportPayload.model_validate(dict(payload))
        except PydanticValidationError as e:
            raise ValidationError(f"Malformed import payload: {e}") from e
    else:
        raise ValidationError("Import payload must be a mapping")

    if raw.extracted is not None:
        hints = raw.extracted
        hint_platform = None
    else:
        details = extract_job_details_from_email(
            raw.email_subject, raw.email_from, raw.email_body_text
        )
        hints = {
            "jobTitle": details.job_title,
            "company": details.company,
            "location": details.location,
        }
        hint_platform = details.platform if details.platform != UNKNOWN else None

    def _hint(*keys: str) -> str:
        for key in keys:
            value = hints.get(key)
            if value is not None and str(value).strip():
                return str(value).strip()
        return ""

    job_title = raw.job_title or _hint("jobTitle", "title", "job_title")
    company = raw.company or _hint("company", "companyName", "company_name")
    location = raw.location or _hint("location", "jobLocation")

    if not job_title or not company:
        raise ValidationError(
            "Missing required fields: jobTitle and company "
            "(provide them directly, via extracted, or via email fields)"
        )

    email = None
    if raw.email_subject:
        email = EmailMeta(
            subject=raw.email_subject,
            sender=raw.email_from,
            snippet=raw.email_snippet,
            received_at=raw.email_received_at or now,
        )

    return NormalizedEvent(
        job_title=job_title,
        company=company,
        location=location,
        platform=(raw.platform or hint_platform or UNKNOWN).lower(),
        source_type=(raw.source_type or UNKNOWN).lower(),
        applied_at=raw.applied_at or now,
        timezone=raw.timezone or default_timezone,
        job_url=normalize_url(raw.job_url or ""),
        external_id=raw.external_id,
        message_id=raw.message_id,
        email=email,
    )


@dataclass
class JobMatch:
    """Result of resolving a job fingerprint."""

    job_id: str | None
    via: MatchVia


@dataclass
class ImportEvent:
    """Durable record of one successful ingestion.

    Unique per (user_id, event_fingerprint).
    """

    id: str
    user_id: str
    platform: str
    source_type: str
    applied_at: datetime
    timezone: str
    job_title: str
    company: str
    location: str
    job_fingerprint: str
    event_fingerprint: str
    created_at: datetime
    job_id: str | None = None
    schedule_id: str | None = None
    message_id: str | None = None
    external_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "platform": self.platform,
            "source_type": self.source_type,
            "applied_at": self.applied_at.isoformat(),
            "timezone": self.timezone,
            "job_title": self.job_title,
            "company": self.company,
            "location": self.location,
            "job_fingerprint": self.job_fingerprint,
            "event_fingerprint": self.event_fingerprint,
            "job_id": self.job_id,
            "schedule_id": self.schedule_id,
            "message_id": self.message_id,
            "external_id": self.external_id,
            "raw": dict(self.raw),
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class PlatformEntry:
    """One distinct place a job was seen."""

    platform: str
    source_type: str
    job_url: str | None
    external_id: str | None
    first_seen_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "source_type": self.source_type,
            "job_url": self.job_url,
            "external_id": self.external_id,
            "first_seen_at": self.first_seen_at.isoformat(),
        }


@dataclass(frozen=True)
class Communication:
    """A raw message about a job, kept as an append-only log."""

    platform: str
    source_type: str
    message_id: str | None
    subject: str | None
    sender: str | None
    snippet: str | None
    received_at: datetime
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "source_type": self.source_type,
            "message_id": self.message_id,
            "subject": self.subject,
            "sender": self.sender,
            "snippet": self.snippet,
            "received_at": self.received_at.isoformat(),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class PlatformLink:
    """Everything known about where a user's job came from."""

    user_id: str
    job_id: str
    platforms: list[PlatformEntry] = field(default_factory=list)
    communications: list[Communication] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "job_id": self.job_id,
            "platforms": [entry.to_dict() for entry in self.platforms],
            "communications": [comm.to_dict() for comm in self.communications],
        }


@dataclass
class ImportResult:
    """Outcome of importing one event."""

    deduped: bool
    event_id: str
    job_id: str | None
    schedule_id: str | None
    created_job: bool = False
    schedule_created: bool = False
    job_match_via: MatchVia | None = None
    reason: str | None = None

    @property
    def merged_into_existing_job(self) -> bool:
        return not self.deduped and not self.created_job

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "deduped": self.deduped,
            "event_id": self.event_id,
            "job_id": self.job_id,
            "schedule_id": self.schedule_id,
            "created_job": self.created_job,
            "merged_into_existing_job": self.merged_into_existing_job,
            "schedule_created": self.schedule_created,
            "job_match_via": self.job_match_via.value if self.job_match_via else None,
            "reason": self.reason,
        }
