"""Business logic service for importing application events.

This module provides the ImportService class which handles:
- Normalizing and fingerprinting incoming events
- Deduplicating events that were already imported
- Resolving (or creating) the job an event belongs to
- Linking the job to the platforms and messages it was seen in
- Recording the application as a submitted schedule
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from apptrack.errors import AppTrackError, RecoverableUpstreamError, best_effort
from apptrack.jobs import (
    ApplicationMethod,
    ApplicationSource,
    JobCreate,
    JobRepository,
    JobStatus,
    StatusChange,
)
from apptrack.scheduler.service import DEFAULT_TIMEZONE, ScheduleService
from apptrack.storage import new_id, utcnow
from apptrack.tracker.fingerprint import compute_event_fingerprint, compute_job_fingerprint
from apptrack.tracker.models import (
    ImportEvent,
    ImportPayload,
    ImportResult,
    NormalizedEvent,
    PlatformLink,
    normalize_payload,
)
from apptrack.tracker.repository import TrackerRepository
from apptrack.tracker.resolver import JobIdentityResolver

logger = logging.getLogger(__name__)

REASON_EVENT_ALREADY_IMPORTED = "event_already_imported"

_PLATFORM_SOURCES = {
    "linkedin": ApplicationSource.LINKEDIN,
    "indeed": ApplicationSource.INDEED,
    "glassdoor": ApplicationSource.GLASSDOOR,
    "company": ApplicationSource.COMPANY_SITE,
    "company_site": ApplicationSource.COMPANY_SITE,
    "company site": ApplicationSource.COMPANY_SITE,
}


def map_platform_for_enum(platform: str | None) -> str:
    """Map a lower-case platform name to an application source label."""
    key = (platform or "").strip().lower()
    return _PLATFORM_SOURCES.get(key, ApplicationSource.OTHER).value


class ImportService:
    """Imports application events without double-counting them.

    An event is identified by its event fingerprint; importing the same
    event twice (sequentially or concurrently) yields one stored event and
    a ``deduped`` result for the other call. The event row is written last,
    so a failure half-way leaves nothing that would block a retry.
    """

    def __init__(
        self,
        tracker_repository: TrackerRepository,
        job_store: JobRepository,
        schedule_service: ScheduleService,
        resolver: JobIdentityResolver | None = None,
        *,
        default_timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the service.

        Args:
            tracker_repository: Storage for events, fingerprints and links.
            job_store: The user's jobs.
            schedule_service: Records imported applications as schedules.
            resolver: Job identity resolver; built from the repositories
                when omitted.
            default_timezone: Timezone used when an event carries none.
            clock: Returns the current UTC time.
        """
        self.tracker_repository = tracker_repository
        self.job_store = job_store
        self.schedule_service = schedule_service
        self.resolver = resolver or JobIdentityResolver(tracker_repository, job_store)
        self.default_timezone = default_timezone
        self.clock = clock

    async def import_event(
        self, user_id: str, payload: Mapping[str, Any] | ImportPayload
    ) -> ImportResult:
        """Import one application event.

        Args:
            user_id: Owning user.
            payload: Raw event; see ``ImportPayload`` for accepted fields.

        Returns:
            The import outcome. ``deduped`` is True when the event had
            already been imported, in which case nothing was written.

        Raises:
            ValidationError: If the payload lacks a job title or company.
        """
        now = self.clock()
        event = normalize_payload(
            payload, default_timezone=self.default_timezone, now=now
        )

        job_fingerprint = compute_job_fingerprint(
            event.job_title, event.company, event.location
        )
        event_fingerprint = compute_event_fingerprint(
            user_id,
            event.platform,
            event.source_type,
            job_fingerprint,
            event.applied_at,
            external_id=event.external_id,
            message_id=event.message_id,
        )

        existing = await self.tracker_repository.get_event(user_id, event_fingerprint)
        if existing is not None:
            return self._deduped(existing)

        match = await self.resolver.resolve(
            user_id,
            job_fingerprint,
            event.job_title,
            event.company,
            event.location or None,
        )
        job_id = match.job_id
        created_job = False
        if job_id is None:
            job_id, created_job = await self._create_job(user_id, event, job_fingerprint)

        await self.job_store.set_posting_url_if_empty(user_id, job_id, event.job_url)
        await self._link_platform(user_id, job_id, event)

        schedule, schedule_created = await self.schedule_service.ensure_submitted_schedule(
            user_id, job_id, event.applied_at, event.timezone
        )

        record = ImportEvent(
            id=new_id(),
            user_id=user_id,
            platform=event.platform,
            source_type=event.source_type,
            applied_at=event.applied_at,
            timezone=event.timezone,
            job_title=event.job_title,
            company=event.company,
            location=event.location,
            job_fingerprint=job_fingerprint,
            event_fingerprint=event_fingerprint,
            created_at=now,
            job_id=job_id,
            schedule_id=schedule.id,
            message_id=event.message_id,
            external_id=event.external_id,
            raw={
                "job_url": event.job_url or None,
                "email_from": event.email.sender if event.email else None,
                "email_subject": event.email.subject if event.email else None,
            },
        )
        try:
            await self.tracker_repository.insert_event(record)
        except sqlite3.IntegrityError:
            stored = await self.tracker_repository.get_event(user_id, event_fingerprint)
            if stored is None:
                raise
            logger.info(
                "Event %s was imported concurrently; returning stored event",
                event_fingerprint,
            )
            return self._deduped(stored)

        logger.info(
            "Imported %s at %s for user %s (job %s, via %s)",
            event.job_title,
            event.company,
            user_id,
            job_id,
            match.via.value,
        )
        return ImportResult(
            deduped=False,
            event_id=record.id,
            job_id=job_id,
            schedule_id=schedule.id,
            created_job=created_job,
            schedule_created=schedule_created,
            job_match_via=match.via,
        )

    async def import_events_bulk(
        self, user_id: str, events: Iterable[Mapping[str, Any]]
    ) -> list[dict[str, Any]]:
        """Import events one after another.

        A failing item is reported as ``{"ok": False, "error": ...}`` and
        never stops the rest of the batch.
        """
        results: list[dict[str, Any]] = []
        for payload in events or []:
            try:
                result = await self.import_event(user_id, payload)
            except AppTrackError as e:
                logger.warning("Skipping import item for user %s: %s", user_id, e)
                results.append({"ok": False, "error": str(e)})
                continue
            except Exception as e:
                logger.exception("Import item failed for user %s", user_id)
                results.append({"ok": False, "error": str(e)})
                continue
            results.append(result.to_dict())
        return results

    async def get_platform_info(self, user_id: str, job_id: str) -> PlatformLink | None:
        """Get where a job was seen and the messages about it."""
        return await self.tracker_repository.get_platform_link(user_id, job_id)

    async def _create_job(
        self, user_id: str, event: NormalizedEvent, job_fingerprint: str
    ) -> tuple[str, bool]:
        data = JobCreate(
            title=event.job_title,
            company=event.company,
            status=JobStatus.APPLIED.value,
            location=event.location,
            application_method=ApplicationMethod.OTHER.value,
            application_source=map_platform_for_enum(event.platform),
            posting_url=event.job_url,
            status_history=[
                StatusChange(
                    status=JobStatus.APPLIED.value,
                    timestamp=event.applied_at,
                    note=f"Imported ({event.platform})",
                )
            ],
        )
        try:
            job = await self.job_store.create(user_id, data)
        except RecoverableUpstreamError as e:
            logger.warning("Job store rejected import values (%s); retrying with Other", e)
            data.application_method = ApplicationMethod.OTHER.value
            data.application_source = ApplicationSource.OTHER.value
            job = await self.job_store.create(user_id, data)

        job_id = await self.tracker_repository.index_job_fingerprint(
            user_id, job_fingerprint, job.id
        )
        if job_id != job.id:
            logger.warning(
                "Job fingerprint %s was indexed concurrently; using job %s instead of %s",
                job_fingerprint,
                job_id,
                job.id,
            )
            return job_id, False

        await best_effort(
            f"history for job {job_id}",
            self.job_store.append_history(
                user_id,
                job_id,
                f"Imported application: applied via {event.platform} ({event.source_type})",
            ),
        )
        return job_id, True

    async def _link_platform(self, user_id: str, job_id: str, event: NormalizedEvent) -> None:
        await self.tracker_repository.add_platform_entry(
            user_id,
            job_id,
            platform=event.platform,
            source_type=event.source_type,
            job_url=event.job_url or None,
            external_id=event.external_id,
        )
        if event.email is not None:
            await self.tracker_repository.append_communication(
                user_id,
                job_id,
                platform=event.platform,
                source_type=event.source_type,
                message_id=event.message_id,
                subject=event.email.subject,
                sender=event.email.sender,
                snippet=event.email.snippet,
                received_at=event.email.received_at,
            )

    def _deduped(self, existing: ImportEvent) -> ImportResult:
        return ImportResult(
            deduped=True,
            event_id=existing.id,
            job_id=existing.job_id,
            schedule_id=existing.schedule_id,
            job_match_via=None,
            reason=REASON_EVENT_ALREADY_IMPORTED,
        )
