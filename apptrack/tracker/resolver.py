"""Job identity resolution for imported events."""

from __future__ import annotations

import logging

from apptrack.jobs import JobRepository
from apptrack.tracker.models import JobMatch, MatchVia
from apptrack.tracker.repository import TrackerRepository

logger = logging.getLogger(__name__)


class JobIdentityResolver:
    """Find the canonical job for a job fingerprint.

    Lookup order, first hit wins:
    1. the (user, fingerprint) index
    2. a loose match: case-insensitive equality on title and company, and on
       location when one is given; a hit is written back to the index
    3. no match; the caller creates the job

    Loose matching is equality, not similarity: "Engineer" and "Engineer II"
    stay separate jobs.
    """

    def __init__(self, tracker_repository: TrackerRepository, job_store: JobRepository):
        self.tracker_repository = tracker_repository
        self.job_store = job_store

    async def resolve(
        self,
        user_id: str,
        job_fingerprint: str,
        title: str,
        company: str,
        location: str | None = None,
    ) -> JobMatch:
        job_id = await self.tracker_repository.get_job_for_fingerprint(
            user_id, job_fingerprint
        )
        if job_id:
            return JobMatch(job_id=job_id, via=MatchVia.FINGERPRINT_MAP)

        candidates = await self.job_store.find(
            user_id,
            title=title,
            company=company,
            location=location or None,
        )
        if candidates:
            job_id = await self.tracker_repository.index_job_fingerprint(
                user_id, job_fingerprint, candidates[0].id
            )
            logger.debug(
                "Loose match for %s at %s resolved to job %s", title, company, job_id
            )
            return JobMatch(job_id=job_id, via=MatchVia.LOOSE_JOB_MATCH)

        return JobMatch(job_id=None, via=MatchVia.NONE)
