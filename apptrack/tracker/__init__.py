"""Application event import and deduplication.

This package ingests application events from noisy sources without ever
double-counting the same real-world application.

Public API:
- ImportService: import one or many events, query platform links
- JobIdentityResolver: map a job fingerprint to a canonical job
- TrackerRepository: storage for events, fingerprint index, platform links
- compute_job_fingerprint / compute_event_fingerprint: content identities
"""

from apptrack.tracker.fingerprint import (
    compute_event_fingerprint,
    compute_job_fingerprint,
    normalize_key,
)
from apptrack.tracker.models import ImportResult, MatchVia, PlatformLink
from apptrack.tracker.repository import TrackerRepository
from apptrack.tracker.resolver import JobIdentityResolver
from apptrack.tracker.service import ImportService

__all__ = [
    "ImportService",
    "JobIdentityResolver",
    "TrackerRepository",
    "ImportResult",
    "MatchVia",
    "PlatformLink",
    "compute_job_fingerprint",
    "compute_event_fingerprint",
    "normalize_key",
]
