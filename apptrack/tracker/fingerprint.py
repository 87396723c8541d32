"""Fingerprint generation for imported application events.

This module provides pure functions for:
- Text normalization used by every fingerprint
- Job fingerprints (title | company | location)
- Event fingerprints (one per ingestion attempt)
- Job URL normalization for platform links
"""

import hashlib
import re
from datetime import UTC, datetime
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

_APOSTROPHES = re.compile(r"[’']")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

# Tracking parameters to remove during URL normalization
TRACKING_PARAMS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "ref",
    "referrer",
    "source",
    "trk",
    "fbclid",
    "gclid",
}


def _sha1(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()


def normalize_key(value: str | None) -> str:
    """Normalize free text for fingerprinting.

    Lower-cases, drops apostrophes, collapses every run of characters
    outside [a-z0-9] to a single space and trims.

    Args:
        value: Text to normalize (None is treated as empty).

    Returns:
        The normalized text.
    """
    text = str(value if value is not None else "").strip().lower()
    text = _APOSTROPHES.sub("", text)
    return _NON_ALNUM.sub(" ", text).strip()


def compute_job_fingerprint(
    title: str | None, company: str | None, location: str | None
) -> str:
    """Compute the content fingerprint of a job posting.

    Fields are positional: swapping title and company changes the hash.
    Postings whose normalized title, company and location are equal share
    a fingerprint.

    Args:
        title: Job title.
        company: Company name.
        location: Job location (optional).

    Returns:
        A SHA-1 hex digest.
    """
    return _sha1(
        f"{normalize_key(title)}|{normalize_key(company)}|{normalize_key(location)}"
    )


def compute_event_fingerprint(
    user_id: str,
    platform: str,
    source_type: str,
    job_fingerprint: str,
    applied_at: datetime | None,
    external_id: str | None = None,
    message_id: str | None = None,
) -> str:
    """Compute the identity of one ingestion attempt.

    The disambiguator is chosen in priority order:
    1. external_id from the source provider
    2. message_id of the source email
    3. job_fingerprint|platform|source_type|<applied date>

    Args:
        user_id: Owning user.
        platform: Source platform (linkedin, indeed, ...).
        source_type: Kind of source (email, manual, extension, ...).
        job_fingerprint: Fingerprint of the job the event refers to.
        applied_at: When the application was sent; only its UTC date is used.
        external_id: Provider id of the event (optional).
        message_id: Email message id (optional).

    Returns:
        A SHA-1 hex digest.
    """
    if external_id:
        base = external_id
    elif message_id:
        base = message_id
    else:
        applied_day = _utc_day(applied_at) if applied_at else "na"
        base = f"{job_fingerprint}|{platform}|{source_type}|{applied_day}"

    return _sha1(f"{user_id}|{platform}|{source_type}|{base}")


def _utc_day(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).date().isoformat()


def normalize_url(url: str) -> str:
    """Normalize a job URL so equal postings compare equal.

    Forces https, drops tracking parameters and the fragment, sorts the
    remaining query parameters and strips trailing slashes.

    Args:
        url: The URL to normalize.

    Returns:
        The normalized URL, or an empty string for blank input.
    """
    if not url or not url.strip():
        return ""

    parsed = urlparse(url.strip())
    query_params = parse_qs(parsed.query, keep_blank_values=False)
    kept = sorted(
        (key, values[0])
        for key, values in query_params.items()
        if values and key.lower() not in TRACKING_PARAMS
    )

    return urlunparse(
        (
            "https",
            parsed.netloc.lower(),
            parsed.path.rstrip("/"),
            "",
            urlencode(kept),
            "",
        )
    )
