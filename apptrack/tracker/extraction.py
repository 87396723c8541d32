"""Best-effort extraction of job details from application emails.

Platform confirmation emails follow a handful of phrasings ("Your
application was sent to Acme for Engineer", "You applied to Engineer at
Acme", "Company: Acme" lines). The patterns below cover the common ones.
Results are hints: any field may come back None.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_LOCATION_LINE = (
    re.compile(r"^\s*location\s*:\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\s*job location\s*:\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE),
)
_SENT_TO_FOR = re.compile(
    r"your application was sent to\s+(.+?)\s+for\s+(.+?)(?:\r?\n|$)", re.IGNORECASE
)
_APPLIED_TO_FOR = re.compile(
    r"you applied to\s+(.+?)\s+for\s+(.+?)(?:\r?\n|$)", re.IGNORECASE
)
_TITLE_LINE = (
    re.compile(r"^\s*applied for\s*:\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\s*application for\s*:\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\s*role\s*:\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE),
)
_COMPANY_LINE = re.compile(
    r"^\s*company\s*:\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE
)
_SUBJECT_APPLIED_AT = re.compile(r"applied to\s+(.+?)\s+at\s+(.+?)$", re.IGNORECASE)
_SUBJECT_SENT_TO = re.compile(r"application .* sent to\s+(.+?)$", re.IGNORECASE)
_FOR_LINE = (
    re.compile(r"^\s*for\s+(.+?)\s*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"for\s+(.+?)(?:\r?\n|$)", re.IGNORECASE),
)

# Longer "for ..." matches are sentences, not titles
MAX_FOR_LINE_TITLE = 120

KNOWN_PLATFORMS = ("linkedin", "indeed", "glassdoor")


@dataclass(frozen=True)
class ExtractedJobDetails:
    """Fields recovered from an email."""

    platform: str
    job_title: str | None
    company: str | None
    location: str | None


def _first_match(patterns: tuple[re.Pattern[str], ...], text: str) -> str:
    for pattern in patterns:
        match = pattern.search(text)
        if match and match.group(1):
            return match.group(1).strip()
    return ""


def detect_platform(subject: str, sender: str) -> str:
    """Guess the platform from the sender address or subject."""
    sender = sender.lower()
    subject = subject.lower()
    for platform in KNOWN_PLATFORMS:
        if platform in sender or platform in subject:
            return platform
    return "unknown"


def extract_job_details_from_email(
    subject: str | None, sender: str | None, body: str | None
) -> ExtractedJobDetails:
    """Extract platform, title, company and location from an email.

    Args:
        subject: Email subject line.
        sender: From header.
        body: Plain-text body.

    Returns:
        The extracted details; unknown fields are None.
    """
    subject = (subject or "").strip()
    sender = (sender or "").strip()
    body = (body or "").strip()

    platform = detect_platform(subject, sender)
    location = _first_match(_LOCATION_LINE, body)
    company = ""
    job_title = ""

    for pattern in (_SENT_TO_FOR, _APPLIED_TO_FOR):
        match = pattern.search(body)
        if match:
            company = company or match.group(1).strip()
            job_title = job_title or match.group(2).strip()

    job_title = job_title or _first_match(_TITLE_LINE, body)
    company = company or _first_match((_COMPANY_LINE,), body)

    if not company or not job_title:
        match = _SUBJECT_APPLIED_AT.search(subject)
        if match:
            job_title = job_title or match.group(1).strip()
            company = company or match.group(2).strip()

    if not company:
        match = _SUBJECT_SENT_TO.search(subject)
        if match:
            company = match.group(1).strip()

    if company and not job_title:
        for_line = _first_match(_FOR_LINE, body)
        if for_line and len(for_line) <= MAX_FOR_LINE_TITLE:
            job_title = for_line

    return ExtractedJobDetails(
        platform=platform,
        job_title=job_title or None,
        company=company or None,
        location=location or None,
    )
