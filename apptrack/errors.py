"""Error taxonomy shared by the import pipeline and the scheduler.

Callers see four kinds of failure:

- ValidationError: bad input or a transition the caller may not request.
- NotFoundError: the record does not exist or belongs to another user.
- ConflictError: the record is not in the state the operation requires.
- RecoverableUpstreamError: a collaborator rejected a value; the pipeline
  retries once with a safe fallback before surfacing it.

Side effects such as notifications and calendar mirroring never fail an
operation. They run through ``best_effort`` which logs the failure and
returns None.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AppTrackError(Exception):
    """Base class for errors surfaced to callers."""


class ValidationError(AppTrackError, ValueError):
    """Missing fields, malformed values, or a forbidden transition."""


class NotFoundError(AppTrackError, LookupError):
    """A schedule or job does not exist for the requesting user."""


class ConflictError(AppTrackError):
    """The record's current state does not allow the requested operation."""


class RecoverableUpstreamError(AppTrackError):
    """A collaborator rejected a value that a fallback may satisfy."""


class EnumRejectedError(RecoverableUpstreamError):
    """The job store refused a value for an enum-constrained field."""

    def __init__(self, field: str, value: object) -> None:
        self.field = field
        self.value = value
        super().__init__(f"{value!r} is not a valid enum value for {field}")


class BestEffortFailure(AppTrackError):
    """Category for side-effect failures that are logged, never raised."""


async def best_effort(label: str, awaitable: Awaitable[T]) -> T | None:
    """Await a side effect, logging and discarding any failure.

    Args:
        label: Short description used in the log line.
        awaitable: The side effect to run.

    Returns:
        The awaited value, or None if it raised.
    """
    try:
        return await awaitable
    except Exception as exc:
        failure = BestEffortFailure(f"{label} failed: {exc}")
        logger.warning("%s", failure, exc_info=exc)
        return None
