"""Error taxonomy for timeline scheduling.

Single-item operations raise these directly; batch operations catch them
per item and report them in their result instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class TimelineError(Exception):
    """Base class for all timeline scheduling errors."""


class ValidationError(TimelineError, ValueError):
    """Malformed input: missing field, bad enum value, unparseable value."""


class NotFoundError(TimelineError, LookupError):
    """A referenced client, activity or subactivity does not exist."""


class ConflictError(TimelineError):
    """A natural-key collision outside the atomic upsert path.

    Seeing this means some write path is not using the store's atomic
    upsert and should be treated as a defect.
    """


class StorageError(TimelineError):
    """Transient storage failure (connection lost, timeout, aborted commit)."""


@dataclass
class ItemFailure:
    """A single item that a storage write could not apply."""

    index: int
    error: str


class PartialWriteError(StorageError):
    """A chunk write that applied some items and failed others.

    ``applied`` holds whatever the writer reports for the items it did
    persist; ``failed`` lists the items that were not applied.
    """

    def __init__(
        self,
        message: str,
        applied: list[Any] | None = None,
        failed: list[ItemFailure] | None = None,
    ):
        super().__init__(message)
        self.applied = applied or []
        self.failed = failed or []

