"""
runewatch.errors — Domain Exception Taxonomy
=============================================

Every failure that crosses a component boundary is one of these.  The
``kind`` string is what ends up in a job's ``errors[]`` list and in API
error bodies, so it is part of the wire contract.

Per-member and per-activity errors are captured and reported; only
:class:`StoreUnavailable` is allowed to abort a whole batch job.
"""

from __future__ import annotations


class RuneWatchError(Exception):
    """Base class for all RuneWatch domain errors."""

    kind = "Error"
    retryable = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind, "message": self.message}


class NotFound(RuneWatchError):
    """Unknown member, job, board, item or team."""

    kind = "NotFound"


class RateLimited(RuneWatchError):
    """The provider asked us to slow down (HTTP 429)."""

    kind = "RateLimited"
    retryable = True

    def __init__(self, message: str = "", retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamUnavailable(RuneWatchError):
    """Network failure, timeout or 5xx from the provider."""

    kind = "UpstreamUnavailable"
    retryable = True


class ParseError(RuneWatchError):
    """A provider payload (or one field of it) could not be decoded."""

    kind = "ParseError"


class Conflict(RuneWatchError):
    """Duplicate team name, duplicate manual completion, etc."""

    kind = "Conflict"


class ValidationError(RuneWatchError):
    """Bad input shape, e.g. an impossible bingo grid size."""

    kind = "ValidationError"


class StoreUnavailable(RuneWatchError):
    """The relational store cannot be reached.  Fatal for a batch job."""

    kind = "StoreUnavailable"
