"""Exceptions raised by the visual regression runner."""

from __future__ import annotations

from vrt.models.failure import FailureSource


class VisualDiffError(Exception):
    """Base class. ``failure_source`` feeds the failure classifier when set."""
    failure_source: FailureSource | None = None


class ShardInputError(VisualDiffError):
    """A shard or URL input file is missing or malformed."""


class AuthenticationError(VisualDiffError):
    failure_source = FailureSource.AUTH_PROVIDER

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider} authentication failed - {message}")
        self.provider = provider


class CaptureError(VisualDiffError):
    """A capture exhausted its retries."""

    def __init__(self, url: str, attempts: int, cause: BaseException):
        super().__init__(f"Capture of {url} failed after {attempts} attempts: {cause}")
        self.url = url
        self.attempts = attempts
        self.__cause__ = cause


class ShardDeadlineError(VisualDiffError):
    """The shard ran past its soft deadline and stopped starting new captures."""

    def __init__(self, deadline_seconds: float):
        super().__init__(f"Shard exceeded its {deadline_seconds / 60:g} minute deadline")
        self.deadline_seconds = deadline_seconds
