"""Shard failure classification and failure records."""

from __future__ import annotations

import json
import logging
import traceback
from pathlib import Path

from vrt.models.failure import (
    FailedUrl,
    FailureRecord,
    FailureSource,
    FailureType,
    MergedFailures,
)
from vrt.models.url_pair import UrlPairRecord

logger = logging.getLogger(__name__)

MERGED_NAME = "failed-runners.json"

# Checked in order against the lowercased error text
_AUTH_PROVIDER_MARKERS = ("okta",)
_RUNNER_MARKERS = ("browsertype.launch", "executable doesn't exist", "browser has been closed")
_NETWORK_MARKERS = ("net::", "econnrefused", "econnreset", "etimedout", "socket hang up", "enotfound")

# Fraction of a shard's records within which failures are judged systemic
EARLY_WINDOW = 0.1


def failure_file_name(shard_id: str, profile: str) -> str:
    return f"failed-runner-{shard_id}-{profile}.json"


def classify_failure(error: BaseException) -> FailureSource:
    """Attribute an error to the component most likely at fault.

    Structured information wins: an explicit ``failure_source`` on the error
    (or anything in its cause chain). Otherwise the message is inspected.
    """
    current: BaseException | None = error
    while current is not None:
        source = getattr(current, "failure_source", None)
        if isinstance(source, FailureSource):
            return source
        current = current.__cause__

    text = str(error).lower()
    if any(marker in text for marker in _AUTH_PROVIDER_MARKERS):
        return FailureSource.AUTH_PROVIDER
    if any(marker in text for marker in _RUNNER_MARKERS):
        return FailureSource.RUNNER
    if any(marker in text for marker in _NETWORK_MARKERS):
        return FailureSource.NETWORK
    return FailureSource.APPLICATION


def failure_location(error: BaseException) -> str:
    frames = traceback.extract_tb(error.__traceback__) if error.__traceback__ else []
    if not frames:
        return "unknown"
    frame = frames[-1]
    return f"{frame.filename}:{frame.lineno} in {frame.name}"


class FailureRecorder:
    """Tracks one shard/profile run and writes its FailureRecord if anything failed.

    A failure is FULL when it happens while fewer than ``EARLY_WINDOW`` of the
    shard's records have been attempted and the failure ratio so far exceeds
    ``threshold``. Otherwise it is PARTIAL and the shard carries on.
    """

    def __init__(
        self,
        output_dir: Path,
        shard_id: str,
        profile: str,
        records: list[UrlPairRecord],
        threshold: float = 0.1,
    ):
        self.path = output_dir / failure_file_name(shard_id, profile)
        self.shard_id = shard_id
        self.profile = profile
        self.records = records
        self.threshold = threshold
        self.attempted = 0
        self.completed: list[int] = []
        self.failed: list[FailedUrl] = []
        self.failure_type: FailureType | None = None
        self._decisive_error: BaseException | None = None

    @property
    def has_failures(self) -> bool:
        return self.failure_type is not None

    @property
    def aborted(self) -> bool:
        return self.failure_type == FailureType.FULL

    def start(self, record: UrlPairRecord) -> None:
        self.attempted += 1

    def succeeded(self, record: UrlPairRecord) -> None:
        self.completed.append(record.id)

    def failed_record(self, record: UrlPairRecord, url: str, error: BaseException) -> FailureType:
        """Count a record-level failure; returns how it classifies the shard."""
        self.failed.append(FailedUrl(id=record.id, url=url, error=str(error)))
        early = self.attempted < len(self.records) * EARLY_WINDOW
        ratio = len(self.failed) / max(self.attempted, 1)

        if early and ratio > self.threshold:
            self._mark(FailureType.FULL, error)
            logger.error("Shard %s [%s]: %d of the first %d record(s) failed, treating the shard as down",
                         self.shard_id, self.profile, len(self.failed), self.attempted)
        else:
            self._mark(FailureType.PARTIAL, error)
            logger.warning("Shard %s [%s]: record %s failed: %s",
                           self.shard_id, self.profile, record.id, error)
        return self.failure_type

    def systemic(self, error: BaseException) -> None:
        """A failure that invalidates the whole shard (auth, browser launch)."""
        self._mark(FailureType.FULL, error)
        logger.error("Shard %s [%s] failed: %s", self.shard_id, self.profile, error)

    def deadline_exceeded(self, error: BaseException) -> None:
        self._mark(FailureType.PARTIAL, error)
        logger.warning("Shard %s [%s]: %s", self.shard_id, self.profile, error)

    def _mark(self, failure_type: FailureType, error: BaseException) -> None:
        if failure_type == FailureType.FULL or self.failure_type is None:
            self.failure_type = failure_type
            self._decisive_error = error

    def build(self) -> FailureRecord | None:
        if not self.has_failures:
            return None
        error = self._decisive_error
        done = set(self.completed) | {f.id for f in self.failed}
        return FailureRecord(
            project=self.profile,
            shard_id=self.shard_id,
            failure_type=self.failure_type,
            failure_source=classify_failure(error),
            failure_reason=str(error),
            failure_location=failure_location(error),
            total_urls=len(self.records),
            completed_urls=list(self.completed),
            remaining_urls=[r for r in self.records if r.id not in done],
            failed_urls=list(self.failed),
        )

    def write(self) -> Path | None:
        record = self.build()
        if record is None:
            # A clean rerun clears the shard's earlier failure
            if self.path.exists():
                self.path.unlink()
                logger.info("Removed stale failure record %s", self.path)
            return None
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(record.model_dump(by_alias=True, mode="json"), f, indent=2)
        logger.info("Wrote %s failure record %s (source %s)",
                    record.failure_type.value, self.path, record.failure_source.value)
        return self.path


def merge_failed_runners(output_dir: Path) -> tuple[Path | None, MergedFailures]:
    """Combine ``failed-runner-*.json`` into ``failed-runners.json``."""
    files = sorted(output_dir.glob("failed-runner-*.json"))
    merged = MergedFailures()
    if not files:
        logger.info("No failed runner files found in %s", output_dir)
        return None, merged

    for path in files:
        try:
            with open(path) as f:
                merged.failures.append(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Skipping unreadable failure record %s: %s", path, e)
    merged.total_failures = len(merged.failures)

    output_path = output_dir / MERGED_NAME
    with open(output_path, "w") as f:
        json.dump(merged.model_dump(by_alias=True), f, indent=2)
    logger.info("Merged %d failure record(s) into %s", merged.total_failures, output_path)
    return output_path, merged
