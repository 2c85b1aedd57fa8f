"""Result aggregator: merges shard result files into the canonical result set.

Every write of the canonical file goes through ``atomic_write_json``: the
payload lands in a uniquely named temp file, is read back and parsed, and
only then renamed over the target. An interrupted or invalid write leaves
the previous canonical file exactly as it was.

Appends from concurrent profile workers in one process are serialized by
an ``asyncio.Lock``. Separate processes appending to the same canonical
file are NOT coordinated and can lose each other's results; run shards
with per-shard result files and merge them afterwards instead.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import shutil
import time
from pathlib import Path

from pydantic import ValidationError

from vrt.models.results import ComparisonResult, ResultSet

logger = logging.getLogger(__name__)

CANONICAL_NAME = "test-results.json"
SHARD_PATTERN = "test-results-*.json"


def shard_result_name(shard_id: str, profile: str) -> str:
    return f"test-results-{shard_id}-{profile}.json"


def _natural_key(path: Path) -> list:
    return [int(part) if part.isdigit() else part for part in re.split(r"(\d+)", path.name)]


def atomic_write_json(path: Path, data: dict | list) -> bool:
    """Write ``data`` to ``path`` via validate-then-rename. Returns False if the
    temp file did not validate, in which case ``path`` is untouched."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f"{path.name}.temp-{os.getpid()}-{int(time.time() * 1000)}")

    try:
        with open(temp_path, "w") as f:
            json.dump(data, f, indent=2)
        with open(temp_path) as f:
            json.load(f)
    except (OSError, TypeError, ValueError) as e:
        logger.error("Temporary file %s failed validation, keeping %s: %s", temp_path, path, e)
        temp_path.unlink(missing_ok=True)
        return False

    os.replace(temp_path, path)
    return True


def read_result_set(path: Path) -> ResultSet:
    """Parse a shard or canonical result file. Raises on missing or invalid content."""
    with open(path) as f:
        return ResultSet.model_validate(json.load(f))


class ResultAggregator:
    """Owns the canonical result file under ``<root>/visual-diff``."""

    def __init__(self, output_dir: Path, test_type_id: str = "VRT001"):
        self.output_dir = output_dir
        self.canonical_path = output_dir / CANONICAL_NAME
        self.test_type_id = test_type_id
        self._lock = asyncio.Lock()

    def shard_files(self) -> list[Path]:
        return sorted(self.output_dir.glob(SHARD_PATTERN), key=_natural_key)

    def merge_shard_files(self) -> ResultSet:
        """Merge every shard result file into the canonical file.

        The first readable file supplies testId/testTypeId/testDate; later
        files only contribute results. Unreadable files are logged and left
        on disk. With no shard files an empty result set is written.
        """
        files = self.shard_files()
        logger.info("Found %d shard result file(s) in %s", len(files), self.output_dir)

        merged: ResultSet | None = None
        for path in files:
            try:
                shard = read_result_set(path)
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.error("Skipping unreadable shard result file %s: %s", path, e)
                continue

            logger.debug("%s: %d result(s)", path.name, len(shard.results))
            if merged is None:
                merged = ResultSet(
                    test_id=shard.test_id,
                    test_type_id=shard.test_type_id,
                    test_date=shard.test_date,
                    results=list(shard.results),
                )
            else:
                merged.results.extend(shard.results)

        if merged is None:
            logger.warning("No readable shard result files, writing an empty result set")
            merged = ResultSet(test_type_id=self.test_type_id)

        if atomic_write_json(self.canonical_path, merged.to_json_dict()):
            logger.info("Merged %d result(s) into %s", len(merged.results), self.canonical_path)
        return merged

    def _read_canonical(self) -> list[ComparisonResult]:
        if not self.canonical_path.exists():
            return []
        try:
            return read_result_set(self.canonical_path).results
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            backup = self.canonical_path.with_name(
                f"{self.canonical_path.name}.corrupted-{int(time.time() * 1000)}"
            )
            shutil.copyfile(self.canonical_path, backup)
            logger.error("Canonical result file is unreadable (%s), backed up to %s", e, backup)
            return []

    async def append_run(self, results: list[ComparisonResult]) -> ResultSet | None:
        """Append one run's results to the canonical file.

        Read-modify-write under the in-process lock; the write itself is
        atomic. Returns the written set, or None if nothing was written.
        """
        if not results:
            return None
        async with self._lock:
            existing = self._read_canonical()
            merged = ResultSet(test_type_id=self.test_type_id, results=[*existing, *results])
            if not atomic_write_json(self.canonical_path, merged.to_json_dict()):
                return None
            logger.info("Appended %d result(s) to %s (%d total)",
                        len(results), self.canonical_path, len(merged.results))
            return merged
