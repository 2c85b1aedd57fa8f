"""Oversize-page advisories.

A page taller than the maximum screenshot dimension is captured at viewport
height only; the advisory tells operators which captures are truncated.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from vrt.models.results import PageLimitExceeded

logger = logging.getLogger(__name__)

MERGED_NAME = "page-limit-exceed.json"

_advisories_adapter = TypeAdapter(list[PageLimitExceeded])


def advisory_file_name(shard_id: str) -> str:
    return f"page-limit-exceed-{shard_id}.json"


def _read_list(path: Path) -> list[dict]:
    with open(path) as f:
        data = json.load(f)
    # Older files hold a single advisory object
    return data if isinstance(data, list) else [data]


class PageLimitRecorder:
    """Appends advisories for one shard to ``page-limit-exceed-<shard>.json``."""

    def __init__(self, output_dir: Path, shard_id: str):
        self.path = output_dir / advisory_file_name(shard_id)
        self.recorded = 0

    def record(self, advisory: PageLimitExceeded) -> None:
        entries: list[dict] = []
        if self.path.exists():
            try:
                entries = _read_list(self.path)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Unreadable advisory file %s, starting over: %s", self.path, e)

        entries.append(advisory.model_dump(by_alias=True))
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(entries, f, indent=2)
        self.recorded += 1
        logger.warning("Page %s is %dpx tall, recorded in %s",
                       advisory.url, advisory.content_height, self.path.name)


def merge_limit_exceed(output_dir: Path) -> tuple[Path, list[PageLimitExceeded]]:
    """Combine every per-shard advisory file into one flat list."""
    merged: list[PageLimitExceeded] = []
    files = sorted(output_dir.glob("page-limit-exceed-*.json"))
    for path in files:
        try:
            merged.extend(_advisories_adapter.validate_python(_read_list(path)))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning("Skipping unreadable advisory file %s: %s", path, e)

    output_path = output_dir / MERGED_NAME
    output_dir.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump([a.model_dump(by_alias=True) for a in merged], f, indent=2)
    logger.info("Merged %d advisory(ies) from %d file(s) into %s", len(merged), len(files), output_path)
    return output_path, merged
