"""Shard planner: splits the URL corpus into bounded work units.

The plan minimizes the number of shards under three constraints: no shard
holds more than ``max_per_shard`` records, none holds fewer than
``min_per_shard`` (only the last may, and only when the whole corpus is
smaller than the minimum), and there are never more than ``max_shards``
shards unless the per-shard maximum forces it.

Records keep their input order. Similarity scoring does not depend on
order, so there is no shuffling.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from vrt.errors import ShardInputError
from vrt.models.config import ShardingConfig
from vrt.models.url_pair import ShardManifest, UrlPairRecord

logger = logging.getLogger(__name__)

MANIFEST_NAME = "chunks-config.json"

_records_adapter = TypeAdapter(list[UrlPairRecord])


@dataclass
class Shard:
    shard_id: str
    records: list[UrlPairRecord] = field(default_factory=list)

    @property
    def file_name(self) -> str:
        return shard_file_name(self.shard_id)


def shard_file_name(shard_id: str) -> str:
    return f"urls-{shard_id}.json"


def compute_shard_count(total: int, settings: ShardingConfig) -> int:
    """Number of shards for ``total`` records."""
    if total <= 0:
        return 0
    shard_count = min(math.ceil(total / settings.min_per_shard), settings.max_shards)

    if math.ceil(total / shard_count) > settings.max_per_shard:
        shard_count = math.ceil(total / settings.max_per_shard)
    elif total // shard_count < settings.min_per_shard:
        # Too many shards for the minimum: fold the tail back into fewer, fuller shards
        shard_count = max(1, total // settings.min_per_shard)

    return shard_count


def shard_sizes(total: int, shard_count: int) -> list[int]:
    """Spread ``total`` over ``shard_count`` shards; sizes differ by at most one."""
    if shard_count <= 0:
        return []
    base, extra = divmod(total, shard_count)
    return [base + 1 if i < extra else base for i in range(shard_count)]


def plan_shards(records: list[UrlPairRecord], settings: ShardingConfig) -> list[Shard]:
    """Partition records sequentially into shards numbered from 1."""
    sizes = shard_sizes(len(records), compute_shard_count(len(records), settings))
    shards = []
    start = 0
    for i, size in enumerate(sizes):
        shards.append(Shard(shard_id=str(i + 1), records=records[start:start + size]))
        start += size
    logger.info("Planned %d shard(s) of up to %d URLs for %d URLs",
                len(shards), max(sizes, default=0), len(records))
    return shards


def write_shards(shards: list[Shard], output_dir: Path) -> Path:
    """Write one ``urls-<id>.json`` per shard plus the manifest; return the manifest path."""
    output_dir.mkdir(parents=True, exist_ok=True)
    for shard in shards:
        path = output_dir / shard.file_name
        with open(path, "w") as f:
            json.dump([r.model_dump() for r in shard.records], f, indent=2)
        logger.debug("Wrote %s (%d URLs)", path, len(shard.records))

    manifest = ShardManifest(chunks=[s.shard_id for s in shards])
    manifest_path = output_dir / MANIFEST_NAME
    with open(manifest_path, "w") as f:
        json.dump(manifest.model_dump(), f, indent=2)
    logger.info("Wrote shard manifest %s: %s", manifest_path, manifest.chunks)
    return manifest_path


def load_records(path: Path) -> list[UrlPairRecord]:
    """Load a URL pair file (the full corpus or one shard)."""
    if not path.exists():
        raise ShardInputError(f"URLs file not found: {path}")
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
        return _records_adapter.validate_python(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ShardInputError(f"Invalid URLs file {path}: {e}") from e


def load_shard(urls_dir: Path, shard_id: str) -> Shard:
    records = load_records(urls_dir / shard_file_name(shard_id))
    logger.info("Loaded shard %s (%d URLs)", shard_id, len(records))
    return Shard(shard_id=shard_id, records=records)


def load_manifest(urls_dir: Path) -> ShardManifest:
    path = urls_dir / MANIFEST_NAME
    if not path.exists():
        raise ShardInputError(f"Shard manifest not found: {path}")
    with open(path) as f:
        return ShardManifest.model_validate(json.load(f))
