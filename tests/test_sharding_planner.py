"""Tests for the shard planner."""

import json

import pytest

from conftest import make_records
from vrt.errors import ShardInputError
from vrt.models.config import ShardingConfig
from vrt.sharding.planner import (
    MANIFEST_NAME,
    compute_shard_count,
    load_manifest,
    load_records,
    load_shard,
    plan_shards,
    shard_sizes,
    write_shards,
)

DEFAULTS = ShardingConfig(min_per_shard=25, max_per_shard=50, max_shards=256)


class TestComputeShardCount:

    def test_sixty_urls_make_two_shards_of_thirty(self):
        assert compute_shard_count(60, DEFAULTS) == 2
        assert shard_sizes(60, 2) == [30, 30]

    def test_empty_corpus(self):
        assert compute_shard_count(0, DEFAULTS) == 0
        assert plan_shards([], DEFAULTS) == []

    def test_below_minimum_is_one_shard(self):
        assert compute_shard_count(10, DEFAULTS) == 1

    def test_exact_minimum(self):
        assert compute_shard_count(25, DEFAULTS) == 1

    def test_max_shards_cap_raised_by_max_per_shard(self):
        settings = ShardingConfig(min_per_shard=25, max_per_shard=50, max_shards=2)
        # 2 shards would need 150 each
        assert compute_shard_count(300, settings) == 6

    @pytest.mark.parametrize("total", [1, 24, 26, 49, 51, 74, 99, 100, 101, 1234, 12_800])
    def test_sizes_within_bounds(self, total):
        count = compute_shard_count(total, DEFAULTS)
        sizes = shard_sizes(total, count)
        assert sum(sizes) == total
        assert max(sizes) - min(sizes) <= 1
        assert max(sizes) <= DEFAULTS.max_per_shard
        if total >= DEFAULTS.min_per_shard:
            assert min(sizes) >= DEFAULTS.min_per_shard


class TestPlanShards:

    def test_partition_is_exact_and_ordered(self):
        records = make_records(74)
        shards = plan_shards(records, DEFAULTS)
        flattened = [r.id for s in shards for r in s.records]
        assert flattened == [r.id for r in records]

    def test_shard_ids_start_at_one(self):
        shards = plan_shards(make_records(60), DEFAULTS)
        assert [s.shard_id for s in shards] == ["1", "2"]
        assert [len(s.records) for s in shards] == [30, 30]
        assert shards[0].file_name == "urls-1.json"


class TestShardFiles:

    def test_write_and_reload(self, tmp_path):
        shards = plan_shards(make_records(60), DEFAULTS)
        manifest_path = write_shards(shards, tmp_path)

        assert manifest_path.name == MANIFEST_NAME
        assert json.loads(manifest_path.read_text()) == {"chunks": ["1", "2"]}
        assert load_manifest(tmp_path).chunks == ["1", "2"]

        shard = load_shard(tmp_path, "2")
        assert [r.id for r in shard.records] == list(range(31, 61))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ShardInputError, match="not found"):
            load_records(tmp_path / "urls-9.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "urls.json"
        path.write_text("[{ not json")
        with pytest.raises(ShardInputError):
            load_records(path)

    def test_invalid_record(self, tmp_path):
        path = tmp_path / "urls.json"
        path.write_text(json.dumps([{"id": "x", "baseline": "a"}]))
        with pytest.raises(ShardInputError):
            load_records(path)

    def test_bom_tolerated(self, tmp_path):
        path = tmp_path / "urls.json"
        path.write_bytes(b"\xef\xbb\xbf" + json.dumps([{"id": 1, "baseline": "a", "comparison": "b"}]).encode())
        assert load_records(path)[0].comparison == "b"

    def test_missing_manifest(self, tmp_path):
        with pytest.raises(ShardInputError):
            load_manifest(tmp_path)
