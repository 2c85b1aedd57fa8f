"""Pipeline orchestrator: coordinates sharding, capture runs, and post-run aggregation."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from playwright.async_api import async_playwright

from vrt.capture.runner import ProfileRunSummary, ShardRunner
from vrt.models.config import Environment, FrameworkConfig
from vrt.models.failure import MergedFailures
from vrt.models.results import PageLimitExceeded, ResultSet
from vrt.models.url_pair import UrlPairRecord
from vrt.results import advisories, exports, failures
from vrt.results.aggregator import ResultAggregator, read_result_set
from vrt.sharding.planner import (
    Shard,
    load_manifest,
    load_records,
    load_shard,
    plan_shards,
    write_shards,
)
from vrt.utils.browser import ResolvedProfile, list_profiles

logger = logging.getLogger(__name__)


class Orchestrator:
    """Entry points behind the CLI. Paths come from the config."""

    def __init__(self, config: FrameworkConfig):
        self.config = config
        self.visual_diff_dir = config.visual_diff_dir
        self.urls_dir = config.urls_dir
        self.aggregator = ResultAggregator(self.visual_diff_dir, config.test_type_id())

    @property
    def corpus_path(self) -> Path:
        return Path(self.config.fixtures_dir) / "urls.json"

    # --- Sharding ---

    def shard(self, urls_path: Path | None = None) -> tuple[list[Shard], Path]:
        records = load_records(urls_path or self.corpus_path)
        shards = plan_shards(records, self.config.sharding)
        manifest = write_shards(shards, self.urls_dir)
        logger.info("Planned %d shard(s) for %d URL(s)", len(shards), len(records))
        return shards, manifest

    def shard_ids(self) -> list[str]:
        return load_manifest(self.urls_dir).chunks

    # --- Capture ---

    def run_shard(
        self,
        environment: Environment,
        shard_id: str,
        profiles: list[str],
        append_canonical: bool = False,
        headless: bool = True,
    ) -> list[ProfileRunSummary]:
        shard = load_shard(self.urls_dir, shard_id)
        runner = ShardRunner(
            self.config, environment, shard, profiles,
            append_canonical=append_canonical, headless=headless,
        )
        return asyncio.run(runner.run())

    # --- Aggregation ---

    def merge_results(self) -> ResultSet:
        return self.aggregator.merge_shard_files()

    def merge_failures(self) -> tuple[Path | None, MergedFailures]:
        return failures.merge_failed_runners(self.visual_diff_dir)

    def merge_limits(self) -> tuple[Path, list[PageLimitExceeded]]:
        return advisories.merge_limit_exceed(self.visual_diff_dir)

    def missed_urls(self, urls_path: Path | None = None) -> dict:
        return exports.missed_urls(
            self.config,
            urls_path or self.corpus_path,
            self.aggregator.canonical_path,
            self.visual_diff_dir / "missed-urls.json",
        )

    def export_csv(self) -> tuple[Path, int]:
        output_path = self.visual_diff_dir / "test-results.csv"
        return output_path, exports.export_csv(self.aggregator.canonical_path, output_path)

    def summary(self) -> exports.SimilaritySummary:
        return exports.summarize(read_result_set(self.aggregator.canonical_path), self.config.thresholds)

    # --- URL corpus ---

    def import_csv(self, csv_path: Path) -> list[UrlPairRecord]:
        return exports.import_csv(csv_path, self.corpus_path)

    def filter_urls(self, source: Path, start_id: int, end_id: int) -> list[UrlPairRecord]:
        return exports.filter_urls(source, self.corpus_path, start_id, end_id)

    # --- Devices ---

    def list_devices(self) -> list[ResolvedProfile]:
        async def _list() -> list[ResolvedProfile]:
            async with async_playwright() as p:
                return list_profiles(p, self.config)

        return asyncio.run(_list())
