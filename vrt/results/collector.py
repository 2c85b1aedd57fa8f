"""Per-run result collection, flushed once into a sink."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Awaitable, Callable

from vrt.models.results import ComparisonResult, ResultSet
from vrt.results.aggregator import ResultAggregator, atomic_write_json, shard_result_name

logger = logging.getLogger(__name__)

ResultSink = Callable[[list[ComparisonResult]], Awaitable[None]]


class ResultCollector:
    """Accumulates the ComparisonResults of one shard/profile run."""

    def __init__(self, sink: ResultSink):
        self._sink = sink
        self._results: list[ComparisonResult] = []
        self._flushed = False

    @property
    def results(self) -> list[ComparisonResult]:
        return list(self._results)

    def add(self, result: ComparisonResult) -> None:
        if self._flushed:
            raise RuntimeError("Result collector already flushed")
        self._results.append(result)

    async def flush(self) -> int:
        if self._flushed:
            raise RuntimeError("Result collector already flushed")
        self._flushed = True
        await self._sink(list(self._results))
        return len(self._results)


def shard_file_sink(output_dir: Path, shard_id: str, profile: str, test_type_id: str = "VRT001") -> ResultSink:
    """Sink writing ``test-results-<shard>-<profile>.json`` for the merge step."""
    path = output_dir / shard_result_name(shard_id, profile)

    async def write(results: list[ComparisonResult]) -> None:
        result_set = ResultSet(test_type_id=test_type_id, results=results)
        if atomic_write_json(path, result_set.to_json_dict()):
            logger.info("Wrote %d result(s) to %s", len(results), path)

    return write


def canonical_sink(aggregator: ResultAggregator) -> ResultSink:
    """Sink appending straight to the canonical result file."""

    async def append(results: list[ComparisonResult]) -> None:
        await aggregator.append_run(results)

    return append


def combined_sink(*sinks: ResultSink) -> ResultSink:
    async def write_all(results: list[ComparisonResult]) -> None:
        for sink in sinks:
            await sink(results)

    return write_all
