"""URL corpus tooling and canonical result exports."""

from __future__ import annotations

import csv
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from vrt.models.config import FrameworkConfig, Thresholds
from vrt.models.results import ComparisonResult, ResultSet
from vrt.models.url_pair import UrlPairRecord
from vrt.results.aggregator import read_result_set
from vrt.sharding.planner import load_records
from vrt.url_utils import build_url

logger = logging.getLogger(__name__)

CSV_HEADERS = [
    "Test ID",
    "Test Name",
    "Device",
    "Browser",
    "Viewport",
    "Similarity (%)",
    "Calculated Similarity (%)",
    "Baseline Status",
    "Comparison Status",
    "Baseline URL",
    "Comparison URL",
    "Test Date",
    "Error",
]


def _write_records(records: list[UrlPairRecord], output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump([r.model_dump() for r in records], f, indent=2)


def import_csv(csv_path: Path, output_path: Path) -> list[UrlPairRecord]:
    """Convert a CSV of ``baseline``/``comparison`` paths into a URL pair file."""
    records = []
    with open(csv_path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        missing = {"baseline", "comparison"} - set(reader.fieldnames or [])
        if missing:
            raise ValueError(f"CSV {csv_path} is missing column(s): {', '.join(sorted(missing))}")
        for row in reader:
            if not any((v or "").strip() for v in row.values()):
                continue
            # id, device and size are always assigned here, other columns pass through
            extra = {k: v for k, v in row.items() if k and k not in UrlPairRecord.model_fields}
            records.append(UrlPairRecord(
                id=len(records) + 1,
                baseline=row["baseline"] or "",
                comparison=row["comparison"] or "",
                **extra,
            ))

    _write_records(records, output_path)
    logger.info("Converted %d row(s) from %s into %s", len(records), csv_path, output_path)
    return records


def filter_urls(source: Path, output_path: Path, start_id: int, end_id: int) -> list[UrlPairRecord]:
    """Keep records whose id lies in ``[start_id, end_id]``."""
    records = [r for r in load_records(source) if start_id <= r.id <= end_id]
    _write_records(records, output_path)
    logger.info("Kept %d record(s) with ids %d-%d in %s", len(records), start_id, end_id, output_path)
    return records


def missed_urls(config: FrameworkConfig, urls_path: Path, results_path: Path, output_path: Path) -> dict:
    """Report corpus records with no result, matched on the comparison URL."""
    records = load_records(urls_path)
    result_set = read_result_set(results_path)
    tested = {r.comparison_url for r in result_set.results}

    missed = [
        r for r in records
        if build_url(config.urls.comparison, r.comparison) not in tested
    ]
    report = {
        "totalUrls": len(records),
        "testedUrls": len(tested),
        "missedUrls": len(missed),
        "urls": [r.model_dump() for r in missed],
    }
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(report, f, indent=2)
    logger.info("%d of %d URL(s) have no result, written to %s", len(missed), len(records), output_path)
    return report


def export_csv(results_path: Path, output_path: Path) -> int:
    """Write the canonical result set as CSV; returns the row count."""
    result_set = read_result_set(results_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADERS)
        for r in result_set.results:
            writer.writerow([
                result_set.test_id,
                r.test_name,
                r.device,
                r.browser,
                r.viewport,
                r.similarity,
                r.calculated_similarity if r.calculated_similarity is not None else r.similarity,
                r.baseline_status,
                r.comparison_status,
                r.baseline_url,
                r.comparison_url,
                result_set.test_date,
                r.error or "",
            ])
    logger.info("Exported %d result(s) to %s", len(result_set.results), output_path)
    return len(result_set.results)


def _test_sort_key(result: ComparisonResult):
    name = result.test_name
    return (0, int(name), result.device) if name.isdigit() else (1, name, result.device)


@dataclass
class SimilaritySummary:
    high: list[ComparisonResult] = field(default_factory=list)
    medium: list[ComparisonResult] = field(default_factory=list)
    low: list[ComparisonResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.high) + len(self.medium) + len(self.low)


def summarize(result_set: ResultSet, thresholds: Thresholds) -> SimilaritySummary:
    """Bucket results by similarity, each bucket ordered by test id."""
    summary = SimilaritySummary()
    for r in sorted(result_set.results, key=_test_sort_key):
        if r.similarity >= thresholds.similarity_high:
            summary.high.append(r)
        elif r.similarity >= thresholds.similarity_medium:
            summary.medium.append(r)
        else:
            summary.low.append(r)
    return summary
