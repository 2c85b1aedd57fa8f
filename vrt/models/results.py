"""Capture and comparison result data structures.

Everything persisted for downstream reporting is serialized with camelCase
keys (``model_dump(by_alias=True)``); Python code uses snake_case.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_WIRE = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    coerce_numbers_to_str=True,
)


@dataclass
class CaptureResult:
    """One screenshot taken for a (record, environment, profile)."""
    test_name: str
    device: str
    browser: str
    viewport: str
    status: int
    artifact_path: str
    oversized: bool = False
    isolated: bool = False
    content_height: int = 0


class ComparisonResult(BaseModel):
    # Unknown keys written by older producers are kept on round-trip
    model_config = ConfigDict(**_WIRE, extra="allow")

    test_name: str
    device: str = ""
    browser: str = ""
    viewport: str = ""
    similarity: int = Field(default=0, ge=0, le=100)
    calculated_similarity: Optional[int] = None
    baseline_status: int = 0
    comparison_status: int = 0
    baseline_path: str = ""
    comparison_path: str = ""
    diff_path: str = ""
    baseline_url: str = ""
    comparison_url: str = ""
    error: Optional[str] = None


class ResultSet(BaseModel):
    """Shape shared by per-shard result files and the canonical result set."""
    model_config = ConfigDict(**_WIRE, extra="allow")

    test_id: int = Field(default_factory=lambda: int(time.time() * 1000))
    test_type_id: str = "VRT001"
    test_date: str = Field(default_factory=lambda: time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()))
    results: list[ComparisonResult] = Field(default_factory=list)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class PageLimitExceeded(BaseModel):
    """Advisory for a page taller than the maximum screenshot dimension."""
    model_config = _WIRE

    test_name: str
    device: str
    url: str
    content_height: int
