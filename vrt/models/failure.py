"""Shard failure records used for diagnosis and partial re-runs."""

from __future__ import annotations

import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from vrt.models.url_pair import UrlPairRecord


class FailureType(str, Enum):
    FULL = "FULL"  # systemic, the shard's results are not trustworthy
    PARTIAL = "PARTIAL"  # isolated page-level failures


class FailureSource(str, Enum):
    APPLICATION = "APPLICATION"
    RUNNER = "RUNNER"
    AUTH_PROVIDER = "AUTH_PROVIDER"
    NETWORK = "NETWORK"


class FailedUrl(BaseModel):
    id: int
    url: str
    error: str = ""


class FailureRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    timestamp: str = Field(default_factory=lambda: time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()))
    project: str
    shard_id: str
    failure_type: FailureType
    failure_source: FailureSource
    failure_reason: str
    failure_location: str = "unknown"
    total_urls: int = 0
    completed_urls: list[int] = Field(default_factory=list)
    remaining_urls: list[UrlPairRecord] = Field(default_factory=list)
    failed_urls: list[FailedUrl] = Field(default_factory=list)


class MergedFailures(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    timestamp: str = Field(default_factory=lambda: time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()))
    total_failures: int = 0
    failures: list[dict] = Field(default_factory=list)
