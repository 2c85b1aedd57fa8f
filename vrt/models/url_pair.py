"""URL pair records and shard manifests."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UrlPairRecord(BaseModel):
    # Extra CSV columns are carried through untouched
    model_config = ConfigDict(extra="allow", frozen=True)

    id: int
    baseline: str  # path relative to the baseline base URL
    comparison: str  # path relative to the comparison base URL
    device: str = "desktop"
    width: int = 1000
    height: int = 800

    @field_validator("baseline", "comparison", mode="before")
    @classmethod
    def strip_leading_slash(cls, v):
        if isinstance(v, str):
            return v.lstrip("\ufeff").lstrip("/")
        return v


class ShardManifest(BaseModel):
    chunks: list[str] = Field(default_factory=list)
