"""Similarity engine: scores a comparison screenshot against its baseline.

Two interchangeable algorithms share one status/missing-file policy:

* ``HashSimilarity``: 64-bit perceptual hash, score from the Hamming
  distance. Tolerant of anti-aliasing, blind to small localized changes.
* ``PixelSimilarity``: fraction of pixels differing beyond a per-channel
  threshold after resizing the comparison to the baseline's size.

``compare`` never raises; problems come back as a zero score with ``error``.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import imagehash
import numpy as np
from PIL import Image, ImageChops

from vrt.models.config import DiffMethod, FrameworkConfig

logger = logging.getLogger(__name__)

# Full-page screenshots routinely exceed Pillow's decompression-bomb guard
Image.MAX_IMAGE_PIXELS = None

HASH_BITS = 64
ERROR_STATUS = 400


def round_half_up(value: float) -> int:
    """Round .5 up, unlike Python's banker's rounding."""
    return int(math.floor(value + 0.5))


def is_error_status(status: Optional[int]) -> bool:
    return status is not None and status >= ERROR_STATUS


@dataclass
class ComparisonOutcome:
    similarity: int
    calculated_similarity: Optional[int] = None  # score before status gating
    diff_path: str = ""
    error: Optional[str] = None


def _load(path: Path) -> Image.Image:
    with Image.open(path) as img:
        return img.convert("RGB")


def _match_size(baseline: Image.Image, comparison: Image.Image) -> Image.Image:
    if comparison.size != baseline.size:
        logger.debug("Resizing comparison %s to baseline %s", comparison.size, baseline.size)
        return comparison.resize(baseline.size)
    return comparison


class SimilarityEngine(ABC):
    method: DiffMethod

    @abstractmethod
    def score(self, baseline: Image.Image, comparison: Image.Image) -> int:
        """Similarity 0..100 of two loaded images."""

    @abstractmethod
    def render_diff(self, baseline: Image.Image, comparison: Image.Image) -> Image.Image:
        """Visual reference of what changed."""

    def compare(
        self,
        baseline_path: str | Path,
        comparison_path: str | Path,
        diff_path: str | Path,
        baseline_status: Optional[int] = 200,
        comparison_status: Optional[int] = 200,
    ) -> ComparisonOutcome:
        baseline_path, comparison_path, diff_path = Path(baseline_path), Path(comparison_path), Path(diff_path)

        for label, path in (("baseline", baseline_path), ("comparison", comparison_path)):
            if not path.exists():
                logger.warning("Missing %s screenshot %s", label, path)
                return ComparisonOutcome(similarity=0, error=f"Missing {label} screenshot: {path}")

        try:
            baseline = _load(baseline_path)
            comparison = _load(comparison_path)
            calculated = self.score(baseline, comparison)
        except Exception as e:
            logger.error("Could not compare %s with %s: %s", baseline_path, comparison_path, e)
            return ComparisonOutcome(similarity=0, error=f"Image comparison failed: {e}")

        written = ""
        try:
            diff_path.parent.mkdir(parents=True, exist_ok=True)
            self.render_diff(baseline, comparison).save(diff_path)
            written = str(diff_path)
        except Exception as e:
            # The score stands without its visual reference
            logger.warning("Could not write diff image %s: %s", diff_path, e)

        if is_error_status(baseline_status) or is_error_status(comparison_status):
            logger.info("HTTP error status (baseline %s, comparison %s), similarity forced to 0",
                        baseline_status, comparison_status)
            return ComparisonOutcome(similarity=0, calculated_similarity=calculated, diff_path=written)

        return ComparisonOutcome(similarity=calculated, calculated_similarity=calculated, diff_path=written)


class HashSimilarity(SimilarityEngine):
    method = DiffMethod.HASH

    def __init__(self, hash_threshold: int = 10):
        self.hash_threshold = hash_threshold

    def distance(self, baseline: Image.Image, comparison: Image.Image) -> int:
        return int(imagehash.phash(baseline) - imagehash.phash(comparison))

    def score(self, baseline: Image.Image, comparison: Image.Image) -> int:
        distance = self.distance(baseline, comparison)
        if distance > self.hash_threshold:
            logger.debug("Hash distance %d exceeds threshold %d", distance, self.hash_threshold)
        return round_half_up((HASH_BITS - distance) / HASH_BITS * 100)

    def render_diff(self, baseline: Image.Image, comparison: Image.Image) -> Image.Image:
        return ImageChops.difference(baseline, _match_size(baseline, comparison))


class PixelSimilarity(SimilarityEngine):
    method = DiffMethod.PIXEL

    def __init__(self, threshold: int = 10):
        # 0-100 scale, applied per channel
        self.threshold = threshold

    def _diff_mask(self, baseline: Image.Image, comparison: Image.Image) -> np.ndarray:
        base = np.asarray(baseline, dtype=np.int16)
        other = np.asarray(_match_size(baseline, comparison), dtype=np.int16)
        limit = self.threshold / 100 * 255
        return (np.abs(base - other) > limit).any(axis=2)

    def score(self, baseline: Image.Image, comparison: Image.Image) -> int:
        mask = self._diff_mask(baseline, comparison)
        if mask.size == 0:
            return 100
        fraction = float(mask.sum()) / mask.size
        return round_half_up((1 - fraction) * 100)

    def render_diff(self, baseline: Image.Image, comparison: Image.Image) -> Image.Image:
        mask = self._diff_mask(baseline, comparison)
        # Faded baseline with differing pixels in red
        canvas = np.asarray(baseline.convert("L").convert("RGB"), dtype=np.uint8) // 3 + 170
        canvas[mask] = (255, 0, 0)
        return Image.fromarray(canvas.astype(np.uint8), "RGB")


def build_similarity_engine(config: FrameworkConfig, method: DiffMethod | None = None) -> SimilarityEngine:
    method = method or config.image_diff_method
    if method == DiffMethod.PIXEL:
        return PixelSimilarity(threshold=config.thresholds.pixel)
    return HashSimilarity(hash_threshold=config.thresholds.hash)
