"""Capture orchestrator: navigate, isolate, screenshot, and score one record."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from playwright.async_api import Page, Response

from vrt.capture.isolation import IsolationStrategy
from vrt.compare.similarity import SimilarityEngine
from vrt.errors import CaptureError
from vrt.models.config import Environment, FrameworkConfig
from vrt.models.results import CaptureResult, ComparisonResult, PageLimitExceeded
from vrt.models.url_pair import UrlPairRecord
from vrt.results.advisories import PageLimitRecorder
from vrt.url_utils import build_url
from vrt.utils.browser import ResolvedProfile
from vrt.utils.retry import retry

logger = logging.getLogger(__name__)

_CONTENT_HEIGHT_JS = "() => document.documentElement.scrollHeight"

# Status assumed when navigation yields no response
NO_RESPONSE_STATUS = 500


def screenshot_dir(visual_diff_dir: Path, profile: str, kind: str) -> Path:
    """``<root>/visual-diff/screenshots/<profile>/<baseline|comparison|diff>``."""
    return visual_diff_dir / "screenshots" / profile / kind


def response_status(response: Optional[Response]) -> int:
    return response.status if response is not None else NO_RESPONSE_STATUS


class CaptureOrchestrator:
    """Captures screenshots for one device profile.

    A capture goes NAVIGATING -> ISOLATING -> MEASURING -> CAPTURING. Any
    failure along the way retries the whole capture with a fixed delay; when
    retries run out a ``CaptureError`` reaches the caller.
    """

    def __init__(
        self,
        config: FrameworkConfig,
        profile: ResolvedProfile,
        isolation: IsolationStrategy,
        engine: SimilarityEngine,
        advisories: PageLimitRecorder | None = None,
        retry_delay: float | None = None,
    ):
        self.config = config
        self.profile = profile
        self.isolation = isolation
        self.engine = engine
        self.advisories = advisories
        self.capture_settings = config.capture
        self.retry_delay = config.capture.retry_delay_seconds if retry_delay is None else retry_delay

    def url_for(self, record: UrlPairRecord, environment: Environment) -> str:
        path = record.baseline if environment == Environment.BASELINE else record.comparison
        return build_url(self.config.urls.for_env(environment), path)

    def artifact_path(self, record: UrlPairRecord, kind: str) -> Path:
        return screenshot_dir(self.config.visual_diff_dir, self.profile.name, kind) / f"{record.id}.png"

    async def _capture_once(self, page: Page, record: UrlPairRecord, environment: Environment) -> CaptureResult:
        url = self.url_for(record, environment)
        path = self.artifact_path(record, environment.value)

        logger.debug("Navigating to %s", url)
        response = await page.goto(
            url,
            timeout=self.capture_settings.navigation_timeout_ms,
            wait_until=self.capture_settings.wait_until,
        )
        status = response_status(response)

        outcome = await self.isolation.apply(page, environment)

        content_height = await page.evaluate(_CONTENT_HEIGHT_JS)
        oversized = content_height > self.capture_settings.max_content_height
        if oversized:
            logger.info("%s is %dpx tall, capturing the viewport only", url, content_height)

        path.parent.mkdir(parents=True, exist_ok=True)
        await page.screenshot(
            path=str(path),
            full_page=not oversized,
            timeout=self.capture_settings.action_timeout_ms,
            scale="css",
        )
        logger.debug("Saved %s screenshot %s (status %d)", environment.value, path, status)

        return CaptureResult(
            test_name=str(record.id),
            device=self.profile.name,
            browser=self.profile.browser_name,
            viewport=self.profile.viewport_label,
            status=status,
            artifact_path=str(path),
            oversized=oversized,
            isolated=outcome.isolated,
            content_height=content_height,
        )

    async def capture(self, page: Page, record: UrlPairRecord, environment: Environment) -> CaptureResult:
        """Capture ``record`` in ``environment``; raises ``CaptureError`` after the last retry."""
        url = self.url_for(record, environment)
        attempts = self.capture_settings.max_retries
        try:
            result = await retry(
                lambda: self._capture_once(page, record, environment),
                max_attempts=attempts,
                delay=self.retry_delay,
                label=f"capture of {url}",
            )
        except Exception as e:
            raise CaptureError(url, attempts, e) from e

        if result.oversized and self.advisories is not None:
            path = record.baseline if environment == Environment.BASELINE else record.comparison
            self.advisories.record(PageLimitExceeded(
                test_name=result.test_name,
                device=result.device,
                url=path,
                content_height=result.content_height,
            ))
        return result

    async def probe_status(self, page: Page, url: str) -> int:
        """HTTP status of ``url`` without capturing it. Errors count as no response."""
        try:
            response = await page.goto(
                url,
                timeout=self.capture_settings.navigation_timeout_ms,
                wait_until="domcontentloaded",
            )
        except Exception as e:
            logger.warning("Status probe of %s failed: %s", url, e)
            return NO_RESPONSE_STATUS
        return response_status(response)

    def _result(self, record: UrlPairRecord, **fields) -> ComparisonResult:
        return ComparisonResult(
            test_name=str(record.id),
            device=self.profile.name,
            browser=self.profile.browser_name,
            viewport=self.profile.viewport_label,
            baseline_url=self.url_for(record, Environment.BASELINE),
            comparison_url=self.url_for(record, Environment.COMPARISON),
            **fields,
        )

    async def compare_record(self, page: Page, record: UrlPairRecord, probe_page: Page | None = None) -> ComparisonResult:
        """Capture the comparison side of ``record`` and score it against its baseline.

        The baseline screenshot comes from an earlier baseline run. Its page
        status is probed on ``probe_page`` (or ``page``) because the baseline
        run does not persist it. Raises ``CaptureError`` when the comparison
        capture fails; the caller decides how that counts against the shard.
        """
        baseline_path = self.artifact_path(record, Environment.BASELINE.value)
        if not baseline_path.exists():
            logger.warning("[SKIP] No baseline for %s under %s, run the baseline first",
                           record.id, self.profile.name)
            return self._result(record, similarity=0, error="Missing baseline screenshot")

        baseline_status = await self.probe_status(
            probe_page or page, self.url_for(record, Environment.BASELINE)
        )
        captured = await self.capture(page, record, Environment.COMPARISON)

        diff_path = self.artifact_path(record, "diff")
        outcome = self.engine.compare(
            baseline_path, captured.artifact_path, diff_path,
            baseline_status=baseline_status,
            comparison_status=captured.status,
        )
        logger.info("%s [%s]: similarity %d%% (calculated %s, baseline %d, comparison %d)",
                    record.id, self.profile.name, outcome.similarity,
                    outcome.calculated_similarity, baseline_status, captured.status)

        return self._result(
            record,
            similarity=outcome.similarity,
            calculated_similarity=outcome.calculated_similarity,
            baseline_status=baseline_status,
            comparison_status=captured.status,
            baseline_path=str(baseline_path),
            comparison_path=captured.artifact_path,
            diff_path=outcome.diff_path,
            error=outcome.error,
        )

    def failed_result(self, record: UrlPairRecord, error: BaseException) -> ComparisonResult:
        """Zero-similarity result for a record whose comparison capture failed."""
        return self._result(record, similarity=0, error=f"Comparison screenshot failed: {error}")
