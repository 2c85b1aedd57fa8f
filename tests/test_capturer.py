"""Tests for the capture orchestrator."""

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from conftest import make_records, make_response
from vrt.capture.capturer import CaptureOrchestrator, response_status, screenshot_dir
from vrt.capture.isolation import SingleBlockStrategy, WholePageStrategy
from vrt.compare.similarity import HashSimilarity
from vrt.errors import CaptureError
from vrt.models.config import CaptureConfig, EmbedConfig, Environment, FullPageConfig
from vrt.results.advisories import PageLimitRecorder


@pytest.fixture
def record():
    return make_records(1)[0]


@pytest.fixture
def orchestrator(framework_config, desktop_profile):
    return CaptureOrchestrator(
        framework_config,
        desktop_profile,
        WholePageStrategy(FullPageConfig()),
        HashSimilarity(),
    )


class TestCapture:

    @pytest.mark.asyncio
    async def test_baseline_capture(self, orchestrator, mock_page, record, framework_config):
        result = await orchestrator.capture(mock_page, record, Environment.BASELINE)

        mock_page.goto.assert_awaited_once_with(
            "https://prod.example.com/page-1", timeout=120_000, wait_until="networkidle"
        )
        expected = screenshot_dir(framework_config.visual_diff_dir, "chromium-desktop", "baseline") / "1.png"
        assert result.artifact_path == str(expected)
        assert expected.exists()
        assert result.status == 200
        assert result.viewport == "1920x1080"
        assert result.oversized is False
        assert mock_page.screenshot.await_args.kwargs["full_page"] is True

    @pytest.mark.asyncio
    async def test_comparison_uses_comparison_base_url(self, orchestrator, mock_page, record):
        result = await orchestrator.capture(mock_page, record, Environment.COMPARISON)
        assert mock_page.goto.await_args.args[0] == "https://staging.example.com/page-1"
        assert result.artifact_path.endswith("comparison/1.png")

    @pytest.mark.asyncio
    async def test_error_status_is_still_captured(self, orchestrator, mock_page, record):
        mock_page.goto = AsyncMock(return_value=make_response(404))
        result = await orchestrator.capture(mock_page, record, Environment.BASELINE)
        assert result.status == 404
        mock_page.screenshot.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, orchestrator, mock_page, record):
        mock_page.goto = AsyncMock(side_effect=[TimeoutError("nav"), make_response(200)])
        result = await orchestrator.capture(mock_page, record, Environment.BASELINE)
        assert result.status == 200
        assert mock_page.goto.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_capture_error(self, orchestrator, mock_page, record):
        mock_page.goto = AsyncMock(side_effect=TimeoutError("Timeout 120000ms exceeded"))

        with pytest.raises(CaptureError) as exc_info:
            await orchestrator.capture(mock_page, record, Environment.BASELINE)

        assert mock_page.goto.await_count == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, TimeoutError)
        mock_page.screenshot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_oversized_page_records_advisory(self, framework_config, desktop_profile,
                                                   mock_page, record, tmp_path):
        recorder = PageLimitRecorder(tmp_path, "1")
        orchestrator = CaptureOrchestrator(
            framework_config, desktop_profile, WholePageStrategy(FullPageConfig()),
            HashSimilarity(), advisories=recorder,
        )
        mock_page.evaluate = AsyncMock(return_value=40_000)

        result = await orchestrator.capture(mock_page, record, Environment.BASELINE)

        assert result.oversized is True
        assert mock_page.screenshot.await_args.kwargs["full_page"] is False
        entries = json.loads(recorder.path.read_text())
        assert entries == [{"testName": "1", "device": "chromium-desktop",
                            "url": "page-1", "contentHeight": 40_000}]

    @pytest.mark.asyncio
    async def test_page_at_limit_is_captured_full(self, orchestrator, mock_page, record):
        mock_page.evaluate = AsyncMock(return_value=32767)
        result = await orchestrator.capture(mock_page, record, Environment.BASELINE)
        assert result.oversized is False

    @pytest.mark.asyncio
    async def test_absent_block_still_produces_screenshot(self, framework_config, desktop_profile,
                                                          mock_page, record):
        embed = EmbedConfig(
            baseline={"data_block": '[data-block="content-main"]', "hide_elements": "NULL"},
            comparison={"data_block": "#main", "hide_elements": "NULL"},
        )
        capture = CaptureConfig(block_find_attempts=3, block_find_interval_ms=2000, settle_ms=1000)
        orchestrator = CaptureOrchestrator(
            framework_config, desktop_profile, SingleBlockStrategy(embed, capture), HashSimilarity(),
        )

        async def evaluate(script, arg=None):
            if "!!document.querySelector" in script:
                return False
            return 1000

        mock_page.evaluate = AsyncMock(side_effect=evaluate)

        result = await orchestrator.capture(mock_page, record, Environment.BASELINE)

        lookups = [c for c in mock_page.evaluate.await_args_list if "!!document.querySelector" in c.args[0]]
        assert len(lookups) == 3
        artifact = Path(result.artifact_path)
        assert artifact.exists()
        assert artifact.stat().st_size > 0
        assert mock_page.screenshot.await_args.kwargs["full_page"] is True


class TestProbeStatus:

    @pytest.mark.asyncio
    async def test_status_returned(self, orchestrator, mock_page):
        mock_page.goto = AsyncMock(return_value=make_response(301))
        assert await orchestrator.probe_status(mock_page, "https://prod.example.com/x") == 301

    @pytest.mark.asyncio
    async def test_navigation_error_is_500(self, orchestrator, mock_page):
        mock_page.goto = AsyncMock(side_effect=Exception("net::ERR_NAME_NOT_RESOLVED"))
        assert await orchestrator.probe_status(mock_page, "https://prod.example.com/x") == 500

    def test_no_response_is_500(self):
        assert response_status(None) == 500


class TestCompareRecord:

    @pytest.mark.asyncio
    async def test_missing_baseline(self, orchestrator, mock_page, record):
        result = await orchestrator.compare_record(mock_page, record)
        assert result.similarity == 0
        assert result.error == "Missing baseline screenshot"
        mock_page.goto.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_identical_pages(self, orchestrator, mock_page, record):
        await orchestrator.capture(mock_page, record, Environment.BASELINE)

        result = await orchestrator.compare_record(mock_page, record)

        assert result.similarity == 100
        assert (result.baseline_status, result.comparison_status) == (200, 200)
        assert result.baseline_url == "https://prod.example.com/page-1"
        assert result.comparison_url == "https://staging.example.com/page-1"
        assert result.diff_path.endswith("diff/1.png")
        assert result.error is None

    @pytest.mark.asyncio
    async def test_baseline_error_status_forces_zero(self, orchestrator, mock_page, record):
        await orchestrator.capture(mock_page, record, Environment.BASELINE)
        # Probe sees 404, the comparison capture sees 200
        mock_page.goto = AsyncMock(side_effect=[make_response(404), make_response(200)])

        result = await orchestrator.compare_record(mock_page, record)

        assert result.similarity == 0
        assert result.calculated_similarity == 100
        assert result.baseline_status == 404

    @pytest.mark.asyncio
    async def test_probe_uses_separate_page(self, orchestrator, mock_page, record):
        await orchestrator.capture(mock_page, record, Environment.BASELINE)
        probe_page = AsyncMock()
        probe_page.goto = AsyncMock(return_value=make_response(200))

        await orchestrator.compare_record(mock_page, record, probe_page=probe_page)

        probe_page.goto.assert_awaited_once()
        assert probe_page.goto.await_args.args[0] == "https://prod.example.com/page-1"

    @pytest.mark.asyncio
    async def test_comparison_failure_propagates(self, orchestrator, mock_page, record):
        await orchestrator.capture(mock_page, record, Environment.BASELINE)
        mock_page.goto = AsyncMock(side_effect=[make_response(200)] + [TimeoutError("nav")] * 3)

        with pytest.raises(CaptureError):
            await orchestrator.compare_record(mock_page, record)

    def test_failed_result(self, orchestrator, record):
        result = orchestrator.failed_result(record, RuntimeError("boom"))
        assert result.similarity == 0
        assert result.error == "Comparison screenshot failed: boom"
        assert result.test_name == "1"
