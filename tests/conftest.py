"""Pytest configuration and shared fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
from PIL import Image, ImageDraw
from playwright.async_api import Browser, BrowserContext, Page

from vrt.models.config import (
    CaptureConfig,
    EnvironmentUrls,
    FrameworkConfig,
    ReportingConfig,
)
from vrt.models.results import ComparisonResult
from vrt.models.url_pair import UrlPairRecord
from vrt.utils.browser import ResolvedProfile


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def framework_config(tmp_path: Path) -> FrameworkConfig:
    """Config rooted in tmp_path, with no waits between retries."""
    return FrameworkConfig(
        urls=EnvironmentUrls(baseline="https://prod.example.com", comparison="https://staging.example.com"),
        reporting=ReportingConfig(root_dir=str(tmp_path / "public")),
        fixtures_dir=str(tmp_path / "fixtures"),
        capture=CaptureConfig(retry_delay_seconds=0, block_find_interval_ms=0, settle_ms=0),
    )


@pytest.fixture
def temp_config_file(framework_config: FrameworkConfig, tmp_path: Path) -> Path:
    config_file = tmp_path / "vrt-config.json"
    framework_config.save(config_file)
    return config_file


@pytest.fixture
def desktop_profile() -> ResolvedProfile:
    return ResolvedProfile(
        name="chromium-desktop",
        browser_name="chromium",
        context_options={"viewport": {"width": 1920, "height": 1080}},
    )


# ============================================================================
# Record Fixtures
# ============================================================================


def make_records(count: int, start: int = 1) -> list[UrlPairRecord]:
    return [
        UrlPairRecord(id=i, baseline=f"page-{i}", comparison=f"page-{i}")
        for i in range(start, start + count)
    ]


@pytest.fixture
def records() -> list[UrlPairRecord]:
    return make_records(5)


def make_result(test_name: str, similarity: int = 100, device: str = "chromium-desktop") -> ComparisonResult:
    return ComparisonResult(
        test_name=test_name,
        device=device,
        browser="chromium",
        viewport="1920x1080",
        similarity=similarity,
        calculated_similarity=similarity,
        baseline_status=200,
        comparison_status=200,
        baseline_url=f"https://prod.example.com/page-{test_name}",
        comparison_url=f"https://staging.example.com/page-{test_name}",
    )


# ============================================================================
# Image Helpers
# ============================================================================


def make_png(path: Path, size=(64, 64), color=(255, 255, 255), box=None, box_color=(0, 0, 0)) -> Path:
    """Write a solid PNG, optionally with a filled rectangle."""
    path.parent.mkdir(parents=True, exist_ok=True)
    img = Image.new("RGB", size, color)
    if box:
        ImageDraw.Draw(img).rectangle(box, fill=box_color)
    img.save(path)
    return path


# ============================================================================
# Mock Fixtures
# ============================================================================


def make_response(status: int = 200) -> Mock:
    response = Mock()
    response.status = status
    return response


@pytest.fixture
def mock_page() -> AsyncMock:
    """A Playwright page whose screenshot writes a real PNG."""
    page = AsyncMock(spec=Page)
    page.url = "https://example.com"
    page.goto = AsyncMock(return_value=make_response(200))
    page.evaluate = AsyncMock(return_value=1000)
    page.wait_for_selector = AsyncMock()
    page.wait_for_timeout = AsyncMock()

    async def _screenshot(path=None, **kwargs):
        if path:
            make_png(Path(path))
        return b""

    page.screenshot = AsyncMock(side_effect=_screenshot)
    return page


@pytest.fixture
def mock_context(mock_page: AsyncMock) -> AsyncMock:
    context = AsyncMock(spec=BrowserContext)
    context.new_page = AsyncMock(return_value=mock_page)
    context.cookies = AsyncMock(return_value=[])
    return context


@pytest.fixture
def mock_browser(mock_context: AsyncMock) -> AsyncMock:
    browser = AsyncMock(spec=Browser)
    browser.new_context = AsyncMock(return_value=mock_context)
    return browser
