"""Content isolation: reshape the page so only the intended content is captured.

Two strategies, chosen once from ``page_elements.mode``:

* ``WholePageStrategy`` (FULL) hides configured regions, layout untouched.
* ``SingleBlockStrategy`` (EMBED) reduces the page to one content block so
  baseline and comparison can be compared even when their surrounding
  chrome differs. If the block never shows up the page is left alone and
  captured whole.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from playwright.async_api import Page

from vrt.models.config import (
    CaptureConfig,
    EmbedConfig,
    Environment,
    FrameworkConfig,
    FullPageConfig,
    IsolationMode,
)

logger = logging.getLogger(__name__)

_HIDE_VISIBILITY_JS = """
(selector) => {
    const elements = document.querySelectorAll(selector);
    elements.forEach(el => { el.style.visibility = 'hidden'; });
    return elements.length;
}
"""

_EXISTS_JS = "(selector) => !!document.querySelector(selector)"

_IS_VISIBLE_JS = """
(selector) => {
    const el = document.querySelector(selector);
    if (!el) return false;
    const style = window.getComputedStyle(el);
    return style.display !== 'none' && style.visibility !== 'hidden' && style.opacity !== '0';
}
"""

# Keeps the target block, its ancestors and its descendants; hides the rest.
_ISOLATE_BLOCK_JS = """
({ targetSelector, hideSelectors }) => {
    const target = document.querySelector(targetSelector);
    if (!target) return null;

    const stats = { siblings: 0, bySelector: 0, fixed: 0 };

    const ancestors = [];
    for (let node = target; node && node !== document.documentElement; node = node.parentElement) {
        ancestors.push(node);
    }

    for (const node of ancestors) {
        const parent = node.parentElement;
        if (!parent) continue;
        for (const sibling of Array.from(parent.children)) {
            if (sibling === node || sibling.contains(target)) continue;
            sibling.style.setProperty('display', 'none', 'important');
            stats.siblings++;
        }
    }

    for (const node of ancestors) {
        node.style.setProperty('width', '100%', 'important');
        node.style.setProperty('max-width', '100%', 'important');
        const parent = node.parentElement;
        if (parent && window.getComputedStyle(parent).display.includes('flex')) {
            node.style.setProperty('flex', '1 0 100%', 'important');
        }
    }

    target.style.setProperty('position', 'relative', 'important');
    target.style.setProperty('top', '0', 'important');
    target.style.setProperty('left', '0', 'important');
    target.style.setProperty('margin', '0', 'important');
    target.style.setProperty('background-color', 'white', 'important');

    for (const selector of hideSelectors) {
        try {
            document.querySelectorAll(selector).forEach(el => {
                el.style.setProperty('display', 'none', 'important');
                stats.bySelector++;
            });
        } catch (e) {
            // invalid selector, skip it
        }
    }

    for (const el of Array.from(document.body.querySelectorAll('*'))) {
        if (el.contains(target) || target.contains(el)) continue;
        if (window.getComputedStyle(el).position === 'fixed') {
            el.style.setProperty('display', 'none', 'important');
            stats.fixed++;
        }
    }

    for (const root of [document.documentElement, document.body]) {
        root.style.setProperty('height', 'auto', 'important');
        root.style.setProperty('overflow', 'visible', 'important');
        root.style.setProperty('scroll-behavior', 'auto', 'important');
    }
    return stats;
}
"""


@dataclass
class IsolationOutcome:
    isolated: bool = False
    block_visible: bool = False
    hidden: int = 0


class IsolationStrategy(ABC):
    mode: IsolationMode

    @abstractmethod
    async def apply(self, page: Page, environment: Environment) -> IsolationOutcome:
        """Transform the page's visibility state before the screenshot."""


class WholePageStrategy(IsolationStrategy):
    mode = IsolationMode.FULL

    def __init__(self, full_config: FullPageConfig):
        self.full_config = full_config

    async def apply(self, page: Page, environment: Environment) -> IsolationOutcome:
        selectors = self.full_config.selectors_for(environment)
        if not selectors:
            logger.debug("No elements to hide for %s", environment.value)
            return IsolationOutcome()

        hidden = 0
        for selector in selectors:
            try:
                hidden += await page.evaluate(_HIDE_VISIBILITY_JS, selector) or 0
            except Exception as e:
                logger.warning("Could not hide elements matching '%s': %s", selector, e)
        logger.debug("Hid %d element(s) for %s using %d selector(s)",
                     hidden, environment.value, len(selectors))
        return IsolationOutcome(hidden=hidden)


class SingleBlockStrategy(IsolationStrategy):
    mode = IsolationMode.EMBED

    def __init__(self, embed_config: EmbedConfig, capture: CaptureConfig):
        self.embed_config = embed_config
        self.attempts = capture.block_find_attempts
        self.interval_ms = capture.block_find_interval_ms
        self.visible_timeout_ms = capture.block_visible_timeout_ms
        self.settle_ms = capture.settle_ms

    async def _find_block(self, page: Page, selector: str) -> bool:
        for attempt in range(1, self.attempts + 1):
            try:
                if await page.evaluate(_EXISTS_JS, selector):
                    logger.debug("Found '%s' on attempt %d", selector, attempt)
                    return True
            except Exception as e:
                logger.debug("Error looking for '%s': %s", selector, e)
            if attempt < self.attempts:
                await page.wait_for_timeout(self.interval_ms)
        return False

    async def apply(self, page: Page, environment: Environment) -> IsolationOutcome:
        target = self.embed_config.for_env(environment)
        selector = target.data_block
        if not selector:
            logger.warning("No content block selector configured for %s", environment.value)
            return IsolationOutcome()

        if not await self._find_block(page, selector):
            logger.warning("Content block '%s' not found after %d attempts, capturing full page",
                           selector, self.attempts)
            return IsolationOutcome()

        try:
            await page.wait_for_selector(selector, state="visible", timeout=self.visible_timeout_ms)
        except Exception:
            logger.info("Content block '%s' exists but is not visible yet, isolating anyway", selector)

        stats = await page.evaluate(
            _ISOLATE_BLOCK_JS,
            {"targetSelector": selector, "hideSelectors": target.hide_elements},
        )
        if stats is None:
            # Detached between the lookup and the transform
            logger.warning("Content block '%s' disappeared before isolation", selector)
            return IsolationOutcome()

        await page.wait_for_timeout(self.settle_ms)

        visible = bool(await page.evaluate(_IS_VISIBLE_JS, selector))
        if not visible:
            logger.warning("Content block '%s' is not visible after isolation, capturing what remains",
                           selector)
        hidden = sum(stats.values()) if isinstance(stats, dict) else 0
        logger.debug("Isolated '%s' for %s (%s)", selector, environment.value, stats)
        return IsolationOutcome(isolated=True, block_visible=visible, hidden=hidden)


def build_isolation_strategy(config: FrameworkConfig, mode: IsolationMode | None = None) -> IsolationStrategy:
    mode = mode or config.page_elements.mode
    if mode == IsolationMode.EMBED:
        return SingleBlockStrategy(config.page_elements.embed, config.capture)
    return WholePageStrategy(config.page_elements.full)
