import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import Error as PlaywrightError

import IG_Reels_Scraper.src.logger
from IG_Reels_Scraper.src.config import EngagementConfig

logger = logging.getLogger('IGRS.Engagement')

LIKE_BUTTON_SELECTORS = [
    'div[role="button"]:has(svg[aria-label="Like"])',
    'button:has(svg[aria-label="Like"])',
    'svg[aria-label="Like"]',
]


class EngagementPolicy:
    """Decides whether to engage with a reel and how long to watch it."""

    def __init__(
        self,
        config: Optional[EngagementConfig] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or EngagementConfig()
        self._rng = rng or random.Random()
        self._sleep = sleep

    def should_engage(self, kind: str) -> bool:
        action = self.config.action(kind)
        if not action.enabled or action.probability <= 0:
            return False
        if action.probability >= 1:
            return True
        return self._rng.random() < action.probability

    def dwell_duration(self) -> float:
        """Simulated watch time in milliseconds."""
        low, high = self.config.watch_range
        return self._rng.uniform(low, high) * 1000

    async def perform(self, page, kind: str) -> bool:
        if kind != 'likes':
            logger.debug(f"No page action implemented for '{kind}'")
            return False

        await self._sleep(self._rng.uniform(0.5, 1.0))
        for selector in LIKE_BUTTON_SELECTORS:
            try:
                button = await page.query_selector(selector)
                if button:
                    await button.click()
                    logger.info("♥ Liked reel")
                    await self._sleep(self._rng.uniform(*self.config.likes.delay_range))
                    return True
            except PlaywrightError as e:
                logger.debug(f"Like via {selector} failed: {e}")
        logger.debug("Like control not found")
        return False
