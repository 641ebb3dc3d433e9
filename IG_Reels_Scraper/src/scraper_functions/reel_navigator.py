"""
Reel navigation engine.

Advancing to the next reel is attempted with an ordered list of independent
strategies (keys, "next" button, swipe, page scroll). Each strategy only
dispatches input; the engine then verifies the transition by polling the item
id in the location. Failure counters live in a NavigationState that is updated
through record_outcome so the policy can be tested without a browser.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from playwright.async_api import Error as PlaywrightError

import IG_Reels_Scraper.src.logger
from IG_Reels_Scraper.src.config import NavigationConfig
from IG_Reels_Scraper.src.models import NavigationState
from IG_Reels_Scraper.src.scraper_functions.dom_extractor import item_id_from_url

logger = logging.getLogger('IGRS.Navigator')

NEXT_BUTTON_SELECTORS = [
    'button[aria-label*="Next"]',
    'button[aria-label*="next"]',
    'div[role="button"][aria-label*="Next"]',
    'svg[aria-label*="Next"]',
]
FIRST_REEL_SELECTOR = 'a[href*="/reel/"], a[href*="/reels/"]'
MEDIA_READY_SELECTOR = 'video[src], video[srcset]'

PerformFn = Callable[[Any], Awaitable[bool]]


# ============================================================================
# STRATEGIES
# ============================================================================

@dataclass(frozen=True)
class NavigationStrategy:
    """One way of moving to the next item. perform returns whether input was dispatched."""
    name: str
    perform: PerformFn
    attempts: int = 1
    verify_timeout: Optional[float] = None


def key_press(key: str) -> PerformFn:
    async def perform(page) -> bool:
        await page.focus('body')
        await page.keyboard.press(key)
        return True
    return perform


def click_next_button(selectors: List[str] = NEXT_BUTTON_SELECTORS) -> PerformFn:
    async def perform(page) -> bool:
        for selector in selectors:
            try:
                button = await page.query_selector(selector)
            except PlaywrightError:
                continue
            if button:
                logger.debug(f"Found next control with selector: {selector}")
                await button.scroll_into_view_if_needed()
                await button.click()
                return True
        logger.debug("Next control not found")
        return False
    return perform


async def swipe_media(page) -> bool:
    video = await page.query_selector('video')
    if not video:
        return False
    box = await video.bounding_box()
    if not box:
        return False
    x = box['x'] + box['width'] / 2
    start_y = box['y'] + box['height'] / 2
    end_y = box['y'] + box['height'] * 0.2
    await page.mouse.move(x, start_y)
    await page.mouse.down()
    await page.mouse.move(x, end_y, steps=10)
    await page.mouse.up()
    return True


def default_strategies(config: NavigationConfig) -> List[NavigationStrategy]:
    return [
        NavigationStrategy('ArrowDown', key_press('ArrowDown'), config.key_attempts),
        NavigationStrategy('ArrowRight', key_press('ArrowRight'), config.key_attempts),
        NavigationStrategy('next button', click_next_button(), config.button_attempts),
        NavigationStrategy('swipe', swipe_media, config.gesture_attempts),
        NavigationStrategy('PageDown', key_press('PageDown'), config.gesture_attempts,
                           verify_timeout=config.last_resort_verify_timeout),
    ]


# ============================================================================
# FAILURE POLICY
# ============================================================================

def record_outcome(state: NavigationState, success: bool):
    if success:
        state.consecutive_failures = 0
    else:
        state.consecutive_failures += 1
        state.cumulative_failures += 1


def is_exhausted(state: NavigationState, config: NavigationConfig) -> bool:
    return (state.consecutive_failures >= config.max_consecutive_failures
            or state.cumulative_failures >= config.max_cumulative_failures)


def compute_backoff(consecutive_failures: int, config: NavigationConfig) -> float:
    """Base delay before jitter: doubles per consecutive failure, capped at backoff_max."""
    exponent = max(0, int(consecutive_failures) - 1)
    return min(config.backoff_max, config.backoff_base * (2 ** exponent))


# ============================================================================
# NAVIGATOR
# ============================================================================

class ReelNavigator:
    """Moves the page from the current reel to the next one."""

    def __init__(
        self,
        page,
        config: Optional[NavigationConfig] = None,
        strategies: Optional[List[NavigationStrategy]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.page = page
        self.config = config or NavigationConfig()
        self.strategies = strategies if strategies is not None else default_strategies(self.config)
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.state = NavigationState()

    def reset(self):
        self.state = NavigationState(current_item_id=self.current_item_id())

    def current_item_id(self) -> Optional[str]:
        try:
            return item_id_from_url(self.page.url)
        except PlaywrightError:
            return None

    def is_on_item(self) -> bool:
        try:
            url = self.page.url
        except PlaywrightError:
            return False
        return 'instagram.com' in url and item_id_from_url(url) is not None

    async def open_feed(self) -> bool:
        """Load the reels feed and make sure a reel viewer is open."""
        logger.info(f"Navigating to reels feed: {self.config.feed_url}")
        await self.page.goto(self.config.feed_url, wait_until='domcontentloaded', timeout=30000)
        await self._pause(2.0, 4.0)
        if self.is_on_item():
            return True

        for _ in range(2):
            first_reel = await self.page.query_selector(FIRST_REEL_SELECTOR)
            if first_reel:
                await first_reel.click()
                await self._pause(2.0, 3.0)
                return self.is_on_item()
            logger.debug("No reel link on the feed yet, waiting...")
            await self._pause(3.0, 5.0)
        logger.warning("No reels found on the feed page")
        return False

    # ========================================================================
    # ADVANCE
    # ========================================================================

    def should_retry(self) -> bool:
        return self.state.consecutive_failures > 0 and not is_exhausted(self.state, self.config)

    def is_exhausted(self) -> bool:
        return is_exhausted(self.state, self.config)

    def next_backoff(self) -> float:
        base = compute_backoff(self.state.consecutive_failures, self.config)
        return base + self._rng.uniform(0, self.config.backoff_jitter)

    async def advance(self) -> bool:
        """Try every strategy in order; the first verified transition wins."""
        from_id = self.current_item_id()
        self.state.current_item_id = from_id
        if not from_id:
            logger.warning("Current location has no item id, cannot verify navigation")

        for strategy in self.strategies if from_id else []:
            timeout = strategy.verify_timeout or self.config.verify_timeout
            for attempt in range(1, strategy.attempts + 1):
                try:
                    logger.debug(f"[{strategy.name} {attempt}/{strategy.attempts}] advancing from {from_id}")
                    if await strategy.perform(self.page) and await self.verify_transition(from_id, timeout):
                        record_outcome(self.state, True)
                        self.state.current_item_id = self.current_item_id()
                        logger.debug(f"Navigated {from_id} -> {self.state.current_item_id} ({strategy.name})")
                        return True
                except Exception as e:
                    logger.debug(f"{strategy.name} attempt {attempt} error: {e}")
                if attempt < strategy.attempts:
                    await self._pause(*self.config.attempt_pause)

        record_outcome(self.state, False)
        logger.warning(
            f"All navigation strategies failed from {from_id} "
            f"(consecutive={self.state.consecutive_failures}, cumulative={self.state.cumulative_failures})"
        )
        return False

    async def verify_transition(self, from_id: Optional[str], timeout: float) -> bool:
        waited = 0.0
        interval = self.config.poll_interval
        while waited < timeout:
            await self._sleep(interval + self._rng.uniform(0, self.config.poll_jitter))
            waited += interval

            new_id = self.current_item_id()
            if new_id and new_id != from_id:
                logger.debug(f"Navigation verified: {from_id} -> {new_id} (took {waited:.1f}s)")
                return True

            if waited >= self.config.heuristic_min_wait and waited >= timeout * self.config.heuristic_ratio:
                try:
                    media = await self.page.query_selector(MEDIA_READY_SELECTOR)
                except PlaywrightError:
                    media = None
                if media:
                    logger.debug(f"Media ready but id unchanged after {waited:.1f}s, treating as navigation")
                    return True
        return False

    async def _pause(self, low: float, high: float):
        await self._sleep(self._rng.uniform(low, high))
