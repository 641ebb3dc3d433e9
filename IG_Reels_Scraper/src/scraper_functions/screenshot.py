import asyncio
import logging
from pathlib import Path
from typing import Optional

from playwright.async_api import Error as PlaywrightError

import IG_Reels_Scraper.src.logger

logger = logging.getLogger('IGRS.Screenshot')


class ScreenshotTaker:
    """Best-effort per-reel screenshots stored as <dir>/<persona>/<item_id>.png."""

    def __init__(self, page, persona_id: str, screenshot_dir: str = 'screenshots', timeout: float = 10.0):
        self.page = page
        self.persona_id = persona_id
        self.screenshot_dir = Path(screenshot_dir)
        self.timeout = timeout

    async def take(self, item_id: str) -> Optional[str]:
        if not item_id:
            logger.warning("Cannot take screenshot: missing item id")
            return None
        if self.page.is_closed():
            logger.warning("Cannot take screenshot: page is closed")
            return None

        target_dir = self.screenshot_dir / self.persona_id
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / f"{item_id}.png"

        try:
            await asyncio.wait_for(self.page.screenshot(path=str(path), full_page=True), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Screenshot timed out for {item_id}")
            return None
        except PlaywrightError as e:
            logger.warning(f"Screenshot failed for {item_id}: {e}")
            return None

        if not path.exists() or path.stat().st_size == 0:
            logger.error(f"Screenshot file missing or empty: {path}")
            path.unlink(missing_ok=True)
            return None

        relative = f"{self.screenshot_dir.name}/{self.persona_id}/{path.name}"
        logger.info(f"✓ Screenshot saved: {relative} ({path.stat().st_size / 1024:.1f}KB)")
        return relative
