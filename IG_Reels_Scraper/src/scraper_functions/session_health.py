import logging

from playwright.async_api import Error as PlaywrightError

import IG_Reels_Scraper.src.logger

logger = logging.getLogger('IGRS.Health')

SUSPENSION_URL_MARKERS = ('/accounts/suspended/', '/accounts/disabled/')
SUSPENSION_KEYWORDS = [
    'your account has been suspended',
    'account suspended',
    'we suspended your account',
    'your account has been disabled',
]
APP_PROMPT_KEYWORDS = [
    'use the app',
    'download the app',
    'get the app',
    'open in app',
    'discover more reels',
]
DISMISS_LABELS = ['Not now', 'Not Now', 'Maybe later', 'Close']


class SessionHealthMonitor:
    """Account-block detection and dismissal of interstitial "use the app" prompts."""

    def __init__(self, page):
        self.page = page

    async def _body_text(self) -> str:
        try:
            text = await self.page.evaluate("() => (document.body && document.body.innerText) || ''")
        except PlaywrightError as e:
            logger.debug(f"Could not read page text: {e}")
            return ''
        return text.lower() if isinstance(text, str) else ''

    async def is_account_blocked(self) -> bool:
        url = self.page.url or ''
        if any(marker in url for marker in SUSPENSION_URL_MARKERS):
            logger.error(f"⚠️ Account block detected in URL: {url}")
            return True
        body = await self._body_text()
        if any(keyword in body for keyword in SUSPENSION_KEYWORDS):
            logger.error(f"⚠️ Account block detected in page text at {url}")
            return True
        return False

    async def is_transient_prompt(self) -> bool:
        """Dismiss an app prompt if one is showing. Returns True when one was handled."""
        body = await self._body_text()
        if not any(keyword in body for keyword in APP_PROMPT_KEYWORDS):
            return False

        logger.info("App prompt detected, trying to dismiss it")
        for label in DISMISS_LABELS:
            try:
                control = await self.page.query_selector(f'button:has-text("{label}"), [role="button"]:has-text("{label}")')
                if control:
                    await control.click()
                    logger.info(f"✓ Dismissed app prompt via '{label}'")
                    return True
            except PlaywrightError as e:
                logger.debug(f"Dismiss via '{label}' failed: {e}")
        try:
            await self.page.keyboard.press('Escape')
            return True
        except PlaywrightError:
            return False
