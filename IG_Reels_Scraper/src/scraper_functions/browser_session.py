"""
Browser setup for a reels session.

Launches Playwright Chromium with a fixed device fingerprint applied through an
init script, restores cookies from a JSON export and optionally routes traffic
through an authenticated proxy.
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

from playwright.async_api import async_playwright, Browser, BrowserContext, Page

import IG_Reels_Scraper.src.logger

logger = logging.getLogger('IGRS.Browser')

DEFAULT_FINGERPRINT = {
    "userAgent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "platform": "Win32",
    "hardwareConcurrency": 8,
    "deviceMemory": 8,
    "languages": ["en-US", "en"],
    "webgl": {
        "vendor": "Google Inc. (Intel)",
        "renderer": "ANGLE (Intel, Intel(R) UHD Graphics 630 Direct3D11 vs_5_0 ps_5_0, D3D11)"
    },
    "screen": {"width": 1280, "height": 900},
    "timezone": "America/New_York",
}

FINGERPRINT_SCRIPT = """
(() => {
    const FINGERPRINT = %s;
    const define = (name, value) => {
        if (value === undefined || value === null) return;
        Object.defineProperty(Navigator.prototype, name, {
            get: function() { return value; },
            configurable: true,
            enumerable: true
        });
    };
    define('platform', FINGERPRINT.platform);
    define('hardwareConcurrency', FINGERPRINT.hardwareConcurrency);
    define('deviceMemory', FINGERPRINT.deviceMemory);
    define('languages', FINGERPRINT.languages);
    delete Navigator.prototype.webdriver;

    const webgl = FINGERPRINT.webgl || {};
    const patch = (proto) => {
        const original = proto.getParameter;
        proto.getParameter = function(p) {
            if (p === 37445 && webgl.vendor) return webgl.vendor;
            if (p === 37446 && webgl.renderer) return webgl.renderer;
            return original.call(this, p);
        };
    };
    patch(WebGLRenderingContext.prototype);
    if (typeof WebGL2RenderingContext !== 'undefined') patch(WebGL2RenderingContext.prototype);
})();
"""


def load_fingerprint(filepath: Optional[str]) -> Dict:
    if not filepath:
        return dict(DEFAULT_FINGERPRINT)
    try:
        with open(filepath, 'r') as f:
            fp = json.load(f)
        logger.info(f"✓ Loaded fingerprint from {filepath} ({fp.get('platform', 'Unknown')})")
        return fp
    except FileNotFoundError:
        logger.warning(f"Fingerprint file not found: {filepath}, using default")
    except json.JSONDecodeError as e:
        logger.error(f"Invalid fingerprint JSON: {e}, using default")
    return dict(DEFAULT_FINGERPRINT)


def parse_proxy(proxy_url: str) -> Tuple[str, Optional[str], Optional[str]]:
    """Split 'ip:port:user:pass' or a proxy URL into (server, username, password)."""
    if proxy_url.count(":") == 3 and '@' not in proxy_url:
        ip, port, username, password = proxy_url.strip().split(":")
        return f"http://{ip}:{port}", username, password

    parsed = urlparse(proxy_url if '://' in proxy_url else f'http://{proxy_url}')
    port = parsed.port or 8080
    return f"{parsed.scheme or 'http'}://{parsed.hostname}:{port}", parsed.username, parsed.password


def sanitize_cookies(cookies):
    sanitized = []
    for cookie in cookies:
        cookie = dict(cookie)
        if 'sameSite' in cookie and cookie['sameSite'] not in ['Strict', 'Lax', 'None']:
            del cookie['sameSite']
        sanitized.append(cookie)
    return sanitized


class BrowserSession:
    """Owns the Playwright browser, context and page for one persona."""

    def __init__(
        self,
        headless: bool = False,
        slow_mo: int = 50,
        proxy: Optional[str] = None,
        fingerprint_file: Optional[str] = None,
        cookies_file: Optional[str] = "instagram_cookies.json",
    ):
        self.headless = headless
        self.slow_mo = slow_mo
        self.cookies_file = cookies_file
        self.fingerprint = load_fingerprint(fingerprint_file)

        self.proxy_server = None
        self.proxy_username = None
        self.proxy_password = None
        if proxy:
            self.proxy_server, self.proxy_username, self.proxy_password = parse_proxy(proxy)
            logger.info(f"Proxy server: {self.proxy_server}")

        self.playwright = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    async def start(self) -> Page:
        logger.info("=" * 70)
        logger.info("STARTING BROWSER")
        logger.info("=" * 70)

        self.playwright = await async_playwright().start()

        launch_args = {
            'headless': self.headless,
            'slow_mo': self.slow_mo,
            'args': [
                '--disable-blink-features=AutomationControlled',
                '--no-sandbox',
                '--disable-dev-shm-usage',
                '--disable-infobars',
                '--no-first-run',
                '--no-default-browser-check',
            ],
            'ignore_default_args': ['--enable-automation'],
            'timeout': 60000,
        }
        if self.proxy_server:
            launch_args['proxy'] = {'server': self.proxy_server}

        self.browser = await self.playwright.chromium.launch(**launch_args)
        logger.info("✓ Browser launched")

        screen = self.fingerprint.get('screen', DEFAULT_FINGERPRINT['screen'])
        context_args = {
            'viewport': {'width': screen['width'], 'height': screen['height']},
            'user_agent': self.fingerprint.get('userAgent', DEFAULT_FINGERPRINT['userAgent']),
            'locale': 'en-US',
            'timezone_id': self.fingerprint.get('timezone', 'America/New_York'),
        }
        if self.proxy_server and self.proxy_username and self.proxy_password:
            context_args['http_credentials'] = {
                'username': self.proxy_username,
                'password': self.proxy_password,
            }

        self.context = await self.browser.new_context(**context_args)
        await self.context.set_extra_http_headers({'Accept-Language': 'en-US,en;q=0.9'})
        await self._load_cookies()
        await self.context.add_init_script(FINGERPRINT_SCRIPT % json.dumps(self.fingerprint))

        self.page = await self.context.new_page()
        logger.info("✓ Page created")
        return self.page

    async def _load_cookies(self):
        if not self.cookies_file:
            return
        if not os.path.exists(self.cookies_file):
            logger.warning(f"{self.cookies_file} not found. You may need to log in.")
            return
        try:
            with open(self.cookies_file, 'r') as f:
                cookies = sanitize_cookies(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read cookies: {e}")
            return
        await self.context.add_cookies(cookies)
        logger.info(f"✓ Loaded {len(cookies)} cookies from {Path(self.cookies_file).name}")

    async def stop(self):
        try:
            if self.browser:
                await self.browser.close()
        except Exception as e:
            logger.debug(f"Error closing browser: {e}")
        try:
            if self.playwright:
                await self.playwright.stop()
        except Exception as e:
            logger.debug(f"Error stopping playwright: {e}")
        self.browser = self.context = self.page = None
        self.playwright = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
