"""
Interception bridge: relays the page's own fetch/XHR responses to the host.

The init script wraps window.fetch and XMLHttpRequest inside the page, reads a
clone of every response body and hands it to an exposed host function without
awaiting it. Playwright re-runs init scripts before every new top-level
document, so the shim survives navigations.

On the host side each delivery becomes an InterceptedPacket and goes into a
bounded queue. A single consumer task parses packets and inserts canonical
records into the DedupCache, which is the only state shared with the scrape loop.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from playwright.async_api import Error as PlaywrightError

import IG_Reels_Scraper.src.logger
from IG_Reels_Scraper.src.models import InterceptedPacket
from IG_Reels_Scraper.src.scraper_functions import response_parser
from IG_Reels_Scraper.src.scraper_functions.dedup_cache import DedupCache
from IG_Reels_Scraper.src.scraper_functions.record_merger import merge

logger = logging.getLogger('IGRS.Bridge')

HOST_FUNCTION = '__igrsRelay'

CAPTURE_SCRIPT = '''
(() => {
    if (window.__igrsCaptureInstalled) return;
    window.__igrsCaptureInstalled = true;

    const relay = (payload) => {
        try {
            const send = window.%(host)s;
            if (typeof send === 'function') {
                Promise.resolve(send(payload)).catch(() => {});
            }
        } catch (e) {}
    };

    try {
        const originalFetch = window.fetch;
        window.fetch = new Proxy(originalFetch, {
            apply: async function(target, thisArg, args) {
                const response = await target.apply(thisArg, args);
                try {
                    const clone = response.clone();
                    const [input, init] = args;
                    const url = typeof input === 'string' ? input : (input && input.url) || String(input);
                    const method = (init && init.method) || (input && input.method) || 'GET';
                    Promise.resolve().then(async () => {
                        const data = await clone.text();
                        relay({url, method, contentType: clone.headers.get('content-type'), data});
                    }).catch(() => {});
                } catch (e) {}
                return response;
            }
        });
    } catch (e) {}

    try {
        const open = XMLHttpRequest.prototype.open;
        const send = XMLHttpRequest.prototype.send;
        XMLHttpRequest.prototype.open = function(method, url) {
            this.__igrsMethod = method;
            this.__igrsUrl = url;
            return open.apply(this, arguments);
        };
        XMLHttpRequest.prototype.send = function() {
            this.addEventListener('load', () => {
                Promise.resolve().then(() => {
                    let data;
                    if (this.responseType === '' || this.responseType === 'text') {
                        data = this.responseText;
                    } else if (this.responseType === 'json') {
                        data = JSON.stringify(this.response);
                    } else {
                        return;
                    }
                    relay({
                        url: String(this.__igrsUrl),
                        method: this.__igrsMethod || 'GET',
                        contentType: this.getResponseHeader('content-type'),
                        data,
                    });
                }).catch(() => {});
            });
            return send.apply(this, arguments);
        };
    } catch (e) {}
})();
''' % {'host': HOST_FUNCTION}


def packet_from_payload(payload: Any) -> Optional[InterceptedPacket]:
    if not isinstance(payload, dict) or not payload.get('url'):
        return None
    return InterceptedPacket(
        url=str(payload.get('url')),
        method=str(payload.get('method') or 'GET'),
        content_type=payload.get('contentType'),
        body=payload.get('data'),
    )


class InterceptionBridge:
    """Captures data-fetch traffic in the page and feeds parsed records into the cache."""

    def __init__(self, page, cache: DedupCache, storage=None, channel_size: int = 256):
        self.page = page
        self.cache = cache
        self.storage = storage
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=channel_size)
        self.installed = False
        self.degraded = False
        self._on_capture: Callable[[InterceptedPacket], None] = self.enqueue
        self._consumer: Optional[asyncio.Task] = None
        self.stats = {
            "packets": 0,
            "dropped": 0,
            "data_queries": 0,
            "items_seen": 0,
            "items_cached": 0,
        }

    # ========================================================================
    # INSTALLATION
    # ========================================================================

    async def install(self, on_capture: Optional[Callable[[InterceptedPacket], None]] = None) -> bool:
        """Expose the host relay and register the capture shim. Returns False in degraded mode."""
        if on_capture is not None:
            self._on_capture = on_capture
        if self.installed:
            return True
        try:
            await self.page.expose_function(HOST_FUNCTION, self._relay)
            await self.page.add_init_script(CAPTURE_SCRIPT)
        except PlaywrightError as e:
            self.degraded = True
            logger.warning(f"Capture shim not installed, continuing with DOM fallback only: {e}")
            return False
        self.installed = True
        logger.info("✓ Network interception installed")
        return True

    async def _relay(self, payload: Dict[str, Any]) -> None:
        # Called from the page; must never raise back into it
        try:
            packet = packet_from_payload(payload)
            if packet is not None:
                self._on_capture(packet)
        except Exception as e:
            logger.debug(f"Dropped capture event: {e}")

    # ========================================================================
    # CHANNEL
    # ========================================================================

    def enqueue(self, packet: InterceptedPacket):
        self.stats["packets"] += 1
        if self.queue.full():
            self.queue.get_nowait()
            self.stats["dropped"] += 1
            logger.debug("Capture channel full, dropped oldest packet")
        self.queue.put_nowait(packet)

    def start(self):
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.ensure_future(self._consume())

    async def stop(self):
        if self._consumer is None:
            return
        self._consumer.cancel()
        try:
            await self._consumer
        except asyncio.CancelledError:
            pass
        self._consumer = None

    def reset(self):
        while not self.queue.empty():
            self.queue.get_nowait()

    async def _consume(self):
        while True:
            packet = await self.queue.get()
            try:
                self.process(packet)
            except Exception as e:
                logger.debug(f"Failed to process packet from {packet.url[:100]}: {e}")

    # ========================================================================
    # PROCESSING
    # ========================================================================

    def process(self, packet: InterceptedPacket) -> int:
        """Parse one packet and cache its records. Returns how many were newly cached."""
        self._save_raw(packet)
        items = response_parser.parse_packet(packet)
        if items is None:
            return 0

        self.stats["data_queries"] += 1
        added = 0
        for raw, partial in items:
            self.stats["items_seen"] += 1
            self._save_auxiliary(raw)
            record = merge(partial, None)
            if record is not None and self.cache.add_if_absent(record):
                added += 1
        self.stats["items_cached"] += added
        return added

    def _save_raw(self, packet: InterceptedPacket):
        if self.storage is None:
            return
        body = packet.body if isinstance(packet.body, str) else ''
        meta = {
            "url": packet.url,
            "method": packet.method,
            "content_type": packet.content_type,
            "size": len(body),
            "captured_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.storage.save_raw_traffic(meta)
        except Exception as e:
            logger.debug(f"Failed to save raw traffic meta: {e}")

    def _save_auxiliary(self, item: Dict[str, Any]):
        if self.storage is None:
            return
        try:
            self.storage.save_auxiliary_record(item)
        except Exception as e:
            logger.debug(f"Failed to save auxiliary record: {e}")
