"""Browser stand-ins for exercising the engine without Playwright."""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError

REELS = "https://www.instagram.com/reels/"


def reel_url(item_id: str) -> str:
    return f"https://www.instagram.com/reels/{item_id}/"


async def fast_sleep(_seconds: float):
    await asyncio.sleep(0)


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)
        await asyncio.sleep(0)


class FakeElement:
    def __init__(self, on_click: Optional[Callable[[], None]] = None, box: Optional[Dict] = None):
        self.on_click = on_click
        self.box = box
        self.clicks = 0

    async def click(self):
        self.clicks += 1
        if self.on_click:
            self.on_click()

    async def scroll_into_view_if_needed(self):
        return None

    async def bounding_box(self):
        return self.box


class FakeKeyboard:
    def __init__(self, page: "FakePage"):
        self.page = page
        self.pressed: List[str] = []

    async def press(self, key: str):
        self.pressed.append(key)
        self.page.on_key(key)


class FakeMouse:
    def __init__(self):
        self.moves = 0

    async def move(self, x, y, steps=1):
        self.moves += 1

    async def down(self):
        return None

    async def up(self):
        return None


class FakePage:
    """
    Minimal page: `key_script` holds the URL each key press leads to (None means
    the press does nothing), `snapshots` maps URLs to DOM snapshots and
    `selectors` maps selectors (or a fragment of one) to elements.
    """

    def __init__(self, url: str = REELS):
        self.url = url
        self.keyboard = FakeKeyboard(self)
        self.mouse = FakeMouse()
        self.selectors: Dict[str, FakeElement] = {}
        self.snapshots: Dict[str, Dict[str, Any]] = {}
        self.body_text = ""
        self.key_script: List[Optional[str]] = []
        self.goto_calls: List[str] = []
        self.exposed: Dict[str, Callable] = {}
        self.init_scripts: List[str] = []
        self.pending_payloads: List[Dict[str, Any]] = []
        self.fail_expose = False
        self.fail_evaluate = False
        self.closed = False
        self.screenshot_bytes = b"\x89PNG fake"
        self.screenshot_delay = 0.0

    def on_key(self, key: str):
        if self.key_script:
            next_url = self.key_script.pop(0)
            if next_url:
                self.url = next_url

    async def focus(self, selector: str):
        return None

    async def expose_function(self, name: str, fn: Callable):
        if self.fail_expose:
            raise PlaywrightError("Target page, context or browser has been closed")
        self.exposed[name] = fn

    async def add_init_script(self, script: str):
        self.init_scripts.append(script)
        # Traffic the page "fetched" on load reaches the host asynchronously
        for name, fn in self.exposed.items():
            for payload in self.pending_payloads:
                asyncio.ensure_future(fn(payload))

    async def query_selector(self, selector: str):
        if selector in self.selectors:
            return self.selectors[selector]
        for key, element in self.selectors.items():
            if key in selector:
                return element
        return None

    async def evaluate(self, script: str, *args):
        if self.fail_evaluate:
            raise PlaywrightError("Execution context was destroyed")
        if "document.body" in script:
            return self.body_text
        return self.snapshots.get(self.url, {"location": self.url})

    async def goto(self, url: str, **kwargs):
        self.goto_calls.append(url)
        self.url = url

    async def screenshot(self, path: str, full_page: bool = False):
        if self.screenshot_delay:
            await asyncio.sleep(self.screenshot_delay)
        with open(path, "wb") as f:
            f.write(self.screenshot_bytes)

    def is_closed(self) -> bool:
        return self.closed


class MemoryStorage:
    def __init__(self, existing=()):
        self.records: Dict[str, Any] = {}
        self.existing = set(existing)
        self.sessions: List[Dict[str, Any]] = []
        self.traffic: List[Dict[str, Any]] = []
        self.auxiliary: List[Dict[str, Any]] = []

    def has_record(self, id: str) -> bool:
        return id in self.records or id in self.existing

    def save_record(self, record) -> bool:
        if self.has_record(record.id):
            return False
        self.records[record.id] = record
        return True

    def save_session(self, stats):
        self.sessions.append(stats)

    def save_raw_traffic(self, meta):
        self.traffic.append(meta)

    def save_auxiliary_record(self, item):
        self.auxiliary.append(item)


def reel_item(code: str, username: str = "someone", likes: int = 10, caption: str = "Nice clip #reels") -> Dict:
    return {
        "code": code,
        "pk": f"99{len(code)}",
        "product_type": "clips",
        "media_type": 2,
        "user": {"username": username},
        "like_count": likes,
        "comment_count": 3,
        "play_count": 1000,
        "caption": {"text": caption},
        "taken_at": 1700000000,
    }


def feed_payload(*items: Dict, prefix: str = "") -> Dict[str, Any]:
    body = {
        "data": {
            "xdt_api__v1__clips__home__connection_v2": {
                "edges": [{"node": {"media": item}} for item in items]
            }
        }
    }
    return {
        "url": "https://www.instagram.com/graphql/query",
        "method": "POST",
        "contentType": "application/json",
        "data": prefix + json.dumps(body),
    }
