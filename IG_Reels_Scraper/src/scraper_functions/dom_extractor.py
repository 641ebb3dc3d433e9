"""
DOM fallback extractor.

Used when interception has not delivered the current item in time. A single
page.evaluate call snapshots the raw strings we need; everything else is plain
Python so it can be exercised without a browser. Missing elements are normal.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from playwright.async_api import Error as PlaywrightError

import IG_Reels_Scraper.src.logger
from IG_Reels_Scraper.src.models import MediaType, PartialRecord
from IG_Reels_Scraper.src.scraper_functions import hashtag_extractor

logger = logging.getLogger('IGRS.DOM')

ITEM_ID_IN_URL = re.compile(r'/reels?/([^/?#]+)')
MIN_CAPTION_LENGTH = 10
CHROME_MARKERS = ('Follow', 'Like')
RESERVED_PATHS = {
    'reel', 'reels', 'explore', 'p', 'stories', 'direct', 'accounts',
    'about', 'legal', 'web', 'challenge', 'emails', 'tv',
}

SNAPSHOT_SCRIPT = '''
    () => {
        const attr = (sel, name, limit) => Array.from(document.querySelectorAll(sel))
            .slice(0, limit)
            .map(el => el.getAttribute(name))
            .filter(v => typeof v === 'string');
        const text = (sel, limit) => Array.from(document.querySelectorAll(sel))
            .slice(0, limit)
            .map(el => el.innerText || el.textContent || '');
        return {
            location: window.location.href,
            profile_links: attr('a[href^="/"]', 'href', 40),
            text_blocks: text('h1, span[dir="auto"]', 60),
            count_labels: attr(
                'button[aria-label], span[aria-label], svg[aria-label], [role="button"][aria-label]',
                'aria-label', 80),
            tag_links: attr('a[href*="/explore/tags/"]', 'href', 60),
        };
    }
'''

_COUNT = r'(\d[\d,.]*\s*[KkMmBb]?)'
LIKES_LABEL = re.compile(_COUNT + r'\s*likes?\b', re.IGNORECASE)
COMMENTS_LABEL = re.compile(_COUNT + r'\s*comments?\b', re.IGNORECASE)
_MULTIPLIERS = {'k': 1_000, 'm': 1_000_000, 'b': 1_000_000_000}


def item_id_from_url(url: Optional[str]) -> Optional[str]:
    match = ITEM_ID_IN_URL.search(url or '')
    return match.group(1) if match else None


def parse_count_text(text: str) -> Optional[int]:
    """'1,234' -> 1234, '1.2K' -> 1200, '3M' -> 3000000."""
    cleaned = (text or '').replace(' ', '').strip()
    if not cleaned:
        return None
    suffix = cleaned[-1].lower()
    if suffix in _MULTIPLIERS:
        try:
            return int(round(float(cleaned[:-1].replace(',', '')) * _MULTIPLIERS[suffix]))
        except ValueError:
            return None
    digits = cleaned.replace(',', '').replace('.', '')
    return int(digits) if digits.isdigit() else None


def _first_count(labels: Iterable[str], pattern: re.Pattern) -> Optional[int]:
    for label in labels:
        match = pattern.search(label or '')
        if match:
            value = parse_count_text(match.group(1))
            if value is not None:
                return value
    return None


def _author_from_links(hrefs: Iterable[str]) -> Optional[str]:
    for href in hrefs:
        segments = [s for s in (href or '').split('?')[0].split('/') if s]
        if len(segments) == 1 and segments[0].lower() not in RESERVED_PATHS:
            return segments[0]
    return None


def _caption_from_blocks(blocks: Iterable[str]) -> Optional[str]:
    for text in blocks:
        text = (text or '').strip()
        if len(text) > MIN_CAPTION_LENGTH and not any(m in text for m in CHROME_MARKERS):
            return text
    return None


def parse_snapshot(snapshot: Dict[str, Any], location: Optional[str] = None) -> Optional[PartialRecord]:
    """Build a partial record from a rendered-page snapshot; None when no item id is derivable."""
    snapshot = snapshot or {}
    item_id = item_id_from_url(location) or item_id_from_url(snapshot.get('location'))
    if not item_id:
        return None

    labels: List[str] = snapshot.get('count_labels') or []
    caption = _caption_from_blocks(snapshot.get('text_blocks') or [])
    tags = hashtag_extractor.merge(
        hashtag_extractor.extract_from_links(snapshot.get('tag_links') or []),
        hashtag_extractor.extract_from_text(caption, method='dom_caption'),
    )
    return PartialRecord(
        id=item_id,
        author_handle=_author_from_links(snapshot.get('profile_links') or []),
        caption=caption,
        tag_provenance=tags,
        likes=_first_count(labels, LIKES_LABEL),
        comments=_first_count(labels, COMMENTS_LABEL),
        media_type=MediaType.VIDEO_REEL,
    )


class DOMExtractor:
    """Reads the currently rendered reel."""

    def __init__(self, page):
        self.page = page

    async def extract(self) -> Optional[PartialRecord]:
        try:
            snapshot = await self.page.evaluate(SNAPSHOT_SCRIPT)
        except PlaywrightError as e:
            logger.debug(f"DOM snapshot failed: {e}")
            return None
        record = parse_snapshot(snapshot if isinstance(snapshot, dict) else {}, self.page.url)
        if record:
            logger.debug(f"DOM fallback read {record.id} (@{record.author_handle or 'unknown'})")
        else:
            logger.debug("DOM fallback found no item id on the current page")
        return record
