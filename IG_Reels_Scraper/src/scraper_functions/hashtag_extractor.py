"""
Hashtag extraction shared by the network parser and the DOM fallback.

Tags are normalized (leading '#' removed, lowercased, word characters only,
1-100 chars) and deduplicated case-insensitively. The first method that finds a
tag owns its provenance entry.
"""

import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import IG_Reels_Scraper.src.logger
from IG_Reels_Scraper.src.models import TagProvenance

logger = logging.getLogger('IGRS.Hashtags')

TAG_IN_TEXT = re.compile(r'#(\w+)')
VALID_TAG = re.compile(r'^\w{1,100}$')


def normalize_tag(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    cleaned = raw.strip().lstrip('#').strip().lower()
    if VALID_TAG.match(cleaned):
        return cleaned
    return None


def _tag_name(entry: Any) -> Optional[str]:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, dict):
        return entry.get('name') or entry.get('hashtag') or entry.get('title')
    return None


# ============================================================================
# ITEM-LEVEL METHODS
# ============================================================================

def _from_hashtag_edges(item: Dict) -> Iterable[Any]:
    edges = (item.get('edge_media_to_hashtag') or {}).get('edges')
    if not isinstance(edges, list):
        return []
    return [_tag_name(edge.get('node')) for edge in edges if isinstance(edge, dict)]


def _from_hashtag_array(item: Dict) -> Iterable[Any]:
    tags = item.get('hashtags')
    if not isinstance(tags, list):
        return []
    return [_tag_name(tag) for tag in tags]


def _from_caption_object(item: Dict) -> Iterable[Any]:
    caption = item.get('caption')
    if not isinstance(caption, dict) or not isinstance(caption.get('hashtags'), list):
        return []
    return [_tag_name(tag) for tag in caption['hashtags']]


def _from_caption_text(item: Dict) -> Iterable[Any]:
    caption = item.get('caption')
    if isinstance(caption, dict):
        caption = caption.get('text')
    if not isinstance(caption, str):
        edges = (item.get('edge_media_to_caption') or {}).get('edges') or []
        if edges and isinstance(edges[0], dict):
            caption = (edges[0].get('node') or {}).get('text')
    return TAG_IN_TEXT.findall(caption) if isinstance(caption, str) else []


# Ordered; new response shapes get a new entry here rather than a new branch
ITEM_METHODS: List[Tuple[str, Callable[[Dict], Iterable[Any]]]] = [
    ('graphql_edge', _from_hashtag_edges),
    ('graphql_array', _from_hashtag_array),
    ('caption_object', _from_caption_object),
    ('caption_text', _from_caption_text),
]


def _collect(method: str, raw_names: Iterable[Any]) -> List[TagProvenance]:
    found = []
    for position, raw in enumerate(raw_names, start=1):
        tag = normalize_tag(raw)
        if tag:
            found.append(TagProvenance(tag=tag, source_method=method, position=position))
    return found


def extract_from_item(item: Dict) -> Tuple[TagProvenance, ...]:
    """Union of every item-level method against one media object."""
    sources = []
    for method, extractor in ITEM_METHODS:
        try:
            sources.append(_collect(method, extractor(item)))
        except (AttributeError, TypeError, IndexError) as e:
            logger.debug(f"Tag method {method} skipped: {e}")
    return merge(*sources)


def extract_from_text(text: Optional[str], method: str = 'caption_text') -> List[TagProvenance]:
    if not text or not isinstance(text, str):
        return []
    return _collect(method, TAG_IN_TEXT.findall(text))


def extract_from_links(hrefs: Iterable[str]) -> List[TagProvenance]:
    """Tags from /explore/tags/<tag>/ hyperlinks."""
    names = []
    for href in hrefs:
        match = re.search(r'/explore/tags/([^/?#]+)', href or '')
        if match:
            names.append(match.group(1))
    return _collect('dom_link', names)


def merge(*sources: Iterable[TagProvenance]) -> Tuple[TagProvenance, ...]:
    seen = set()
    merged = []
    for source in sources:
        for entry in source:
            if entry.tag in seen:
                continue
            seen.add(entry.tag)
            merged.append(entry)
    return tuple(merged)
