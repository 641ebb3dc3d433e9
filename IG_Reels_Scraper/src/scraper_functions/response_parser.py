"""
Response shape parser for intercepted GraphQL traffic.

The platform answers the same query with several incompatible shapes and
changes them without notice. Parsing is split into independent, ordered pieces:

1. decode_body       strip the anti-hijacking prefix and parse JSON
2. SHAPE_MATCHERS    recognised top-level structures, first match wins
3. find_item_objects depth-bounded search used when no matcher recognises the body
4. FIELD_ALIASES     per-field alternative key paths, first usable value wins

Adding a shape or an alias means appending to one of these lists.
parse_packet is the entry point; it keeps each raw item next to its record.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

import IG_Reels_Scraper.src.logger
from IG_Reels_Scraper.src.models import InterceptedPacket, MediaType, PartialRecord
from IG_Reels_Scraper.src.scraper_functions import hashtag_extractor

logger = logging.getLogger('IGRS.Parser')

ANTI_HIJACK_PREFIX = re.compile(r'^\s*for\s*\(;;\);\s*')
DATA_QUERY_ENDPOINTS = ('/graphql/query', '/api/graphql')
MAX_SEARCH_DEPTH = 5

Path = Tuple[Union[str, int], ...]


# ============================================================================
# DECODING
# ============================================================================

def is_data_query(packet: InterceptedPacket) -> bool:
    url = packet.url or ''
    return (packet.method or '').upper() == 'POST' and any(e in url for e in DATA_QUERY_ENDPOINTS)


def decode_body(body: Any) -> Optional[Any]:
    """Return parsed JSON, or None for anything that isn't JSON (most captured traffic)."""
    if isinstance(body, (dict, list)):
        return body
    if isinstance(body, bytes):
        body = body.decode('utf-8', errors='replace')
    if not isinstance(body, str):
        return None
    text = ANTI_HIJACK_PREFIX.sub('', body, count=1)
    try:
        return json.loads(text)
    except ValueError:
        return None


def dig(obj: Any, path: Path) -> Any:
    for key in path:
        if isinstance(key, int):
            if not isinstance(obj, list) or len(obj) <= key:
                return None
            obj = obj[key]
        else:
            if not isinstance(obj, dict):
                return None
            obj = obj.get(key)
        if obj is None:
            return None
    return obj


def _dicts(values: Any) -> List[Dict]:
    if not isinstance(values, list):
        return []
    return [v for v in values if isinstance(v, dict)]


# ============================================================================
# SHAPE MATCHERS
# ============================================================================
# Each returns None when it doesn't recognise the body, otherwise the list of
# item objects it found (possibly empty).

SINGLE_ITEM_KEYS = ('xdt_shortcode_media', 'shortcode_media')
CONNECTION_KEYS = (
    'xdt_api__v1__clips__home__connection_v2',
    'xdt_api__v1__clips__user__connection_v2',
)


def match_single_item(parsed: Any) -> Optional[List[Dict]]:
    for key in SINGLE_ITEM_KEYS:
        item = dig(parsed, ('data', key))
        if isinstance(item, dict):
            return [item]
    return None


def match_feed_connection(parsed: Any) -> Optional[List[Dict]]:
    for key in CONNECTION_KEYS:
        edges = dig(parsed, ('data', key, 'edges'))
        if isinstance(edges, list):
            return [m for m in (dig(e, ('node', 'media')) for e in edges) if isinstance(m, dict)]
    return None


def match_item_array(parsed: Any) -> Optional[List[Dict]]:
    if isinstance(parsed, list):
        return _dicts(parsed)
    for path in (('items',), ('data', 'items')):
        items = dig(parsed, path)
        if isinstance(items, list):
            return _dicts(items)
    return None


SHAPE_MATCHERS: List[Tuple[str, Callable[[Any], Optional[List[Dict]]]]] = [
    ('single_item', match_single_item),
    ('feed_connection', match_feed_connection),
    ('item_array', match_item_array),
]


# ============================================================================
# DEEP SEARCH
# ============================================================================

def _looks_like_item(obj: Dict) -> bool:
    has_id = (
        obj.get('__typename') == 'XDTMediaDict'
        or any(obj.get(k) for k in ('code', 'shortcode', 'pk'))
    )
    is_video = obj.get('product_type') == 'clips' or obj.get('media_type') == 2
    return has_id and is_video


def find_item_objects(obj: Any, depth: int = 0, max_depth: int = MAX_SEARCH_DEPTH) -> List[Dict]:
    """Collect item-like objects nested anywhere up to max_depth levels below obj."""
    if depth > max_depth:
        return []
    if isinstance(obj, list):
        found = []
        for value in obj:
            found.extend(find_item_objects(value, depth + 1, max_depth))
        return found
    if not isinstance(obj, dict):
        return []
    if _looks_like_item(obj):
        return [obj]
    found = []
    for value in obj.values():
        if isinstance(value, (dict, list)):
            found.extend(find_item_objects(value, depth + 1, max_depth))
    return found


def find_items(parsed: Any) -> List[Dict]:
    for name, matcher in SHAPE_MATCHERS:
        items = matcher(parsed)
        if items is not None:
            logger.debug(f"Shape '{name}' matched with {len(items)} item(s)")
            return items
    items = find_item_objects(parsed)
    if items:
        logger.debug(f"No known shape matched; deep search found {len(items)} item(s)")
    return items


# ============================================================================
# FIELD EXTRACTION
# ============================================================================

def coerce_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def coerce_id(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    return coerce_text(value)


def coerce_count(value: Any) -> Optional[int]:
    """Integers pass through unchanged (negative ones are rejected later by validation)."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        cleaned = value.replace(',', '').strip()
        if re.fullmatch(r'-?\d+', cleaned):
            return int(cleaned)
    return None


def coerce_timestamp(value: Any) -> Optional[datetime]:
    ts = coerce_count(value)
    if ts is None or ts <= 0:
        return None
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


FIELD_ALIASES: Dict[str, Tuple[Callable[[Any], Any], Sequence[Path]]] = {
    'id': (coerce_id, [('code',), ('shortcode',)]),
    'author_handle': (coerce_text, [('owner', 'username'), ('user', 'username')]),
    'caption': (coerce_text, [
        ('edge_media_to_caption', 'edges', 0, 'node', 'text'),
        ('caption', 'text'),
        ('caption',),
    ]),
    'likes': (coerce_count, [
        ('edge_media_preview_like', 'count'),
        ('like_count',),
        ('edge_liked_by', 'count'),
    ]),
    'comments': (coerce_count, [('edge_media_to_comment', 'count'), ('comment_count',)]),
    'views': (coerce_count, [
        ('video_view_count',),
        ('video_play_count',),
        ('view_count',),
        ('play_count',),
    ]),
    'created_at': (coerce_timestamp, [('taken_at_timestamp',), ('taken_at',)]),
    'video_url': (coerce_text, [('video_versions', 0, 'url'), ('video_url',)]),
    'thumbnail_url': (coerce_text, [
        ('thumbnail_src',),
        ('display_url',),
        ('image_versions2', 'candidates', 0, 'url'),
        ('display_resources', 0, 'src'),
    ]),
}


def first_value(item: Dict, field_name: str) -> Any:
    coerce, paths = FIELD_ALIASES[field_name]
    for path in paths:
        value = coerce(dig(item, path))
        if value is not None:
            return value
    return None


def media_type_of(item: Dict) -> Optional[MediaType]:
    if item.get('product_type') == 'clips' or item.get('media_type') == 2 or item.get('is_video') is True:
        return MediaType.VIDEO_REEL
    if 'product_type' in item or 'media_type' in item or item.get('is_video') is False:
        return MediaType.OTHER
    return None


def extract_item(item: Dict) -> Optional[PartialRecord]:
    record = PartialRecord(**{name: first_value(item, name) for name in FIELD_ALIASES})
    if not record.id:
        return None
    record.media_type = media_type_of(item)
    record.tag_provenance = hashtag_extractor.extract_from_item(item)
    return record


# ============================================================================
# ENTRY POINTS
# ============================================================================

class ParsedItem(NamedTuple):
    raw: Dict
    record: PartialRecord


def parse_items(body: Any) -> Optional[List[ParsedItem]]:
    """Every usable item in a response body, or None when the body is not JSON."""
    parsed = decode_body(body)
    if parsed is None:
        return None
    items = []
    for raw in find_items(parsed):
        record = extract_item(raw)
        if record:
            items.append(ParsedItem(raw, record))
    return items


def parse_packet(packet: InterceptedPacket) -> Optional[List[ParsedItem]]:
    if not is_data_query(packet):
        return None
    return parse_items(packet.body)
