import logging
from datetime import datetime, timezone
from typing import Optional

import IG_Reels_Scraper.src.logger
from IG_Reels_Scraper.src.models import CanonicalRecord, Counts, MediaType, PartialRecord, Provenance
from IG_Reels_Scraper.src.scraper_functions import hashtag_extractor

logger = logging.getLogger('IGRS.Merger')

SCALAR_FIELDS = (
    'author_handle', 'caption', 'likes', 'comments', 'views',
    'media_type', 'created_at', 'video_url', 'thumbnail_url',
)


def _pick(field_name: str, primary: Optional[PartialRecord], secondary: Optional[PartialRecord]):
    for source in (primary, secondary):
        if source is not None:
            value = getattr(source, field_name)
            if value is not None:
                return value
    return None


def merge(
    intercepted: Optional[PartialRecord],
    rendered: Optional[PartialRecord],
    now: Optional[datetime] = None,
) -> Optional[CanonicalRecord]:
    """
    Combine the two extraction paths into one canonical record.

    Intercepted scalars win on conflict, tag sets are unioned, and a rendered
    partial describing a different item than the intercepted one is ignored.
    Returns None when nothing usable remains or the result fails validation.
    """
    if intercepted is not None and intercepted.is_empty():
        intercepted = None
    if rendered is not None and rendered.is_empty():
        rendered = None
    if intercepted is not None and rendered is not None and intercepted.id != rendered.id:
        logger.debug(f"Ignoring rendered data for {rendered.id}; intercepted item is {intercepted.id}")
        rendered = None
    if intercepted is None and rendered is None:
        return None

    if intercepted is not None and rendered is not None:
        provenance = Provenance.MERGED
    elif intercepted is not None:
        provenance = Provenance.INTERCEPTED
    else:
        provenance = Provenance.RENDERED

    values = {name: _pick(name, intercepted, rendered) for name in SCALAR_FIELDS}
    tag_provenance = hashtag_extractor.merge(
        intercepted.tag_provenance if intercepted else (),
        rendered.tag_provenance if rendered else (),
    )
    record = CanonicalRecord(
        id=(intercepted or rendered).id,
        provenance=provenance,
        extracted_at=now or datetime.now(timezone.utc),
        author_handle=values['author_handle'],
        caption=values['caption'],
        tags=frozenset(entry.tag for entry in tag_provenance),
        tag_provenance=tag_provenance,
        counts=Counts(
            likes=values['likes'] if values['likes'] is not None else 0,
            comments=values['comments'] if values['comments'] is not None else 0,
            views=values['views'] if values['views'] is not None else 0,
        ),
        media_type=values['media_type'] or MediaType.VIDEO_REEL,
        created_at=values['created_at'],
        video_url=values['video_url'],
        thumbnail_url=values['thumbnail_url'],
    )

    if not record.is_valid():
        logger.debug(f"Discarding invalid record {record.id!r}: counts={record.counts}")
        return None
    return record
