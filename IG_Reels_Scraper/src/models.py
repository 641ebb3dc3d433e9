"""
Data model shared by the extraction and navigation engine.

CanonicalRecord is the unit of output. PartialRecord is what each extraction
path (network interception, rendered page) produces before merging.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple


# ============================================================================
# ENUMS
# ============================================================================

class MediaType(Enum):
    VIDEO_REEL = "video-reel"
    OTHER = "other"


class Provenance(Enum):
    INTERCEPTED = "intercepted"
    RENDERED = "rendered"
    MERGED = "merged"


class SessionStatus(Enum):
    RUNNING = "running"
    RECOVERING = "recovering"
    BLOCKED = "blocked"
    DONE = "done"


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass(frozen=True)
class TagProvenance:
    """Where a tag was found: extraction method and 1-based position within that method."""
    tag: str
    source_method: str
    position: int


@dataclass(frozen=True)
class Counts:
    likes: int = 0
    comments: int = 0
    views: int = 0

    def is_valid(self) -> bool:
        for value in (self.likes, self.comments, self.views):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                return False
        return True


@dataclass(frozen=True)
class InterceptedPacket:
    """One captured request/response pair relayed from the browser context."""
    url: str
    method: str
    content_type: Optional[str]
    body: Any


@dataclass
class PartialRecord:
    """Fields one extraction path could recover; anything unknown stays None."""
    id: Optional[str] = None
    author_handle: Optional[str] = None
    caption: Optional[str] = None
    tag_provenance: Tuple[TagProvenance, ...] = ()
    likes: Optional[int] = None
    comments: Optional[int] = None
    views: Optional[int] = None
    media_type: Optional[MediaType] = None
    created_at: Optional[datetime] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None

    @property
    def tags(self) -> FrozenSet[str]:
        return frozenset(entry.tag for entry in self.tag_provenance)

    def is_empty(self) -> bool:
        return not self.id


@dataclass(frozen=True)
class CanonicalRecord:
    """Normalized, deduplicated representation of one feed item."""
    id: str
    provenance: Provenance
    extracted_at: datetime
    author_handle: Optional[str] = None
    caption: Optional[str] = None
    tags: FrozenSet[str] = frozenset()
    tag_provenance: Tuple[TagProvenance, ...] = ()
    counts: Counts = field(default_factory=Counts)
    media_type: MediaType = MediaType.VIDEO_REEL
    created_at: Optional[datetime] = None
    screenshot_ref: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None

    def is_valid(self) -> bool:
        return isinstance(self.id, str) and bool(self.id.strip()) and self.counts.is_valid()

    def to_row(self) -> Dict[str, Any]:
        """Flatten into a storage row; tags are sorted so equal records produce equal rows."""
        return {
            "id": self.id,
            "author_handle": self.author_handle,
            "caption": self.caption,
            "tags": ",".join(sorted(self.tags)),
            "tag_provenance": [
                {"tag": t.tag, "source_method": t.source_method, "position": t.position}
                for t in self.tag_provenance
            ],
            "likes": self.counts.likes,
            "comments": self.counts.comments,
            "views": self.counts.views,
            "media_type": self.media_type.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "screenshot_ref": self.screenshot_ref,
            "provenance": self.provenance.value,
            "extracted_at": self.extracted_at.isoformat(),
            "video_url": self.video_url,
            "thumbnail_url": self.thumbnail_url,
        }


@dataclass
class NavigationState:
    current_item_id: Optional[str] = None
    consecutive_failures: int = 0
    cumulative_failures: int = 0
