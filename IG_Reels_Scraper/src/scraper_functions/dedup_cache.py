import logging
import threading
from typing import Dict, List, Optional

import IG_Reels_Scraper.src.logger
from IG_Reels_Scraper.src.models import CanonicalRecord

logger = logging.getLogger('IGRS.Cache')


class DedupCache:
    """
    Session-scoped store of canonical records keyed by item id.

    Entries are first-write-wins and never replaced; arrival order is kept for
    all(). The interception consumer and the scrape loop both insert here, so the
    check-and-insert runs under a lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[str, CanonicalRecord] = {}
        self._order: List[str] = []

    def add_if_absent(self, record: CanonicalRecord) -> bool:
        if record is None or not record.is_valid():
            raise ValueError(f"Refusing to cache invalid record: {record!r}")
        with self._lock:
            if record.id in self._records:
                logger.debug(f"Item {record.id} already cached, keeping first copy")
                return False
            self._records[record.id] = record
            self._order.append(record.id)
        logger.info(f"Cached item {record.id} by @{record.author_handle or 'unknown'} ({record.provenance.value})")
        return True

    def get(self, item_id: str) -> Optional[CanonicalRecord]:
        with self._lock:
            return self._records.get(item_id)

    def has(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._records

    def all(self) -> List[CanonicalRecord]:
        with self._lock:
            return [self._records[i] for i in self._order]

    def clear(self):
        with self._lock:
            self._records.clear()
            self._order.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._order)

    def __contains__(self, item_id: str) -> bool:
        return self.has(item_id)
